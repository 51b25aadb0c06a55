from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

from .config import Settings, get_settings


logger = logging.getLogger(__name__)


def get_engine(settings: Optional[Settings] = None, *, url: Optional[str] = None) -> Engine:
    """Crea el engine SQLAlchemy del almacén primario.

    Para SQLite en memoria se usa ``StaticPool`` para que todas las sesiones
    compartan la misma base (útil en tests y en modo standalone).
    """
    if url is None:
        settings = settings or get_settings()
        url = settings.database_url

    parsed = make_url(url)

    # Log básico de parámetros de conexión (sin contraseña)
    logger.info(
        "[DB] Creating engine dialect=%s host=%s db=%s user=%s",
        parsed.get_backend_name(),
        parsed.host,
        parsed.database,
        parsed.username,
    )

    kwargs: dict = {"pool_pre_ping": True, "future": True}
    if parsed.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if parsed.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)

    # Test de conexión: ayuda a ver en logs si el servicio realmente llega a la BD
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("[DB] Connection probe OK")
    except Exception:
        logger.exception("[DB] Connection probe FAILED")

    return engine
