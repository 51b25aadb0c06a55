"""Tareas de mantenimiento invocadas por un scheduler externo (cron, k8s CronJob)."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from rul_service.predictive_engine import PredictiveEngine
from rul_service.schemas import FleetOverview
from telemetry_api.schemas import utcnow
from telemetry_api.storage.interfaces import PrimaryStore

logger = logging.getLogger(__name__)


def purge_expired_telemetry(store: PrimaryStore, now: Optional[datetime] = None) -> int:
    """Borra telemetría cuyo ``expires_at`` ya pasó. Devuelve filas borradas."""
    now = now or utcnow()
    purged = store.purge_expired_telemetry(now)
    logger.info("[JOBS] Purged %d expired telemetry records (cutoff=%s)", purged, now.isoformat())
    return purged


def fleet_report(engine: PredictiveEngine, limit: int = 10) -> FleetOverview:
    overview = engine.fleet_overview(limit=limit)
    logger.info(
        "[JOBS] Fleet report batteries=%d avgRUL=%d critical=%d warning=%d good=%d",
        overview.total_batteries,
        overview.average_rul,
        overview.status_distribution.critical,
        overview.status_distribution.warning,
        overview.status_distribution.good,
    )
    return overview
