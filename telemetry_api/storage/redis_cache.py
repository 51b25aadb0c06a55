"""Conexión a Redis y HotCache sobre redis-py."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis

from .interfaces import HotCache

logger = logging.getLogger(__name__)


class RedisConnection:
    """Pool compartido por la HotCache y el espejo del fan-out.

    Si Redis no responde al arrancar, el factory cae a los adaptadores en
    memoria; después los fallos se absorben por sink en el SinkRunner.
    """

    def __init__(self, url: str = "redis://localhost:6379/0", *, socket_timeout: float = 5.0):
        self._url = url
        self._pool = redis.ConnectionPool.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            health_check_interval=30,
        )
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> Optional[redis.Redis]:
        return self._client

    @property
    def safe_url(self) -> str:
        return self._url.split("@")[-1]

    def connect(self) -> bool:
        """Devuelve False (y loggea) si no hay servidor."""
        client = redis.Redis(connection_pool=self._pool)
        try:
            client.ping()
        except redis.RedisError as e:
            logger.warning("[REDIS] Connection failed url=%s: %s", self.safe_url, e)
            self._client = None
            return False
        self._client = client
        logger.info("[REDIS] Connected: %s", self.safe_url)
        return True

    def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            logger.warning("[REDIS] Ping failed: %s", e)
            return False

    def disconnect(self) -> None:
        self._client = None
        self._pool.disconnect()
        logger.info("[REDIS] Pool closed")


class RedisHotCache(HotCache):
    """Valores JSON con ``SET key value EX ttl``.

    Los errores de Redis se propagan: el pipeline los convierte en
    SinkUnavailable y los contabiliza.
    """

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_connection(cls, connection: RedisConnection) -> "RedisHotCache":
        if connection.client is None:
            raise RuntimeError("Redis connection is not established")
        return cls(connection.client)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._client.set(key, json.dumps(value, default=str), ex=int(ttl_seconds))
        logger.debug("[REDIS] SET %s ttl=%ds", key, ttl_seconds)

    def get(self, key: str) -> Optional[Any]:
        raw = self._client.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("[REDIS] Corrupted cache entry key=%s; ignoring", key)
            return None

    def delete(self, key: str) -> None:
        self._client.delete(key)
