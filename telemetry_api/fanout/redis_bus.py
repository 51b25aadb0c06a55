"""Fan-out entre procesos vía Redis Pub/Sub.

Los suscriptores locales (WebSocket del mismo proceso) se sirven igual que en
InMemoryFanOutBus; además cada evento se publica como JSON en el canal
``fanout:<room>``. Con ``start()`` el bus escucha ``fanout:*`` y entrega a sus
suscriptores locales los eventos publicados por otros procesos (los propios
se reconocen por ``origin`` y se ignoran).
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

import redis

from .bus import FanOutEvent, InMemoryFanOutBus

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "fanout:"


def channel_for(room: str) -> str:
    return f"{CHANNEL_PREFIX}{room}"


class RedisFanOutBus(InMemoryFanOutBus):
    def __init__(
        self,
        client: redis.Redis,
        queue_size: int = 1000,
        *,
        publish_timeout: float = 1.0,
        poll_interval: float = 1.0,
        origin: Optional[str] = None,
    ):
        super().__init__(queue_size=queue_size)
        self._client = client
        self._publish_timeout = publish_timeout
        self._poll_interval = poll_interval
        self.origin = origin or uuid.uuid4().hex
        self.redis_failures = 0
        self.received = 0
        self._pubsub: Any = None
        self._listener: Optional[asyncio.Task] = None

    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> int:
        evt = FanOutEvent(room=room, event=event, payload=payload)
        self.published += 1
        delivered = self._deliver(evt)

        message = json.dumps({**evt.to_envelope(), "origin": self.origin}, default=str)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._client.publish, channel_for(room), message),
                timeout=self._publish_timeout,
            )
        except asyncio.TimeoutError:
            self.redis_failures += 1
            logger.warning(
                "[FANOUT] Redis publish timed out after %.2fs room=%s event=%s",
                self._publish_timeout,
                room,
                event,
            )
        except redis.RedisError as e:
            self.redis_failures += 1
            logger.warning("[FANOUT] Redis publish failed room=%s event=%s: %s", room, event, e)
        return delivered

    # --- entrada desde otros procesos --------------------------------------

    def handle_message(self, message: Optional[Dict[str, Any]]) -> int:
        """Entrega localmente un mensaje de ``fanout:*``. Devuelve entregas."""
        if not message or message.get("type") not in ("message", "pmessage"):
            return 0
        try:
            envelope = json.loads(message["data"])
            if envelope.get("origin") == self.origin:
                return 0
            evt = FanOutEvent(
                room=envelope["room"],
                event=envelope["event"],
                payload=envelope.get("payload") or {},
                timestamp=datetime.fromisoformat(envelope["timestamp"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("[FANOUT] Ignoring malformed message channel=%s: %s", message.get("channel"), e)
            return 0
        self.received += 1
        return self._deliver(evt)

    async def start(self) -> None:
        if self._listener is not None:
            return
        self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        await asyncio.to_thread(self._pubsub.psubscribe, f"{CHANNEL_PREFIX}*")
        self._listener = asyncio.create_task(self._listen())
        logger.info("[FANOUT] Listening on %s* origin=%s", CHANNEL_PREFIX, self.origin)

    async def _listen(self) -> None:
        while True:
            try:
                message = await asyncio.to_thread(self._pubsub.get_message, timeout=self._poll_interval)
            except redis.RedisError as e:
                self.redis_failures += 1
                logger.warning("[FANOUT] Redis listener error: %s", e)
                await asyncio.sleep(self._poll_interval)
                continue
            self.handle_message(message)

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pubsub is not None:
            await asyncio.to_thread(self._pubsub.close)
            self._pubsub = None
