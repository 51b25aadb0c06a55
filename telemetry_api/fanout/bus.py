"""Bus de fan-out por rooms (device:<id>, battery:<id>, global).

Entrega at-least-once, sin persistencia. Un suscriptor lento nunca bloquea
al publicador: su cola es acotada y, si se llena, el evento se descarta
para ese suscriptor (warning + contador).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from ..schemas import utcnow

logger = logging.getLogger(__name__)

GLOBAL_ROOM = "global"


def device_room(device_id: str) -> str:
    return f"device:{device_id}"


def battery_room(battery_id: str) -> str:
    return f"battery:{battery_id}"


@dataclass(frozen=True)
class FanOutEvent:
    room: str
    event: str
    payload: Dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)

    def to_envelope(self) -> Dict[str, Any]:
        return {
            "room": self.room,
            "event": self.event,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


class Subscription:
    """Cola acotada de eventos para un suscriptor."""

    _ids = itertools.count(1)

    def __init__(self, rooms: Iterable[str], maxsize: int = 1000):
        self.id = next(self._ids)
        self.rooms: Set[str] = set(rooms)
        self.dropped = 0
        self._queue: "asyncio.Queue[FanOutEvent]" = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: FanOutEvent) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False

    async def get(self, timeout: Optional[float] = None) -> FanOutEvent:
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def drain(self) -> List[FanOutEvent]:
        """Vacía la cola sin esperar."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return events

    def close(self) -> None:
        self._closed = True


class FanOutBus(ABC):
    """Interfaz inyectada en todo componente que publique eventos."""

    @abstractmethod
    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> int:
        """Publica en una room; devuelve a cuántos suscriptores locales se entregó."""
        pass

    @abstractmethod
    def subscribe(self, *rooms: str) -> Subscription:
        pass

    @abstractmethod
    def join(self, subscription: Subscription, room: str) -> None:
        pass

    @abstractmethod
    def unsubscribe(self, subscription: Subscription, room: Optional[str] = None) -> None:
        """Quita una room de la suscripción, o la suscripción entera si room es None."""
        pass

    async def start(self) -> None:
        pass

    async def close(self) -> None:
        pass


class InMemoryFanOutBus(FanOutBus):
    def __init__(self, queue_size: int = 1000):
        self._queue_size = queue_size
        self._rooms: Dict[str, Set[Subscription]] = {}
        self._lock = threading.Lock()
        self.published = 0
        self.dropped = 0

    def subscribe(self, *rooms: str) -> Subscription:
        sub = Subscription(rooms, maxsize=self._queue_size)
        with self._lock:
            for room in sub.rooms:
                self._rooms.setdefault(room, set()).add(sub)
        logger.debug("[FANOUT] subscription=%d rooms=%s", sub.id, sorted(sub.rooms))
        return sub

    def join(self, subscription: Subscription, room: str) -> None:
        with self._lock:
            subscription.rooms.add(room)
            self._rooms.setdefault(room, set()).add(subscription)

    def unsubscribe(self, subscription: Subscription, room: Optional[str] = None) -> None:
        with self._lock:
            rooms = [room] if room is not None else list(subscription.rooms)
            for r in rooms:
                members = self._rooms.get(r)
                if members is not None:
                    members.discard(subscription)
                    if not members:
                        del self._rooms[r]
                subscription.rooms.discard(r)
        if room is None:
            subscription.close()

    def subscriber_count(self, room: str) -> int:
        with self._lock:
            return len(self._rooms.get(room, ()))

    def _deliver(self, event: FanOutEvent) -> int:
        with self._lock:
            members = list(self._rooms.get(event.room, ()))
        delivered = 0
        for sub in members:
            if sub.offer(event):
                delivered += 1
            elif not sub.closed:
                self.dropped += 1
                logger.warning(
                    "[FANOUT] Subscriber queue full, dropping event=%s room=%s subscription=%d",
                    event.event,
                    event.room,
                    sub.id,
                )
        return delivered

    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> int:
        evt = FanOutEvent(room=room, event=event, payload=payload)
        self.published += 1
        return self._deliver(evt)
