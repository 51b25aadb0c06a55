"""WebSocket de suscripción a rooms.

Protocolo:
    Client -> {"type": "subscribe", "room": "device:dev-1"}
    Client -> {"type": "unsubscribe", "room": "device:dev-1"}
    Server -> {"type": "subscribed" | "unsubscribed", "room": ...}
    Server -> {"type": "event", "room", "event", "payload", "timestamp"}

Rooms iniciales opcionales con ``/ws?rooms=device:a,battery:b``.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import WebSocket, WebSocketDisconnect

from ..fanout.bus import FanOutBus, Subscription

logger = logging.getLogger(__name__)


async def _forward(websocket: WebSocket, sub: Subscription) -> None:
    while True:
        event = await sub.get()
        await websocket.send_json({"type": "event", **event.to_envelope()})


async def _receive(websocket: WebSocket, bus: FanOutBus, sub: Subscription) -> None:
    while True:
        message = await websocket.receive_json()
        kind = message.get("type") if isinstance(message, dict) else None
        room = message.get("room") if isinstance(message, dict) else None
        if kind == "subscribe" and room:
            bus.join(sub, room)
            await websocket.send_json({"type": "subscribed", "room": room})
        elif kind == "unsubscribe" and room:
            bus.unsubscribe(sub, room)
            await websocket.send_json({"type": "unsubscribed", "room": room})
        else:
            await websocket.send_json({"type": "error", "error": "expected subscribe/unsubscribe with room"})


async def websocket_rooms(websocket: WebSocket) -> None:
    bus: FanOutBus = websocket.app.state.services.bus
    await websocket.accept()

    initial = websocket.query_params.get("rooms", "")
    sub = bus.subscribe(*[r.strip() for r in initial.split(",") if r.strip()])
    logger.info("[FANOUT] WebSocket connected subscription=%d rooms=%s", sub.id, sorted(sub.rooms))

    tasks = [
        asyncio.create_task(_forward(websocket, sub)),
        asyncio.create_task(_receive(websocket, bus, sub)),
    ]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("[FANOUT] WebSocket closed with error subscription=%d: %s", sub.id, exc)
    finally:
        bus.unsubscribe(sub)
        logger.info("[FANOUT] WebSocket disconnected subscription=%d", sub.id)
