"""Fan-out de eventos por rooms (global, device:<id>, battery:<id>)."""

from .bus import GLOBAL_ROOM, FanOutBus, FanOutEvent, InMemoryFanOutBus, Subscription, battery_room, device_room
