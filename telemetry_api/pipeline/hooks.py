"""Puntos de extensión para colaboradores externos.

- on_persisted(record): anclaje / knowledge-base. Fire-and-forget: el
  pipeline no espera ni reintenta; los errores solo se loggean.
- on_accepted(DeviceStatusUpdate): gestión de dispositivos persiste
  lastSeen / online / lastLocation. Se espera, pero un fallo no rechaza
  la submission.

Los hooks pueden ser funciones síncronas (se ejecutan en un worker thread)
o corrutinas.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, List, Optional, Set

from ..metrics.ingestion_stats import IngestionStats
from ..schemas import DeviceStatusUpdate, TelemetryRecord

logger = logging.getLogger(__name__)

PersistedHook = Callable[[TelemetryRecord], Any]
AcceptedHook = Callable[[DeviceStatusUpdate], Any]


async def _invoke(hook: Callable[[Any], Any], arg: Any) -> Any:
    if inspect.iscoroutinefunction(hook):
        return await hook(arg)
    result = await asyncio.to_thread(hook, arg)
    if inspect.isawaitable(result):
        return await result
    return result


def _hook_name(hook: Callable) -> str:
    return getattr(hook, "__qualname__", None) or repr(hook)


class PipelineHooks:
    def __init__(self, stats: Optional[IngestionStats] = None):
        self._persisted: List[PersistedHook] = []
        self._accepted: List[AcceptedHook] = []
        self._pending: Set[asyncio.Task] = set()
        self._stats = stats or IngestionStats()

    def add_on_persisted(self, hook: PersistedHook) -> None:
        self._persisted.append(hook)

    def add_on_accepted(self, hook: AcceptedHook) -> None:
        self._accepted.append(hook)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def fire_persisted(self, record: TelemetryRecord) -> None:
        for hook in self._persisted:
            task = asyncio.create_task(self._run_persisted(hook, record))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _run_persisted(self, hook: PersistedHook, record: TelemetryRecord) -> None:
        try:
            await _invoke(hook, record)
        except Exception:
            self._stats.record_hook_failure()
            logger.exception(
                "[HOOKS] on_persisted hook %s failed device=%s",
                _hook_name(hook),
                record.device_id,
            )

    async def notify_accepted(self, update: DeviceStatusUpdate) -> None:
        for hook in self._accepted:
            try:
                await _invoke(hook, update)
            except Exception:
                self._stats.record_hook_failure()
                logger.exception(
                    "[HOOKS] on_accepted hook %s failed device=%s",
                    _hook_name(hook),
                    update.device_id,
                )

    async def drain(self) -> None:
        """Espera los hooks fire-and-forget pendientes (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
