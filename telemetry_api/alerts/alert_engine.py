"""AlertEngine: reglas -> dedup atómico en PrimaryStore -> cache -> fan-out.

Contrato: ``await evaluate(record, thresholds) -> list[Alert]`` con las alertas
creadas o incrementadas. Nunca lanza por una dimensión o candidato concreto.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Set

from ..errors import SinkUnavailable
from ..fanout.bus import GLOBAL_ROOM, FanOutBus, battery_room, device_room
from ..metrics.ingestion_stats import IngestionStats
from ..pipeline.sink_runner import SINK_ALERTS, SINK_CACHE, SinkRunner
from ..schemas import Alert, AlertCandidate, AlertUpsert, TelemetryRecord, utcnow
from ..storage.interfaces import HotCache, PrimaryStore, alert_key
from ..thresholds import ThresholdConfig
from .alert_rules import evaluate_thresholds
from .push_notifier import PushNotifier

logger = logging.getLogger(__name__)

EVENT_NEW_ALERT = "new_alert"
EVENT_DEVICE_ALERT = "device_alert"
EVENT_BATTERY_ALERT = "battery_alert"


def alert_event_payload(alert: Alert) -> Dict[str, object]:
    """Alerta completa (layout del contrato) + timestamp del servidor."""
    return {**alert.to_document(), "timestamp": utcnow().isoformat()}


class AlertEngine:
    def __init__(
        self,
        store: PrimaryStore,
        cache: HotCache,
        bus: FanOutBus,
        *,
        runner: Optional[SinkRunner] = None,
        stats: Optional[IngestionStats] = None,
        alert_ttl_seconds: int = 86400,
        notifier: Optional[PushNotifier] = None,
    ):
        self._store = store
        self._cache = cache
        self._bus = bus
        self._runner = runner or SinkRunner()
        self._stats = stats or IngestionStats()
        self._alert_ttl = alert_ttl_seconds
        self._notifier = notifier
        self._pending_pushes: Set[asyncio.Task] = set()

    async def evaluate(
        self,
        record: TelemetryRecord,
        thresholds: Optional[ThresholdConfig],
        *,
        deadline: Optional[float] = None,
    ) -> List[Alert]:
        candidates = evaluate_thresholds(record, thresholds)
        if not candidates:
            return []

        alerts: List[Alert] = []
        for candidate in candidates:
            upsert = await self._upsert(candidate, deadline)
            if upsert is None:
                continue
            alert = upsert.alert
            alerts.append(alert)
            await self._cache_alert(alert, deadline)
            await self.publish(alert)
            if upsert.created and alert.is_critical:
                self._schedule_push(alert)

        if alerts:
            logger.info(
                "[ALERTS] device=%s raised=%s",
                record.device_id,
                ",".join(f"{a.type.value}x{a.occurrences}" for a in alerts),
            )
        return alerts

    async def _upsert(self, candidate: AlertCandidate, deadline: Optional[float]) -> Optional[AlertUpsert]:
        try:
            result = await self._runner.run(
                SINK_ALERTS,
                self._store.upsert_active_alert,
                candidate,
                utcnow(),
                deadline=deadline,
            )
        except SinkUnavailable as e:
            self._stats.record_sink_failure(SINK_ALERTS)
            logger.warning(
                "[ALERTS] Upsert failed device=%s type=%s: %s",
                candidate.device_id,
                candidate.type.value,
                e,
            )
            return None
        return result

    async def _cache_alert(self, alert: Alert, deadline: Optional[float]) -> None:
        try:
            await self._runner.run(
                SINK_CACHE,
                self._cache.set,
                alert_key(alert.id),
                alert.to_document(),
                self._alert_ttl,
                deadline=deadline,
            )
        except SinkUnavailable as e:
            self._stats.record_sink_failure(SINK_CACHE)
            logger.warning("[ALERTS] Alert cache write failed id=%s: %s", alert.id, e)

    async def publish(self, alert: Alert) -> None:
        """Global + room del device + room de la batería (si la hay)."""
        payload = alert_event_payload(alert)
        targets = [
            (GLOBAL_ROOM, EVENT_NEW_ALERT),
            (device_room(alert.device_id), EVENT_DEVICE_ALERT),
        ]
        if alert.battery_id:
            targets.append((battery_room(alert.battery_id), EVENT_BATTERY_ALERT))

        for room, event in targets:
            try:
                await self._bus.publish(room, event, payload)
            except Exception:
                self._stats.record_fanout_failure()
                logger.exception("[FANOUT] Alert publish failed room=%s id=%s", room, alert.id)

    @property
    def pending_pushes(self) -> int:
        return len(self._pending_pushes)

    def _schedule_push(self, alert: Alert) -> None:
        # Solo la primera ocurrencia de una alerta crítica genera push.
        # Fire-and-forget: la submission no espera al webhook.
        if self._notifier is None:
            return
        task = asyncio.create_task(self._push(alert))
        self._pending_pushes.add(task)
        task.add_done_callback(self._pending_pushes.discard)

    async def _push(self, alert: Alert) -> None:
        try:
            await self._notifier.notify(alert)
        except Exception:
            logger.exception("[PUSH] Notifier failed id=%s", alert.id)

    async def drain(self) -> None:
        """Espera los push pendientes (shutdown, tests)."""
        if self._pending_pushes:
            await asyncio.gather(*list(self._pending_pushes), return_exceptions=True)
