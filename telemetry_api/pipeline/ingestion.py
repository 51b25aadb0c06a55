"""IngestionPipeline: validación -> PrimaryStore -> sinks secundarios + alertas -> fan-out.

Orden por submission:
1. validate (si falla no se escribe nada)
2. PrimaryStore (debe confirmar; si no, PrimaryWriteFailure y no sigue nada)
3. on_persisted hooks (fire-and-forget)
4. en paralelo: TimeSeriesSink, HotCache (device/battery latest), umbrales + AlertEngine
5. on_accepted (DeviceStatusUpdate)
6. fan-out: telemetry_update -> device:<id>, battery_update -> battery:<id>

Los pasos 4 y 6 son best-effort: cada llamada tiene timeout
min(sink_timeout, deadline restante) y sus fallos solo se loggean/cuentan.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..alerts.alert_engine import AlertEngine
from ..alerts.push_notifier import PushNotifier
from ..errors import PrimaryWriteFailure, SinkUnavailable, ValidationError
from ..fanout.bus import FanOutBus, battery_room, device_room
from ..metrics.ingestion_stats import IngestionStats
from ..schemas import Alert, BatchResult, DeviceStatusUpdate, SubmitResult, TelemetryRecord, utcnow
from ..storage.interfaces import HotCache, PrimaryStore, TimeSeriesSink, latest_telemetry_key
from ..storage.timeseries import telemetry_to_points
from ..thresholds import ThresholdConfig, ThresholdStore
from ..validation import TelemetryPayload, validate_batch, validate_telemetry
from .hooks import PipelineHooks
from .sink_runner import (
    SINK_CACHE,
    SINK_PRIMARY,
    SINK_THRESHOLDS,
    SINK_TIMESERIES,
    SinkRunner,
)

logger = logging.getLogger(__name__)

EVENT_TELEMETRY_UPDATE = "telemetry_update"
EVENT_BATTERY_UPDATE = "battery_update"


def select_latest(records: Sequence[TelemetryRecord]) -> TelemetryRecord:
    """Entrada representativa de un batch: timestamp máximo; empate -> la última del array."""
    latest = records[0]
    for record in records[1:]:
        if record.timestamp >= latest.timestamp:
            latest = record
    return latest


def telemetry_update_payload(record: TelemetryRecord, alerts: Iterable[Alert]) -> Dict[str, Any]:
    payload = record.to_document()
    payload["alerts"] = [a.to_document() for a in alerts]
    return payload


class IngestionPipeline:
    def __init__(
        self,
        store: PrimaryStore,
        timeseries: TimeSeriesSink,
        cache: HotCache,
        thresholds: ThresholdStore,
        bus: FanOutBus,
        *,
        alert_engine: Optional[AlertEngine] = None,
        runner: Optional[SinkRunner] = None,
        stats: Optional[IngestionStats] = None,
        hooks: Optional[PipelineHooks] = None,
        telemetry_ttl_seconds: int = 3600,
        alert_ttl_seconds: int = 86400,
        notifier: Optional[PushNotifier] = None,
    ):
        self._store = store
        self._timeseries = timeseries
        self._cache = cache
        self._thresholds = thresholds
        self._bus = bus
        self._runner = runner or SinkRunner()
        self._stats = stats or IngestionStats()
        self._hooks = hooks or PipelineHooks(self._stats)
        self._alert_engine = alert_engine or AlertEngine(
            store,
            cache,
            bus,
            runner=self._runner,
            stats=self._stats,
            alert_ttl_seconds=alert_ttl_seconds,
            notifier=notifier,
        )
        self._telemetry_ttl = telemetry_ttl_seconds

    @property
    def stats(self) -> IngestionStats:
        return self._stats

    @property
    def hooks(self) -> PipelineHooks:
        return self._hooks

    @property
    def runner(self) -> SinkRunner:
        return self._runner

    @property
    def alert_engine(self) -> AlertEngine:
        return self._alert_engine

    # ------------------------------------------------------------------
    # API pública
    # ------------------------------------------------------------------

    async def submit(self, payload: TelemetryPayload, deadline: Optional[float] = None) -> SubmitResult:
        """Procesa una submission.

        Args:
            payload: dict del contrato o TelemetryRecord
            deadline: instante absoluto (``time.monotonic()``) para las llamadas a sinks

        Raises:
            ValidationError: payload inválido, nada escrito
            PrimaryWriteFailure: el almacén primario no confirmó la escritura
        """
        try:
            record = validate_telemetry(payload, received_at=utcnow())
        except ValidationError:
            self._stats.record_rejected()
            raise

        await self._write_primary(self._store.insert_telemetry, record, deadline=deadline)
        self._hooks.fire_persisted(record)

        _, _, alerts = await asyncio.gather(
            self._write_timeseries([record], deadline),
            self._write_latest(record, deadline),
            self._evaluate_alerts(record, deadline),
        )

        await self._hooks.notify_accepted(DeviceStatusUpdate.from_record(record, utcnow()))
        await self._publish_updates(record, alerts)

        self._stats.record_accepted()
        self._stats.record_alerts(len(alerts))
        logger.debug(
            "[INGEST] Accepted device=%s battery=%s alerts=%d",
            record.device_id,
            record.battery_id,
            len(alerts),
        )
        return SubmitResult(accepted=True, alerts=alerts)

    async def submit_batch(
        self,
        payloads: Iterable[TelemetryPayload],
        deadline: Optional[float] = None,
    ) -> BatchResult:
        """Batch: todo se valida antes de escribir; una entrada inválida rechaza el batch."""
        try:
            records = validate_batch(payloads, received_at=utcnow())
        except ValidationError:
            self._stats.record_rejected()
            raise

        # Se decide antes de cualquier I/O para no depender del orden de finalización
        latest = select_latest(records)

        await self._write_primary(self._store.insert_telemetry_many, records, deadline=deadline)
        for record in records:
            self._hooks.fire_persisted(record)

        per_record = await asyncio.gather(
            self._write_timeseries(records, deadline),
            *(self._write_latest(r, deadline) for r in self._latest_per_key(records)),
            *(self._evaluate_alerts(r, deadline) for r in records),
        )
        alert_lists = per_record[len(per_record) - len(records):]
        alerts: List[Alert] = [a for group in alert_lists for a in group]

        await self._hooks.notify_accepted(DeviceStatusUpdate.from_record(latest, utcnow()))
        await self._publish_updates(
            latest, [a for a in alerts if a.device_id == latest.device_id]
        )

        self._stats.record_accepted(len(records))
        self._stats.record_alerts(len(alerts))
        logger.info(
            "[INGEST] Batch accepted entries=%d alerts=%d latest_device=%s",
            len(records),
            len(alerts),
            latest.device_id,
        )
        return BatchResult(processed_count=len(records), alert_count=len(alerts), alerts=alerts)

    # ------------------------------------------------------------------
    # Pasos
    # ------------------------------------------------------------------

    async def _write_primary(self, func, arg, *, deadline: Optional[float]) -> None:
        try:
            await self._runner.run(SINK_PRIMARY, func, arg, deadline=deadline)
        except SinkUnavailable as e:
            self._stats.record_primary_failure()
            logger.error("[INGEST] Primary write failed: %s", e.reason)
            raise PrimaryWriteFailure(e.reason) from e

    async def _write_timeseries(self, records: Sequence[TelemetryRecord], deadline: Optional[float]) -> None:
        points = [p for r in records for p in telemetry_to_points(r)]
        if not points:
            return
        try:
            await self._runner.run(SINK_TIMESERIES, self._timeseries.write_points, points, deadline=deadline)
        except SinkUnavailable as e:
            self._stats.record_sink_failure(SINK_TIMESERIES)
            logger.warning("[TS] Write skipped points=%d: %s", len(points), e)

    @staticmethod
    def _latest_per_key(records: Sequence[TelemetryRecord]) -> List[TelemetryRecord]:
        """Para el slot "latest" de cada device/batería basta la entrada más reciente."""
        by_key: Dict[tuple, TelemetryRecord] = {}
        for r in records:
            key = (r.device_id, r.battery_id)
            current = by_key.get(key)
            if current is None or r.timestamp >= current.timestamp:
                by_key[key] = r
        return list(by_key.values())

    async def _write_latest(self, record: TelemetryRecord, deadline: Optional[float]) -> None:
        doc = record.to_document()
        keys = (
            latest_telemetry_key("device", record.device_id),
            latest_telemetry_key("battery", record.battery_id),
        )
        for key in keys:
            try:
                await self._runner.run(
                    SINK_CACHE, self._cache.set, key, doc, self._telemetry_ttl, deadline=deadline
                )
            except SinkUnavailable as e:
                self._stats.record_sink_failure(SINK_CACHE)
                logger.warning("[REDIS] Latest telemetry cache write failed key=%s: %s", key, e)

    async def _lookup_thresholds(self, device_id: str, deadline: Optional[float]) -> Optional[ThresholdConfig]:
        try:
            return await self._runner.run(
                SINK_THRESHOLDS, self._thresholds.get_thresholds, device_id, deadline=deadline
            )
        except SinkUnavailable as e:
            self._stats.record_sink_failure(SINK_THRESHOLDS)
            logger.warning("[ALERTS] Threshold lookup failed device=%s: %s", device_id, e)
            return None

    async def _evaluate_alerts(self, record: TelemetryRecord, deadline: Optional[float]) -> List[Alert]:
        thresholds = await self._lookup_thresholds(record.device_id, deadline)
        if thresholds is None:
            return []
        try:
            return await self._alert_engine.evaluate(record, thresholds, deadline=deadline)
        except Exception:
            logger.exception("[ALERTS] Evaluation failed device=%s", record.device_id)
            return []

    async def _publish_updates(self, record: TelemetryRecord, alerts: List[Alert]) -> None:
        targets = [
            (device_room(record.device_id), EVENT_TELEMETRY_UPDATE, telemetry_update_payload(record, alerts)),
            (battery_room(record.battery_id), EVENT_BATTERY_UPDATE, record.battery_update_payload()),
        ]
        for room, event, payload in targets:
            try:
                await self._bus.publish(room, event, payload)
            except Exception:
                self._stats.record_fanout_failure()
                logger.exception("[FANOUT] Publish failed room=%s event=%s", room, event)
