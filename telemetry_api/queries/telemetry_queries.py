"""Accesos de solo lectura para la capa API (telemetría e históricos)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from ..errors import NotFound
from ..schemas import TelemetryPage, TelemetryRecord, utcnow
from ..storage.interfaces import (
    HotCache,
    PrimaryStore,
    TelemetryFilter,
    TelemetryStats,
    TimeSeriesSink,
    latest_telemetry_key,
)

logger = logging.getLogger(__name__)

STATS_PERIODS = {
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_PERIOD = "24h"
DEFAULT_HISTORY_WINDOW = timedelta(hours=24)


def _window(start: Optional[datetime], end: Optional[datetime]) -> tuple:
    end = end or utcnow()
    start = start or end - DEFAULT_HISTORY_WINDOW
    return start, end


class TelemetryQueryService:
    def __init__(self, store: PrimaryStore, cache: HotCache, timeseries: TimeSeriesSink):
        self._store = store
        self._cache = cache
        self._timeseries = timeseries

    def _page(self, flt: TelemetryFilter, sort: str, skip: int, limit: int) -> TelemetryPage:
        items = self._store.find_telemetry(flt, descending=(sort != "asc"), skip=skip, limit=limit)
        return TelemetryPage(items=items, total=self._store.count_telemetry(flt))

    def by_device(
        self,
        device_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        sort: str = "desc",
        skip: int = 0,
        limit: int = 100,
    ) -> TelemetryPage:
        return self._page(TelemetryFilter.for_device(device_id, start=start, end=end), sort, skip, limit)

    def by_battery(
        self,
        battery_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        sort: str = "desc",
        skip: int = 0,
        limit: int = 100,
    ) -> TelemetryPage:
        return self._page(TelemetryFilter.for_battery(battery_id, start=start, end=end), sort, skip, limit)

    def latest(self, *, device_id: Optional[str] = None, battery_id: Optional[str] = None) -> TelemetryRecord:
        """HotCache primero; si no hay entrada (o la cache falla) se consulta el store."""
        if bool(device_id) == bool(battery_id):
            raise ValueError("exactly one of device_id / battery_id is required")
        kind, key_id = ("device", device_id) if device_id else ("battery", battery_id)

        try:
            cached = self._cache.get(latest_telemetry_key(kind, key_id))
        except Exception as e:
            logger.warning("[REDIS] Latest lookup failed %s=%s: %s", kind, key_id, e)
            cached = None
        if cached is not None:
            return TelemetryRecord.model_validate(cached)

        record = self._store.latest_telemetry(device_id=device_id, battery_id=battery_id)
        if record is None:
            raise NotFound(kind, key_id)
        return record

    def history(
        self,
        device_ids: Optional[Sequence[str]] = None,
        battery_ids: Optional[Sequence[str]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 1000,
    ) -> List[TelemetryRecord]:
        flt = TelemetryFilter(device_ids=device_ids, battery_ids=battery_ids, start=start, end=end)
        return self._store.find_telemetry(flt, descending=False, limit=limit)

    def stats(
        self,
        *,
        battery_id: Optional[str] = None,
        device_id: Optional[str] = None,
        period: str = DEFAULT_PERIOD,
        now: Optional[datetime] = None,
    ) -> TelemetryStats:
        # Periodo desconocido -> 24h
        span = STATS_PERIODS.get(period, STATS_PERIODS[DEFAULT_PERIOD])
        now = now or utcnow()
        flt = TelemetryFilter(
            device_ids=[device_id] if device_id else None,
            battery_ids=[battery_id] if battery_id else None,
            start=now - span,
        )
        return self._store.telemetry_stats(flt)

    # --- series temporales -------------------------------------------------

    def voltage_history(
        self,
        battery_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        interval: str = "1h",
    ) -> List[Dict[str, Any]]:
        start, end = _window(start, end)
        return self._timeseries.query(
            "battery_voltage", {"batteryId": battery_id}, ["total"], start, end, interval=interval
        )

    def temperature_history(
        self,
        battery_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        interval: str = "1h",
    ) -> List[Dict[str, Any]]:
        start, end = _window(start, end)
        return self._timeseries.query(
            "battery_temperature", {"batteryId": battery_id}, ["average"], start, end, interval=interval
        )

    def soc_history(
        self,
        battery_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        interval: str = "1h",
    ) -> List[Dict[str, Any]]:
        start, end = _window(start, end)
        return self._timeseries.query(
            "battery_soc", {"batteryId": battery_id}, ["soc"], start, end, interval=interval
        )

    def location_history(
        self,
        device_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Puntos crudos, sin agregar."""
        start, end = _window(start, end)
        return self._timeseries.query(
            "location",
            {"deviceId": device_id},
            ["longitude", "latitude", "altitude", "speed", "heading"],
            start,
            end,
            aggregation="last",
            interval="0s",
        )
