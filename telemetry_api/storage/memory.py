"""Adaptadores en memoria (tests, modo standalone sin Redis)."""

from __future__ import annotations

import copy
import threading
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..schemas import (
    SEVERITY_RANK,
    Alert,
    AlertCandidate,
    AlertStatus,
    AlertUpsert,
    TelemetryRecord,
    ensure_utc,
)
from .interfaces import AlertFilter, HotCache, PrimaryStore, TelemetryFilter, TelemetryStats


class InMemoryHotCache(HotCache):
    """Dict con expiración por reloj monotónico."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (self._clock() + ttl_seconds, copy.deepcopy(value))

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            now = self._clock()
            return [k for k, (exp, _) in self._data.items() if exp > now]


def _matches(record: TelemetryRecord, flt: TelemetryFilter) -> bool:
    if flt.device_ids and record.device_id not in flt.device_ids:
        return False
    if flt.battery_ids and record.battery_id not in flt.battery_ids:
        return False
    if flt.start is not None and record.timestamp < ensure_utc(flt.start):
        return False
    if flt.end is not None and record.timestamp > ensure_utc(flt.end):
        return False
    return True


def _agg(values: List[float]) -> Tuple[Optional[float], Optional[float], Optional[float]]:
    if not values:
        return None, None, None
    return sum(values) / len(values), min(values), max(values)


def compute_stats(records: Sequence[TelemetryRecord]) -> TelemetryStats:
    """avg/min/max por dimensión sobre una lista de records."""
    voltage: List[float] = []
    current: List[float] = []
    temperature: List[float] = []
    soc: List[float] = []
    for r in records:
        b = r.battery
        if b is None:
            continue
        if b.voltage is not None and b.voltage.total is not None:
            voltage.append(b.voltage.total)
        if b.current is not None:
            current.append(b.current)
        if b.temperature is not None and b.temperature.average is not None:
            temperature.append(b.temperature.average)
        if b.soc is not None:
            soc.append(b.soc)

    stats = TelemetryStats(count=len(records))
    stats.avg_voltage, stats.min_voltage, stats.max_voltage = _agg(voltage)
    stats.avg_current, stats.min_current, stats.max_current = _agg(current)
    stats.avg_temperature, stats.min_temperature, stats.max_temperature = _agg(temperature)
    stats.avg_soc, stats.min_soc, stats.max_soc = _agg(soc)
    if records:
        stamps = [r.timestamp for r in records]
        stats.first_timestamp = min(stamps)
        stats.last_timestamp = max(stamps)
    return stats


class InMemoryPrimaryStore(PrimaryStore):
    """PrimaryStore protegido por un lock (upsert atómico por construcción)."""

    def __init__(self, *, retention_days: Optional[int] = 30) -> None:
        self._retention = timedelta(days=retention_days) if retention_days else None
        # (seq, record, expires_at); seq mantiene el orden de inserción para empates
        self._telemetry: List[Tuple[int, TelemetryRecord, Optional[datetime]]] = []
        self._alerts: Dict[str, Alert] = {}
        self._seq = 0
        self._lock = threading.Lock()

    # --- telemetry ---------------------------------------------------------

    def insert_telemetry(self, record: TelemetryRecord) -> None:
        self.insert_telemetry_many([record])

    def insert_telemetry_many(self, records: Sequence[TelemetryRecord]) -> int:
        with self._lock:
            for r in records:
                self._seq += 1
                expires = r.timestamp + self._retention if self._retention else None
                self._telemetry.append((self._seq, r, expires))
        return len(records)

    def _filtered(self, flt: TelemetryFilter) -> List[Tuple[int, TelemetryRecord]]:
        with self._lock:
            return [(seq, r) for seq, r, _ in self._telemetry if _matches(r, flt)]

    def find_telemetry(
        self,
        flt: TelemetryFilter,
        *,
        descending: bool = True,
        skip: int = 0,
        limit: int = 100,
    ) -> List[TelemetryRecord]:
        rows = sorted(self._filtered(flt), key=lambda x: (x[1].timestamp, x[0]), reverse=descending)
        return [r for _, r in rows[skip: skip + limit]]

    def count_telemetry(self, flt: TelemetryFilter) -> int:
        return len(self._filtered(flt))

    def distinct_battery_ids(self, limit: int) -> List[str]:
        with self._lock:
            ids = sorted({r.battery_id for _, r, _ in self._telemetry})
        return ids[:limit]

    def telemetry_stats(self, flt: TelemetryFilter) -> TelemetryStats:
        return compute_stats([r for _, r in self._filtered(flt)])

    def purge_expired_telemetry(self, now: datetime) -> int:
        now = ensure_utc(now)
        with self._lock:
            before = len(self._telemetry)
            self._telemetry = [
                row for row in self._telemetry if row[2] is None or row[2] >= now
            ]
            return before - len(self._telemetry)

    # --- alerts ------------------------------------------------------------

    def upsert_active_alert(self, candidate: AlertCandidate, now: datetime) -> AlertUpsert:
        with self._lock:
            for alert in self._alerts.values():
                if (
                    alert.device_id == candidate.device_id
                    and alert.type == candidate.type
                    and alert.status == AlertStatus.ACTIVE
                ):
                    updated = alert.model_copy(
                        update={
                            "occurrences": alert.occurrences + 1,
                            "last_occurrence": now,
                            "data": dict(candidate.data),
                        }
                    )
                    self._alerts[alert.id] = updated
                    return AlertUpsert(alert=updated, created=False)

            alert = Alert(
                id=uuid.uuid4().hex,
                type=candidate.type,
                severity=candidate.severity,
                category=candidate.category,
                device_id=candidate.device_id,
                battery_id=candidate.battery_id,
                message=candidate.message,
                data=dict(candidate.data),
                occurrences=1,
                created_at=now,
                last_occurrence=now,
            )
            self._alerts[alert.id] = alert
            return AlertUpsert(alert=alert, created=True)

    def find_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            return self._alerts.get(alert_id)

    def find_alerts(self, flt: AlertFilter, *, limit: int = 100) -> List[Alert]:
        with self._lock:
            alerts = list(self._alerts.values())
        selected = [
            a
            for a in alerts
            if (not flt.device_id or a.device_id == flt.device_id)
            and (not flt.battery_id or a.battery_id == flt.battery_id)
            and (not flt.status or a.status.value == flt.status)
            and (not flt.severity or a.severity.value == flt.severity)
        ]
        selected.sort(key=lambda a: (SEVERITY_RANK[a.severity], a.created_at), reverse=True)
        return selected[:limit]

    def update_alert(self, alert_id: str, changes: Dict[str, Any]) -> Optional[Alert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return None
            updated = alert.model_copy(update=changes)
            self._alerts[alert_id] = updated
            return updated

    def all_alerts(self) -> List[Alert]:
        with self._lock:
            return list(self._alerts.values())
