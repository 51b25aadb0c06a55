"""Abstract interfaces for the storage adapters.

The pipeline depends only on these contracts, never on Redis/SQL details.
Implementations:
- HotCache: RedisHotCache, InMemoryHotCache
- TimeSeriesSink: SqlTimeSeriesSink, InMemoryTimeSeriesSink
- PrimaryStore: SqlPrimaryStore, InMemoryPrimaryStore

All methods are synchronous; the pipeline runs them on worker threads
with a per-call timeout.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..schemas import Alert, AlertCandidate, AlertUpsert, TelemetryRecord


def latest_telemetry_key(kind: str, entity_id: str) -> str:
    """kind: 'device' | 'battery'."""
    return f"{kind}:{entity_id}:latest_telemetry"


def alert_key(alert_id: str) -> str:
    return f"alert:{alert_id}"


def device_config_key(device_id: str) -> str:
    return f"device:{device_id}:config"


@dataclass(frozen=True)
class TelemetryFilter:
    device_ids: Optional[Sequence[str]] = None
    battery_ids: Optional[Sequence[str]] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @classmethod
    def for_device(cls, device_id: str, **kwargs) -> "TelemetryFilter":
        return cls(device_ids=[device_id], **kwargs)

    @classmethod
    def for_battery(cls, battery_id: str, **kwargs) -> "TelemetryFilter":
        return cls(battery_ids=[battery_id], **kwargs)


@dataclass(frozen=True)
class AlertFilter:
    device_id: Optional[str] = None
    battery_id: Optional[str] = None
    status: Optional[str] = None
    severity: Optional[str] = None


@dataclass(frozen=True)
class TimeSeriesPoint:
    measurement: str
    tags: Dict[str, str]
    fields: Dict[str, float]
    timestamp: datetime


@dataclass
class TelemetryStats:
    count: int = 0
    avg_voltage: Optional[float] = None
    min_voltage: Optional[float] = None
    max_voltage: Optional[float] = None
    avg_current: Optional[float] = None
    min_current: Optional[float] = None
    max_current: Optional[float] = None
    avg_temperature: Optional[float] = None
    min_temperature: Optional[float] = None
    max_temperature: Optional[float] = None
    avg_soc: Optional[float] = None
    min_soc: Optional[float] = None
    max_soc: Optional[float] = None
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class HotCache(ABC):
    """Key-value store with TTL for "latest value" lookups."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class TimeSeriesSink(ABC):
    """Append-only store of scalar metrics."""

    @abstractmethod
    def write_points(self, points: Iterable[TimeSeriesPoint]) -> int:
        """Write points; returns how many were written."""
        pass

    def write_point(
        self,
        measurement: str,
        tags: Dict[str, str],
        fields: Dict[str, float],
        timestamp: datetime,
    ) -> int:
        return self.write_points([TimeSeriesPoint(measurement, tags, fields, timestamp)])

    @abstractmethod
    def query(
        self,
        measurement: str,
        tags: Optional[Dict[str, str]] = None,
        fields: Optional[Sequence[str]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        aggregation: str = "mean",
        interval: Optional[str] = "1h",
    ) -> List[Dict[str, Any]]:
        pass


class PrimaryStore(ABC):
    """Durable record of telemetry submissions and alerts."""

    # --- telemetry ---------------------------------------------------------

    @abstractmethod
    def insert_telemetry(self, record: TelemetryRecord) -> None:
        pass

    @abstractmethod
    def insert_telemetry_many(self, records: Sequence[TelemetryRecord]) -> int:
        pass

    @abstractmethod
    def find_telemetry(
        self,
        flt: TelemetryFilter,
        *,
        descending: bool = True,
        skip: int = 0,
        limit: int = 100,
    ) -> List[TelemetryRecord]:
        pass

    @abstractmethod
    def count_telemetry(self, flt: TelemetryFilter) -> int:
        pass

    def latest_telemetry(
        self,
        *,
        device_id: Optional[str] = None,
        battery_id: Optional[str] = None,
    ) -> Optional[TelemetryRecord]:
        flt = TelemetryFilter(
            device_ids=[device_id] if device_id else None,
            battery_ids=[battery_id] if battery_id else None,
        )
        rows = self.find_telemetry(flt, descending=True, limit=1)
        return rows[0] if rows else None

    @abstractmethod
    def distinct_battery_ids(self, limit: int) -> List[str]:
        pass

    @abstractmethod
    def telemetry_stats(self, flt: TelemetryFilter) -> TelemetryStats:
        pass

    @abstractmethod
    def purge_expired_telemetry(self, now: datetime) -> int:
        pass

    # --- alerts ------------------------------------------------------------

    @abstractmethod
    def upsert_active_alert(self, candidate: AlertCandidate, now: datetime) -> AlertUpsert:
        """Incrementa la alerta activa de (device_id, type) o crea una nueva.

        Debe ser atómico frente a submissions concurrentes del mismo device.
        """
        pass

    @abstractmethod
    def find_alert(self, alert_id: str) -> Optional[Alert]:
        pass

    @abstractmethod
    def find_alerts(self, flt: AlertFilter, *, limit: int = 100) -> List[Alert]:
        """Ordenadas por severidad desc y luego createdAt desc."""
        pass

    @abstractmethod
    def update_alert(self, alert_id: str, changes: Dict[str, Any]) -> Optional[Alert]:
        pass
