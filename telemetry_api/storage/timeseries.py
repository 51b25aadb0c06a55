"""Proyección de telemetría a series temporales y agregación con pandas.

Measurements (tags ``deviceId`` / ``batteryId``):
    battery_voltage      total, cell_1..N
    battery_current      current
    battery_temperature  average, ambient, cell_1..N
    battery_soc          soc
    battery_health       soh
    battery_cycles       cycles
    system               cpuTemperature, signalStrength, batteryLevel, memoryUsage, uptime
    location             longitude, latitude, altitude, speed, heading, accuracy
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd
from sqlalchemy import insert, select
from sqlalchemy.engine import Engine

from ..errors import ValidationError
from ..schemas import TelemetryRecord, ensure_utc
from . import sql_tables as t
from .interfaces import TimeSeriesPoint, TimeSeriesSink

logger = logging.getLogger(__name__)

AGGREGATIONS = ("mean", "min", "max", "sum", "count", "last", "first")

# Intervalos en notación Flux -> offsets pandas
_INTERVAL_UNITS = {"s": "s", "m": "min", "h": "h", "d": "D", "w": "W"}


def _interval_to_offset(interval: Optional[str]) -> Optional[str]:
    """'5m' -> '5min'. None / '0s' / '' significan puntos crudos."""
    interval = (interval or "").strip().lower()
    if not interval:
        return None
    unit = interval[-1]
    amount = interval[:-1]
    if unit not in _INTERVAL_UNITS or not amount.isdigit():
        raise ValidationError(f"Unsupported interval: {interval}", field="interval")
    if int(amount) == 0:
        return None
    return f"{int(amount)}{_INTERVAL_UNITS[unit]}"


def _cells(prefix: str, values: Optional[Sequence[float]]) -> Dict[str, float]:
    if not values:
        return {}
    return {f"{prefix}_{i + 1}": float(v) for i, v in enumerate(values)}


def _compact(fields: Dict[str, Any]) -> Dict[str, float]:
    return {k: float(v) for k, v in fields.items() if v is not None}


def telemetry_to_points(record: TelemetryRecord) -> List[TimeSeriesPoint]:
    """Proyecta un record a los puntos de cada measurement presente."""
    tags = {"deviceId": record.device_id, "batteryId": record.battery_id}
    ts = record.timestamp
    out: List[TimeSeriesPoint] = []

    def add(measurement: str, fields: Dict[str, Any]) -> None:
        fields = _compact(fields)
        if fields:
            out.append(TimeSeriesPoint(measurement, dict(tags), fields, ts))

    battery = record.battery
    if battery is not None:
        if battery.voltage is not None:
            add(
                "battery_voltage",
                {"total": battery.voltage.total, **_cells("cell", battery.voltage.cells)},
            )
        add("battery_current", {"current": battery.current})
        if battery.temperature is not None:
            add(
                "battery_temperature",
                {
                    "average": battery.temperature.average,
                    "ambient": battery.temperature.ambient,
                    **_cells("cell", battery.temperature.cells),
                },
            )
        add("battery_soc", {"soc": battery.soc})
        add("battery_health", {"soh": battery.soh})
        add("battery_cycles", {"cycles": battery.cycle_count})

    system = record.system
    if system is not None:
        add(
            "system",
            {
                "cpuTemperature": system.cpu_temperature,
                "signalStrength": system.signal_strength,
                "batteryLevel": system.battery_level,
                "memoryUsage": system.memory_usage,
                "uptime": system.uptime,
            },
        )

    location = record.location
    if location is not None:
        lon, lat = location.coordinates if location.coordinates else (None, None)
        add(
            "location",
            {
                "longitude": lon,
                "latitude": lat,
                "altitude": location.altitude,
                "speed": location.speed,
                "heading": location.heading,
                "accuracy": location.accuracy,
            },
        )

    return out


def aggregate_points(
    rows: List[Dict[str, Any]],
    *,
    fields: Optional[Sequence[str]] = None,
    aggregation: str = "mean",
    interval: Optional[str] = "1h",
) -> List[Dict[str, Any]]:
    """Agrega filas largas (timestamp, field, value) en ventanas de ``interval``.

    Cada field se agrega por separado sobre todas sus filas, aunque varias
    series (p.ej. dos baterías de un mismo device) compartan timestamp.
    Devuelve filas anchas ``{"timestamp": ..., <field>: value, ...}`` en orden
    ascendente. Ventanas vacías se omiten.

    Raises:
        ValidationError: ``aggregation`` o ``interval`` no soportados.
    """
    if aggregation not in AGGREGATIONS:
        raise ValidationError(f"Unsupported aggregation: {aggregation}", field="aggregation")
    offset = _interval_to_offset(interval)
    if not rows:
        return []

    df = pd.DataFrame(rows)
    if fields:
        df = df[df["field"].isin(list(fields))]
        if df.empty:
            return []
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)

    if offset is None:
        # Puntos crudos: un valor por (timestamp, field)
        wide = df.pivot_table(
            index="timestamp", columns="field", values="value", aggfunc="last"
        ).sort_index()
    else:
        grouped = (
            df.set_index("timestamp")
            .sort_index()
            .groupby("field")["value"]
            .resample(offset, label="left", closed="left")
        )
        counts = grouped.count()
        aggregated = getattr(grouped, aggregation)()
        wide = aggregated[counts > 0].unstack("field").sort_index()

    result: List[Dict[str, Any]] = []
    for ts, values in wide.iterrows():
        entry: Dict[str, Any] = {"timestamp": ts.to_pydatetime()}
        for name, value in values.items():
            if pd.notna(value):
                entry[name] = float(value)
        result.append(entry)
    return result


def _matches(point_tags: Dict[str, str], wanted: Optional[Dict[str, str]]) -> bool:
    if not wanted:
        return True
    return all(point_tags.get(k) == v for k, v in wanted.items())


class SqlTimeSeriesSink(TimeSeriesSink):
    """Sink sobre la tabla ``telemetry_points`` (formato largo)."""

    def __init__(self, engine: Engine, *, create_schema: bool = True):
        self._engine = engine
        self._lock = threading.Lock() if engine.dialect.name == "sqlite" else None
        if create_schema:
            t.metadata.create_all(engine, tables=[t.telemetry_points])

    def write_points(self, points: Iterable[TimeSeriesPoint]) -> int:
        rows = [
            {
                "measurement": p.measurement,
                "device_id": p.tags.get("deviceId"),
                "battery_id": p.tags.get("batteryId"),
                "field": name,
                "value": value,
                "timestamp": ensure_utc(p.timestamp),
            }
            for p in points
            for name, value in p.fields.items()
        ]
        if not rows:
            return 0
        if self._lock is not None:
            with self._lock, self._engine.begin() as conn:
                conn.execute(insert(t.telemetry_points), rows)
        else:
            with self._engine.begin() as conn:
                conn.execute(insert(t.telemetry_points), rows)
        logger.debug("[TS] Wrote %d field values", len(rows))
        return len(rows)

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
        c = t.telemetry_points.c
        stmt = select(c.timestamp, c.field, c.value).where(c.measurement == measurement)
        tags = tags or {}
        if tags.get("deviceId"):
            stmt = stmt.where(c.device_id == tags["deviceId"])
        if tags.get("batteryId"):
            stmt = stmt.where(c.battery_id == tags["batteryId"])
        if fields:
            stmt = stmt.where(c.field.in_(list(fields)))
        if start is not None:
            stmt = stmt.where(c.timestamp >= ensure_utc(start))
        if end is not None:
            stmt = stmt.where(c.timestamp <= ensure_utc(end))

        with self._engine.connect() as conn:
            rows = [
                {"timestamp": ensure_utc(r.timestamp), "field": r.field, "value": r.value}
                for r in conn.execute(stmt.order_by(c.timestamp))
            ]
        return aggregate_points(rows, fields=fields, aggregation=aggregation, interval=interval)


class InMemoryTimeSeriesSink(TimeSeriesSink):
    def __init__(self) -> None:
        self._points: List[TimeSeriesPoint] = []
        self._lock = threading.Lock()

    @property
    def points(self) -> List[TimeSeriesPoint]:
        with self._lock:
            return list(self._points)

    def write_points(self, points: Iterable[TimeSeriesPoint]) -> int:
        batch = list(points)
        with self._lock:
            self._points.extend(batch)
        return len(batch)

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
        start = ensure_utc(start) if start is not None else None
        end = ensure_utc(end) if end is not None else None
        rows: List[Dict[str, Any]] = []
        for p in self.points:
            if p.measurement != measurement or not _matches(p.tags, tags):
                continue
            ts = ensure_utc(p.timestamp)
            if (start and ts < start) or (end and ts > end):
                continue
            rows.extend({"timestamp": ts, "field": k, "value": v} for k, v in p.fields.items())
        return aggregate_points(rows, fields=fields, aggregation=aggregation, interval=interval)
