"""Almacén primario sobre SQLAlchemy Core.

Reglas de persistencia:
- Toda submission aceptada se inserta como documento (layout del contrato)
  más columnas numéricas desnormalizadas para agregados.
- UNA alerta activa por (device_id, type): UPDATE atómico
  ``occurrences = occurrences + 1``; si no hay fila activa se INSERTA, y si
  otra transacción ganó la carrera (IntegrityError del índice parcial) se
  reintenta el UPDATE.
"""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import nullcontext
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import IntegrityError

from ..schemas import (
    SEVERITY_RANK,
    Alert,
    AlertCandidate,
    AlertSeverity,
    AlertStatus,
    AlertUpsert,
    TelemetryRecord,
    ensure_utc,
    utcnow,
)
from . import sql_tables as t
from .interfaces import AlertFilter, PrimaryStore, TelemetryFilter, TelemetryStats

logger = logging.getLogger(__name__)

MAX_UPSERT_ATTEMPTS = 3


def _opt_utc(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


def _telemetry_row(record: TelemetryRecord, now: datetime, retention: Optional[timedelta]) -> Dict[str, Any]:
    battery = record.battery
    return {
        "device_id": record.device_id,
        "battery_id": record.battery_id,
        "timestamp": record.timestamp,
        "voltage_total": battery.voltage.total if battery and battery.voltage else None,
        "current": battery.current if battery else None,
        "temperature_avg": battery.temperature.average if battery and battery.temperature else None,
        "soc": battery.soc if battery else None,
        "soh": battery.soh if battery else None,
        "cycle_count": battery.cycle_count if battery else None,
        "document": record.to_document(),
        "created_at": now,
        "expires_at": record.timestamp + retention if retention else None,
    }


def _alert_from_row(row: Row) -> Alert:
    m = row._mapping
    return Alert(
        id=m["id"],
        type=m["type"],
        severity=m["severity"],
        status=m["status"],
        category=m["category"],
        device_id=m["device_id"],
        battery_id=m["battery_id"],
        message=m["message"],
        data=m["data"] or {},
        occurrences=m["occurrences"],
        created_at=ensure_utc(m["created_at"]),
        last_occurrence=ensure_utc(m["last_occurrence"]),
        resolved_at=_opt_utc(m["resolved_at"]),
        resolved_by=m["resolved_by"],
        resolution=m["resolution"],
        acknowledged_at=_opt_utc(m["acknowledged_at"]),
        acknowledged_by=m["acknowledged_by"],
    )


class SqlPrimaryStore(PrimaryStore):
    def __init__(
        self,
        engine: Engine,
        *,
        retention_days: Optional[int] = 30,
        create_schema: bool = True,
    ) -> None:
        self._engine = engine
        self._retention = timedelta(days=retention_days) if retention_days else None
        # SQLite no soporta escritores concurrentes sobre la misma conexión.
        self._write_lock = threading.Lock() if engine.dialect.name == "sqlite" else nullcontext()
        if create_schema:
            t.metadata.create_all(engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def insert_telemetry(self, record: TelemetryRecord) -> None:
        self.insert_telemetry_many([record])

    def insert_telemetry_many(self, records: Sequence[TelemetryRecord]) -> int:
        if not records:
            return 0
        now = utcnow()
        rows = [_telemetry_row(r, now, self._retention) for r in records]
        with self._write_lock, self._engine.begin() as conn:
            conn.execute(insert(t.telemetry), rows)
        return len(rows)

    def _telemetry_where(self, flt: TelemetryFilter):
        clauses = []
        if flt.device_ids:
            clauses.append(t.telemetry.c.device_id.in_(list(flt.device_ids)))
        if flt.battery_ids:
            clauses.append(t.telemetry.c.battery_id.in_(list(flt.battery_ids)))
        if flt.start is not None:
            clauses.append(t.telemetry.c.timestamp >= ensure_utc(flt.start))
        if flt.end is not None:
            clauses.append(t.telemetry.c.timestamp <= ensure_utc(flt.end))
        return and_(*clauses) if clauses else None

    def find_telemetry(
        self,
        flt: TelemetryFilter,
        *,
        descending: bool = True,
        skip: int = 0,
        limit: int = 100,
    ) -> List[TelemetryRecord]:
        order = t.telemetry.c.timestamp.desc() if descending else t.telemetry.c.timestamp.asc()
        tiebreak = t.telemetry.c.id.desc() if descending else t.telemetry.c.id.asc()
        stmt = select(t.telemetry.c.document).order_by(order, tiebreak).offset(skip).limit(limit)
        where = self._telemetry_where(flt)
        if where is not None:
            stmt = stmt.where(where)
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [TelemetryRecord.model_validate(row[0]) for row in rows]

    def count_telemetry(self, flt: TelemetryFilter) -> int:
        stmt = select(func.count()).select_from(t.telemetry)
        where = self._telemetry_where(flt)
        if where is not None:
            stmt = stmt.where(where)
        with self._engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    def distinct_battery_ids(self, limit: int) -> List[str]:
        stmt = (
            select(t.telemetry.c.battery_id)
            .group_by(t.telemetry.c.battery_id)
            .order_by(t.telemetry.c.battery_id)
            .limit(limit)
        )
        with self._engine.connect() as conn:
            return [row[0] for row in conn.execute(stmt)]

    def telemetry_stats(self, flt: TelemetryFilter) -> TelemetryStats:
        c = t.telemetry.c
        stmt = select(
            func.count().label("count"),
            func.avg(c.voltage_total), func.min(c.voltage_total), func.max(c.voltage_total),
            func.avg(c.current), func.min(c.current), func.max(c.current),
            func.avg(c.temperature_avg), func.min(c.temperature_avg), func.max(c.temperature_avg),
            func.avg(c.soc), func.min(c.soc), func.max(c.soc),
            func.min(c.timestamp), func.max(c.timestamp),
        )
        where = self._telemetry_where(flt)
        if where is not None:
            stmt = stmt.where(where)
        with self._engine.connect() as conn:
            row = conn.execute(stmt).one()

        values = list(row)
        return TelemetryStats(
            count=int(values[0] or 0),
            avg_voltage=values[1], min_voltage=values[2], max_voltage=values[3],
            avg_current=values[4], min_current=values[5], max_current=values[6],
            avg_temperature=values[7], min_temperature=values[8], max_temperature=values[9],
            avg_soc=values[10], min_soc=values[11], max_soc=values[12],
            first_timestamp=_opt_utc(values[13]),
            last_timestamp=_opt_utc(values[14]),
        )

    def purge_expired_telemetry(self, now: datetime) -> int:
        stmt = delete(t.telemetry).where(
            t.telemetry.c.expires_at.is_not(None),
            t.telemetry.c.expires_at < ensure_utc(now),
        )
        with self._write_lock, self._engine.begin() as conn:
            result = conn.execute(stmt)
        purged = int(result.rowcount or 0)
        logger.info("[DB] Purged expired telemetry rows=%d", purged)
        return purged

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def _active_clause(self, device_id: str, alert_type: str):
        return and_(
            t.alerts.c.device_id == device_id,
            t.alerts.c.type == alert_type,
            t.alerts.c.status == AlertStatus.ACTIVE.value,
        )

    def upsert_active_alert(self, candidate: AlertCandidate, now: datetime) -> AlertUpsert:
        active = self._active_clause(candidate.device_id, candidate.type.value)

        for attempt in range(1, MAX_UPSERT_ATTEMPTS + 1):
            try:
                with self._write_lock, self._engine.begin() as conn:
                    result = conn.execute(
                        update(t.alerts)
                        .where(active)
                        .values(
                            occurrences=t.alerts.c.occurrences + 1,
                            last_occurrence=now,
                            updated_at=now,
                            data=candidate.data,
                        )
                    )
                    if result.rowcount:
                        row = conn.execute(select(t.alerts).where(active)).one()
                        return AlertUpsert(alert=_alert_from_row(row), created=False)

                    alert_id = uuid.uuid4().hex
                    conn.execute(
                        insert(t.alerts).values(
                            id=alert_id,
                            type=candidate.type.value,
                            severity=candidate.severity.value,
                            severity_rank=SEVERITY_RANK[candidate.severity],
                            status=AlertStatus.ACTIVE.value,
                            category=candidate.category.value,
                            device_id=candidate.device_id,
                            battery_id=candidate.battery_id,
                            message=candidate.message,
                            data=candidate.data,
                            occurrences=1,
                            created_at=now,
                            last_occurrence=now,
                            updated_at=now,
                        )
                    )
                    row = conn.execute(select(t.alerts).where(t.alerts.c.id == alert_id)).one()
                    return AlertUpsert(alert=_alert_from_row(row), created=True)
            except IntegrityError:
                # Otra submission creó la alerta activa entre el UPDATE y el INSERT
                logger.debug(
                    "[DB] Active alert race device=%s type=%s attempt=%d",
                    candidate.device_id,
                    candidate.type.value,
                    attempt,
                )

        raise RuntimeError(
            f"could not upsert active alert device={candidate.device_id} type={candidate.type.value}"
        )

    def find_alert(self, alert_id: str) -> Optional[Alert]:
        with self._engine.connect() as conn:
            row = conn.execute(select(t.alerts).where(t.alerts.c.id == alert_id)).first()
        return _alert_from_row(row) if row else None

    def find_alerts(self, flt: AlertFilter, *, limit: int = 100) -> List[Alert]:
        c = t.alerts.c
        stmt = select(t.alerts).order_by(c.severity_rank.desc(), c.created_at.desc()).limit(limit)
        if flt.device_id:
            stmt = stmt.where(c.device_id == flt.device_id)
        if flt.battery_id:
            stmt = stmt.where(c.battery_id == flt.battery_id)
        if flt.status:
            stmt = stmt.where(c.status == flt.status)
        if flt.severity:
            stmt = stmt.where(c.severity == flt.severity)
        with self._engine.connect() as conn:
            return [_alert_from_row(row) for row in conn.execute(stmt)]

    def update_alert(self, alert_id: str, changes: Dict[str, Any]) -> Optional[Alert]:
        values = {
            k: (v.value if hasattr(v, "value") else v)
            for k, v in changes.items()
        }
        if "severity" in values:
            values["severity_rank"] = SEVERITY_RANK[AlertSeverity(values["severity"])]
        values["updated_at"] = utcnow()

        with self._write_lock, self._engine.begin() as conn:
            result = conn.execute(update(t.alerts).where(t.alerts.c.id == alert_id).values(**values))
            if not result.rowcount:
                return None
            row = conn.execute(select(t.alerts).where(t.alerts.c.id == alert_id)).one()
        return _alert_from_row(row)
