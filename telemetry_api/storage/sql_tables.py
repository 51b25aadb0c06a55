"""Esquema SQL del almacén primario y del sink de series temporales."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    text,
)

metadata = MetaData()


telemetry = Table(
    "telemetry",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("device_id", String(128), nullable=False),
    Column("battery_id", String(128), nullable=False),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    # Columnas desnormalizadas para agregados (stats) sin parsear JSON
    Column("voltage_total", Float, nullable=True),
    Column("current", Float, nullable=True),
    Column("temperature_avg", Float, nullable=True),
    Column("soc", Float, nullable=True),
    Column("soh", Float, nullable=True),
    Column("cycle_count", Integer, nullable=True),
    Column("document", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=True),
)

Index("ix_telemetry_device_ts", telemetry.c.device_id, telemetry.c.timestamp)
Index("ix_telemetry_battery_ts", telemetry.c.battery_id, telemetry.c.timestamp)
Index("ix_telemetry_expires", telemetry.c.expires_at)


alerts = Table(
    "alerts",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("type", String(64), nullable=False),
    Column("severity", String(16), nullable=False),
    Column("severity_rank", Integer, nullable=False),
    Column("status", String(16), nullable=False),
    Column("category", String(16), nullable=False),
    Column("device_id", String(128), nullable=False),
    Column("battery_id", String(128), nullable=True),
    Column("message", Text, nullable=False),
    Column("data", JSON, nullable=False),
    Column("occurrences", Integer, nullable=False, default=1),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("last_occurrence", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("resolved_at", DateTime(timezone=True), nullable=True),
    Column("resolved_by", String(128), nullable=True),
    Column("resolution", Text, nullable=True),
    Column("acknowledged_at", DateTime(timezone=True), nullable=True),
    Column("acknowledged_by", String(128), nullable=True),
)

# UNA alerta activa por (device_id, type): el índice parcial único es la
# garantía final frente a inserciones concurrentes.
Index(
    "ux_alerts_active_device_type",
    alerts.c.device_id,
    alerts.c.type,
    unique=True,
    sqlite_where=text("status = 'active'"),
    postgresql_where=text("status = 'active'"),
)
Index("ix_alerts_battery_status", alerts.c.battery_id, alerts.c.status)
Index("ix_alerts_created_severity", alerts.c.created_at, alerts.c.severity)


telemetry_points = Table(
    "telemetry_points",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("measurement", String(64), nullable=False),
    Column("device_id", String(128), nullable=True),
    Column("battery_id", String(128), nullable=True),
    Column("field", String(64), nullable=False),
    Column("value", Float, nullable=False),
    Column("timestamp", DateTime(timezone=True), nullable=False),
)

Index(
    "ix_points_measurement_ts",
    telemetry_points.c.measurement,
    telemetry_points.c.timestamp,
)


# Documento de configuración que mantiene el colaborador de gestión de devices.
device_configs = Table(
    "device_configs",
    metadata,
    Column("device_id", String(128), primary_key=True),
    Column("config", JSON, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=True),
)
