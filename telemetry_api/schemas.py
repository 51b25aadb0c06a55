from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _WireModel(BaseModel):
    # Nombres del contrato en camelCase (dashboards existentes), atributos en snake_case.
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _finite(value: Optional[float], name: str) -> Optional[float]:
    if value is not None and (math.isnan(value) or math.isinf(value)):
        raise ValueError(f"{name} must be a finite number")
    return value


# =============================================================================
# TELEMETRY
# =============================================================================

class ChargingStatus(str, Enum):
    CHARGING = "CHARGING"
    DISCHARGING = "DISCHARGING"
    IDLE = "IDLE"
    FULL = "FULL"
    ERROR = "ERROR"


class VoltageData(_WireModel):
    total: Optional[float] = Field(default=None, ge=0)
    cells: Optional[List[float]] = None

    @field_validator("total")
    @classmethod
    def _total_finite(cls, v):
        return _finite(v, "battery voltage")


class TemperatureData(_WireModel):
    average: Optional[float] = None
    cells: Optional[List[float]] = None
    ambient: Optional[float] = None

    @field_validator("average", "ambient")
    @classmethod
    def _finite_temp(cls, v):
        return _finite(v, "battery temperature")


class BatteryData(_WireModel):
    voltage: Optional[VoltageData] = None
    current: Optional[float] = None  # positivo cargando, negativo descargando
    temperature: Optional[TemperatureData] = None
    soc: Optional[float] = Field(default=None, ge=0, le=100)
    soh: Optional[float] = Field(default=None, ge=0, le=100)
    cycle_count: Optional[int] = Field(default=None, ge=0, alias="cycleCount")
    charging_status: Optional[ChargingStatus] = Field(default=None, alias="chargingStatus")
    time_remaining: Optional[float] = Field(default=None, alias="timeRemaining")

    @field_validator("current")
    @classmethod
    def _finite_current(cls, v):
        return _finite(v, "battery current")


class LocationData(_WireModel):
    coordinates: Optional[List[float]] = None  # [longitude, latitude]
    altitude: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    accuracy: Optional[float] = None

    @field_validator("coordinates")
    @classmethod
    def _valid_coordinates(cls, v):
        if v is None:
            return v
        if len(v) != 2:
            raise ValueError("coordinates must be [longitude, latitude]")
        lon, lat = v
        if not -180 <= lon <= 180:
            raise ValueError("longitude must be between -180 and 180")
        if not -90 <= lat <= 90:
            raise ValueError("latitude must be between -90 and 90")
        return v


class SystemData(_WireModel):
    cpu_temperature: Optional[float] = Field(default=None, alias="cpuTemperature")
    signal_strength: Optional[float] = Field(default=None, alias="signalStrength")
    battery_level: Optional[float] = Field(default=None, alias="batteryLevel")
    memory_usage: Optional[float] = Field(default=None, alias="memoryUsage")
    uptime: Optional[float] = None


class TelemetryRecord(_WireModel):
    """Lectura de telemetría aceptada. Inmutable una vez validada."""

    device_id: str = Field(..., min_length=1, alias="deviceId")
    battery_id: str = Field(..., min_length=1, alias="batteryId")
    timestamp: datetime = Field(default_factory=utcnow)
    battery: Optional[BatteryData] = None
    location: Optional[LocationData] = None
    system: Optional[SystemData] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("device_id", "battery_id")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("identifier cannot be blank")
        return v

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def battery_update_payload(self) -> Dict[str, Any]:
        """Payload reducido para la room de la batería."""
        telemetry = self.battery.to_document() if self.battery else {}
        telemetry["location"] = self.location.to_document() if self.location else None
        telemetry["timestamp"] = self.timestamp.isoformat()
        return {"batteryId": self.battery_id, "telemetry": telemetry}


# =============================================================================
# ALERTS
# =============================================================================

class AlertType(str, Enum):
    VOLTAGE_LOW = "battery_voltage_low"
    VOLTAGE_HIGH = "battery_voltage_high"
    TEMPERATURE_LOW = "battery_temperature_low"
    TEMPERATURE_HIGH = "battery_temperature_high"
    SOC_LOW = "battery_soc_low"
    DEVICE_BATTERY_LOW = "device_battery_low"
    SIGNAL_STRENGTH_LOW = "signal_strength_low"
    GEOFENCE_VIOLATION = "geofence_violation"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


SEVERITY_RANK = {AlertSeverity.INFO: 0, AlertSeverity.WARNING: 1, AlertSeverity.CRITICAL: 2}


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class AlertCategory(str, Enum):
    BATTERY = "battery"
    DEVICE = "device"
    LOCATION = "location"
    SYSTEM = "system"
    OTHER = "other"


class Alert(_WireModel):
    id: str
    type: AlertType
    severity: AlertSeverity
    status: AlertStatus = AlertStatus.ACTIVE
    category: AlertCategory = AlertCategory.OTHER
    device_id: str = Field(..., alias="deviceId")
    battery_id: Optional[str] = Field(default=None, alias="batteryId")
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    occurrences: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    last_occurrence: datetime = Field(default_factory=utcnow, alias="lastOccurrence")
    resolved_at: Optional[datetime] = Field(default=None, alias="resolvedAt")
    resolved_by: Optional[str] = Field(default=None, alias="resolvedBy")
    resolution: Optional[str] = None
    acknowledged_at: Optional[datetime] = Field(default=None, alias="acknowledgedAt")
    acknowledged_by: Optional[str] = Field(default=None, alias="acknowledgedBy")

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.ACTIVE

    @property
    def is_critical(self) -> bool:
        return self.severity == AlertSeverity.CRITICAL


@dataclass(frozen=True)
class AlertCandidate:
    """Violación detectada por las reglas, antes de deduplicar contra el store."""

    type: AlertType
    severity: AlertSeverity
    category: AlertCategory
    device_id: str
    battery_id: Optional[str]
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AlertUpsert:
    alert: Alert
    created: bool


# =============================================================================
# DEVICE STATUS / RESULTS
# =============================================================================

class LastLocation(_WireModel):
    coordinates: Optional[List[float]] = None
    altitude: Optional[float] = None
    accuracy: Optional[float] = None
    last_updated: datetime = Field(alias="lastUpdated")


class DeviceStatusUpdate(_WireModel):
    """Actualización calculada para el colaborador de gestión de dispositivos."""

    device_id: str = Field(alias="deviceId")
    last_seen: datetime = Field(alias="lastSeen")
    online: bool = True
    battery_level: Optional[float] = Field(default=None, alias="batteryLevel")
    signal_strength: Optional[float] = Field(default=None, alias="signalStrength")
    last_location: Optional[LastLocation] = Field(default=None, alias="lastLocation")

    @classmethod
    def from_record(cls, record: TelemetryRecord, seen_at: datetime) -> "DeviceStatusUpdate":
        location = None
        if record.location is not None:
            location = LastLocation(
                coordinates=record.location.coordinates,
                altitude=record.location.altitude,
                accuracy=record.location.accuracy,
                last_updated=seen_at,
            )
        system = record.system
        return cls(
            device_id=record.device_id,
            last_seen=seen_at,
            battery_level=system.battery_level if system else None,
            signal_strength=system.signal_strength if system else None,
            last_location=location,
        )


class SubmitResult(BaseModel):
    accepted: bool
    alerts: List[Alert] = Field(default_factory=list)

    @property
    def alerts_raised(self) -> int:
        return len(self.alerts)


class BatchResult(BaseModel):
    processed_count: int
    alert_count: int
    alerts: List[Alert] = Field(default_factory=list)


class TelemetryPage(BaseModel):
    items: List[TelemetryRecord] = Field(default_factory=list)
    total: int = 0
