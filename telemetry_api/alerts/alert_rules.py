"""Reglas de umbral: record + ThresholdConfig -> AlertCandidates.

Función pura, sin acceso a stores. Cada dimensión se evalúa aislada: si una
falla (config inesperada), se loggea y se sigue con la siguiente.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, List, Optional, Sequence

from ..schemas import AlertCandidate, AlertCategory, AlertSeverity, AlertType, TelemetryRecord
from ..thresholds import ThresholdConfig

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371e3


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distancia en metros entre dos puntos (grados)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def _fmt(value: float) -> str:
    """50.0 -> '50', 3.25 -> '3.25'."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def _candidate(
    record: TelemetryRecord,
    alert_type: AlertType,
    severity: AlertSeverity,
    category: AlertCategory,
    message: str,
    current: float,
    threshold: float,
    unit: str,
    **extra,
) -> AlertCandidate:
    return AlertCandidate(
        type=alert_type,
        severity=severity,
        category=category,
        device_id=record.device_id,
        battery_id=record.battery_id,
        message=message,
        data={"current": current, "threshold": threshold, "unit": unit, **extra},
    )


def check_voltage(record: TelemetryRecord, cfg: ThresholdConfig) -> List[AlertCandidate]:
    battery = record.battery
    if cfg.voltage is None or battery is None or battery.voltage is None or battery.voltage.total is None:
        return []
    total = battery.voltage.total
    out = []
    if cfg.voltage.min is not None and total < cfg.voltage.min:
        out.append(_candidate(
            record, AlertType.VOLTAGE_LOW, AlertSeverity.WARNING, AlertCategory.BATTERY,
            f"Battery voltage ({_fmt(total)}V) below minimum threshold ({_fmt(cfg.voltage.min)}V)",
            total, cfg.voltage.min, "V",
        ))
    if cfg.voltage.max is not None and total > cfg.voltage.max:
        out.append(_candidate(
            record, AlertType.VOLTAGE_HIGH, AlertSeverity.WARNING, AlertCategory.BATTERY,
            f"Battery voltage ({_fmt(total)}V) above maximum threshold ({_fmt(cfg.voltage.max)}V)",
            total, cfg.voltage.max, "V",
        ))
    return out


def check_temperature(record: TelemetryRecord, cfg: ThresholdConfig) -> List[AlertCandidate]:
    battery = record.battery
    th = cfg.temperature
    if th is None or battery is None or battery.temperature is None or battery.temperature.average is None:
        return []
    avg = battery.temperature.average
    out = []
    if th.min is not None and avg < th.min:
        out.append(_candidate(
            record, AlertType.TEMPERATURE_LOW, AlertSeverity.WARNING, AlertCategory.BATTERY,
            f"Battery temperature ({_fmt(avg)}°C) below minimum threshold ({_fmt(th.min)}°C)",
            avg, th.min, "°C",
        ))
    if th.max is not None and avg > th.max:
        critical = th.critical_max is not None and avg > th.critical_max
        out.append(_candidate(
            record, AlertType.TEMPERATURE_HIGH,
            AlertSeverity.CRITICAL if critical else AlertSeverity.WARNING,
            AlertCategory.BATTERY,
            f"Battery temperature ({_fmt(avg)}°C) above maximum threshold ({_fmt(th.max)}°C)",
            avg, th.max, "°C",
        ))
    return out


def check_soc(record: TelemetryRecord, cfg: ThresholdConfig) -> List[AlertCandidate]:
    battery = record.battery
    th = cfg.soc
    if th is None or battery is None or battery.soc is None or th.min is None:
        return []
    soc = battery.soc
    if soc >= th.min:
        return []
    critical = th.critical_min is not None and soc < th.critical_min
    return [_candidate(
        record, AlertType.SOC_LOW,
        AlertSeverity.CRITICAL if critical else AlertSeverity.WARNING,
        AlertCategory.BATTERY,
        f"Battery SOC ({_fmt(soc)}%) below minimum threshold ({_fmt(th.min)}%)",
        soc, th.min, "%",
    )]


def check_device_battery(record: TelemetryRecord, cfg: ThresholdConfig) -> List[AlertCandidate]:
    system = record.system
    th = cfg.device_battery
    if th is None or th.min is None or system is None or system.battery_level is None:
        return []
    level = system.battery_level
    if level >= th.min:
        return []
    return [_candidate(
        record, AlertType.DEVICE_BATTERY_LOW, AlertSeverity.WARNING, AlertCategory.DEVICE,
        f"Device battery level ({_fmt(level)}%) below minimum threshold ({_fmt(th.min)}%)",
        level, th.min, "%",
    )]


def check_signal_strength(record: TelemetryRecord, cfg: ThresholdConfig) -> List[AlertCandidate]:
    system = record.system
    th = cfg.signal_strength
    if th is None or th.min is None or system is None or system.signal_strength is None:
        return []
    signal = system.signal_strength
    if signal >= th.min:
        return []
    return [_candidate(
        record, AlertType.SIGNAL_STRENGTH_LOW, AlertSeverity.INFO, AlertCategory.DEVICE,
        f"Signal strength ({_fmt(signal)}%) below minimum threshold ({_fmt(th.min)}%)",
        signal, th.min, "%",
    )]


def check_geofence(record: TelemetryRecord, cfg: ThresholdConfig) -> List[AlertCandidate]:
    fence = cfg.geofence
    location = record.location
    if fence is None or not fence.active or location is None or not location.coordinates:
        return []

    lon, lat = location.coordinates
    center_lon, center_lat = fence.center
    distance = haversine_distance(lat, lon, center_lat, center_lon)

    # En el radio exacto se considera dentro
    if distance <= fence.radius_meters:
        return []
    return [_candidate(
        record, AlertType.GEOFENCE_VIOLATION, AlertSeverity.WARNING, AlertCategory.LOCATION,
        f"Device outside geofence ({distance:.2f}m from center, radius: {_fmt(fence.radius_meters)}m)",
        distance, fence.radius_meters, "m",
        coordinates=list(location.coordinates),
        center=list(fence.center),
    )]


Rule = Callable[[TelemetryRecord, ThresholdConfig], List[AlertCandidate]]

DEFAULT_RULES: Sequence[Rule] = (
    check_voltage,
    check_temperature,
    check_soc,
    check_device_battery,
    check_signal_strength,
    check_geofence,
)


def evaluate_thresholds(
    record: TelemetryRecord,
    thresholds: Optional[ThresholdConfig],
    rules: Sequence[Rule] = DEFAULT_RULES,
) -> List[AlertCandidate]:
    if thresholds is None:
        return []

    candidates: List[AlertCandidate] = []
    for rule in rules:
        try:
            candidates.extend(rule(record, thresholds))
        except Exception:
            logger.exception(
                "[ALERTS] Rule %s failed device=%s; continuing",
                getattr(rule, "__name__", rule),
                record.device_id,
            )
    return candidates
