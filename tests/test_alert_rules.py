"""Tests de reglas de umbral (funciones puras)."""

import math
from unittest.mock import patch

import pytest

from telemetry_api.alerts.alert_rules import (
    check_temperature,
    evaluate_thresholds,
    haversine_distance,
)
from telemetry_api.schemas import AlertCategory, AlertSeverity, AlertType
from telemetry_api.thresholds import ThresholdConfig
from telemetry_api.validation import validate_telemetry


CENTER_LAT = 1.3521
CENTER_LON = 103.8198


def _thresholds(**doc):
    return ThresholdConfig.from_document(doc, "device-1")


def _offset_lat(meters: float) -> float:
    return CENTER_LAT + math.degrees(meters / 6371e3)


@pytest.fixture
def geofence():
    return _thresholds(
        geofence={"enabled": True, "center": [CENTER_LON, CENTER_LAT], "radius": 500}
    )


# =============================================================================
# BATTERY DIMENSIONS
# =============================================================================

class TestBatteryRules:

    def test_temperature_warning_message(self, make_payload):
        record = validate_telemetry(make_payload(temperature=50))
        cfg = _thresholds(alerts={"temperature": {"max": 45, "criticalMax": 60}})

        [candidate] = evaluate_thresholds(record, cfg)
        assert candidate.type == AlertType.TEMPERATURE_HIGH
        assert candidate.severity == AlertSeverity.WARNING
        assert candidate.category == AlertCategory.BATTERY
        assert candidate.message == "Battery temperature (50°C) above maximum threshold (45°C)"
        assert candidate.data == {"current": 50.0, "threshold": 45.0, "unit": "°C"}

    def test_temperature_above_critical_max(self, make_payload):
        record = validate_telemetry(make_payload(temperature=61.5))
        cfg = _thresholds(alerts={"temperature": {"max": 45, "criticalMax": 60}})

        [candidate] = check_temperature(record, cfg)
        assert candidate.severity == AlertSeverity.CRITICAL
        assert "61.5°C" in candidate.message

    def test_temperature_low(self, make_payload):
        record = validate_telemetry(make_payload(temperature=-5))
        cfg = _thresholds(alerts={"temperature": {"min": 0, "max": 45}})

        [candidate] = evaluate_thresholds(record, cfg)
        assert candidate.type == AlertType.TEMPERATURE_LOW
        assert candidate.severity == AlertSeverity.WARNING

    def test_voltage_low_and_high(self, make_payload):
        cfg = _thresholds(alerts={"voltage": {"min": 44, "max": 54}})

        [low] = evaluate_thresholds(validate_telemetry(make_payload(voltage=42.5)), cfg)
        [high] = evaluate_thresholds(validate_telemetry(make_payload(voltage=56)), cfg)

        assert low.type == AlertType.VOLTAGE_LOW
        assert low.message == "Battery voltage (42.5V) below minimum threshold (44V)"
        assert high.type == AlertType.VOLTAGE_HIGH

    def test_soc_critical_min(self, make_payload):
        cfg = _thresholds(alerts={"soc": {"min": 20, "criticalMin": 10}})

        [warning] = evaluate_thresholds(validate_telemetry(make_payload(soc=15)), cfg)
        [critical] = evaluate_thresholds(validate_telemetry(make_payload(soc=5)), cfg)

        assert warning.severity == AlertSeverity.WARNING
        assert critical.severity == AlertSeverity.CRITICAL
        assert critical.message == "Battery SOC (5%) below minimum threshold (20%)"

    def test_values_inside_thresholds_raise_nothing(self, make_payload):
        cfg = _thresholds(
            alerts={
                "voltage": {"min": 44, "max": 54},
                "temperature": {"min": 0, "max": 45},
                "soc": {"min": 20},
            }
        )
        assert evaluate_thresholds(validate_telemetry(make_payload()), cfg) == []


# =============================================================================
# DEVICE DIMENSIONS
# =============================================================================

class TestDeviceRules:

    def test_signal_strength_is_info(self, make_payload):
        payload = make_payload(system={"signalStrength": 10})
        cfg = _thresholds(alerts={"signalStrength": {"min": 20}})

        [candidate] = evaluate_thresholds(validate_telemetry(payload), cfg)
        assert candidate.type == AlertType.SIGNAL_STRENGTH_LOW
        assert candidate.severity == AlertSeverity.INFO
        assert candidate.category == AlertCategory.DEVICE

    def test_device_battery_low(self, make_payload):
        payload = make_payload(system={"batteryLevel": 12})
        cfg = _thresholds(alerts={"deviceBattery": {"min": 15}})

        [candidate] = evaluate_thresholds(validate_telemetry(payload), cfg)
        assert candidate.type == AlertType.DEVICE_BATTERY_LOW
        assert candidate.message == "Device battery level (12%) below minimum threshold (15%)"


# =============================================================================
# GEOFENCE
# =============================================================================

class TestGeofence:

    def test_haversine_known_distance(self):
        distance = haversine_distance(_offset_lat(600), CENTER_LON, CENTER_LAT, CENTER_LON)
        assert distance == pytest.approx(600.0, abs=0.01)

    def test_point_600m_away_is_violation(self, make_payload, geofence):
        payload = make_payload(location={"coordinates": [CENTER_LON, _offset_lat(600)]})

        [candidate] = evaluate_thresholds(validate_telemetry(payload), geofence)
        assert candidate.type == AlertType.GEOFENCE_VIOLATION
        assert candidate.severity == AlertSeverity.WARNING
        assert candidate.category == AlertCategory.LOCATION
        assert candidate.data["threshold"] == 500
        assert candidate.data["center"] == [CENTER_LON, CENTER_LAT]
        assert "radius: 500m" in candidate.message

    def test_point_inside_radius(self, make_payload, geofence):
        payload = make_payload(location={"coordinates": [CENTER_LON, _offset_lat(100)]})
        assert evaluate_thresholds(validate_telemetry(payload), geofence) == []

    def test_exactly_on_radius_is_inside(self, make_payload, geofence):
        payload = make_payload(location={"coordinates": [CENTER_LON, CENTER_LAT]})
        record = validate_telemetry(payload)

        with patch("telemetry_api.alerts.alert_rules.haversine_distance", return_value=500.0):
            assert evaluate_thresholds(record, geofence) == []

        with patch("telemetry_api.alerts.alert_rules.haversine_distance", return_value=500.0001):
            assert len(evaluate_thresholds(record, geofence)) == 1

    def test_disabled_geofence(self, make_payload):
        cfg = _thresholds(
            geofence={"enabled": False, "center": [CENTER_LON, CENTER_LAT], "radius": 500}
        )
        payload = make_payload(location={"coordinates": [CENTER_LON, _offset_lat(5000)]})
        assert evaluate_thresholds(validate_telemetry(payload), cfg) == []


# =============================================================================
# ISOLATION
# =============================================================================

class TestRuleIsolation:

    def test_no_thresholds(self, make_payload):
        assert evaluate_thresholds(validate_telemetry(make_payload()), None) == []

    def test_failing_rule_does_not_stop_others(self, make_payload):
        record = validate_telemetry(make_payload(temperature=50))
        cfg = _thresholds(alerts={"temperature": {"max": 45}})

        def broken(record, cfg):
            raise RuntimeError("boom")

        candidates = evaluate_thresholds(record, cfg, rules=(broken, check_temperature))
        assert [c.type for c in candidates] == [AlertType.TEMPERATURE_HIGH]
