"""Fixtures compartidas: settings aislados, payloads de telemetría y servicios en memoria."""

from __future__ import annotations

import dataclasses
import random
from datetime import datetime, timezone
from typing import Any, Callable, Dict

import pytest

from common.config import get_settings
from telemetry_api.factory import build_in_memory_services
from telemetry_api.thresholds import StaticThresholdStore, ThresholdConfig
from rul_service.scorers import HeuristicScorer


BASE_TS = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings(tmp_path):
    return dataclasses.replace(
        get_settings(),
        database_url="sqlite://",
        use_redis=False,
        alert_push_url="",
        rul_model_path=str(tmp_path / "missing_model.joblib"),
        sink_timeout_seconds=1.0,
    )


@pytest.fixture
def make_payload() -> Callable[..., Dict[str, Any]]:
    """Factory de payloads del contrato (camelCase)."""

    def _make(
        device_id: str = "device-1",
        battery_id: str = "battery-1",
        *,
        ts: datetime = BASE_TS,
        voltage: float = 48.2,
        current: float = -5.5,
        temperature: float = 30.0,
        soc: float = 75.0,
        soh: float = 95.0,
        cycle_count: int = 120,
        **extra: Any,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "deviceId": device_id,
            "batteryId": battery_id,
            "timestamp": ts.isoformat(),
            "battery": {
                "voltage": {"total": voltage, "cells": [3.7, 3.71, 3.69]},
                "current": current,
                "temperature": {"average": temperature, "ambient": 24.0},
                "soc": soc,
                "soh": soh,
                "cycleCount": cycle_count,
                "chargingStatus": "DISCHARGING",
            },
            "system": {"signalStrength": 80, "batteryLevel": 90, "cpuTemperature": 41.5},
        }
        payload.update(extra)
        return payload

    return _make


@pytest.fixture
def temperature_thresholds() -> ThresholdConfig:
    doc = {"alerts": {"temperature": {"max": 45, "criticalMax": 60}}}
    return ThresholdConfig.from_document(doc, "device-1")


@pytest.fixture
def threshold_store(temperature_thresholds) -> StaticThresholdStore:
    return StaticThresholdStore({"device-1": temperature_thresholds})


@pytest.fixture
def services(settings, threshold_store):
    return build_in_memory_services(
        settings,
        thresholds=threshold_store,
        heuristic=HeuristicScorer(random.Random(7)),
    )
