from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from telemetry_api.schemas import TelemetryRecord


def _voltage_total(r: TelemetryRecord) -> Optional[float]:
    b = r.battery
    return b.voltage.total if b and b.voltage else None


def _current(r: TelemetryRecord) -> Optional[float]:
    return r.battery.current if r.battery else None


def _temperature_avg(r: TelemetryRecord) -> Optional[float]:
    b = r.battery
    return b.temperature.average if b and b.temperature else None


def _soc(r: TelemetryRecord) -> Optional[float]:
    return r.battery.soc if r.battery else None


def _soh(r: TelemetryRecord) -> Optional[float]:
    return r.battery.soh if r.battery else None


def _cycle_count(r: TelemetryRecord) -> Optional[float]:
    return r.battery.cycle_count if r.battery else None


def _cpu_temperature(r: TelemetryRecord) -> Optional[float]:
    return r.system.cpu_temperature if r.system else None


def _signal_strength(r: TelemetryRecord) -> Optional[float]:
    return r.system.signal_strength if r.system else None


# Orden fijo: el modelo entrenado depende de él
FEATURES: Tuple[Tuple[str, Callable[[TelemetryRecord], Optional[float]]], ...] = (
    ("battery.voltage.total", _voltage_total),
    ("battery.current", _current),
    ("battery.temperature.average", _temperature_avg),
    ("battery.soc", _soc),
    ("battery.soh", _soh),
    ("battery.cycleCount", _cycle_count),
    ("system.cpuTemperature", _cpu_temperature),
    ("system.signalStrength", _signal_strength),
)

FEATURE_NAMES: List[str] = [name for name, _ in FEATURES]


def feature_vector(record: TelemetryRecord) -> List[float]:
    """Valores faltantes -> 0."""
    out = []
    for _, extract in FEATURES:
        value = extract(record)
        out.append(float(value) if value is not None else 0.0)
    return out


def build_feature_matrix(records: Sequence[TelemetryRecord], window_length: int) -> np.ndarray:
    """Matriz [W, F] con los W records más recientes, en orden ascendente.

    Raises:
        ValueError: si hay menos de ``window_length`` records
    """
    if len(records) < window_length:
        raise ValueError(f"Not enough data for prediction. Need {window_length}, got {len(records)}")

    ordered = sorted(records, key=lambda r: r.timestamp)
    recent = ordered[-window_length:]
    return np.asarray([feature_vector(r) for r in recent], dtype=float)
