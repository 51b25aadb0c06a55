"""Umbrales de alerta por dispositivo.

El documento de configuración lo mantiene el colaborador de gestión de
dispositivos (formato ``{"alerts": {...}, "geofence": {...}}``); el core solo
lo lee. Cada dimensión es un struct opcional: ``None`` = no configurada.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import text
from sqlalchemy.engine import Engine

from .storage.interfaces import HotCache, device_config_key

logger = logging.getLogger(__name__)


class _Dimension(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class RangeThreshold(_Dimension):
    min: Optional[float] = None
    max: Optional[float] = None


class TemperatureThreshold(RangeThreshold):
    critical_max: Optional[float] = Field(default=None, alias="criticalMax")


class SocThreshold(_Dimension):
    min: Optional[float] = None
    critical_min: Optional[float] = Field(default=None, alias="criticalMin")


class MinThreshold(_Dimension):
    min: Optional[float] = None


class GeofenceConfig(_Dimension):
    enabled: bool = False
    center: Optional[List[float]] = None  # [longitude, latitude]
    radius_meters: Optional[float] = Field(default=None, alias="radius", gt=0)

    @field_validator("center")
    @classmethod
    def _two_coordinates(cls, v):
        if v is not None and len(v) != 2:
            raise ValueError("geofence center must be [longitude, latitude]")
        return v

    @property
    def active(self) -> bool:
        return self.enabled and self.center is not None and self.radius_meters is not None


# (atributo, clave en el documento, modelo)
_ALERT_DIMENSIONS = (
    ("voltage", "voltage", RangeThreshold),
    ("temperature", "temperature", TemperatureThreshold),
    ("soc", "soc", SocThreshold),
    ("device_battery", "deviceBattery", MinThreshold),
    ("signal_strength", "signalStrength", MinThreshold),
)


class ThresholdConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    voltage: Optional[RangeThreshold] = None
    temperature: Optional[TemperatureThreshold] = None
    soc: Optional[SocThreshold] = None
    device_battery: Optional[MinThreshold] = None
    signal_strength: Optional[MinThreshold] = None
    geofence: Optional[GeofenceConfig] = None

    @classmethod
    def from_document(cls, doc: Optional[Mapping[str, Any]], device_id: str = "?") -> Optional["ThresholdConfig"]:
        """Parsea el documento de config dimensión por dimensión.

        Una dimensión malformada se loggea y queda sin configurar; el resto
        sigue activo.
        """
        if not doc:
            return None

        alerts = doc.get("alerts") or {}
        if not isinstance(alerts, Mapping):
            logger.warning("[ALERTS] Malformed alerts config device=%s; ignoring", device_id)
            alerts = {}

        parsed: Dict[str, Any] = {}
        sources = [(attr, alerts.get(key), model) for attr, key, model in _ALERT_DIMENSIONS]
        sources.append(("geofence", doc.get("geofence"), GeofenceConfig))

        for attr, raw, model in sources:
            if raw is None:
                continue
            # radiusMeters es el nombre del contrato; el documento histórico usa radius
            if attr == "geofence" and isinstance(raw, Mapping) and "radiusMeters" in raw:
                raw = {**raw, "radius": raw["radiusMeters"]}
            try:
                parsed[attr] = model.model_validate(raw)
            except pydantic.ValidationError as e:
                logger.warning(
                    "[ALERTS] Malformed threshold dimension=%s device=%s: %s",
                    attr,
                    device_id,
                    e.errors()[0].get("msg") if e.errors() else e,
                )

        if not parsed:
            return None
        return cls(**parsed)


class ThresholdStore(ABC):
    """Resuelve la configuración de umbrales vigente de un device (solo lectura)."""

    @abstractmethod
    def get_thresholds(self, device_id: str) -> Optional[ThresholdConfig]:
        pass


class StaticThresholdStore(ThresholdStore):
    """Mapping fijo device_id -> config (tests, despliegues sin gestión de devices)."""

    def __init__(self, configs: Optional[Mapping[str, ThresholdConfig]] = None):
        self._configs: Dict[str, ThresholdConfig] = dict(configs or {})

    def set(self, device_id: str, config: Optional[ThresholdConfig]) -> None:
        if config is None:
            self._configs.pop(device_id, None)
        else:
            self._configs[device_id] = config

    def get_thresholds(self, device_id: str) -> Optional[ThresholdConfig]:
        return self._configs.get(device_id)


class SqlThresholdStore(ThresholdStore):
    """Lee el documento JSON de ``device_configs``."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def get_document(self, device_id: str) -> Optional[Dict[str, Any]]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT config FROM device_configs WHERE device_id = :device_id"),
                {"device_id": device_id},
            ).fetchone()
        if not row or row[0] is None:
            return None
        raw = row[0]
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except ValueError:
                logger.warning("[ALERTS] Unparseable config document device=%s", device_id)
                return None
        return raw if isinstance(raw, dict) else None

    def get_thresholds(self, device_id: str) -> Optional[ThresholdConfig]:
        return ThresholdConfig.from_document(self.get_document(device_id), device_id)


class CachedThresholdStore(ThresholdStore):
    """Cachea el documento crudo en la HotCache (``device:<id>:config``).

    Un fallo de la cache no impide leer del origen.
    """

    def __init__(self, origin: SqlThresholdStore, cache: HotCache, ttl_seconds: int = 86400):
        self._origin = origin
        self._cache = cache
        self._ttl = ttl_seconds

    def get_thresholds(self, device_id: str) -> Optional[ThresholdConfig]:
        key = device_config_key(device_id)
        doc = None
        try:
            doc = self._cache.get(key)
        except Exception as e:
            logger.warning("[ALERTS] Config cache read failed device=%s: %s", device_id, e)

        if doc is None:
            doc = self._origin.get_document(device_id)
            if doc is not None:
                try:
                    self._cache.set(key, doc, self._ttl)
                except Exception as e:
                    logger.warning("[ALERTS] Config cache write failed device=%s: %s", device_id, e)

        return ThresholdConfig.from_document(doc, device_id)

    def invalidate(self, device_id: str) -> None:
        self._cache.delete(device_config_key(device_id))
