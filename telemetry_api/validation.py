"""Validación de payloads de telemetría.

Se ejecuta ANTES de cualquier escritura: si falla, el pipeline no corre.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Union

import pydantic

from .errors import ValidationError
from .schemas import TelemetryRecord, utcnow

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("deviceId", "batteryId")

TelemetryPayload = Union[TelemetryRecord, Mapping[str, Any]]


def _format_error(exc: pydantic.ValidationError) -> tuple[str, Optional[str]]:
    first = exc.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ()))
    return f"Invalid {field or 'payload'}: {first.get('msg', 'invalid value')}", field or None


def validate_telemetry(
    payload: TelemetryPayload,
    *,
    received_at: Optional[datetime] = None,
    index: Optional[int] = None,
) -> TelemetryRecord:
    """Valida un payload y devuelve el TelemetryRecord canónico.

    Args:
        payload: dict en formato del contrato (camelCase) o un record ya construido
        received_at: timestamp de recepción, usado si el payload no trae ``timestamp``
        index: posición dentro de un batch (solo para el mensaje de error)

    Raises:
        ValidationError: si falta un campo requerido o hay valores fuera de rango
    """
    if isinstance(payload, TelemetryRecord):
        return payload

    if not isinstance(payload, Mapping):
        raise ValidationError("Payload must be an object", index=index)

    for field in REQUIRED_FIELDS:
        if not payload.get(field):
            raise ValidationError(f"Missing required field: {field}", field=field, index=index)

    data = dict(payload)
    if data.get("timestamp") is None:
        data["timestamp"] = received_at or utcnow()

    try:
        return TelemetryRecord.model_validate(data)
    except pydantic.ValidationError as e:
        message, field = _format_error(e)
        logger.debug("[VALIDATION] rejected device=%s err=%s", data.get("deviceId"), message)
        raise ValidationError(message, field=field, index=index) from e


def validate_batch(
    payloads: Iterable[TelemetryPayload],
    *,
    received_at: Optional[datetime] = None,
) -> List[TelemetryRecord]:
    """Valida todas las entradas de un batch; cualquier fallo rechaza el batch completo."""
    entries = list(payloads)
    if not entries:
        raise ValidationError("Invalid batch data format: batch is empty")

    received_at = received_at or utcnow()
    return [
        validate_telemetry(entry, received_at=received_at, index=i)
        for i, entry in enumerate(entries)
    ]
