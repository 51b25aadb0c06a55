"""Taxonomía de errores del pipeline de telemetría.

- ValidationError y PrimaryWriteFailure llegan al llamador.
- SinkUnavailable y ModelUnavailable se absorben internamente (solo logs/stats).
- NotFound es exclusivo de las consultas.
"""

from __future__ import annotations

from typing import Optional


class TelemetryError(Exception):
    """Base de todos los errores del dominio."""


class ValidationError(TelemetryError):
    """Payload malformado o fuera de rango. No se escribe nada."""

    def __init__(self, message: str, field: Optional[str] = None, index: Optional[int] = None):
        self.field = field
        self.index = index
        prefix = f"entry {index}: " if index is not None else ""
        super().__init__(f"{prefix}{message}")


class SinkUnavailable(TelemetryError):
    """Un sink secundario (cache, series temporales, fan-out) falló o expiró."""

    def __init__(self, sink: str, reason: str):
        self.sink = sink
        self.reason = reason
        super().__init__(f"Sink '{sink}' unavailable: {reason}")


class PrimaryWriteFailure(TelemetryError):
    """Falló la escritura en el almacén primario: la submission entera falla."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Primary store write failed: {reason}")


class ModelUnavailable(TelemetryError):
    """El scorer entrenado no existe o falló al puntuar."""


class NotFound(TelemetryError):
    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")
