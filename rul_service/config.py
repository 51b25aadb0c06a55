from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from common.config import DEFAULT_FLEET_FALLBACK, Settings


@dataclass(frozen=True)
class RulConfig:
    """Parámetros del motor de RUL.

    ``scale_days`` y los umbrales son heurísticos heredados del modelo de
    producción; se exponen como configuración, no como reglas fijas.
    """

    window_length: int = 50
    scale_days: float = 365.0
    critical_days: float = 30.0
    warning_days: float = 90.0
    good_days: float = 180.0
    model_path: str = "models/rul_model.joblib"
    fleet_fallback_ids: Tuple[str, ...] = DEFAULT_FLEET_FALLBACK

    @property
    def fetch_limit(self) -> int:
        # Se piden 2W para tener margen si hay huecos
        return self.window_length * 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "RulConfig":
        return cls(
            window_length=settings.rul_window_length,
            scale_days=settings.rul_scale_days,
            critical_days=settings.rul_critical_days,
            warning_days=settings.rul_warning_days,
            good_days=settings.rul_good_days,
            model_path=settings.rul_model_path,
            fleet_fallback_ids=settings.fleet_fallback_battery_ids,
        )


DEFAULT_RUL_CONFIG = RulConfig()
