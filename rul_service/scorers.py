"""Scorers de RUL: modelo entrenado o heurística de arranque en frío.

Se elige el scorer al construir el engine; el engine cae a la heurística si
el scorer entrenado falla en runtime.
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import joblib
import numpy as np

from telemetry_api.errors import ModelUnavailable

logger = logging.getLogger(__name__)

HEURISTIC_MIN_DAYS = 30
HEURISTIC_MAX_DAYS = 365


@dataclass(frozen=True)
class SyntheticHealth:
    soh: float
    cycle_count: int
    temperature: float


class Scorer(ABC):
    name: str = "scorer"

    @abstractmethod
    def score(self, window: Optional[np.ndarray]) -> float:
        """Devuelve la vida útil restante estimada en días."""
        pass


class TrainedScorer(Scorer):
    """Regresor serializado con joblib (cualquier estimador con ``predict``).

    El modelo recibe la ventana [W, F] aplanada y devuelve un valor
    normalizado que se escala a días.
    """

    name = "model"

    def __init__(self, model: Any, scale_days: float = 365.0):
        if not hasattr(model, "predict"):
            raise ModelUnavailable("loaded object has no predict()")
        self._model = model
        self._scale = scale_days

    def score(self, window: Optional[np.ndarray]) -> float:
        if window is None:
            raise ModelUnavailable("trained scorer needs a feature window")
        try:
            raw = self._model.predict(np.asarray(window, dtype=float).reshape(1, -1))
            value = float(np.ravel(raw)[0])
        except Exception as e:
            raise ModelUnavailable(f"model scoring failed: {e}") from e
        if not np.isfinite(value):
            raise ModelUnavailable(f"model returned non-finite value: {value}")
        return value * self._scale


class HeuristicScorer(Scorer):
    """RUL uniforme en [30, 365] días; ignora la ventana."""

    name = "heuristic"

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def score(self, window: Optional[np.ndarray] = None) -> float:
        return float(self._rng.randint(HEURISTIC_MIN_DAYS, HEURISTIC_MAX_DAYS))

    def synthesize_health(self) -> SyntheticHealth:
        return SyntheticHealth(
            soh=self._rng.uniform(80, 100),
            cycle_count=self._rng.randrange(0, 500),
            temperature=self._rng.uniform(25, 35),
        )


def load_scorer(path: str, scale_days: float = 365.0) -> TrainedScorer:
    """Carga el modelo entrenado.

    Raises:
        ModelUnavailable: si el fichero no existe o no se puede deserializar
    """
    model_path = Path(path)
    if not model_path.exists():
        raise ModelUnavailable(f"Model file not found at {model_path}")
    try:
        model = joblib.load(model_path)
    except Exception as e:
        raise ModelUnavailable(f"Error loading model {model_path}: {e}") from e
    logger.info("[RUL] Trained model loaded from %s (%s)", model_path, type(model).__name__)
    return TrainedScorer(model, scale_days=scale_days)
