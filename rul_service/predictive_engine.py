"""Motor predictivo de vida útil restante (RUL) por batería.

Flujo de ``predict``:
1. lee hasta 2W records de la batería del PrimaryStore
2. con >= W records y scorer entrenado: ventana [W, F] -> scorer
3. si no hay datos suficientes, no hay modelo o el modelo falla: heurística
4. clasifica (CRITICAL <= 30 < WARNING <= 90 < GOOD), confianza y fecha de mantenimiento

Nunca falla por el modelo: ModelUnavailable siempre degrada a la heurística.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from telemetry_api.errors import ModelUnavailable
from telemetry_api.schemas import TelemetryRecord, utcnow
from telemetry_api.storage.interfaces import PrimaryStore, TelemetryFilter

from .config import DEFAULT_RUL_CONFIG, RulConfig
from .features import build_feature_matrix
from .recommendations import recommendations_for
from .schemas import (
    BatteryHealth,
    CriticalBattery,
    FleetOverview,
    PredictionResult,
    RecommendationReport,
    RemainingUsefulLife,
    RulStatus,
    StatusDistribution,
)
from .scorers import HeuristicScorer, Scorer, load_scorer

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def classify(days: float, config: RulConfig = DEFAULT_RUL_CONFIG) -> RulStatus:
    """El límite inferior de cada banda es inclusivo: 30 -> CRITICAL, 90 -> WARNING."""
    if days <= config.critical_days:
        return RulStatus.CRITICAL
    if days <= config.warning_days:
        return RulStatus.WARNING
    return RulStatus.GOOD


def confidence_for(days: float, config: RulConfig = DEFAULT_RUL_CONFIG) -> float:
    return min(100.0, max(0.0, days / config.good_days * 100))


class PredictiveEngine:
    def __init__(
        self,
        store: PrimaryStore,
        scorer: Optional[Scorer] = None,
        *,
        config: RulConfig = DEFAULT_RUL_CONFIG,
        heuristic: Optional[HeuristicScorer] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._config = config
        self._heuristic = heuristic or HeuristicScorer()
        # Sin scorer entrenado el engine trabaja siempre con la heurística
        self._scorer = scorer
        self._clock = clock

    @classmethod
    def from_config(cls, store: PrimaryStore, config: RulConfig, **kwargs) -> "PredictiveEngine":
        """Intenta cargar el modelo de ``config.model_path``; si no existe, heurística."""
        try:
            scorer: Optional[Scorer] = load_scorer(config.model_path, scale_days=config.scale_days)
        except ModelUnavailable as e:
            logger.warning("[RUL] %s; falling back to heuristic scorer", e)
            scorer = None
        return cls(store, scorer, config=config, **kwargs)

    @property
    def config(self) -> RulConfig:
        return self._config

    @property
    def uses_trained_model(self) -> bool:
        return self._scorer is not None

    def _recent_records(self, battery_id: str) -> List[TelemetryRecord]:
        try:
            return self._store.find_telemetry(
                TelemetryFilter.for_battery(battery_id),
                descending=True,
                limit=self._config.fetch_limit,
            )
        except Exception as e:
            logger.warning("[RUL] Telemetry read failed battery=%s: %s; using heuristic", battery_id, e)
            return []

    def _score(self, battery_id: str, records: List[TelemetryRecord]) -> tuple:
        """Devuelve (días, origen)."""
        if self._scorer is None:
            return self._heuristic.score(None), self._heuristic.name

        if len(records) < self._config.window_length:
            logger.info(
                "[RUL] Using heuristic for battery %s - insufficient telemetry (%d < %d)",
                battery_id,
                len(records),
                self._config.window_length,
            )
            return self._heuristic.score(None), self._heuristic.name

        try:
            window = build_feature_matrix(records, self._config.window_length)
            return self._scorer.score(window), self._scorer.name
        except (ModelUnavailable, ValueError) as e:
            logger.warning("[RUL] Model unavailable for battery %s: %s; using heuristic", battery_id, e)
        except Exception:
            logger.exception("[RUL] Unexpected scoring error battery=%s; using heuristic", battery_id)
        return self._heuristic.score(None), self._heuristic.name

    def _health(self, records: List[TelemetryRecord]) -> BatteryHealth:
        """Salud del record más reciente; campos ausentes se sintetizan."""
        synthetic = self._heuristic.synthesize_health()
        latest = max(records, key=lambda r: r.timestamp) if records else None
        battery = latest.battery if latest is not None else None

        soh = battery.soh if battery is not None else None
        cycles = battery.cycle_count if battery is not None else None
        temperature = (
            battery.temperature.average
            if battery is not None and battery.temperature is not None
            else None
        )
        return BatteryHealth(
            soh=soh if soh is not None else synthetic.soh,
            cycle_count=cycles if cycles is not None else synthetic.cycle_count,
            temperature=temperature if temperature is not None else synthetic.temperature,
        )

    def predict(self, battery_id: str) -> PredictionResult:
        records = self._recent_records(battery_id)
        raw_days, source = self._score(battery_id, records)
        days = max(0.0, raw_days)
        now = self._clock()

        result = PredictionResult(
            battery_id=battery_id,
            remaining_useful_life=RemainingUsefulLife(
                days=round_half_up(days),
                status=classify(days, self._config),
                confidence=round_half_up(confidence_for(days, self._config)),
            ),
            battery_health=self._health(records),
            next_maintenance_date=now + timedelta(days=days),
            timestamp=now,
            source=source,
        )
        logger.debug(
            "[RUL] battery=%s days=%.1f status=%s source=%s",
            battery_id,
            days,
            result.remaining_useful_life.status.value,
            source,
        )
        return result

    def recommend(self, battery_id: str) -> RecommendationReport:
        prediction = self.predict(battery_id)
        now = self._clock()
        return RecommendationReport(
            battery_id=battery_id,
            prediction=prediction.remaining_useful_life,
            recommendations=recommendations_for(prediction, now),
            timestamp=now,
        )

    def fleet_overview(self, limit: int = 10) -> FleetOverview:
        try:
            battery_ids = self._store.distinct_battery_ids(limit)
        except Exception as e:
            logger.warning("[RUL] Could not list batteries: %s", e)
            battery_ids = []
        if not battery_ids:
            battery_ids = list(self._config.fleet_fallback_ids)

        predictions: List[PredictionResult] = []
        for battery_id in battery_ids:
            try:
                predictions.append(self.predict(battery_id))
            except Exception:
                logger.exception("[RUL] Prediction failed battery=%s; skipped in overview", battery_id)

        distribution = StatusDistribution(
            critical=sum(1 for p in predictions if p.remaining_useful_life.status == RulStatus.CRITICAL),
            warning=sum(1 for p in predictions if p.remaining_useful_life.status == RulStatus.WARNING),
            good=sum(1 for p in predictions if p.remaining_useful_life.status == RulStatus.GOOD),
        )
        average = (
            sum(p.remaining_useful_life.days for p in predictions) / len(predictions)
            if predictions
            else 0
        )
        critical = [
            CriticalBattery(
                battery_id=p.battery_id,
                remaining_days=p.remaining_useful_life.days,
                next_maintenance_date=p.next_maintenance_date,
            )
            for p in predictions
            if p.remaining_useful_life.status == RulStatus.CRITICAL
        ]

        return FleetOverview(
            total_batteries=len(predictions),
            average_rul=round_half_up(average),
            status_distribution=distribution,
            maintenance_required=distribution.critical + distribution.warning,
            critical_batteries=critical,
            timestamp=self._clock(),
        )
