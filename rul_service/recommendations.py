"""Recomendaciones de mantenimiento derivadas de una PredictionResult.

Función pura: mismas entradas -> misma lista, en orden de inserción.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List

from .schemas import (
    PredictionResult,
    Recommendation,
    RecommendationAction,
    RecommendationPriority,
    RulStatus,
)

HIGH_TEMPERATURE_C = 35
LOW_SOH_PERCENT = 80
HIGH_CYCLE_COUNT = 500


def _rec(
    now: datetime,
    priority: RecommendationPriority,
    action: RecommendationAction,
    description: str,
    days: int,
) -> Recommendation:
    return Recommendation(
        priority=priority,
        action=action,
        description=description,
        deadline=now + timedelta(days=days),
    )


def recommendations_for(prediction: PredictionResult, now: datetime) -> List[Recommendation]:
    status = prediction.remaining_useful_life.status
    health = prediction.battery_health
    out: List[Recommendation] = []

    if status == RulStatus.CRITICAL:
        out.append(_rec(
            now, RecommendationPriority.HIGH, RecommendationAction.REPLACE,
            "Battery replacement recommended within 30 days", 30,
        ))
    elif status == RulStatus.WARNING:
        out.append(_rec(
            now, RecommendationPriority.MEDIUM, RecommendationAction.INSPECT,
            "Schedule battery inspection within 30 days", 30,
        ))

    if health.temperature is not None and health.temperature > HIGH_TEMPERATURE_C:
        out.append(_rec(
            now, RecommendationPriority.MEDIUM, RecommendationAction.COOLING,
            "Battery temperature is high. Improve cooling or reduce load.", 7,
        ))

    if health.soh is not None and health.soh < LOW_SOH_PERCENT:
        out.append(_rec(
            now, RecommendationPriority.MEDIUM, RecommendationAction.MONITOR,
            "Battery health below 80%. Increase monitoring frequency.", 14,
        ))

    if health.cycle_count is not None and health.cycle_count > HIGH_CYCLE_COUNT:
        out.append(_rec(
            now, RecommendationPriority.LOW, RecommendationAction.CAPACITY_TEST,
            "High cycle count. Schedule capacity test.", 60,
        ))

    return out
