"""Health endpoint: contadores de ingesta + estado de los circuit breakers."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..factory import Services
from .deps import get_services

router = APIRouter(tags=["health"])


@router.get("/health")
def health(services: Services = Depends(get_services)):
    breakers = services.runner.breaker_stats()
    degraded = [name for name, cb in breakers.items() if cb["state"] != "closed"]
    return {
        "status": "degraded" if degraded else "ok",
        "degraded_sinks": degraded,
        "ingestion": services.stats.to_dict(),
        "circuit_breakers": breakers,
        "predictive_model": "trained" if services.predictive.uses_trained_model else "heuristic",
        "redis": None if services.redis is None else services.redis.ping(),
    }
