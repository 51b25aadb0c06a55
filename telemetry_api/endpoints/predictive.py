from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ..factory import Services
from .deps import get_services

router = APIRouter(prefix="/predictive", tags=["predictive"])


@router.get("/battery/{battery_id}/prediction")
def battery_prediction(battery_id: str, services: Services = Depends(get_services)):
    prediction = services.predictive.predict(battery_id)
    return {"success": True, "prediction": prediction.to_document()}


@router.get("/battery/{battery_id}/recommendations")
def battery_recommendations(battery_id: str, services: Services = Depends(get_services)):
    report = services.predictive.recommend(battery_id)
    return {"success": True, **report.to_document()}


@router.get("/fleet/overview")
def fleet_overview(
    limit: int = Query(10, ge=1, le=100),
    services: Services = Depends(get_services),
):
    overview = services.predictive.fleet_overview(limit=limit)
    return {"success": True, "fleetOverview": overview.to_document()}
