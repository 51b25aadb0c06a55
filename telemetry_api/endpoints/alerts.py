from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from ..factory import Services
from .deps import get_services

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.get("/device/{device_id}")
def alerts_for_device(
    device_id: str,
    status: Optional[str] = Query(None, pattern="^(active|acknowledged|resolved)$"),
    limit: int = Query(100, ge=1, le=1000),
    services: Services = Depends(get_services),
):
    alerts = services.alerts.for_device(device_id, status=status, limit=limit)
    return {"success": True, "count": len(alerts), "data": [a.to_document() for a in alerts]}


@router.get("/critical")
def critical_alerts(
    limit: int = Query(100, ge=1, le=1000),
    services: Services = Depends(get_services),
):
    alerts = services.alerts.critical(limit=limit)
    return {"success": True, "count": len(alerts), "data": [a.to_document() for a in alerts]}


@router.get("/{alert_id}")
def get_alert(alert_id: str, services: Services = Depends(get_services)):
    return {"success": True, "data": services.alerts.get(alert_id).to_document()}


@router.post("/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: str,
    body: Optional[Dict[str, Any]] = Body(None),
    services: Services = Depends(get_services),
):
    by = (body or {}).get("acknowledgedBy")
    alert = await services.alerts.acknowledge(alert_id, by=by)
    return {"success": True, "message": "Alert acknowledged", "data": alert.to_document()}


@router.post("/{alert_id}/resolve")
async def resolve_alert(
    alert_id: str,
    body: Optional[Dict[str, Any]] = Body(None),
    services: Services = Depends(get_services),
):
    body = body or {}
    alert = await services.alerts.resolve(
        alert_id, by=body.get("resolvedBy"), resolution=body.get("resolution")
    )
    return {"success": True, "message": "Alert resolved", "data": alert.to_document()}
