"""Endpoints de ingesta y consulta de telemetría."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from ..errors import ValidationError
from ..factory import Services
from .deps import get_services

router = APIRouter(prefix="/telemetry", tags=["telemetry"])


@router.post("", status_code=201)
async def submit_telemetry(
    payload: Dict[str, Any] = Body(...),
    services: Services = Depends(get_services),
):
    result = await services.pipeline.submit(payload)
    return {
        "success": True,
        "message": "Telemetry data received successfully",
        "data": {
            "accepted": result.accepted,
            "alertsRaised": result.alerts_raised,
            "alerts": [a.to_document() for a in result.alerts],
        },
    }


@router.post("/batch", status_code=201)
async def submit_batch(
    body: Dict[str, Any] = Body(...),
    services: Services = Depends(get_services),
):
    batch = body.get("telemetryBatch")
    if not isinstance(batch, list):
        raise ValidationError("Invalid batch data format: telemetryBatch must be an array")
    result = await services.pipeline.submit_batch(batch)
    return {
        "success": True,
        "message": f"Processed {result.processed_count} telemetry records",
        "data": {
            "processedCount": result.processed_count,
            "alertCount": result.alert_count,
        },
    }


def _page_response(page, skip: int, limit: int) -> dict:
    return {
        "success": True,
        "count": len(page.items),
        "total": page.total,
        "skip": skip,
        "limit": limit,
        "data": [r.to_document() for r in page.items],
    }


@router.get("/device/{device_id}")
def telemetry_by_device(
    device_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    sort: str = Query("desc", pattern="^(asc|desc)$"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    services: Services = Depends(get_services),
):
    page = services.queries.by_device(device_id, start, end, sort, skip, limit)
    return _page_response(page, skip, limit)


@router.get("/battery/{battery_id}")
def telemetry_by_battery(
    battery_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    sort: str = Query("desc", pattern="^(asc|desc)$"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    services: Services = Depends(get_services),
):
    page = services.queries.by_battery(battery_id, start, end, sort, skip, limit)
    return _page_response(page, skip, limit)


@router.get("/latest/{kind}/{entity_id}")
def latest_telemetry(kind: str, entity_id: str, services: Services = Depends(get_services)):
    if kind == "device":
        record = services.queries.latest(device_id=entity_id)
    elif kind == "battery":
        record = services.queries.latest(battery_id=entity_id)
    else:
        raise HTTPException(status_code=404, detail=f"unknown kind: {kind}")
    return {"success": True, "data": record.to_document()}


@router.get("/stats")
def telemetry_stats(
    batteryId: Optional[str] = None,
    deviceId: Optional[str] = None,
    period: str = "24h",
    services: Services = Depends(get_services),
):
    stats = services.queries.stats(battery_id=batteryId, device_id=deviceId, period=period)
    return {
        "success": True,
        "period": period,
        "stats": None if stats.count == 0 else {
            "count": stats.count,
            "avgVoltage": stats.avg_voltage,
            "minVoltage": stats.min_voltage,
            "maxVoltage": stats.max_voltage,
            "avgCurrent": stats.avg_current,
            "minCurrent": stats.min_current,
            "maxCurrent": stats.max_current,
            "avgTemperature": stats.avg_temperature,
            "minTemperature": stats.min_temperature,
            "maxTemperature": stats.max_temperature,
            "avgSoc": stats.avg_soc,
            "minSoc": stats.min_soc,
            "maxSoc": stats.max_soc,
            "firstTimestamp": stats.first_timestamp.isoformat() if stats.first_timestamp else None,
            "lastTimestamp": stats.last_timestamp.isoformat() if stats.last_timestamp else None,
        },
    }


# --- históricos agregados -----------------------------------------------------

_HISTORY_KINDS = {
    "voltage": "voltage_history",
    "temperature": "temperature_history",
    "soc": "soc_history",
}


@router.get("/battery/{battery_id}/history/{kind}")
def battery_history(
    battery_id: str,
    kind: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    interval: str = "1h",
    services: Services = Depends(get_services),
):
    method = _HISTORY_KINDS.get(kind)
    if method is None:
        raise HTTPException(status_code=404, detail=f"unknown history: {kind}")
    points = getattr(services.queries, method)(battery_id, start, end, interval=interval)
    return {"success": True, "count": len(points), "data": points}


@router.get("/device/{device_id}/history/location")
def location_history(
    device_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    services: Services = Depends(get_services),
):
    points = services.queries.location_history(device_id, start, end)
    return {"success": True, "count": len(points), "data": points}
