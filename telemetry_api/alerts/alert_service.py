"""Acciones externas sobre alertas: acknowledge / resolve y consultas.

Las alertas nunca se borran; solo cambian de estado.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from ..errors import NotFound
from ..fanout.bus import GLOBAL_ROOM, FanOutBus
from ..schemas import Alert, AlertSeverity, AlertStatus, utcnow
from ..storage.interfaces import AlertFilter, HotCache, PrimaryStore, alert_key
from .alert_engine import alert_event_payload

logger = logging.getLogger(__name__)

EVENT_ALERT_RESOLVED = "alert_resolved"
EVENT_ALERT_ACKNOWLEDGED = "alert_acknowledged"
DEFAULT_RESOLUTION = "Resolved without notes"


class AlertService:
    def __init__(
        self,
        store: PrimaryStore,
        cache: HotCache,
        bus: FanOutBus,
        *,
        alert_ttl_seconds: int = 86400,
    ):
        self._store = store
        self._cache = cache
        self._bus = bus
        self._alert_ttl = alert_ttl_seconds

    def _refresh_cache(self, alert: Alert) -> None:
        try:
            self._cache.set(alert_key(alert.id), alert.to_document(), self._alert_ttl)
        except Exception as e:
            logger.warning("[ALERTS] Alert cache write failed id=%s: %s", alert.id, e)

    def get(self, alert_id: str) -> Alert:
        """HotCache primero, PrimaryStore como respaldo."""
        try:
            cached = self._cache.get(alert_key(alert_id))
        except Exception as e:
            logger.warning("[ALERTS] Alert cache read failed id=%s: %s", alert_id, e)
            cached = None
        if cached is not None:
            return Alert.model_validate(cached)

        alert = self._store.find_alert(alert_id)
        if alert is None:
            raise NotFound("alert", alert_id)
        return alert

    async def acknowledge(self, alert_id: str, by: Optional[str] = None) -> Alert:
        alert = self._store.update_alert(
            alert_id,
            {
                "status": AlertStatus.ACKNOWLEDGED,
                "acknowledged_at": utcnow(),
                "acknowledged_by": by,
            },
        )
        if alert is None:
            raise NotFound("alert", alert_id)
        self._refresh_cache(alert)
        await self._announce(EVENT_ALERT_ACKNOWLEDGED, alert)
        logger.info("[ALERTS] Acknowledged id=%s by=%s", alert_id, by)
        return alert

    async def resolve(
        self,
        alert_id: str,
        by: Optional[str] = None,
        resolution: Optional[str] = None,
    ) -> Alert:
        alert = self._store.update_alert(
            alert_id,
            {
                "status": AlertStatus.RESOLVED,
                "resolved_at": utcnow(),
                "resolved_by": by,
                "resolution": resolution or DEFAULT_RESOLUTION,
            },
        )
        if alert is None:
            raise NotFound("alert", alert_id)
        self._refresh_cache(alert)
        await self._announce(EVENT_ALERT_RESOLVED, alert)
        logger.info("[ALERTS] Resolved id=%s by=%s", alert_id, by)
        return alert

    async def _announce(self, event: str, alert: Alert) -> None:
        try:
            await self._bus.publish(GLOBAL_ROOM, event, alert_event_payload(alert))
        except Exception:
            logger.exception("[FANOUT] %s publish failed id=%s", event, alert.id)

    def active_for_device(self, device_id: str, limit: int = 100) -> List[Alert]:
        return self._store.find_alerts(
            AlertFilter(device_id=device_id, status=AlertStatus.ACTIVE.value), limit=limit
        )

    def active_for_battery(self, battery_id: str, limit: int = 100) -> List[Alert]:
        return self._store.find_alerts(
            AlertFilter(battery_id=battery_id, status=AlertStatus.ACTIVE.value), limit=limit
        )

    def critical(self, limit: int = 100) -> List[Alert]:
        return self._store.find_alerts(
            AlertFilter(status=AlertStatus.ACTIVE.value, severity=AlertSeverity.CRITICAL.value),
            limit=limit,
        )

    def for_device(self, device_id: str, status: Optional[str] = None, limit: int = 100) -> List[Alert]:
        return self._store.find_alerts(AlertFilter(device_id=device_id, status=status), limit=limit)
