"""Webhook opcional para alertas críticas nuevas.

Si ``ALERT_PUSH_URL`` está configurada, cada alerta crítica recién creada se
envía por POST (JSON) a esa URL; el receptor decide cómo notificar (push
móvil, pager, chat). No bloquea la ingesta: el AlertEngine lo dispara en
background y un fallo solo se loguea.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import requests

from ..schemas import Alert, utcnow

logger = logging.getLogger(__name__)

EVENT_CRITICAL_ALERT = "critical_alert"


class PushNotifier:
    def __init__(
        self,
        url: str,
        token: str = "",
        *,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self._url = url
        self._token = token
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def url(self) -> str:
        return self._url

    def _headers(self) -> dict:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    def trigger(self, alert: Alert) -> bool:
        body = {
            "event": EVENT_CRITICAL_ALERT,
            "alert": alert.to_document(),
            "sentAt": utcnow().isoformat(),
        }
        try:
            response = self._session.post(
                self._url,
                json=body,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.error("[PUSH] Webhook error alertId=%s: %s", alert.id, e)
            return False

        if not response.ok:
            logger.warning("[PUSH] Webhook rejected alertId=%s: %s %s", alert.id, response.status_code, response.text)
            return False
        logger.info("[PUSH] Critical alert sent alertId=%s", alert.id)
        return True

    async def notify(self, alert: Alert) -> bool:
        return await asyncio.to_thread(self.trigger, alert)
