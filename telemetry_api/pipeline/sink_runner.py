"""Ejecuta llamadas síncronas a adaptadores en un worker thread con timeout.

Cada sink tiene su CircuitBreaker. Cualquier fallo, timeout o circuito
abierto se traduce en SinkUnavailable.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional, TypeVar

from ..errors import SinkUnavailable
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerOpen

logger = logging.getLogger(__name__)

T = TypeVar("T")

SINK_PRIMARY = "primary"
SINK_TIMESERIES = "timeseries"
SINK_CACHE = "cache"
SINK_THRESHOLDS = "thresholds"
SINK_ALERTS = "alerts"

DEFAULT_SINKS = (SINK_PRIMARY, SINK_TIMESERIES, SINK_CACHE, SINK_THRESHOLDS, SINK_ALERTS)


def deadline_in(seconds: float) -> float:
    """Deadline absoluto (reloj monotónico) a ``seconds`` desde ahora."""
    return time.monotonic() + seconds


class SinkRunner:
    def __init__(
        self,
        timeout_seconds: float = 3.0,
        breaker_config: Optional[CircuitBreakerConfig] = None,
        sinks: Iterable[str] = DEFAULT_SINKS,
    ):
        self._timeout = timeout_seconds
        self._breakers: Dict[str, CircuitBreaker] = {
            name: CircuitBreaker(name, breaker_config) for name in sinks
        }

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def breaker(self, sink: str) -> CircuitBreaker:
        if sink not in self._breakers:
            self._breakers[sink] = CircuitBreaker(sink)
        return self._breakers[sink]

    def breaker_stats(self) -> Dict[str, dict]:
        return {name: cb.get_stats() for name, cb in self._breakers.items()}

    def budget(self, deadline: Optional[float]) -> float:
        """min(timeout del sink, tiempo restante hasta el deadline)."""
        if deadline is None:
            return self._timeout
        return min(self._timeout, deadline - time.monotonic())

    async def run(
        self,
        sink: str,
        func: Callable[..., T],
        *args: Any,
        deadline: Optional[float] = None,
    ) -> T:
        budget = self.budget(deadline)
        if budget <= 0:
            raise SinkUnavailable(sink, "deadline exceeded before call")

        cb = self.breaker(sink)
        try:
            cb.before_call()
        except CircuitBreakerOpen as e:
            raise SinkUnavailable(sink, str(e)) from e

        try:
            result = await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=budget)
        except asyncio.TimeoutError as e:
            cb.record_failure(e)
            raise SinkUnavailable(sink, f"timed out after {budget:.2f}s") from e
        except Exception as e:
            cb.record_failure(e)
            raise SinkUnavailable(sink, f"{type(e).__name__}: {e}") from e

        cb.record_success()
        return result
