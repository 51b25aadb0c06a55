"""Circuit breaker por sink secundario.

CLOSED   -> cuenta fallos consecutivos; al llegar a ``failure_threshold`` abre.
OPEN     -> el sink se salta sin llamarlo hasta ``recovery_timeout_seconds``.
HALF_OPEN -> deja pasar llamadas de prueba; ``success_threshold`` éxitos
             seguidos lo cierran, un fallo lo reabre.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, TypeVar

from common.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout_seconds: float = 30.0
    success_threshold: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout_seconds=settings.cb_recovery_timeout_seconds,
            success_threshold=settings.cb_success_threshold,
        )


class CircuitBreakerOpen(Exception):
    def __init__(self, sink: str, retry_in: float):
        self.sink = sink
        self.retry_in = retry_in
        super().__init__(f"Circuit for sink '{sink}' is OPEN (retry in {retry_in:.1f}s)")


class CircuitBreaker:
    """Estado de salud de un sink. Thread-safe: los sinks corren en ``to_thread``.

    El SinkRunner hace ``before_call`` / ``record_success`` / ``record_failure``
    alrededor de cada escritura; ``call`` es el atajo síncrono.
    """

    def __init__(
        self,
        sink: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = sink
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._probe_successes = 0
        self._opened_at: Optional[float] = None
        self._times_opened = 0
        self._last_error: Optional[str] = None

    # --- transiciones (llamar con el lock tomado) --------------------------

    def _move_to(self, state: CircuitState, why: str) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        if state == CircuitState.OPEN:
            self._opened_at = self._clock()
            self._times_opened += 1
            logger.warning("[CB] sink=%s %s -> OPEN (%s)", self.name, previous.value.upper(), why)
        else:
            if state == CircuitState.CLOSED:
                self._consecutive_failures = 0
                self._opened_at = None
            self._probe_successes = 0
            logger.info("[CB] sink=%s %s -> %s (%s)", self.name, previous.value.upper(), state.value.upper(), why)

    def _refresh(self) -> None:
        if self._state == CircuitState.OPEN and self._retry_in() <= 0:
            self._move_to(CircuitState.HALF_OPEN, "recovery timeout elapsed")

    def _retry_in(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self._config.recovery_timeout_seconds - (self._clock() - self._opened_at))

    # --- API -----------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def before_call(self) -> None:
        """Raises CircuitBreakerOpen si el sink debe saltarse."""
        with self._lock:
            self._refresh()
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerOpen(self.name, self._retry_in())

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._probe_successes += 1
                if self._probe_successes >= self._config.success_threshold:
                    self._move_to(CircuitState.CLOSED, f"{self._probe_successes} probe writes ok")
            else:
                self._consecutive_failures = 0

    def record_failure(self, error: BaseException) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_error = f"{type(error).__name__}: {error}"[:200]
            if self._state == CircuitState.HALF_OPEN:
                self._move_to(CircuitState.OPEN, "probe failed")
            elif self._consecutive_failures >= self._config.failure_threshold:
                self._move_to(CircuitState.OPEN, f"{self._consecutive_failures} consecutive failures")

    def call(self, func: Callable[[], T]) -> T:
        self.before_call()
        try:
            result = func()
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._move_to(CircuitState.CLOSED, "manual reset")
            self._consecutive_failures = 0

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            self._refresh()
            return {
                "sink": self.name,
                "state": self._state.value,
                "failure_count": self._consecutive_failures,
                "times_opened": self._times_opened,
                "retry_in_seconds": round(self._retry_in(), 1) if self._state == CircuitState.OPEN else None,
                "last_error": self._last_error,
            }
