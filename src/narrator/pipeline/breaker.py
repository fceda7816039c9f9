"""Circuit breaker guarding webhook delivery.

After ``failure_threshold`` consecutive failed deliveries the breaker opens
and rejects deliveries outright. Once ``cooldown_seconds`` have passed since
the last failure, up to ``max_half_open_attempts`` single probe deliveries
are let through per open period. A successful delivery closes the breaker
and clears all counters.

Outcomes are reported once per delivery sequence, not once per HTTP attempt.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

import structlog

logger = structlog.get_logger()

__all__ = ["BreakerState", "CircuitBreaker", "CircuitBreakerState", "Permission"]


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class CircuitBreakerState:
    consecutive_failures: int = 0
    last_failure_time: float | None = None
    is_open: bool = False
    half_open_probes_used: int = 0


@dataclass(frozen=True)
class Permission:
    allowed: bool
    state: BreakerState


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown_seconds: float = 300.0,
        max_half_open_attempts: int = 3,
        clock: Callable[[], float] = time.time,
    ):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.max_half_open_attempts = max_half_open_attempts
        self._clock = clock
        self._state = CircuitBreakerState()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: dict, clock: Callable[[], float] = time.time) -> CircuitBreaker:
        """Build from the ``circuit_breaker`` section of settings.yaml."""
        return cls(
            failure_threshold=config.get("failure_threshold", 5),
            cooldown_seconds=config.get("cooldown_seconds", 300.0),
            max_half_open_attempts=config.get("max_half_open_attempts", 3),
            clock=clock,
        )

    def now(self) -> float:
        return self._clock()

    def snapshot(self) -> CircuitBreakerState:
        """Copy of the current state, safe to read without holding the lock."""
        with self._lock:
            return replace(self._state)

    def seconds_until_retry(self) -> float:
        with self._lock:
            if not self._state.is_open or self._state.last_failure_time is None:
                return 0.0
            elapsed = self._clock() - self._state.last_failure_time
            return max(0.0, self.cooldown_seconds - elapsed)

    def probes_remaining(self) -> int:
        with self._lock:
            return max(0, self.max_half_open_attempts - self._state.half_open_probes_used)

    def is_allowed(self) -> Permission:
        """Decide whether one delivery may go out now.

        Each call made after the cooldown consumes one half-open probe.
        """
        with self._lock:
            state = self._state
            if not state.is_open:
                return Permission(True, BreakerState.CLOSED)

            elapsed = self._clock() - (state.last_failure_time or 0.0)
            if elapsed >= self.cooldown_seconds and state.half_open_probes_used < self.max_half_open_attempts:
                state.half_open_probes_used += 1
                logger.info(
                    "circuit_half_open_probe",
                    probe=state.half_open_probes_used,
                    max_probes=self.max_half_open_attempts,
                )
                return Permission(True, BreakerState.HALF_OPEN)

            return Permission(False, BreakerState.OPEN)

    def report_outcome(self, success: bool) -> None:
        with self._lock:
            state = self._state
            if success:
                if state.consecutive_failures or state.is_open:
                    logger.info("circuit_closed", previous_failures=state.consecutive_failures)
                self._state = CircuitBreakerState()
                return

            state.consecutive_failures += 1
            state.last_failure_time = self._clock()
            if state.consecutive_failures >= self.failure_threshold:
                if not state.is_open:
                    logger.warning(
                        "circuit_opened",
                        failures=state.consecutive_failures,
                        cooldown_seconds=self.cooldown_seconds,
                    )
                state.is_open = True

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitBreakerState()
        logger.info("circuit_reset")
