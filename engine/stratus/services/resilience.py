"""Resilience utilities for upstream calls — bounded retry, circuit breaker, error tracking."""

from __future__ import annotations

import logging
import random
import time
from collections import Counter, deque
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Callable

from .redact import mask_secrets

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Retry with exponential backoff
# ---------------------------------------------------------------------------


def call_with_retry(
    func: Callable[..., Any],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
    **kwargs: Any,
) -> Any:
    """Call *func*, retrying on *retryable_exceptions* up to *max_attempts* times.

    Exceptions outside *retryable_exceptions* propagate on the first failure.
    The last retryable exception is re-raised once attempts are exhausted.
    """
    delay = base_delay
    name = getattr(func, "__name__", repr(func))

    for attempt in range(1, max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt >= max_attempts:
                logger.error("%s failed after %d attempts: %s", name, max_attempts, e)
                raise

            actual_delay = delay
            if jitter:
                actual_delay *= 0.75 + random.random() * 0.5
            logger.warning(
                "%s attempt %d/%d failed (%s), retrying in %.1fs",
                name, attempt, max_attempts, e, actual_delay,
            )
            time.sleep(actual_delay)
            delay = min(delay * backoff_factor, max_delay)

    raise RuntimeError("call_with_retry requires max_attempts >= 1")


# ---------------------------------------------------------------------------
# Circuit Breaker
# ---------------------------------------------------------------------------


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"  # one probe call allowed


class CircuitBreakerError(Exception):
    """The breaker is open; the upstream was not called."""


class CircuitBreaker:
    """Per-gateway breaker: after repeated failures, calls fail fast without reaching the upstream.

    Only exceptions in *trips_on* count as failures. Anything else (a rejected
    credential, a parse error) propagates without touching the breaker.

    CLOSED → OPEN after *failure_threshold* consecutive failures.
    OPEN → HALF_OPEN once *reset_timeout* seconds have passed.
    HALF_OPEN → CLOSED on a successful probe, back to OPEN on a failed one.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        name: str = "upstream",
        trips_on: tuple[type[BaseException], ...] = (Exception,),
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.name = name
        self.trips_on = trips_on

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._lock = Lock()

    def _open(self, reason: str) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        logger.warning("Circuit '%s' OPEN (%s)", self.name, reason)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            if self._state is CircuitState.OPEN and time.monotonic() - self._opened_at >= self.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit '%s' HALF_OPEN, next call is a probe", self.name)
            return self._state

    def record_success(self) -> None:
        with self._lock:
            if self._state is not CircuitState.CLOSED:
                logger.info("Circuit '%s' CLOSED", self.name)
            self._state = CircuitState.CLOSED
            self._failures = 0

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._state is CircuitState.HALF_OPEN:
                self._open("probe failed")
            elif self._state is CircuitState.CLOSED and self._failures >= self.failure_threshold:
                self._open(f"{self._failures} consecutive failures")

    def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        if self.state is CircuitState.OPEN:
            raise CircuitBreakerError(
                f"{self.name} upstream circuit is OPEN; retry in up to {self.reset_timeout:.0f}s"
            )
        try:
            result = func(*args, **kwargs)
        except self.trips_on:
            self.record_failure()
            raise
        self.record_success()
        return result

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failures,
            "failure_threshold": self.failure_threshold,
            "reset_timeout": self.reset_timeout,
        }


# ---------------------------------------------------------------------------
# Error tracker
# ---------------------------------------------------------------------------


class ErrorTracker:
    """Bounded log of recent upstream and sync failures, messages masked on entry."""

    def __init__(self, max_entries: int = 500):
        self._entries: deque[dict[str, Any]] = deque(maxlen=max_entries)
        self._lock = Lock()

    def record(
        self,
        source: str,
        error: Exception,
        context: dict[str, Any] | None = None,
    ) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "source": source,
            "error_type": type(error).__name__,
            "message": mask_secrets(str(error)),
            "context": context or {},
        }
        with self._lock:
            self._entries.append(entry)

    def get_errors(self, source: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        """Newest first, optionally filtered by source (``gateway.costs``, ``sync``...)."""
        with self._lock:
            entries = list(reversed(self._entries))
        if source:
            entries = [e for e in entries if e["source"] == source]
        return entries[:limit]

    def by_source(self) -> dict[str, int]:
        with self._lock:
            return dict(Counter(e["source"] for e in self._entries))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._entries)


error_tracker = ErrorTracker()
