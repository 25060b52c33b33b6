"""Tests for stratus.services.resilience — bounded retry, circuit breaker, error tracker."""

import time

import pytest

from stratus.gateways.base import (
    SubscriptionGateway,
    TransientUpstreamError,
    UpstreamAuthError,
)
from stratus.gateways.rows import SubscriptionRow
from stratus.services.resilience import (
    CircuitBreaker,
    CircuitBreakerError,
    CircuitState,
    ErrorTracker,
    call_with_retry,
    error_tracker,
)


# ── Retry ─────────────────────────────────────────────────────────────────


class TestCallWithRetry:
    def test_succeeds_first_try(self):
        calls = []

        def succeed():
            calls.append(1)
            return "ok"

        assert call_with_retry(succeed, max_attempts=3, base_delay=0.01) == "ok"
        assert len(calls) == 1

    def test_retries_transient_then_succeeds(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise TransientUpstreamError("429")
            return "recovered"

        result = call_with_retry(
            flaky, max_attempts=3, base_delay=0.001, jitter=False,
            retryable_exceptions=(TransientUpstreamError,),
        )
        assert result == "recovered"
        assert len(calls) == 3

    def test_raises_after_max_attempts(self):
        def always_fail():
            raise TransientUpstreamError("still down")

        with pytest.raises(TransientUpstreamError, match="still down"):
            call_with_retry(
                always_fail, max_attempts=2, base_delay=0.001,
                retryable_exceptions=(TransientUpstreamError,),
            )

    def test_non_retryable_fails_immediately(self):
        calls = []

        def auth_failure():
            calls.append(1)
            raise UpstreamAuthError("401")

        with pytest.raises(UpstreamAuthError):
            call_with_retry(
                auth_failure, max_attempts=3, base_delay=0.001,
                retryable_exceptions=(TransientUpstreamError,),
            )
        assert len(calls) == 1

    def test_passes_arguments_through(self):
        assert call_with_retry(lambda a, b=0: a + b, 2, b=3, max_attempts=1) == 5


# ── Circuit Breaker ───────────────────────────────────────────────────────


class TestCircuitBreaker:
    def test_starts_closed(self):
        cb = CircuitBreaker(failure_threshold=3, name="costs")
        assert cb.state == CircuitState.CLOSED

    def test_opens_after_threshold_failures(self):
        cb = CircuitBreaker(failure_threshold=3, reset_timeout=60.0, name="costs")
        for _ in range(3):
            cb.record_failure()
        assert cb.state == CircuitState.OPEN

    def test_rejects_calls_when_open(self):
        cb = CircuitBreaker(failure_threshold=1, reset_timeout=60.0, name="costs")
        cb.record_failure()
        with pytest.raises(CircuitBreakerError, match="OPEN"):
            cb.call(lambda: "should not run")

    def test_success_resets_failure_count(self):
        cb = CircuitBreaker(failure_threshold=3, name="costs")
        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        assert cb.state == CircuitState.CLOSED
        assert cb.get_status()["failure_count"] == 0

    def test_half_open_probe(self):
        cb = CircuitBreaker(failure_threshold=1, reset_timeout=0.01, name="costs")
        cb.record_failure()
        time.sleep(0.02)
        assert cb.state == CircuitState.HALF_OPEN

        cb.record_failure()
        assert cb.state == CircuitState.OPEN

        time.sleep(0.02)
        cb.record_success()
        assert cb.state == CircuitState.CLOSED

    def test_get_status(self):
        cb = CircuitBreaker(failure_threshold=5, reset_timeout=30, name="advisor")
        status = cb.get_status()
        assert status["name"] == "advisor"
        assert status["state"] == "closed"
        assert status["failure_threshold"] == 5


# ── Error Tracker ─────────────────────────────────────────────────────────


class TestErrorTracker:
    def test_record_and_get(self):
        tracker = ErrorTracker(max_entries=100)
        tracker.record("gateway.costs", ValueError("boom"), {"key": "val"})

        errors = tracker.get_errors()
        assert len(errors) == 1
        assert errors[0]["source"] == "gateway.costs"
        assert errors[0]["error_type"] == "ValueError"
        assert errors[0]["message"] == "boom"
        assert errors[0]["context"] == {"key": "val"}

    def test_masks_bearer_tokens(self):
        tracker = ErrorTracker()
        tracker.record("gateway.costs", RuntimeError("sent Bearer eyJhbGciOiJIUzI1NiJ9.abc"))
        assert "eyJhbGci" not in tracker.get_errors()[0]["message"]

    def test_filter_by_source_newest_first(self):
        tracker = ErrorTracker()
        tracker.record("gateway.costs", RuntimeError("a"))
        tracker.record("sync", RuntimeError("b"))
        tracker.record("gateway.costs", RuntimeError("c"))

        errors = tracker.get_errors(source="gateway.costs")
        assert [e["message"] for e in errors] == ["c", "a"]

    def test_respects_max_entries(self):
        tracker = ErrorTracker(max_entries=5)
        for i in range(10):
            tracker.record("test", RuntimeError(f"err-{i}"))
        assert tracker.count == 5


# ── Gateway plumbing ──────────────────────────────────────────────────────


class _FlakySubscriptions(SubscriptionGateway):
    def __init__(self, failures: list[Exception], **kwargs):
        super().__init__(retry_delay=0.001, **kwargs)
        self.failures = failures
        self.calls = 0

    def list_subscriptions(self):
        return self._resilient_call(self._fetch)

    def _fetch(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return [SubscriptionRow(subscription_id="sub-1")]


class TestGatewayResilience:
    def test_transient_errors_retried(self):
        gw = _FlakySubscriptions([TransientUpstreamError("503"), TransientUpstreamError("503")], max_attempts=3)
        assert gw.list_subscriptions()[0].subscription_id == "sub-1"
        assert gw.calls == 3

    def test_auth_error_not_retried_and_tracked(self):
        error_tracker.clear()
        gw = _FlakySubscriptions([UpstreamAuthError("rejected")], max_attempts=3)
        with pytest.raises(UpstreamAuthError):
            gw.list_subscriptions()
        assert gw.calls == 1
        assert error_tracker.get_errors(source="gateway.subscriptions")[0]["error_type"] == "UpstreamAuthError"

    def test_open_circuit_surfaces_as_transient(self):
        gw = _FlakySubscriptions([TransientUpstreamError("down")] * 10, max_attempts=1)
        for _ in range(5):
            with pytest.raises(TransientUpstreamError):
                gw.list_subscriptions()
        assert gw.circuit_status["state"] == "open"

        calls_before = gw.calls
        with pytest.raises(TransientUpstreamError, match="OPEN"):
            gw.list_subscriptions()
        assert gw.calls == calls_before

    def test_auth_errors_do_not_trip_breaker(self):
        gw = _FlakySubscriptions([UpstreamAuthError("rejected")] * 10, max_attempts=1)
        for _ in range(6):
            with pytest.raises(UpstreamAuthError):
                gw.list_subscriptions()
        assert gw.circuit_status["state"] == "closed"
        assert gw.circuit_status["failure_count"] == 0


def test_breaker_ignores_exceptions_outside_trips_on():
    cb = CircuitBreaker(failure_threshold=1, name="costs", trips_on=(TransientUpstreamError,))
    with pytest.raises(ValueError):
        cb.call(lambda: int("not a number"))
    assert cb.state == CircuitState.CLOSED


def test_error_tracker_counts_by_source():
    tracker = ErrorTracker()
    tracker.record("gateway.costs", RuntimeError("a"))
    tracker.record("gateway.costs", RuntimeError("b"))
    tracker.record("sync", RuntimeError("c"))
    assert tracker.by_source() == {"gateway.costs": 2, "sync": 1}
    assert tracker.get_errors()[0]["timestamp"].endswith("+00:00")
