"""Abstract upstream gateways — one client per external data domain.

Each gateway exposes a paginated list/query call returning canonical rows
(see ``rows.py``). Concrete gateways call ``_resilient_call`` so every
upstream request gets a bounded retry on transient failures and a circuit
breaker per domain.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable

from stratus.services.resilience import (
    CircuitBreaker,
    CircuitBreakerError,
    call_with_retry,
    error_tracker,
)

from .rows import AdvisoryRow, CostRow, MetricPoint, ResourceRow, SubscriptionRow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class UpstreamError(Exception):
    """An upstream API call failed."""


class TransientUpstreamError(UpstreamError):
    """Network failure, timeout, throttling or 5xx — safe to retry."""


class UpstreamAuthError(UpstreamError):
    """Credential could not be acquired or was rejected. Never retried."""


# ---------------------------------------------------------------------------
# Credential provider
# ---------------------------------------------------------------------------


class CredentialProvider(ABC):
    """Opaque source of bearer tokens and the accounts they can reach."""

    @abstractmethod
    def get_token(self, scope: str) -> str:
        ...

    @abstractmethod
    def list_accessible_accounts(self) -> list[str]:
        ...


# ---------------------------------------------------------------------------
# Gateway base
# ---------------------------------------------------------------------------


class UpstreamGateway(ABC):
    """Shared resilience plumbing for all gateways."""

    domain: str = "upstream"

    def __init__(
        self,
        timeout: float = 30.0,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=5, reset_timeout=60.0, name=self.domain,
            trips_on=(TransientUpstreamError,),
        )

    def _resilient_call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Execute *func* with bounded retry + circuit breaker protection.

        Only ``TransientUpstreamError`` is retried. Auth errors and an open
        breaker surface immediately.
        """
        try:
            return call_with_retry(
                self._circuit_breaker.call, func, *args,
                max_attempts=self.max_attempts,
                base_delay=self.retry_delay,
                retryable_exceptions=(TransientUpstreamError,),
                **kwargs,
            )
        except CircuitBreakerError as e:
            raise TransientUpstreamError(str(e)) from e
        except Exception as e:
            error_tracker.record(
                source=f"gateway.{self.domain}",
                error=e,
                context={"function": getattr(func, "__name__", "call"), "args_summary": str(args)[:200]},
            )
            raise

    @property
    def circuit_status(self) -> dict[str, Any]:
        return self._circuit_breaker.get_status()


class SubscriptionGateway(UpstreamGateway):
    domain = "subscriptions"

    @abstractmethod
    def list_subscriptions(self) -> list[SubscriptionRow]:
        ...


class ResourceGateway(UpstreamGateway):
    domain = "resources"

    @abstractmethod
    def list_resources(self, subscription_ids: list[str]) -> list[ResourceRow]:
        ...


class CostGateway(UpstreamGateway):
    domain = "costs"

    @abstractmethod
    def query_costs(self, subscription_id: str, start: date, end: date) -> list[CostRow]:
        """Daily cost rows grouped by service, resource group, location and resource."""
        ...


class MetricsGateway(UpstreamGateway):
    domain = "metrics"

    @abstractmethod
    def get_cpu_metrics(
        self, subscription_id: str, resource_uri: str, start: datetime, end: datetime,
    ) -> list[MetricPoint]:
        ...


class AdvisorGateway(UpstreamGateway):
    domain = "advisor"

    @abstractmethod
    def list_recommendations(self, subscription_id: str) -> list[AdvisoryRow]:
        ...


@dataclass
class GatewaySet:
    """Everything the sync orchestrator pulls from."""

    credentials: CredentialProvider
    subscriptions: SubscriptionGateway
    resources: ResourceGateway
    costs: CostGateway
    metrics: MetricsGateway
    advisor: AdvisorGateway
