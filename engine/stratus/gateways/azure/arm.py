"""Azure gateways — management SDK clients for subscriptions, inventory, cost, metrics and advisor.

SDK: pip install azure-identity azure-mgmt-subscription azure-mgmt-resourcegraph
     azure-mgmt-costmanagement azure-mgmt-monitor azure-mgmt-advisor

Credentials come from azure-identity (service principal when all three
``STRATUS_AZURE_*`` values are set, ``DefaultAzureCredential`` otherwise).
Each gateway builds its SDK client lazily through a factory, so tests can
hand in a fake client. SDK-level retries are disabled: ``_resilient_call``
owns the retry budget.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Iterator

from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.core.rest import HttpRequest
from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.mgmt.advisor import AdvisorManagementClient
from azure.mgmt.costmanagement import CostManagementClient
from azure.mgmt.costmanagement.models import (
    QueryAggregation,
    QueryDataset,
    QueryDefinition,
    QueryGrouping,
    QueryTimePeriod,
)
from azure.mgmt.monitor import MonitorManagementClient
from azure.mgmt.resourcegraph import ResourceGraphClient
from azure.mgmt.resourcegraph.models import QueryRequest, QueryRequestOptions
from azure.mgmt.subscription import SubscriptionClient

from stratus.config import Settings, settings
from stratus.services.redact import mask_secrets

from ..base import (
    AdvisorGateway,
    CostGateway,
    CredentialProvider,
    GatewaySet,
    MetricsGateway,
    ResourceGateway,
    SubscriptionGateway,
    TransientUpstreamError,
    UpstreamAuthError,
    UpstreamError,
)
from ..rows import AdvisoryRow, CostRow, MetricPoint, ResourceRow, SubscriptionRow, parse_rows

logger = logging.getLogger(__name__)

ARM_SCOPE = "https://management.azure.com/.default"

_RESOURCE_QUERY = """
Resources
| project id, name, type, location, resourceGroup, subscriptionId,
          sku = tostring(sku.name), kind, tags, properties,
          provisioningState = tostring(properties.provisioningState),
          powerState = tostring(properties.extended.instanceView.powerState.displayStatus)
| order by type asc, name asc
"""

_COST_GROUPING = ("ServiceName", "ResourceGroup", "ResourceLocation", "ResourceId")


# ── Credentials ───────────────────────────────────────────────────────────


class AzureCredentialProvider(CredentialProvider):
    """azure-identity backed credential provider."""

    def __init__(
        self,
        tenant_id: str = "",
        client_id: str = "",
        client_secret: str = "",
        subscription_ids: list[str] | None = None,
    ) -> None:
        self._tenant_id = tenant_id
        self._client_id = client_id
        self._client_secret = client_secret
        self._subscription_ids = list(subscription_ids or [])
        self._credential: Any = None

    @property
    def credential(self) -> Any:
        """The azure-identity ``TokenCredential`` handed to every SDK client."""
        if self._credential is None:
            if self._tenant_id and self._client_id and self._client_secret:
                self._credential = ClientSecretCredential(
                    self._tenant_id, self._client_id, self._client_secret,
                )
                logger.info("Azure: using service principal credential")
            else:
                self._credential = DefaultAzureCredential()
                logger.info("Azure: using DefaultAzureCredential (auto-detect)")
        return self._credential

    def get_token(self, scope: str = ARM_SCOPE) -> str:
        with translate_azure_errors("token"):
            return self.credential.get_token(scope).token

    def list_accessible_accounts(self) -> list[str]:
        return list(self._subscription_ids)


# ── SDK error mapping ─────────────────────────────────────────────────────


@contextmanager
def translate_azure_errors(operation: str) -> Iterator[None]:
    """Map azure-core exceptions onto the gateway error taxonomy."""
    try:
        yield
    except ClientAuthenticationError as e:
        raise UpstreamAuthError(f"Azure {operation}: credential rejected") from e
    except (ServiceRequestError, ServiceResponseError) as e:
        raise TransientUpstreamError(f"Azure {operation} unreachable: {mask_secrets(str(e))}") from e
    except HttpResponseError as e:
        code = e.status_code or 0
        if code in (401, 403):
            raise UpstreamAuthError(f"Azure {operation} rejected credentials (HTTP {code})") from e
        if code == 429 or code >= 500:
            raise TransientUpstreamError(f"Azure {operation} failed (HTTP {code})") from e
        raise UpstreamError(f"Azure {operation} failed (HTTP {code or 'unknown'})") from e


class _SdkClient:
    """Mixin: lazily built SDK client with pipeline retries off and our timeout applied."""

    credentials: AzureCredentialProvider
    timeout: float
    sdk_client: Callable[..., Any]

    def __init__(
        self,
        credentials: AzureCredentialProvider,
        client_factory: Callable[..., Any] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.credentials = credentials
        self._client_factory = client_factory or self.sdk_client
        self._clients: dict[str, Any] = {}

    def _client(self, subscription_id: str | None = None) -> Any:
        key = subscription_id or ""
        if key not in self._clients:
            args: tuple[Any, ...] = (self.credentials.credential,)
            if subscription_id:
                args += (subscription_id,)
            self._clients[key] = self._client_factory(
                *args,
                retry_total=0,
                connection_timeout=self.timeout,
                read_timeout=self.timeout,
            )
        return self._clients[key]


# ── Gateways ──────────────────────────────────────────────────────────────


class AzureSubscriptionGateway(_SdkClient, SubscriptionGateway):
    sdk_client = SubscriptionClient

    def list_subscriptions(self) -> list[SubscriptionRow]:
        return self._resilient_call(self._fetch)

    def _fetch(self) -> list[SubscriptionRow]:
        with translate_azure_errors("list subscriptions"):
            raw = [
                {
                    "subscription_id": s.subscription_id,
                    "display_name": s.display_name or "",
                    "state": _enum_value(s.state) or "Enabled",
                }
                for s in self._client().subscriptions.list()
            ]
        subs = parse_rows(SubscriptionRow, raw, "azure.subscriptions")
        logger.info("Azure subscriptions: found %d", len(subs))
        return subs


class AzureResourceGateway(_SdkClient, ResourceGateway):
    """Resource Graph query across subscriptions, paged by skip token."""

    sdk_client = ResourceGraphClient

    def list_resources(self, subscription_ids: list[str]) -> list[ResourceRow]:
        if not subscription_ids:
            return []
        return self._resilient_call(self._fetch, subscription_ids)

    def _fetch(self, subscription_ids: list[str]) -> list[ResourceRow]:
        rows: list[ResourceRow] = []
        skip_token: str | None = None
        while True:
            request = QueryRequest(
                subscriptions=subscription_ids,
                query=_RESOURCE_QUERY,
                options=QueryRequestOptions(result_format="objectArray", skip_token=skip_token),
            )
            with translate_azure_errors("resource graph query"):
                resp = self._client().resources(request)
            rows.extend(parse_rows(ResourceRow, resp.data or [], "azure.resources"))
            skip_token = resp.skip_token
            if not skip_token:
                break
        logger.info("Azure resources: retrieved %d", len(rows))
        return rows


class AzureCostGateway(_SdkClient, CostGateway):
    """Cost Management query API, daily granularity."""

    sdk_client = CostManagementClient

    def query_costs(self, subscription_id: str, start: date, end: date) -> list[CostRow]:
        return self._resilient_call(self._fetch, subscription_id, start, end)

    def _fetch(self, subscription_id: str, start: date, end: date) -> list[CostRow]:
        definition = QueryDefinition(
            type="ActualCost",
            timeframe="Custom",
            time_period=QueryTimePeriod(
                from_property=datetime.combine(start, time.min, tzinfo=timezone.utc),
                to=datetime.combine(end, time.min, tzinfo=timezone.utc),
            ),
            dataset=QueryDataset(
                granularity="Daily",
                aggregation={"totalCost": QueryAggregation(name="Cost", function="Sum")},
                grouping=[QueryGrouping(type="Dimension", name=name) for name in _COST_GROUPING],
            ),
        )
        client = self._client()
        scope = f"subscriptions/{subscription_id}"
        with translate_azure_errors("cost query"):
            result = client.query.usage(scope, definition)
            columns = [c.name for c in result.columns or []]
            raw_rows = list(result.rows or [])
            next_link = result.next_link
            # query.usage does not follow nextLink itself
            while next_link:
                resp = client._send_request(HttpRequest("POST", next_link, json=definition.serialize()))
                resp.raise_for_status()
                props = resp.json().get("properties", {})
                raw_rows.extend(props.get("rows") or [])
                next_link = props.get("nextLink")

        records = [{**dict(zip(columns, raw)), "subscriptionId": subscription_id} for raw in raw_rows]
        rows = parse_rows(CostRow, records, "azure.costs")
        logger.info("Azure costs: %d rows for %s", len(rows), subscription_id)
        return rows


class AzureMetricsGateway(_SdkClient, MetricsGateway):
    """Azure Monitor metrics — hourly average CPU for a VM."""

    sdk_client = MonitorManagementClient

    def get_cpu_metrics(
        self, subscription_id: str, resource_uri: str, start: datetime, end: datetime,
    ) -> list[MetricPoint]:
        return self._resilient_call(self._fetch, subscription_id, resource_uri, start, end)

    def _fetch(
        self, subscription_id: str, resource_uri: str, start: datetime, end: datetime,
    ) -> list[MetricPoint]:
        with translate_azure_errors("metrics"):
            resp = self._client(subscription_id).metrics.list(
                resource_uri,
                timespan=f"{start.isoformat()}/{end.isoformat()}",
                interval=timedelta(hours=1),
                metricnames="Percentage CPU",
                aggregation="Average",
            )
        metrics = list(resp.value or [])
        if not metrics:
            return []
        unit = _enum_value(metrics[0].unit) or "Percent"
        series = metrics[0].timeseries or []
        points = (series[0].data or []) if series else []
        return parse_rows(
            MetricPoint,
            (
                {"timestamp": p.time_stamp, "value": p.average, "unit": unit}
                for p in points
                if p.average is not None
            ),
            "azure.metrics",
        )


class AzureAdvisorGateway(_SdkClient, AdvisorGateway):
    sdk_client = AdvisorManagementClient

    def list_recommendations(self, subscription_id: str) -> list[AdvisoryRow]:
        return self._resilient_call(self._fetch, subscription_id)

    def _fetch(self, subscription_id: str) -> list[AdvisoryRow]:
        with translate_azure_errors("advisor"):
            raw = [_flatten_advisory(r) for r in self._client(subscription_id).recommendations.list()]
        recs = parse_rows(AdvisoryRow, raw, "azure.advisor")
        logger.info("Azure advisor: %d recommendations for %s", len(recs), subscription_id)
        return recs


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _flatten_advisory(rec: Any) -> dict[str, Any]:
    short = rec.short_description
    problem = (short.problem if short else None) or ""
    return {
        "id": rec.id or "",
        "category": _enum_value(rec.category) or "cost",
        "impact": _enum_value(rec.impact) or "medium",
        "problem": problem,
        "solution": (short.solution if short else None) or problem,
        "resourceId": (rec.resource_metadata.resource_id if rec.resource_metadata else None) or "",
        "extendedProperties": rec.extended_properties or {},
    }


def build_azure_gateways(cfg: Settings = settings) -> GatewaySet:
    """Wire the Azure gateways from settings."""
    credentials = AzureCredentialProvider(
        tenant_id=cfg.azure_tenant_id,
        client_id=cfg.azure_client_id,
        client_secret=cfg.azure_client_secret,
        subscription_ids=cfg.subscription_id_list,
    )
    kwargs = {"timeout": cfg.upstream_timeout, "max_attempts": cfg.upstream_retries}
    return GatewaySet(
        credentials=credentials,
        subscriptions=AzureSubscriptionGateway(credentials, **kwargs),
        resources=AzureResourceGateway(credentials, **kwargs),
        costs=AzureCostGateway(credentials, **kwargs),
        metrics=AzureMetricsGateway(credentials, **kwargs),
        advisor=AzureAdvisorGateway(credentials, **kwargs),
    )
