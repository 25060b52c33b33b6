"""Tests for gateway row mapping and the Azure SDK gateways (SDK clients faked)."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ServiceRequestError,
)

from stratus.gateways.azure.arm import (
    AzureAdvisorGateway,
    AzureCostGateway,
    AzureMetricsGateway,
    AzureResourceGateway,
    AzureSubscriptionGateway,
    translate_azure_errors,
)
from stratus.gateways.base import (
    CredentialProvider,
    TransientUpstreamError,
    UpstreamAuthError,
    UpstreamError,
)
from stratus.gateways.rows import (
    AdvisoryRow,
    CostRow,
    ResourceRow,
    ResourceStatus,
    map_resource_status,
    parse_rows,
)


class StaticCredentials(CredentialProvider):
    credential = object()

    def get_token(self, scope: str) -> str:
        return "test-token"

    def list_accessible_accounts(self) -> list[str]:
        return []


class ClientFactory:
    """Stands in for an SDK client class: records constructor calls, returns one fake client."""

    def __init__(self) -> None:
        self.client = MagicMock()
        self.calls: list[tuple[tuple, dict]] = []

    def __call__(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        return self.client


def _gw(cls):
    factory = ClientFactory()
    return cls(StaticCredentials(), client_factory=factory, max_attempts=1, retry_delay=0.001), factory


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


class TestStatusMapping:
    @pytest.mark.parametrize("provisioning,power,expected", [
        ("Succeeded", None, ResourceStatus.RUNNING),
        ("Succeeded", "VM deallocated", ResourceStatus.DEALLOCATED),
        ("Succeeded", "VM stopped", ResourceStatus.STOPPED),
        ("Failed", None, ResourceStatus.STOPPED),
        ("SomethingNew", None, ResourceStatus.STOPPED),
        (None, None, ResourceStatus.RUNNING),
        ("", "", ResourceStatus.RUNNING),
    ])
    def test_mapping(self, provisioning, power, expected):
        assert map_resource_status(provisioning, power) is expected


def test_resource_row_from_graph_payload():
    row = ResourceRow.model_validate({
        "id": "/subscriptions/sub-1/resourceGroups/rg/providers/Microsoft.Compute/virtualMachines/vm-1",
        "name": "vm-1",
        "type": "Microsoft.Compute/virtualMachines",
        "location": "eastus",
        "resourceGroup": "rg",
        "subscriptionId": "sub-1",
        "sku": {"name": "Standard_B2s"},
        "tags": None,
        "provisioningState": "Succeeded",
        "powerState": "VM running",
    })
    assert row.type == "microsoft.compute/virtualmachines"
    assert row.sku == "Standard_B2s"
    assert row.tags == {}
    assert row.status is ResourceStatus.RUNNING


def test_cost_row_field_aliases():
    row = CostRow.model_validate({
        "PreTaxCost": "12.5", "UsageDate": 20260115, "ServiceName": "Storage",
        "ResourceId": "/subscriptions/sub-1/x", "ResourceLocation": "westeurope", "Currency": "EUR",
    })
    assert row.cost == 12.5
    assert row.usage_date == date(2026, 1, 15)
    assert row.region == "westeurope"
    assert row.currency == "EUR"

    iso = CostRow.model_validate({"Cost": 1, "BillingPeriodId": "2026-02-01T00:00:00Z"})
    assert iso.usage_date == date(2026, 2, 1)
    assert iso.resource_ref == ""


def test_advisory_row_category_and_savings():
    row = AdvisoryRow.model_validate({
        "id": "rec-1", "category": "HighAvailability", "impact": "High",
        "extendedProperties": {"annualSavingsAmount": "1200"},
    })
    assert row.canonical_category == "reliability"
    assert row.impact == "high"
    assert row.monthly_savings == 100.0

    other = AdvisoryRow.model_validate({"id": "rec-2", "category": "Mystery", "extendedProperties": {"savingsAmount": 7.456}})
    assert other.canonical_category == "cost"
    assert other.monthly_savings == 7.46




def test_parse_rows_skips_malformed_records(caplog):
    records = [
        {"id": "/r/1", "name": "a", "subscriptionId": "sub-1"},
        {"id": "/r/2", "name": None, "subscriptionId": "sub-1"},
        None,
    ]
    with caplog.at_level(logging.WARNING):
        rows = parse_rows(ResourceRow, records, "test.resources")
    assert [r.name for r in rows] == ["a"]
    assert "skipped malformed ResourceRow (name: Input should be a valid string)" in caplog.text
    assert "2 of 3 records skipped" in caplog.text


# ---------------------------------------------------------------------------
# Azure gateways
# ---------------------------------------------------------------------------


def test_subscriptions_from_sdk_pager():
    gw, factory = _gw(AzureSubscriptionGateway)
    factory.client.subscriptions.list.return_value = iter([
        SimpleNamespace(subscription_id="sub-1", display_name="Prod", state=SimpleNamespace(value="Enabled")),
        SimpleNamespace(subscription_id="sub-2", display_name=None, state="Disabled"),
    ])
    subs = gw.list_subscriptions()
    assert [(s.subscription_id, s.display_name, s.state) for s in subs] == [
        ("sub-1", "Prod", "Enabled"),
        ("sub-2", "", "Disabled"),
    ]
    args, kwargs = factory.calls[0]
    assert args == (StaticCredentials.credential,)
    assert kwargs["retry_total"] == 0
    assert kwargs["read_timeout"] == gw.timeout


def test_client_built_once_per_subscription():
    gw, factory = _gw(AzureAdvisorGateway)
    factory.client.recommendations.list.return_value = []
    gw.list_recommendations("sub-1")
    gw.list_recommendations("sub-1")
    gw.list_recommendations("sub-2")
    assert [c[0][1] for c in factory.calls] == ["sub-1", "sub-2"]


def test_resources_paged_by_skip_token():
    gw, factory = _gw(AzureResourceGateway)
    item = {"id": "/r/1", "name": "a", "subscriptionId": "sub-1"}
    factory.client.resources.side_effect = [
        SimpleNamespace(data=[item], skip_token="tok"),
        SimpleNamespace(data=[{**item, "id": "/r/2", "name": "b"}], skip_token=None),
    ]
    rows = gw.list_resources(["sub-1"])
    assert [r.name for r in rows] == ["a", "b"]
    first, second = (c.args[0] for c in factory.client.resources.call_args_list)
    assert first.subscriptions == ["sub-1"]
    assert first.options.skip_token is None
    assert second.options.skip_token == "tok"


def test_malformed_resource_is_skipped_not_fatal():
    gw, factory = _gw(AzureResourceGateway)
    factory.client.resources.return_value = SimpleNamespace(
        data=[
            {"id": "/r/1", "name": "good", "subscriptionId": "sub-1"},
            {"id": "/r/2", "name": None, "subscriptionId": "sub-1"},
        ],
        skip_token=None,
    )
    assert [r.name for r in gw.list_resources(["sub-1"])] == ["good"]


def test_no_subscriptions_means_no_query():
    gw, factory = _gw(AzureResourceGateway)
    assert gw.list_resources([]) == []
    assert factory.calls == []


COST_COLUMNS = [SimpleNamespace(name=n) for n in (
    "Cost", "UsageDate", "ServiceName", "ResourceGroup", "ResourceLocation", "ResourceId", "Currency",
)]


def test_cost_query_zips_columns_and_rows():
    gw, factory = _gw(AzureCostGateway)
    factory.client.query.usage.return_value = SimpleNamespace(
        columns=COST_COLUMNS,
        rows=[[3.21, 20260301, "Virtual Machines", "rg", "eastus", "/subscriptions/sub-1/vm", "USD"]],
        next_link=None,
    )
    rows = gw.query_costs("sub-1", date(2026, 3, 1), date(2026, 3, 2))
    assert len(rows) == 1
    assert rows[0].subscription_id == "sub-1"
    assert rows[0].cost == 3.21
    assert rows[0].service_name == "Virtual Machines"

    scope, definition = factory.client.query.usage.call_args.args
    assert scope == "subscriptions/sub-1"
    assert definition.dataset.granularity == "Daily"
    assert [g.name for g in definition.dataset.grouping] == [
        "ServiceName", "ResourceGroup", "ResourceLocation", "ResourceId",
    ]


def test_cost_query_follows_next_link_and_drops_bad_rows():
    gw, factory = _gw(AzureCostGateway)
    factory.client.query.usage.return_value = SimpleNamespace(
        columns=COST_COLUMNS,
        rows=[[1.0, 20260301, "Storage", "rg", "eastus", "/s/1", "USD"]],
        next_link="https://management.azure.com/next?$skiptoken=abc",
    )
    page = MagicMock()
    page.json.return_value = {"properties": {"rows": [
        [2.0, 20260302, "Storage", "rg", "eastus", "/s/1", "USD"],
        [9.9, "not-a-date", "Storage", "rg", "eastus", "/s/1", "USD"],
    ], "nextLink": None}}
    factory.client._send_request.return_value = page

    rows = gw.query_costs("sub-1", date(2026, 3, 1), date(2026, 3, 3))
    assert [r.cost for r in rows] == [1.0, 2.0]
    request = factory.client._send_request.call_args.args[0]
    assert request.method == "POST"
    assert request.url == "https://management.azure.com/next?$skiptoken=abc"
    page.raise_for_status.assert_called_once()


def test_metrics_skip_empty_points():
    gw, factory = _gw(AzureMetricsGateway)
    factory.client.metrics.list.return_value = SimpleNamespace(value=[SimpleNamespace(
        unit="Percent",
        timeseries=[SimpleNamespace(data=[
            SimpleNamespace(time_stamp=datetime(2026, 3, 1, tzinfo=timezone.utc), average=12.5),
            SimpleNamespace(time_stamp=datetime(2026, 3, 1, 1, tzinfo=timezone.utc), average=None),
        ])],
    )])
    end = datetime(2026, 3, 2, tzinfo=timezone.utc)
    points = gw.get_cpu_metrics("sub-1", "/subscriptions/sub-1/vm", end.replace(day=1), end)
    assert len(points) == 1
    assert points[0].value == 12.5
    assert factory.calls[0][0][1] == "sub-1"
    kwargs = factory.client.metrics.list.call_args.kwargs
    assert kwargs["metricnames"] == "Percentage CPU"
    assert kwargs["aggregation"] == "Average"


def test_metrics_without_series():
    gw, factory = _gw(AzureMetricsGateway)
    factory.client.metrics.list.return_value = SimpleNamespace(value=[])
    end = datetime(2026, 3, 2, tzinfo=timezone.utc)
    assert gw.get_cpu_metrics("sub-1", "/vm", end.replace(day=1), end) == []


def test_advisor_flattens_sdk_model():
    gw, factory = _gw(AzureAdvisorGateway)
    factory.client.recommendations.list.return_value = [SimpleNamespace(
        id="/rec/1",
        category=SimpleNamespace(value="Cost"),
        impact="Medium",
        short_description=SimpleNamespace(problem="Right-size VM", solution="Resize to B1s"),
        resource_metadata=SimpleNamespace(resource_id="/subscriptions/sub-1/vm"),
        extended_properties={"savingsAmount": "20"},
    )]
    recs = gw.list_recommendations("sub-1")
    assert recs[0].problem == "Right-size VM"
    assert recs[0].canonical_category == "cost"
    assert recs[0].resource_ref == "/subscriptions/sub-1/vm"
    assert recs[0].monthly_savings == 20.0


# ---------------------------------------------------------------------------
# SDK error classification
# ---------------------------------------------------------------------------


def _http_error(code: int) -> HttpResponseError:
    err = HttpResponseError(message=f"Operation returned an invalid status {code}")
    err.status_code = code
    return err


@pytest.mark.parametrize("error,exc", [
    (_http_error(401), UpstreamAuthError),
    (_http_error(403), UpstreamAuthError),
    (_http_error(429), TransientUpstreamError),
    (_http_error(503), TransientUpstreamError),
    (_http_error(400), UpstreamError),
    (ClientAuthenticationError("AADSTS7000215: invalid client secret"), UpstreamAuthError),
    (ServiceRequestError("no route to host"), TransientUpstreamError),
])
def test_sdk_errors_classified(error, exc):
    with pytest.raises(exc) as info:
        with translate_azure_errors("list subscriptions"):
            raise error
    assert type(info.value) is exc
    assert "AADSTS" not in str(info.value)


def test_transient_sdk_error_retried_then_surfaced():
    factory = ClientFactory()
    gw = AzureSubscriptionGateway(StaticCredentials(), client_factory=factory, max_attempts=2, retry_delay=0.001)
    factory.client.subscriptions.list.side_effect = [
        _http_error(503),
        iter([SimpleNamespace(subscription_id="sub-1", display_name="Prod", state="Enabled")]),
    ]
    assert [s.subscription_id for s in gw.list_subscriptions()] == ["sub-1"]
    assert factory.client.subscriptions.list.call_count == 2


def test_auth_error_not_retried():
    factory = ClientFactory()
    gw = AzureSubscriptionGateway(StaticCredentials(), client_factory=factory, max_attempts=3, retry_delay=0.001)
    factory.client.subscriptions.list.side_effect = ClientAuthenticationError("expired")
    with pytest.raises(UpstreamAuthError):
        gw.list_subscriptions()
    assert factory.client.subscriptions.list.call_count == 1
