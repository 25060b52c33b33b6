"""Canonical row shapes returned by upstream gateways.

Vendor payloads arrive with vendor field names (``subscriptionId``,
``PreTaxCost``, ``timeStamp``...). Each row model maps those names onto the
canonical fields via validation aliases, so the rest of the engine never
touches raw vendor dicts.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from stratus.services.redact import mask_secrets

logger = logging.getLogger(__name__)


class ResourceStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    DEALLOCATED = "deallocated"


# Upstream provisioning / power states → canonical status. Anything not listed is unknown.
_STATE_MAP: dict[str, ResourceStatus] = {
    "succeeded": ResourceStatus.RUNNING,
    "creating": ResourceStatus.RUNNING,
    "updating": ResourceStatus.RUNNING,
    "running": ResourceStatus.RUNNING,
    "starting": ResourceStatus.RUNNING,
    "vm running": ResourceStatus.RUNNING,
    "vm starting": ResourceStatus.RUNNING,
    "stopped": ResourceStatus.STOPPED,
    "stopping": ResourceStatus.STOPPED,
    "vm stopped": ResourceStatus.STOPPED,
    "vm stopping": ResourceStatus.STOPPED,
    "deallocated": ResourceStatus.DEALLOCATED,
    "deallocating": ResourceStatus.DEALLOCATED,
    "vm deallocated": ResourceStatus.DEALLOCATED,
    "vm deallocating": ResourceStatus.DEALLOCATED,
    "failed": ResourceStatus.STOPPED,
    "canceled": ResourceStatus.STOPPED,
    "deleting": ResourceStatus.STOPPED,
}


def map_resource_status(provisioning_state: str | None, power_state: str | None = None) -> ResourceStatus:
    """Derive the canonical status. Power state wins over provisioning state.

    No state at all means the resource was listed without complaint (running);
    an unrecognised or failed state maps to stopped.
    """
    for raw in (power_state, provisioning_state):
        key = (raw or "").strip().lower()
        if not key:
            continue
        return _STATE_MAP.get(key, ResourceStatus.STOPPED)
    return ResourceStatus.RUNNING


_CATEGORY_MAP = {
    "cost": "cost",
    "security": "security",
    "reliability": "reliability",
    "highavailability": "reliability",
    "performance": "performance",
    "operationalexcellence": "performance",
}


def map_category(raw: str | None) -> str:
    return _CATEGORY_MAP.get((raw or "").lower(), "cost")


def extract_monthly_savings(extended: dict[str, Any] | None) -> float:
    """Monthly savings from advisor extended properties (annual amounts are divided by 12)."""
    extended = extended or {}
    if extended.get("annualSavingsAmount"):
        try:
            return round(float(extended["annualSavingsAmount"]) / 12, 2)
        except (TypeError, ValueError):
            return 0.0
    raw = extended.get("savingsAmount") or extended.get("monthlySavings") or 0
    try:
        return round(float(raw), 2)
    except (TypeError, ValueError):
        return 0.0


def _parse_usage_date(value: Any) -> date:
    """Cost APIs return dates as 20260115 (int), "20260115" or ISO strings."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if text.isdigit() and len(text) == 8:
        return date(int(text[:4]), int(text[4:6]), int(text[6:]))
    return datetime.fromisoformat(text.replace("Z", "+00:00")).date()


class _Row(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SubscriptionRow(_Row):
    subscription_id: str = Field(validation_alias=AliasChoices("subscriptionId", "subscription_id"))
    display_name: str = Field("", validation_alias=AliasChoices("displayName", "display_name"))
    state: str = "Enabled"


class ResourceRow(_Row):
    resource_id: str = Field(validation_alias=AliasChoices("id", "resource_id"))
    name: str
    type: str = ""
    location: str = ""
    resource_group: str | None = Field(None, validation_alias=AliasChoices("resourceGroup", "resource_group"))
    subscription_id: str = Field(validation_alias=AliasChoices("subscriptionId", "subscription_id"))
    sku: str | None = None
    tags: dict[str, Any] = Field(default_factory=dict)
    properties: dict[str, Any] = Field(default_factory=dict)
    provisioning_state: str | None = Field(
        None, validation_alias=AliasChoices("provisioningState", "provisioning_state"),
    )
    power_state: str | None = Field(None, validation_alias=AliasChoices("powerState", "power_state"))

    @field_validator("sku", mode="before")
    @classmethod
    def _sku_name(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return v.get("name")
        return v or None

    @field_validator("tags", "properties", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return v or {}

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, v: Any) -> Any:
        return (v or "").lower()

    @property
    def status(self) -> ResourceStatus:
        return map_resource_status(self.provisioning_state, self.power_state)


class CostRow(_Row):
    subscription_id: str = Field("", validation_alias=AliasChoices("subscriptionId", "subscription_id"))
    resource_ref: str = Field("", validation_alias=AliasChoices("ResourceId", "resource_ref"))
    usage_date: date = Field(
        default_factory=date.today,
        validation_alias=AliasChoices("UsageDate", "BillingPeriodId", "usage_date"),
    )
    cost: float = Field(0.0, validation_alias=AliasChoices("Cost", "PreTaxCost", "CostUSD", "cost"))
    currency: str = Field("USD", validation_alias=AliasChoices("Currency", "currency"))
    service_name: str = Field("", validation_alias=AliasChoices("ServiceName", "service_name"))
    meter_category: str = Field("", validation_alias=AliasChoices("MeterCategory", "meter_category"))
    region: str = Field("", validation_alias=AliasChoices("ResourceLocation", "region"))
    resource_group: str = Field("", validation_alias=AliasChoices("ResourceGroup", "resource_group"))

    @field_validator("usage_date", mode="before")
    @classmethod
    def _date(cls, v: Any) -> Any:
        return _parse_usage_date(v)

    @field_validator("cost", mode="before")
    @classmethod
    def _cost(cls, v: Any) -> Any:
        return float(v or 0)

    @field_validator("resource_ref", "service_name", "meter_category", "region", "resource_group", mode="before")
    @classmethod
    def _none_to_blank(cls, v: Any) -> Any:
        return v or ""


class MetricPoint(_Row):
    timestamp: datetime = Field(validation_alias=AliasChoices("timeStamp", "timestamp"))
    value: float = Field(validation_alias=AliasChoices("average", "value"))
    unit: str = "Percent"


class AdvisoryRow(_Row):
    external_id: str = Field(validation_alias=AliasChoices("id", "external_id"))
    category: str = "cost"
    impact: str = "medium"
    problem: str = ""
    solution: str = ""
    resource_ref: str = Field("", validation_alias=AliasChoices("resourceId", "resource_ref"))
    extended_properties: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("extendedProperties", "extended_properties"),
    )

    @field_validator("category", "impact", mode="before")
    @classmethod
    def _lower(cls, v: Any) -> Any:
        return (v or "").lower()

    @property
    def canonical_category(self) -> str:
        return map_category(self.category)

    @property
    def monthly_savings(self) -> float:
        return extract_monthly_savings(self.extended_properties)


RowT = TypeVar("RowT", bound=_Row)


def parse_rows(model: type[RowT], records: Iterable[Any], source: str) -> list[RowT]:
    """Validate vendor records one at a time. A malformed record is logged and dropped.

    Only field locations and pydantic's message are logged, never the
    offending input, so a bad record cannot leak a secret into the log.
    """
    rows: list[RowT] = []
    skipped = 0
    for record in records:
        try:
            rows.append(model.model_validate(record))
        except ValidationError as e:
            skipped += 1
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'record'}: {err['msg']}" for err in e.errors()
            )
            logger.warning("%s: skipped malformed %s (%s)", source, model.__name__, mask_secrets(problems))
    if skipped:
        logger.warning("%s: %d of %d records skipped", source, skipped, skipped + len(rows))
    return rows
