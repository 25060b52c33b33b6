"""Stratus data models — re-export all models for convenient imports."""

from .alert import Alert
from .budget import Budget
from .cost import CostAnomaly, CostRecord, UsageMetric
from .recommendation import Recommendation
from .resource import Resource
from .setting import Setting
from .subscription import ResourceGroup, Subscription
from .user import User

__all__ = [
    "Alert",
    "Budget",
    "CostAnomaly",
    "CostRecord",
    "Recommendation",
    "Resource",
    "ResourceGroup",
    "Setting",
    "Subscription",
    "UsageMetric",
    "User",
]
