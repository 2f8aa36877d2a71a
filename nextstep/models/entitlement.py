"""
nextstep/models/entitlement.py

Entitlement record and status views.

One entitlement row per user holds the plan tier, the subscription health
reported by Stripe, and today's usage counter. The counter only means
something when last_usage_date falls on the current calendar date.
"""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import ConfigDict

from nextstep.models.base import ApiModel


class Plan(str, Enum):
    FREE = "FREE"
    PRO = "PRO"


class EntitlementState(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


UNLIMITED = "UNLIMITED"


class Entitlement(ApiModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    plan: Plan
    status: EntitlementState
    usage_count: int
    last_usage_date: Optional[datetime] = None
    period_end: Optional[datetime] = None


class EntitlementStatus(ApiModel):
    """What GET /billing/status reports: {plan, usageCount, remaining, limit}."""
    model_config = ConfigDict(frozen=True)

    plan: Plan
    usage_count: int
    remaining: Union[int, Literal["UNLIMITED"]]
    limit: int
