from __future__ import annotations

import enum

from analysis_quota.core.settings import settings


class Plan(str, enum.Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"


UNLIMITED: int | None = None


PLAN_ANALYSIS_LIMITS: dict[Plan, int | None] = {
    Plan.FREE: settings.free_plan_analysis_limit,
    Plan.PRO: UNLIMITED,
    Plan.ENTERPRISE: UNLIMITED,
}


def parse_plan(value: str | Plan | None) -> Plan:
    if isinstance(value, Plan):
        return value
    key = str(value or "").strip().lower()
    try:
        return Plan(key)
    except ValueError:
        raise ValueError(f"Unknown plan: {value!r}")


def parse_status(value: str | SubscriptionStatus | None) -> SubscriptionStatus:
    if isinstance(value, SubscriptionStatus):
        return value
    key = str(value or "").strip().lower()
    try:
        return SubscriptionStatus(key)
    except ValueError:
        raise ValueError(f"Unknown subscription status: {value!r}")


def limit_for(plan: Plan | str) -> int | None:
    return PLAN_ANALYSIS_LIMITS[parse_plan(plan)]


def is_unlimited(limit: int | None) -> bool:
    return limit is UNLIMITED
