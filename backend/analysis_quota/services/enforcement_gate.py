"""Single entry point every analysis creation must pass through."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from analysis_quota.core.errors import (
    InvalidPeriodState,
    NotAuthenticated,
    QuotaError,
    QuotaExceeded,
)
from analysis_quota.services.billing_period import BillingPeriod, ensure_utc, utcnow
from analysis_quota.services.plans import Plan, is_unlimited, limit_for
from analysis_quota.services.subscription_resolver import resolve_subscription
from analysis_quota.services.usage_ledger import check_and_increment, get_usage_count

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    plan_at_time: Plan | None = None
    count: int | None = None
    limit: int | None = None
    period: BillingPeriod | None = None
    reason: str | None = None
    message: str | None = None
    hint: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "plan_at_time": self.plan_at_time.value if self.plan_at_time else None,
            "count": self.count,
            "limit": self.limit,
            "unlimited": self.allowed and is_unlimited(self.limit),
            "period_start": self.period.start.isoformat() if self.period else None,
            "period_end": self.period.end.isoformat() if self.period else None,
            "reason": self.reason,
            "message": self.message,
            "hint": self.hint,
        }


def _rejected(error: QuotaError, plan: Plan | None = None, period: BillingPeriod | None = None) -> AuthorizationDecision:
    return AuthorizationDecision(
        allowed=False,
        plan_at_time=plan,
        period=period,
        reason=error.code,
        message=error.public_message,
    )


def authorize_analysis_creation(db: Session, user_id: str | None, now: datetime | None = None) -> AuthorizationDecision:
    now = ensure_utc(now or utcnow())
    user_id = str(user_id or "").strip()
    if not user_id:
        logger.warning("quota.gate.rejected reason=%s", NotAuthenticated.code)
        return _rejected(NotAuthenticated())

    plan: Plan | None = None
    period: BillingPeriod | None = None
    try:
        sub = resolve_subscription(db, user_id, now=now)
        plan, period = sub.plan, sub.period
        limit = limit_for(sub.plan)
        result = check_and_increment(db, user_id, sub.period, limit)
        if not result.allowed:
            raise QuotaExceeded(limit=int(limit or 0), plan=sub.plan.value)
    except QuotaExceeded as exc:
        logger.info(
            "quota.gate.rejected reason=%s user_id=%s plan=%s limit=%s period_start=%s",
            exc.code,
            user_id,
            exc.plan,
            exc.limit,
            period.start.isoformat() if period else None,
        )
        return AuthorizationDecision(
            allowed=False,
            plan_at_time=plan,
            count=result.new_count,
            limit=exc.limit,
            period=period,
            reason=exc.code,
            message=exc.public_message,
            hint=exc.hint,
        )
    except InvalidPeriodState as exc:
        logger.error("quota.gate.invalid_period_state user_id=%s detail=%s", user_id, exc.detail)
        return _rejected(exc, plan, period)
    except QuotaError as exc:
        logger.warning("quota.gate.rejected reason=%s user_id=%s", exc.code, user_id)
        return _rejected(exc, plan, period)

    logger.info(
        "quota.gate.approved user_id=%s plan=%s count=%s limit=%s",
        user_id,
        sub.plan.value,
        result.new_count,
        "unlimited" if is_unlimited(limit) else limit,
    )
    return AuthorizationDecision(
        allowed=True,
        plan_at_time=sub.plan,
        count=result.new_count,
        limit=limit,
        period=sub.period,
    )


def format_usage_message(count: int, limit: int | None) -> str:
    if is_unlimited(limit):
        return "Unlimited analyses available"
    percentage = round((count / limit) * 100) if limit else 100
    return f"{count} of {limit} analyses used this billing period ({percentage}%)"


def usage_summary(db: Session, user_id: str, now: datetime | None = None) -> dict[str, Any]:
    """Read-only view of the caller's plan and consumption. Raises ``QuotaError``."""
    sub = resolve_subscription(db, user_id, now=now)
    limit = limit_for(sub.plan)
    count = get_usage_count(db, user_id, sub.period)
    unlimited = is_unlimited(limit)
    remaining = None if unlimited else max(0, int(limit) - count)
    percentage = 0 if unlimited else (round((count / limit) * 100) if limit else 100)
    return {
        "plan": sub.plan.value,
        "status": sub.status.value,
        "period_start": sub.period.start.isoformat(),
        "period_end": sub.period.end.isoformat(),
        "count": count,
        "limit": limit,
        "unlimited": unlimited,
        "remaining": remaining,
        "percentage_used": percentage,
        "message": format_usage_message(count, limit),
    }
