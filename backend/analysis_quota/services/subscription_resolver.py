from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from analysis_quota.core.errors import InvalidPeriodState, StorageUnavailable
from analysis_quota.models.subscription import Subscription
from analysis_quota.services.billing_period import BillingPeriod, current_free_period, ensure_utc, utcnow
from analysis_quota.services.plans import Plan, SubscriptionStatus, parse_plan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedSubscription:
    user_id: str
    plan: Plan
    status: SubscriptionStatus
    period: BillingPeriod
    persisted: bool


def free_subscription(user_id: str, now: datetime | None = None) -> ResolvedSubscription:
    """Transient free-plan subscription for the current calendar month. Never written."""
    return ResolvedSubscription(
        user_id=user_id,
        plan=Plan.FREE,
        status=SubscriptionStatus.ACTIVE,
        period=current_free_period(now),
        persisted=False,
    )


def _load_active_row(db: Session, user_id: str) -> Subscription | None:
    try:
        return (
            db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .filter(Subscription.status == SubscriptionStatus.ACTIVE.value)
            .order_by(Subscription.updated_at.desc())
            .first()
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("quota.resolver.read_failed user_id=%s", user_id)
        raise StorageUnavailable("subscription read failed") from exc


def resolve_subscription(db: Session, user_id: str, now: datetime | None = None) -> ResolvedSubscription:
    now = ensure_utc(now or utcnow())
    row = _load_active_row(db, user_id)
    if row is None:
        return free_subscription(user_id, now)

    try:
        plan = parse_plan(row.plan)
    except ValueError as exc:
        logger.error("quota.resolver.invalid_plan user_id=%s plan=%r", user_id, row.plan)
        raise InvalidPeriodState(f"unknown plan {row.plan!r}") from exc

    if plan is Plan.FREE:
        # Free usage is always counted per calendar month, whatever the row says.
        return ResolvedSubscription(
            user_id=user_id,
            plan=Plan.FREE,
            status=SubscriptionStatus.ACTIVE,
            period=current_free_period(now),
            persisted=True,
        )

    if row.current_period_start is None or row.current_period_end is None:
        logger.error("quota.resolver.missing_period user_id=%s plan=%s", user_id, plan.value)
        raise InvalidPeriodState("paid subscription without a billing period")

    period = BillingPeriod(start=row.current_period_start, end=row.current_period_end)
    try:
        period.validate()
    except InvalidPeriodState:
        logger.error(
            "quota.resolver.invalid_period user_id=%s start=%s end=%s",
            user_id,
            period.start.isoformat(),
            period.end.isoformat(),
        )
        raise

    if not period.contains(now):
        # The provider has not reported the next cycle yet; paid access lapses to free.
        logger.info(
            "quota.resolver.period_expired user_id=%s plan=%s period_end=%s",
            user_id,
            plan.value,
            period.end.isoformat(),
        )
        return free_subscription(user_id, now)

    return ResolvedSubscription(
        user_id=user_id,
        plan=plan,
        status=SubscriptionStatus.ACTIVE,
        period=period,
        persisted=True,
    )
