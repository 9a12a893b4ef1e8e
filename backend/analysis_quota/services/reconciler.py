from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from analysis_quota.core.database import dialect_insert
from analysis_quota.core.errors import StorageUnavailable
from analysis_quota.models.subscription import Subscription
from analysis_quota.services.billing_period import BillingPeriod, current_free_period, ensure_utc, utcnow
from analysis_quota.services.plans import Plan, SubscriptionStatus, parse_plan
from analysis_quota.services.usage_ledger import ensure_period_row, reset_period

logger = logging.getLogger(__name__)


def _get_subscription(db: Session, user_id: str) -> Subscription | None:
    return db.query(Subscription).filter(Subscription.user_id == user_id).first()


def _storage_failure(db: Session, event: str, user_id: str, exc: Exception) -> StorageUnavailable:
    db.rollback()
    logger.exception("quota.reconciler.%s.failed user_id=%s", event, user_id)
    err = StorageUnavailable(f"{event} failed")
    err.__cause__ = exc
    return err


def find_user_id(db: Session, subscription_ref: str | None = None, customer_ref: str | None = None) -> str | None:
    try:
        if subscription_ref:
            row = db.query(Subscription).filter(Subscription.provider_subscription_id == subscription_ref).first()
            if row is not None:
                return row.user_id
        if customer_ref:
            row = (
                db.query(Subscription)
                .filter(Subscription.provider_customer_id == customer_ref)
                .order_by(Subscription.updated_at.desc())
                .first()
            )
            if row is not None:
                return row.user_id
    except SQLAlchemyError as exc:
        raise _storage_failure(db, "find_user_id", subscription_ref or customer_ref or "", exc)
    return None


def provision_default_subscription(db: Session, user_id: str, now: datetime | None = None) -> bool:
    """Create the free subscription and its zero usage row for a new identity.

    Returns True when a subscription row was created, False when one existed.
    """
    period = current_free_period(now)
    stamp = utcnow()
    stmt = (
        dialect_insert(db, Subscription)
        .values(
            user_id=user_id,
            plan=Plan.FREE.value,
            status=SubscriptionStatus.ACTIVE.value,
            current_period_start=period.start,
            current_period_end=period.end,
            created_at=stamp,
            updated_at=stamp,
        )
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    try:
        created = (db.execute(stmt).rowcount or 0) > 0
        ensure_period_row(db, user_id, period)
        db.commit()
    except SQLAlchemyError as exc:
        raise _storage_failure(db, "provision", user_id, exc)
    if created:
        logger.info("quota.reconciler.provisioned user_id=%s period_start=%s", user_id, period.start.isoformat())
    return created


def subscription_activated(
    db: Session,
    user_id: str,
    plan: Plan | str,
    period: BillingPeriod,
    customer_ref: str | None = None,
    subscription_ref: str | None = None,
    provider: str = "stripe",
) -> bool:
    """Upsert the user's subscription to an active paid plan.

    Usage rows are left alone: counts are keyed by period start, so an upgrade
    inside the current period keeps the count already consumed.

    An existing paid row is only overwritten when the event's period starts no
    earlier than the stored one or the event carries a different subscription
    ref. Returns False when the event was older than the stored state.
    """
    plan = parse_plan(plan)
    period.validate()
    stamp = utcnow()
    stmt = dialect_insert(db, Subscription).values(
        user_id=user_id,
        plan=plan.value,
        status=SubscriptionStatus.ACTIVE.value,
        current_period_start=period.start,
        current_period_end=period.end,
        provider=provider,
        provider_customer_id=customer_ref,
        provider_subscription_id=subscription_ref,
        created_at=stamp,
        updated_at=stamp,
    )
    excluded = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id"],
        set_={
            "plan": excluded.plan,
            "status": excluded.status,
            "current_period_start": excluded.current_period_start,
            "current_period_end": excluded.current_period_end,
            "provider": excluded.provider,
            "provider_customer_id": func.coalesce(excluded.provider_customer_id, Subscription.provider_customer_id),
            "provider_subscription_id": func.coalesce(
                excluded.provider_subscription_id, Subscription.provider_subscription_id
            ),
            "updated_at": stamp,
        },
        where=or_(
            Subscription.plan == Plan.FREE.value,
            Subscription.current_period_start.is_(None),
            excluded.current_period_start >= Subscription.current_period_start,
            and_(
                excluded.provider_subscription_id.isnot(None),
                Subscription.provider_subscription_id.is_distinct_from(excluded.provider_subscription_id),
            ),
        ),
    )
    try:
        result = db.execute(stmt)
        db.commit()
    except SQLAlchemyError as exc:
        raise _storage_failure(db, "activated", user_id, exc)
    if not result.rowcount:
        logger.info(
            "quota.reconciler.activated.stale user_id=%s plan=%s period_start=%s",
            user_id,
            plan.value,
            period.start.isoformat(),
        )
        return False
    logger.info(
        "quota.reconciler.activated user_id=%s plan=%s period_start=%s period_end=%s",
        user_id,
        plan.value,
        period.start.isoformat(),
        period.end.isoformat(),
    )
    return True


def subscription_renewed(db: Session, user_id: str, new_period: BillingPeriod) -> bool:
    """Move the subscription to ``new_period`` and open a zeroed usage row for it.

    A redelivered event finds the period already stored and leaves the usage
    row untouched; a changed end on the same start is stored without a reset.
    Returns False when the user has no subscription row or the paid period
    already stored starts later than ``new_period``.
    """
    new_period.validate()
    try:
        sub = _get_subscription(db, user_id)
        if sub is None:
            logger.warning("quota.reconciler.renewed.no_subscription user_id=%s", user_id)
            return False

        stored_start = ensure_utc(sub.current_period_start) if sub.current_period_start else None
        stored_end = ensure_utc(sub.current_period_end) if sub.current_period_end else None
        if stored_start is not None and sub.plan != Plan.FREE.value and new_period.start < stored_start:
            logger.info(
                "quota.reconciler.renewed.stale user_id=%s period_start=%s stored_start=%s",
                user_id,
                new_period.start.isoformat(),
                stored_start.isoformat(),
            )
            return False

        period_changed = stored_start != new_period.start
        end_changed = stored_end != new_period.end
        if period_changed or end_changed:
            sub.current_period_start = new_period.start
            sub.current_period_end = new_period.end
        if period_changed:
            reset_period(db, user_id, new_period)
        if sub.status != SubscriptionStatus.ACTIVE.value:
            sub.status = SubscriptionStatus.ACTIVE.value
        sub.updated_at = utcnow()
        db.commit()
    except SQLAlchemyError as exc:
        raise _storage_failure(db, "renewed", user_id, exc)
    logger.info(
        "quota.reconciler.renewed user_id=%s period_start=%s period_end=%s period_changed=%s end_changed=%s",
        user_id,
        new_period.start.isoformat(),
        new_period.end.isoformat(),
        period_changed,
        end_changed,
    )
    return True


def subscription_canceled(db: Session, user_id: str) -> bool:
    try:
        sub = _get_subscription(db, user_id)
        if sub is None:
            logger.warning("quota.reconciler.canceled.no_subscription user_id=%s", user_id)
            return False
        sub.status = SubscriptionStatus.CANCELED.value
        sub.plan = Plan.FREE.value
        # The customer reference stays so a later checkout reuses it.
        sub.provider_subscription_id = None
        sub.updated_at = utcnow()
        db.commit()
    except SQLAlchemyError as exc:
        raise _storage_failure(db, "canceled", user_id, exc)
    logger.info("quota.reconciler.canceled user_id=%s", user_id)
    return True


def payment_failed(db: Session, user_id: str) -> bool:
    try:
        sub = _get_subscription(db, user_id)
        if sub is None:
            logger.warning("quota.reconciler.payment_failed.no_subscription user_id=%s", user_id)
            return False
        if sub.status == SubscriptionStatus.CANCELED.value:
            return True
        sub.status = SubscriptionStatus.PAST_DUE.value
        sub.updated_at = utcnow()
        db.commit()
    except SQLAlchemyError as exc:
        raise _storage_failure(db, "payment_failed", user_id, exc)
    logger.info("quota.reconciler.payment_failed user_id=%s plan=%s", user_id, sub.plan)
    return True
