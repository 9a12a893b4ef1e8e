from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from analysis_quota.core.database import dialect_insert
from analysis_quota.core.errors import StorageUnavailable
from analysis_quota.models.analysis_usage import AnalysisUsage
from analysis_quota.services.billing_period import BillingPeriod, utcnow
from analysis_quota.services.plans import is_unlimited

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerResult:
    allowed: bool
    new_count: int


def _insert_zero_row(db: Session, user_id: str, period: BillingPeriod) -> None:
    now = utcnow()
    stmt = (
        dialect_insert(db, AnalysisUsage)
        .values(
            user_id=user_id,
            period_start=period.start,
            period_end=period.end,
            analysis_count=0,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["user_id", "period_start"])
    )
    db.execute(stmt)


def _read_count(db: Session, user_id: str, period: BillingPeriod) -> int:
    value = (
        db.query(AnalysisUsage.analysis_count)
        .filter(AnalysisUsage.user_id == user_id, AnalysisUsage.period_start == period.start)
        .scalar()
    )
    return int(value or 0)


def check_and_increment(db: Session, user_id: str, period: BillingPeriod, limit: int | None) -> LedgerResult:
    """Atomically consume one unit of quota for ``(user_id, period.start)``.

    The row is created with a zero count if missing, then a single conditional
    UPDATE increments it only while the count is below ``limit``. The database
    serializes concurrent callers on that row, so at most ``limit`` calls per
    period are ever approved. ``limit=None`` means unlimited: the call is always
    approved and the count still moves.
    """
    try:
        _insert_zero_row(db, user_id, period)

        stmt = (
            update(AnalysisUsage)
            .where(AnalysisUsage.user_id == user_id)
            .where(AnalysisUsage.period_start == period.start)
        )
        if not is_unlimited(limit):
            stmt = stmt.where(AnalysisUsage.analysis_count < int(limit))
        stmt = stmt.values(
            analysis_count=AnalysisUsage.analysis_count + 1,
            updated_at=utcnow(),
        ).execution_options(synchronize_session=False)

        result = db.execute(stmt)
        allowed = (result.rowcount or 0) > 0
        count = _read_count(db, user_id, period)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("quota.ledger.increment_failed user_id=%s period_start=%s", user_id, period.start.isoformat())
        raise StorageUnavailable("usage ledger write failed") from exc

    return LedgerResult(allowed=allowed, new_count=count)


def get_usage_count(db: Session, user_id: str, period: BillingPeriod) -> int:
    try:
        return _read_count(db, user_id, period)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageUnavailable("usage ledger read failed") from exc


def ensure_period_row(db: Session, user_id: str, period: BillingPeriod) -> None:
    """Create a zero row for the period if none exists. Does not commit."""
    _insert_zero_row(db, user_id, period)


def reset_period(db: Session, user_id: str, period: BillingPeriod) -> None:
    """Upsert the period's row to zero. Does not commit."""
    now = utcnow()
    stmt = dialect_insert(db, AnalysisUsage).values(
        user_id=user_id,
        period_start=period.start,
        period_end=period.end,
        analysis_count=0,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "period_start"],
        set_={"analysis_count": 0, "period_end": period.end, "updated_at": now},
    )
    db.execute(stmt)


def release(db: Session, user_id: str, period: BillingPeriod) -> int:
    """Give back one unit consumed for a creation that never got persisted."""
    try:
        stmt = (
            update(AnalysisUsage)
            .where(AnalysisUsage.user_id == user_id)
            .where(AnalysisUsage.period_start == period.start)
            .where(AnalysisUsage.analysis_count > 0)
            .values(analysis_count=AnalysisUsage.analysis_count - 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.execute(stmt)
        count = _read_count(db, user_id, period)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("quota.ledger.release_failed user_id=%s period_start=%s", user_id, period.start.isoformat())
        raise StorageUnavailable("usage ledger release failed") from exc
    logger.info("quota.ledger.released user_id=%s period_start=%s count=%s", user_id, period.start.isoformat(), count)
    return count
