from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from analysis_quota.core.errors import InvalidPeriodState


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored here is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class BillingPeriod:
    """Half-open billing window ``[start, end)``."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))

    def contains(self, moment: datetime) -> bool:
        moment = ensure_utc(moment)
        return self.start <= moment < self.end

    def validate(self) -> "BillingPeriod":
        if self.end <= self.start:
            raise InvalidPeriodState(f"period_end {self.end.isoformat()} <= period_start {self.start.isoformat()}")
        return self


def current_free_period(now: datetime | None = None) -> BillingPeriod:
    now = ensure_utc(now or utcnow())
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return BillingPeriod(start=start, end=end)


def period_from_timestamps(start: int | float | None, end: int | float | None) -> BillingPeriod | None:
    if start is None or end is None:
        return None
    try:
        period = BillingPeriod(
            start=datetime.fromtimestamp(int(start), tz=timezone.utc),
            end=datetime.fromtimestamp(int(end), tz=timezone.utc),
        )
    except (TypeError, ValueError, OverflowError, OSError):
        return None
    return period.validate()
