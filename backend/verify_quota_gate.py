from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from analysis_quota.core.database import Base
from analysis_quota.models import analysis_usage, billing_event, profile, property_analysis, subscription  # noqa: F401
from analysis_quota.services.billing_period import BillingPeriod, current_free_period
from analysis_quota.services.enforcement_gate import authorize_analysis_creation
from analysis_quota.services.plans import Plan
from analysis_quota.services.reconciler import (
    payment_failed,
    provision_default_subscription,
    subscription_activated,
    subscription_canceled,
    subscription_renewed,
)
from analysis_quota.services.usage_ledger import get_usage_count


def main() -> None:
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        user_id = "user-1"
        now = datetime(2026, 2, 10, 9, tzinfo=timezone.utc)
        feb = current_free_period(now)
        assert provision_default_subscription(db, user_id, now=now)
        assert not provision_default_subscription(db, user_id, now=now)

        allowed = [authorize_analysis_creation(db, user_id, now=now).allowed for _ in range(4)]
        assert allowed == [True, True, True, False], allowed
        assert get_usage_count(db, user_id, feb) == 3

        subscription_activated(db, user_id=user_id, plan=Plan.PRO, period=feb, subscription_ref="sub_1")
        decision = authorize_analysis_creation(db, user_id, now=now)
        assert decision.allowed and decision.plan_at_time == Plan.PRO, decision
        assert decision.count == 4, decision.count

        mar = BillingPeriod(
            datetime(2026, 3, 1, tzinfo=timezone.utc),
            datetime(2026, 4, 1, tzinfo=timezone.utc),
        )
        assert subscription_renewed(db, user_id, mar)
        assert get_usage_count(db, user_id, mar) == 0
        assert get_usage_count(db, user_id, feb) == 4

        # Redelivered renewal keeps the count already consumed in the new period.
        assert authorize_analysis_creation(db, user_id, now=mar.start).count == 1
        assert subscription_renewed(db, user_id, mar)
        assert get_usage_count(db, user_id, mar) == 1

        payment_failed(db, user_id)
        later = datetime(2026, 3, 2, tzinfo=timezone.utc)
        decision = authorize_analysis_creation(db, user_id, now=later)
        assert decision.plan_at_time == Plan.FREE and decision.limit == 3, decision

        subscription_canceled(db, user_id)
        decision = authorize_analysis_creation(db, user_id, now=later)
        assert decision.allowed and decision.plan_at_time == Plan.FREE, decision
    finally:
        db.close()


if __name__ == "__main__":
    main()
    print("OK")
