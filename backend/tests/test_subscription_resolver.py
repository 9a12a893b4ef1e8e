import unittest

from analysis_quota.core.errors import InvalidPeriodState, StorageUnavailable
from analysis_quota.models.subscription import Subscription
from analysis_quota.services.billing_period import BillingPeriod
from analysis_quota.services.plans import Plan, SubscriptionStatus
from analysis_quota.services.subscription_resolver import resolve_subscription

from support import make_session_factory, utc

NOW = utc(2026, 2, 10, 12)


class TestSubscriptionResolver(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = make_session_factory()
        self.db = self.Session()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def _add(self, plan="pro", status="active", start=utc(2026, 2, 5), end=utc(2026, 3, 5), user_id="u1"):
        self.db.add(
            Subscription(
                user_id=user_id,
                plan=plan,
                status=status,
                current_period_start=start,
                current_period_end=end,
            )
        )
        self.db.commit()

    def test_no_row_defaults_to_free_calendar_month(self):
        sub = resolve_subscription(self.db, "u1", now=NOW)
        self.assertIs(sub.plan, Plan.FREE)
        self.assertIs(sub.status, SubscriptionStatus.ACTIVE)
        self.assertEqual(sub.period, BillingPeriod(start=utc(2026, 2, 1), end=utc(2026, 3, 1)))
        self.assertFalse(sub.persisted)
        self.assertEqual(self.db.query(Subscription).count(), 0)

    def test_active_paid_row_uses_provider_period(self):
        self._add()
        sub = resolve_subscription(self.db, "u1", now=NOW)
        self.assertIs(sub.plan, Plan.PRO)
        self.assertEqual(sub.period, BillingPeriod(start=utc(2026, 2, 5), end=utc(2026, 3, 5)))
        self.assertTrue(sub.persisted)

    def test_past_due_falls_back_to_free(self):
        self._add(status="past_due")
        sub = resolve_subscription(self.db, "u1", now=NOW)
        self.assertIs(sub.plan, Plan.FREE)
        self.assertEqual(sub.period.start, utc(2026, 2, 1))

    def test_canceled_falls_back_to_free(self):
        self._add(plan="free", status="canceled")
        self.assertIs(resolve_subscription(self.db, "u1", now=NOW).plan, Plan.FREE)

    def test_expired_paid_period_falls_back_to_free(self):
        self._add(plan="enterprise", start=utc(2025, 12, 5), end=utc(2026, 1, 5))
        sub = resolve_subscription(self.db, "u1", now=NOW)
        self.assertIs(sub.plan, Plan.FREE)
        self.assertFalse(sub.persisted)

    def test_free_row_always_uses_current_calendar_month(self):
        self._add(plan="free", start=utc(2025, 11, 1), end=utc(2025, 12, 1))
        sub = resolve_subscription(self.db, "u1", now=NOW)
        self.assertIs(sub.plan, Plan.FREE)
        self.assertEqual(sub.period, BillingPeriod(start=utc(2026, 2, 1), end=utc(2026, 3, 1)))
        self.assertTrue(sub.persisted)

    def test_other_users_rows_are_ignored(self):
        self._add(user_id="someone-else")
        self.assertIs(resolve_subscription(self.db, "u1", now=NOW).plan, Plan.FREE)

    def test_inverted_period_is_invalid_state(self):
        self._add(start=utc(2026, 3, 5), end=utc(2026, 2, 5))
        with self.assertRaises(InvalidPeriodState):
            resolve_subscription(self.db, "u1", now=NOW)

    def test_unknown_plan_is_invalid_state(self):
        self._add(plan="platinum")
        with self.assertRaises(InvalidPeriodState):
            resolve_subscription(self.db, "u1", now=NOW)

    def test_storage_error_is_not_a_free_default(self):
        engine, Session = make_session_factory(create_tables=False)
        db = Session()
        try:
            with self.assertRaises(StorageUnavailable):
                resolve_subscription(db, "u1", now=NOW)
        finally:
            db.close()
            engine.dispose()


if __name__ == "__main__":
    unittest.main()
