import unittest

from analysis_quota.services.plans import (
    UNLIMITED,
    Plan,
    SubscriptionStatus,
    is_unlimited,
    limit_for,
    parse_plan,
    parse_status,
)


class TestQuotaPolicy(unittest.TestCase):
    def test_free_limit(self):
        self.assertEqual(limit_for(Plan.FREE), 3)
        self.assertEqual(limit_for("free"), 3)

    def test_paid_plans_unlimited(self):
        self.assertIs(limit_for(Plan.PRO), UNLIMITED)
        self.assertIs(limit_for(Plan.ENTERPRISE), UNLIMITED)
        self.assertTrue(is_unlimited(limit_for("enterprise")))
        self.assertFalse(is_unlimited(limit_for("free")))

    def test_zero_is_not_unlimited(self):
        self.assertFalse(is_unlimited(0))

    def test_parse_plan_normalizes(self):
        self.assertIs(parse_plan(" PRO "), Plan.PRO)
        self.assertIs(parse_plan(Plan.ENTERPRISE), Plan.ENTERPRISE)

    def test_parse_plan_rejects_unknown(self):
        with self.assertRaises(ValueError):
            parse_plan("business")
        with self.assertRaises(ValueError):
            parse_plan(None)

    def test_parse_status(self):
        self.assertIs(parse_status("past_due"), SubscriptionStatus.PAST_DUE)
        with self.assertRaises(ValueError):
            parse_status("trialing")


if __name__ == "__main__":
    unittest.main()
