import time
import unittest
from unittest.mock import patch

import jwt
from fastapi import FastAPI
from fastapi.testclient import TestClient

from analysis_quota.api.endpoints import analyses
from analysis_quota.core.database import get_db
from analysis_quota.core.security import CurrentUser, get_current_user
from analysis_quota.core.settings import settings
from analysis_quota.models.profile import Profile
from analysis_quota.models.property_analysis import PropertyAnalysis
from analysis_quota.models.subscription import Subscription
from analysis_quota.services.billing_period import current_free_period
from analysis_quota.services.usage_ledger import get_usage_count

from support import make_session_factory

JWT_SECRET = "test-jwt-secret-with-at-least-32-bytes!"


class _ApiCase(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = make_session_factory()
        self.db = self.Session()

        self.app = FastAPI()
        self.app.include_router(analyses.router, prefix="/api")

        def override_get_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        self.app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(self.app)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()


class TestAnalysesEndpoint(_ApiCase):
    def setUp(self):
        super().setUp()
        self.app.dependency_overrides[get_current_user] = lambda: CurrentUser(id="user-1", email="a@example.com")

    def test_free_plan_allows_three_then_rejects(self):
        for i in range(3):
            resp = self.client.post("/api/analyses", json={"property_address": f"{i} Main St"})
            self.assertEqual(resp.status_code, 201, resp.text)
            body = resp.json()
            self.assertEqual(body["plan_at_time"], "free")
            self.assertEqual(body["usage_count"], i + 1)
            self.assertEqual(body["usage_limit"], 3)

        resp = self.client.post("/api/analyses", json={"property_address": "4 Main St"})
        self.assertEqual(resp.status_code, 402)
        detail = resp.json()["detail"]
        self.assertEqual(detail["code"], "QUOTA_EXCEEDED")
        self.assertEqual(detail["hint"], "upgrade_required")
        self.assertEqual(detail["limit"], 3)
        self.assertIn("3", detail["message"])

        self.assertEqual(self.db.query(PropertyAnalysis).count(), 3)
        self.assertEqual(get_usage_count(self.db, "user-1", current_free_period()), 3)

    def test_usage_endpoint(self):
        self.client.post("/api/analyses", json={})
        resp = self.client.get("/api/usage")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["plan"], "free")
        self.assertEqual(body["count"], 1)
        self.assertEqual(body["limit"], 3)
        self.assertEqual(body["remaining"], 2)
        self.assertFalse(body["unlimited"])
        self.assertEqual(body["percentage_used"], 33)

    def test_failed_persist_releases_reserved_slot(self):
        def broken_record(**kwargs):
            kwargs["user_id"] = None
            return PropertyAnalysis(**kwargs)

        with patch.object(analyses, "PropertyAnalysis", side_effect=broken_record):
            resp = self.client.post("/api/analyses", json={"property_address": "1 Main St"})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(get_usage_count(self.db, "user-1", current_free_period()), 0)
        self.assertEqual(self.db.query(PropertyAnalysis).count(), 0)

    def test_missing_storage_is_service_unavailable(self):
        engine, Session = make_session_factory(create_tables=False)
        self.addCleanup(engine.dispose)

        def broken_db():
            db = Session()
            try:
                yield db
            finally:
                db.close()

        self.app.dependency_overrides[get_db] = broken_db
        resp = self.client.post("/api/analyses", json={})
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["detail"]["code"], "STORAGE_UNAVAILABLE")


class TestAuthentication(_ApiCase):
    def setUp(self):
        super().setUp()
        patcher = patch.multiple(settings, supabase_jwt_secret=JWT_SECRET, supabase_jwt_audience="authenticated")
        patcher.start()
        self.addCleanup(patcher.stop)

    def _token(self, sub: str = "user-9", **extra) -> str:
        claims = {"sub": sub, "email": "new@example.com", "aud": "authenticated", "exp": int(time.time()) + 600}
        claims.update(extra)
        return jwt.encode(claims, JWT_SECRET, algorithm="HS256")

    def test_missing_bearer_is_rejected(self):
        resp = self.client.post("/api/analyses", json={})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(self.db.query(PropertyAnalysis).count(), 0)

    def test_bad_token_is_rejected(self):
        resp = self.client.get("/api/usage", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(resp.status_code, 401)

    def test_expired_token_is_rejected(self):
        token = self._token(exp=int(time.time()) - 60)
        resp = self.client.get("/api/usage", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(resp.status_code, 401)

    def test_first_request_provisions_free_subscription(self):
        headers = {"Authorization": f"Bearer {self._token()}"}
        resp = self.client.get("/api/usage", headers=headers)
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertEqual((body["plan"], body["count"], body["limit"]), ("free", 0, 3))

        self.assertEqual(self.db.query(Profile).filter(Profile.id == "user-9").one().email, "new@example.com")
        sub = self.db.query(Subscription).filter(Subscription.user_id == "user-9").one()
        self.assertEqual((sub.plan, sub.status), ("free", "active"))

        # A second request reuses the existing identity.
        resp = self.client.post("/api/analyses", json={}, headers=headers)
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(self.db.query(Subscription).count(), 1)


if __name__ == "__main__":
    unittest.main()
