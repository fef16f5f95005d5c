from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from core.models import AuditLog, Company


class CompanyScopeTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()

        self.company_a = Company.objects.create(code="CA", name="Company A", tax_id="20100000011")
        self.company_b = Company.objects.create(code="CB", name="Company B", tax_id="20100000012")

        self.clerk_a = self.user_model.objects.create_user(
            username="core-clerk-a",
            password="pass1234",
            company=self.company_a,
            role="clerk",
        )
        self.root = self.user_model.objects.create_superuser(username="root", password="pass1234", email="root@example.com")

    def test_user_only_sees_own_company(self):
        self.client.force_authenticate(user=self.clerk_a)

        response = self.client.get("/api/v1/companies/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        ids = {item["id"] for item in payload["results"]}
        self.assertEqual(ids, {str(self.company_a.id)})

        response = self.client.get(f"/api/v1/companies/{self.company_b.id}/")
        self.assertEqual(response.status_code, 404)

    def test_superuser_sees_every_company(self):
        self.client.force_authenticate(user=self.root)

        response = self.client.get("/api/v1/companies/")

        ids = {item["id"] for item in response.json()["results"]}
        self.assertIn(str(self.company_a.id), ids)
        self.assertIn(str(self.company_b.id), ids)


class RolePermissionCoreTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.company = Company.objects.create(code="RP", name="Role Perm")
        self.clerk = self.user_model.objects.create_user(
            username="clerk-core",
            password="pass1234",
            company=self.company,
            role="clerk",
        )
        self.admin = self.user_model.objects.create_user(
            username="admin-core",
            password="pass1234",
            company=self.company,
            role="admin",
        )

    def test_clerk_cannot_update_company_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.clerk)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.patch(f"/api/v1/companies/{self.company.id}/", {"tax_rate": "0.10"}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_admin_sets_company_overrides(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch(
            f"/api/v1/companies/{self.company.id}/",
            {"tax_rate": "0.1000", "monthly_order_limit": 20},
            format="json",
            HTTP_X_REQUEST_ID="req-123",
        )

        self.assertEqual(response.status_code, 200)
        self.company.refresh_from_db()
        self.assertEqual(str(self.company.tax_rate), "0.1000")
        self.assertEqual(self.company.monthly_order_limit, 20)
        self.assertTrue(
            AuditLog.objects.filter(action="company.update", entity="company", request_id="req-123").exists()
        )

    def test_tax_rate_must_be_a_fraction(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch(f"/api/v1/companies/{self.company.id}/", {"tax_rate": "18"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("tax_rate", response.json()["errors"])


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.company = Company.objects.create(code="AL", name="Audit")
        self.other_company = Company.objects.create(code="AO", name="Audit Other")
        self.admin = self.user_model.objects.create_user(
            username="audit-admin",
            password="pass1234",
            company=self.company,
            role="admin",
        )

    def test_audit_logs_are_scoped_and_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.create(action="test.action", entity="test", company=self.company, actor=self.admin)
        AuditLog.objects.create(action="test.action", entity="test", company=self.other_company)

        listing = self.client.get("/api/v1/audit-logs/", {"action": "test.action"}).json()
        self.assertEqual([item["id"] for item in listing["results"]], [str(log.id)])
        self.assertEqual(listing["results"][0]["actor_username"], "audit-admin")

        patch_res = self.client.patch(f"/api/v1/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_export_writes_csv(self):
        self.client.force_authenticate(user=self.admin)
        AuditLog.objects.create(action="supplier.create", entity="supplier", company=self.company, actor=self.admin)

        response = self.client.get("/api/v1/audit-logs/export/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        rows = response.content.decode().strip().splitlines()
        self.assertTrue(rows[0].startswith("id,created_at,actor"))
        self.assertIn("supplier.create", rows[1])


class TokenTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.company = Company.objects.create(code="TK", name="Token Co")
        self.user = get_user_model().objects.create_user(
            username="buyer-token",
            email="Buyer@Example.com",
            password="pass1234",
            company=self.company,
            role="buyer",
        )

    def test_token_carries_role_and_company(self):
        response = self.client.post("/api/v1/token/", {"username": "buyer-token", "password": "pass1234"}, format="json")

        self.assertEqual(response.status_code, 200)
        token = AccessToken(response.json()["access"])
        self.assertEqual(token["role"], "buyer")
        self.assertEqual(token["company_id"], str(self.company.id))
        self.assertFalse(token["is_superuser"])

    def test_login_with_email_is_case_insensitive(self):
        response = self.client.post("/api/v1/token/", {"username": "BUYER@example.com", "password": "pass1234"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertIn("refresh", response.json())

    def test_wrong_password_is_rejected(self):
        response = self.client.post("/api/v1/token/", {"username": "buyer-token", "password": "nope"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "authentication_failed")


class HealthCheckTests(TestCase):
    def test_healthz_echoes_request_id(self):
        response = APIClient().get("/api/v1/healthz/", HTTP_X_REQUEST_ID="health-check-1")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "request_id": "health-check-1"})
        self.assertEqual(response["X-Request-ID"], "health-check-1")

    def test_readyz_reports_database_failure(self):
        with patch("core.views.connections") as mocked:
            mocked.__getitem__.return_value.cursor.side_effect = RuntimeError("db down")
            with self.assertLogs("core.views", level="ERROR"):
                response = APIClient().get("/api/v1/readyz/")

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["status"], "error")

    def test_readyz_ok(self):
        response = APIClient().get("/api/v1/readyz/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ready")
