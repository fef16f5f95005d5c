from datetime import date, timedelta

from django.core.cache import cache
from django.test import TestCase
from rest_framework.test import APIClient

from core.models import AuditLog
from purchasing import lifecycle
from purchasing.models import PurchaseInvoice, PurchaseOrder, Supplier, SupplierProduct, SupplierQuotation
from purchasing.tests.base import ProcurementFixturesMixin


class ApiTestCase(ProcurementFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        cache.clear()
        self.client = APIClient()

    def order_payload(self, **extra):
        payload = {
            "supplier_id": str(self.supplier.id),
            "order_number": "OC-2026-0101",
            "notes": "Office restock",
            "lines": [
                {"product_id": str(self.paper.id), "quantity": 3, "unit_price": "50.00"},
                {"product_id": str(self.drill.id), "quantity": 1, "unit_price": "200.00", "discount": "5"},
            ],
        }
        payload.update(extra)
        return payload


class PurchaseOrderApiTests(ApiTestCase):
    def test_buyer_creates_order_and_audit_log_is_written(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post("/api/v1/purchase-orders/", self.order_payload(), format="json")

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["order_number"], "OC-2026-0101")
        self.assertEqual(body["status"], "pending")
        self.assertEqual(body["subtotal"], "340.00")
        self.assertEqual(body["discount"], "10.00")
        self.assertEqual(body["tax"], "59.40")
        self.assertEqual(body["total"], "389.40")
        self.assertEqual(body["supplier_name"], "Distribuidora Andina")
        self.assertEqual(sorted(body["allowed_operations"]), ["cancel", "confirm", "modify"])
        self.assertEqual(len(body["lines"]), 2)

        order = PurchaseOrder.objects.get(id=body["id"])
        self.assertEqual(order.company_id, self.company.id)
        self.assertEqual(order.created_by_id, self.buyer.id)
        self.assertTrue(AuditLog.objects.filter(action="purchase_order.create", entity_id=order.id).exists())

    def test_order_number_is_generated_when_omitted(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post("/api/v1/purchase-orders/", self.order_payload(order_number=None), format="json")

        self.assertEqual(response.status_code, 201)
        self.assertRegex(response.json()["order_number"], r"^OC-\d{4}-\d{6}$")

    def test_malformed_body_returns_validation_envelope(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post("/api/v1/purchase-orders/", {"lines": []}, format="json")

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["code"], "validation_error")
        self.assertIn("supplier_id", body["errors"])

    def test_rule_errors_use_procurement_envelope(self):
        self.make_order(number="OC-2026-0101")
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post("/api/v1/purchase-orders/", self.order_payload(), format="json")

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["code"], "invalid_input")
        self.assertEqual(body["status"], 400)
        self.assertEqual(body["errors"]["field"], "order_number")

        response = self.client.post("/api/v1/purchase-orders/", self.order_payload(order_number="OC-2026-0102", lines=[]), format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["errors"]["field"], "lines")

    def test_clerk_can_read_but_not_create(self):
        self.make_order()
        self.client.force_authenticate(user=self.clerk)

        self.assertEqual(self.client.get("/api/v1/purchase-orders/").status_code, 200)
        response = self.client.post("/api/v1/purchase-orders/", self.order_payload(), format="json")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")

    def test_list_is_company_scoped_and_filterable(self):
        own = self.make_order(number="OC-2026-0001")
        self.make_order(number="OC-2026-0002", status=PurchaseOrder.Status.CONFIRMED)
        foreign_supplier = Supplier.objects.create(company=self.other_company, name="Elsewhere", tax_id="20622222222")
        PurchaseOrder.objects.create(
            company=self.other_company,
            supplier=foreign_supplier,
            order_number="OC-2026-0003",
            emission_date=date(2026, 3, 10),
        )
        self.client.force_authenticate(user=self.buyer)

        payload = self.client.get("/api/v1/purchase-orders/").json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        self.assertEqual(payload["count"], 2)
        self.assertNotIn("OC-2026-0003", {row["order_number"] for row in payload["results"]})

        payload = self.client.get("/api/v1/purchase-orders/", {"status": "pending"}).json()
        self.assertEqual([row["id"] for row in payload["results"]], [str(own.id)])

        payload = self.client.get("/api/v1/purchase-orders/", {"search": "andina"}).json()
        self.assertEqual(payload["count"], 2)

        response = self.client.get("/api/v1/purchase-orders/", {"date_from": "2026-03-31", "date_to": "2026-03-01"})
        self.assertEqual(response.status_code, 400)

    def test_other_company_order_is_not_found(self):
        foreign_supplier = Supplier.objects.create(company=self.other_company, name="Elsewhere", tax_id="20622222222")
        foreign = PurchaseOrder.objects.create(
            company=self.other_company,
            supplier=foreign_supplier,
            order_number="OC-2026-0003",
            emission_date=date(2026, 3, 10),
        )
        self.client.force_authenticate(user=self.admin)

        response = self.client.get(f"/api/v1/purchase-orders/{foreign.id}/")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

        response = self.client.post(f"/api/v1/purchase-orders/{foreign.id}/confirm/")
        self.assertEqual(response.status_code, 404)

    def test_only_admin_confirms(self):
        order = self.make_order()

        self.client.force_authenticate(user=self.buyer)
        self.assertEqual(self.client.post(f"/api/v1/purchase-orders/{order.id}/confirm/").status_code, 403)

        self.client.force_authenticate(user=self.admin)
        response = self.client.post(f"/api/v1/purchase-orders/{order.id}/confirm/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "confirmed")
        self.assertTrue(
            AuditLog.objects.filter(
                action="purchase_order.confirm",
                before_snapshot={"status": "pending"},
                after_snapshot={"status": "confirmed"},
            ).exists()
        )

    def test_disallowed_transition_returns_conflict(self):
        order = self.make_order()
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post(f"/api/v1/purchase-orders/{order.id}/receive/")

        self.assertEqual(response.status_code, 409)
        body = response.json()
        self.assertEqual(body["code"], "invalid_state_transition")
        self.assertEqual(body["errors"]["operation"], "receive")
        self.assertEqual(body["errors"]["current_status"], "pending")

    def test_start_and_receive(self):
        order = self.make_order(status=PurchaseOrder.Status.CONFIRMED)
        self.client.force_authenticate(user=self.buyer)

        self.assertEqual(self.client.post(f"/api/v1/purchase-orders/{order.id}/start/").json()["status"], "in_progress")
        response = self.client.post(f"/api/v1/purchase-orders/{order.id}/receive/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "received")
        self.assertEqual(response.json()["allowed_operations"], ["invoice"])

    def test_cancel_and_delete(self):
        first = self.make_order(number="OC-2026-0001")
        second = self.make_order(number="OC-2026-0002")
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post(f"/api/v1/purchase-orders/{first.id}/cancel/", {"reason": "duplicate"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["cancel_reason"], "duplicate")

        response = self.client.delete(f"/api/v1/purchase-orders/{second.id}/")
        self.assertEqual(response.status_code, 200)
        second.refresh_from_db()
        self.assertEqual(second.status, PurchaseOrder.Status.CANCELLED)

        self.assertEqual(self.client.post(f"/api/v1/purchase-orders/{first.id}/cancel/").status_code, 409)

    def test_patch_replaces_lines(self):
        order = self.make_order()
        self.client.force_authenticate(user=self.buyer)

        response = self.client.patch(
            f"/api/v1/purchase-orders/{order.id}/",
            {"notes": "half", "lines": [{"product_id": str(self.paper.id), "quantity": 2, "unit_price": "50.00"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total"], "118.00")
        self.assertEqual(len(body["lines"]), 1)
        self.assertEqual(body["notes"], "half")

    def test_patch_on_inconsistent_order_is_unprocessable(self):
        order = self.make_order()
        PurchaseOrder.objects.filter(id=order.id).update(total="999.99")
        self.client.force_authenticate(user=self.buyer)

        with self.assertLogs("common.exceptions", level="ERROR"):
            response = self.client.patch(f"/api/v1/purchase-orders/{order.id}/", {"notes": "x"}, format="json")

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "calculation_inconsistency")

    def test_preview_does_not_persist(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post("/api/v1/purchase-orders/preview/", {"lines": self.order_payload()["lines"]}, format="json")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total"], "389.40")
        self.assertEqual(body["tax_base"], "330.00")
        self.assertEqual(body["suggested_volume_discount"], "0.00")
        self.assertFalse(body["exceeds_order_limit"])
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_stats(self):
        self.make_order(number="OC-2026-0001")
        self.make_order(number="OC-2026-0002", status=PurchaseOrder.Status.RECEIVED)
        self.client.force_authenticate(user=self.clerk)

        body = self.client.get("/api/v1/purchase-orders/stats/").json()

        self.assertEqual(body["document_count"], 2)
        self.assertEqual(body["open_count"], 1)
        self.assertEqual(body["completed_count"], 1)
        self.assertEqual(body["total_amount"], "778.80")
        self.assertEqual(body["average_amount"], "389.40")
        self.assertEqual(body["kind"], "purchase_order")


class InvoiceApiTests(ApiTestCase):
    def test_invoice_and_payment_flow(self):
        order = self.make_order(status=PurchaseOrder.Status.CONFIRMED)
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post(
            f"/api/v1/purchase-orders/{order.id}/invoices/",
            {"invoice_number": "F001-123", "issue_date": "2026-03-12", "due_date": "2026-04-12"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        invoice_id = response.json()["id"]
        self.assertEqual(response.json()["balance_due"], "389.40")

        response = self.client.post(f"/api/v1/purchase-invoices/{invoice_id}/payments/", {"amount": "389.40"}, format="json")
        self.assertEqual(response.status_code, 403)

        self.client.force_authenticate(user=self.admin)
        response = self.client.post(
            f"/api/v1/purchase-invoices/{invoice_id}/payments/",
            {"amount": "389.40", "method": "transfer", "reference": "OP-1"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(PurchaseInvoice.objects.get(id=invoice_id).status, PurchaseInvoice.Status.PAID)

        detail = self.client.get(f"/api/v1/purchase-invoices/{invoice_id}/").json()
        self.assertEqual(detail["balance_due"], "0.00")
        self.assertEqual(detail["order_number"], "OC-2026-0001")

        listing = self.client.get("/api/v1/purchase-invoices/", {"status": "paid"}).json()
        self.assertEqual(listing["count"], 1)

    def test_pending_order_cannot_be_invoiced(self):
        order = self.make_order()
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post(f"/api/v1/purchase-orders/{order.id}/invoices/", {"invoice_number": "F001-1"}, format="json")

        self.assertEqual(response.status_code, 409)


class SupplierApiTests(ApiTestCase):
    def test_supplier_crud_is_scoped_and_audited(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post(
            "/api/v1/suppliers/",
            {"name": "Ferreteria Lima", "tax_id": "10456789012", "email": "ventas@ferreteria.pe"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        supplier_id = response.json()["id"]
        self.assertEqual(Supplier.objects.get(id=supplier_id).company_id, self.company.id)

        response = self.client.patch(f"/api/v1/suppliers/{supplier_id}/", {"phone": "987654321"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["phone"], "987654321")

        response = self.client.delete(f"/api/v1/suppliers/{supplier_id}/")
        self.assertEqual(response.status_code, 204)
        self.assertFalse(Supplier.objects.get(id=supplier_id).is_active)

        actions = set(AuditLog.objects.filter(entity="supplier").values_list("action", flat=True))
        self.assertEqual(actions, {"supplier.create", "supplier.update", "supplier.deactivate"})

        names = {row["name"] for row in self.client.get("/api/v1/suppliers/").json()["results"]}
        self.assertNotIn("Foreign Supplier", names)

    def test_invalid_or_duplicate_tax_id_is_rejected(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post("/api/v1/suppliers/", {"name": "Dup", "tax_id": "20512345678"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["errors"]["field"], "tax_id")

        response = self.client.post("/api/v1/suppliers/", {"name": "Bad", "tax_id": "99999999999"}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_clerk_cannot_manage_suppliers(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post("/api/v1/suppliers/", {"name": "Nope", "tax_id": "10456789012"}, format="json")

        self.assertEqual(response.status_code, 403)

    def test_supplier_product_catalog(self):
        self.client.force_authenticate(user=self.buyer)
        url = f"/api/v1/suppliers/{self.supplier.id}/products/"

        response = self.client.post(
            url,
            {"product_id": str(self.paper.id), "supplier_code": "AND-PAP", "purchase_price": "48.00", "lead_time_days": 5},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["product_sku"], "PAP")
        self.assertEqual(response.json()["purchase_price"], "48.00")

        response = self.client.post(url, {"product_id": str(self.paper.id)}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_input")
        self.assertEqual(response.json()["errors"]["field"], "product_id")

        response = self.client.post(url, {"product_id": str(self.foreign_product.id)}, format="json")
        self.assertEqual(response.status_code, 404)

        self.client.force_authenticate(user=self.clerk)
        body = self.client.get(url).json()
        self.assertEqual(body["count"], 1)
        self.assertEqual(body["results"][0]["supplier_code"], "AND-PAP")
        self.assertEqual(body["results"][0]["lead_time_days"], 5)
        response = self.client.post(url, {"product_id": str(self.drill.id)}, format="json")
        self.assertEqual(response.status_code, 403)

        self.client.force_authenticate(user=self.buyer)
        self.assertEqual(self.client.delete(f"{url}{self.paper.id}/").status_code, 204)
        self.assertEqual(self.client.delete(f"{url}{self.paper.id}/").status_code, 404)
        self.assertFalse(SupplierProduct.objects.exists())

        actions = set(AuditLog.objects.filter(entity="supplier").values_list("action", flat=True))
        self.assertEqual(actions, {"supplier.product_link", "supplier.product_unlink"})

    def test_catalog_terms_are_validated(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post(
            f"/api/v1/suppliers/{self.supplier.id}/products/",
            {"product_id": str(self.drill.id), "lead_time_days": -1},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertFalse(SupplierProduct.objects.exists())

        response = self.client.get(f"/api/v1/suppliers/{self.other_supplier.id}/products/")
        self.assertEqual(response.status_code, 404)


class QuotationApiTests(ApiTestCase):
    def test_create_and_convert(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post(
            "/api/v1/quotations/",
            {"supplier_id": str(self.supplier.id), "reference": "COT-9", "lines": self.order_payload()["lines"]},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        quotation_id = response.json()["id"]
        self.assertEqual(response.json()["total"], "389.40")

        response = self.client.post(f"/api/v1/quotations/{quotation_id}/convert/", {"notes": "approved"}, format="json")
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["quotation_id"], quotation_id)
        self.assertEqual(body["order"]["status"], "pending")
        self.assertEqual(body["order"]["notes"], "approved")

        detail = self.client.get(f"/api/v1/quotations/{quotation_id}/").json()
        self.assertEqual(detail["status"], "converted")
        self.assertEqual(detail["converted_order_number"], body["order"]["order_number"])

        response = self.client.post(f"/api/v1/quotations/{quotation_id}/convert/", {}, format="json")
        self.assertEqual(response.status_code, 404)

    def test_full_cycle_with_reception(self):
        quotation = self.make_quotation()
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post(f"/api/v1/quotations/{quotation.id}/full-cycle/", {"auto_receive": True}, format="json")

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body["completed"])
        self.assertIsNone(body["error"])
        self.assertEqual(body["order"]["status"], "received")
        self.assertEqual([step["step"] for step in body["steps"]], ["convert", "receive"])

    def test_reject_and_filter(self):
        quotation = self.make_quotation()
        self.make_quotation(reference="COT-2")
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post(f"/api/v1/quotations/{quotation.id}/reject/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(SupplierQuotation.objects.get(id=quotation.id).status, SupplierQuotation.Status.REJECTED)

        payload = self.client.get("/api/v1/quotations/", {"status": "pending"}).json()
        self.assertEqual([row["reference"] for row in payload["results"]], ["COT-2"])


class ReportApiTests(ApiTestCase):
    def test_kpi_report(self):
        self.make_order(status=PurchaseOrder.Status.CONFIRMED)
        self.client.force_authenticate(user=self.clerk)

        response = self.client.get("/api/v1/reports/purchases/kpis/", {"date_from": "2026-03-01", "date_to": "2026-03-31"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Cache-Control"], "private, max-age=60")
        body = response.json()
        self.assertEqual(body["total_spend"], "389.40")
        self.assertEqual(body["order_count"], 1)
        self.assertEqual(body["top_suppliers"][0]["name"], "Distribuidora Andina")

    def test_kpi_report_validates_parameters(self):
        self.client.force_authenticate(user=self.clerk)

        self.assertEqual(self.client.get("/api/v1/reports/purchases/kpis/").status_code, 400)
        response = self.client.get(
            "/api/v1/reports/purchases/kpis/", {"date_from": "2026-03-01", "date_to": "2026-03-31", "limit": "500"}
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("limit", response.json()["errors"])

    def test_pipeline_report(self):
        self.make_quotation()
        self.make_order(status=PurchaseOrder.Status.RECEIVED)
        self.client.force_authenticate(user=self.clerk)

        body = self.client.get("/api/v1/reports/purchases/pipeline/").json()

        self.assertEqual(body["range"], {"date_from": None, "date_to": None})
        self.assertEqual(body["quotation_count"], 1)
        self.assertEqual(body["pending_value"], "389.40")
        self.assertEqual(body["reception_rate"], "100.00")

    def test_follow_up_report(self):
        today = lifecycle.company_today(self.company)
        self.make_order(
            status=PurchaseOrder.Status.CONFIRMED,
            number="OC-2026-0001",
            emission_date=today - timedelta(days=2),
            delivery_date=today + timedelta(days=1),
        )
        self.make_order(
            status=PurchaseOrder.Status.IN_PROGRESS, number="OC-2026-0002", emission_date=today - timedelta(days=40)
        )
        self.make_order(number="OC-2026-0003", emission_date=today)
        self.client.force_authenticate(user=self.clerk)

        body = self.client.get("/api/v1/reports/purchases/follow-up/").json()

        self.assertEqual(body["count"], 2)
        self.assertEqual(body["summary"], {"green": 0, "yellow": 1, "red": 1})
        self.assertEqual([row["order_number"] for row in body["results"]], ["OC-2026-0002", "OC-2026-0001"])
        self.assertEqual(body["results"][0]["days_remaining"], -25)
        self.assertEqual(body["results"][1]["expected_delivery_date"], (today + timedelta(days=1)).isoformat())
        self.assertEqual(body["results"][1]["total"], "389.40")

        body = self.client.get("/api/v1/reports/purchases/follow-up/", {"alert": "yellow"}).json()
        self.assertEqual([row["order_number"] for row in body["results"]], ["OC-2026-0001"])
        self.assertEqual(body["summary"]["red"], 1)

        response = self.client.get("/api/v1/reports/purchases/follow-up/", {"alert": "blue"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("alert", response.json()["errors"])

    def test_reports_require_authentication(self):
        response = self.client.get("/api/v1/reports/purchases/pipeline/")

        self.assertEqual(response.status_code, 401)
