import uuid
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import AuditLog, Company, OutboxEvent
from inventory.models import Category, Product, ProductStock, StockMove
from inventory.services import current_stock, increment_stock, record_purchase_move, update_product_cost
from purchasing.models import PurchaseOrder, PurchaseOrderLine, Supplier


class CompanyScopedInventoryTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()

        self.company_a = Company.objects.create(code="IA", name="Inventory A")
        self.company_b = Company.objects.create(code="IB", name="Inventory B")

        self.buyer_a = self.user_model.objects.create_user(
            username="inv-buyer-a",
            password="pass1234",
            company=self.company_a,
            role="buyer",
        )
        self.clerk_a = self.user_model.objects.create_user(
            username="inv-clerk-a",
            password="pass1234",
            company=self.company_a,
            role="clerk",
        )

        self.category_a = Category.objects.create(company=self.company_a, name="Tools")
        self.category_b = Category.objects.create(company=self.company_b, name="Foreign Tools")
        self.product_a = Product.objects.create(company=self.company_a, category=self.category_a, sku="A-1", name="Hammer")
        self.product_b = Product.objects.create(company=self.company_b, sku="B-1", name="Saw")

    def test_user_cannot_read_other_company_products(self):
        self.client.force_authenticate(user=self.clerk_a)

        response = self.client.get("/api/v1/products/")

        self.assertEqual(response.status_code, 200)
        ids = {item["id"] for item in response.json()["results"]}
        self.assertIn(str(self.product_a.id), ids)
        self.assertNotIn(str(self.product_b.id), ids)

        detail = self.client.get(f"/api/v1/products/{self.product_b.id}/")
        self.assertEqual(detail.status_code, 404)

    def test_product_without_stock_row_reports_null_quantities(self):
        self.client.force_authenticate(user=self.clerk_a)

        item = self.client.get(f"/api/v1/products/{self.product_a.id}/").json()

        self.assertIsNone(item["available_quantity"])
        self.assertEqual(item["category_name"], "Tools")

    def test_create_product_ignores_injected_company_and_emits_outbox(self):
        self.client.force_authenticate(user=self.buyer_a)

        response = self.client.post(
            "/api/v1/products/",
            {
                "company": str(self.company_b.id),
                "category": str(self.category_a.id),
                "sku": "A-2",
                "name": "Wrench",
                "cost": "99.00",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        created = Product.objects.get(id=response.json()["id"])
        self.assertEqual(created.company_id, self.company_a.id)
        self.assertIsNone(created.cost)

        event = OutboxEvent.objects.get(event_type="product.created", entity_id=created.id)
        self.assertEqual(event.payload["payload"]["category"], str(self.category_a.id))
        self.assertTrue(AuditLog.objects.filter(action="product.create", entity_id=created.id).exists())

    def test_duplicate_sku_returns_validation_error(self):
        self.client.force_authenticate(user=self.buyer_a)

        response = self.client.post("/api/v1/products/", {"sku": "A-1", "name": "Another hammer"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("sku", response.json()["errors"])

    def test_category_of_other_company_is_rejected(self):
        self.client.force_authenticate(user=self.buyer_a)

        response = self.client.post(
            "/api/v1/products/",
            {"sku": "A-3", "name": "Borrowed", "category": str(self.category_b.id)},
            format="json",
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            "/api/v1/categories/", {"name": "Child", "parent": str(self.category_b.id)}, format="json"
        )
        self.assertEqual(response.status_code, 400)

    def test_clerk_cannot_manage_catalog(self):
        self.client.force_authenticate(user=self.clerk_a)

        response = self.client.post("/api/v1/categories/", {"name": "Nope"}, format="json")

        self.assertEqual(response.status_code, 403)


class PurchaseHistoryEndpointTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.company = Company.objects.create(code="PH", name="History Co")
        self.user = get_user_model().objects.create_user(
            username="history-clerk",
            password="pass1234",
            company=self.company,
            role="clerk",
        )
        self.product = Product.objects.create(company=self.company, sku="BOLT", name="Bolt", cost=Decimal("2.50"))
        supplier = Supplier.objects.create(company=self.company, name="Bolts S.A.C.", tax_id="20533333333")
        self.order = PurchaseOrder.objects.create(
            company=self.company,
            supplier=supplier,
            order_number="OC-2026-0001",
            emission_date=timezone.localdate(),
            status=PurchaseOrder.Status.RECEIVED,
        )
        PurchaseOrderLine.objects.create(
            purchase_order=self.order,
            product=self.product,
            quantity=10,
            unit_price=Decimal("3.00"),
            subtotal=Decimal("30.00"),
        )
        record_purchase_move(
            company_id=self.company.id,
            product=self.product,
            quantity=10,
            unit_cost=Decimal("3.00"),
            order_id=self.order.id,
        )

    def test_stock_moves(self):
        self.client.force_authenticate(user=self.user)

        response = self.client.get(f"/api/v1/products/{self.product.id}/stock-moves/")

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]["reason"], "purchase")
        self.assertEqual(results[0]["source_ref_id"], str(self.order.id))

    def test_purchase_cost(self):
        self.client.force_authenticate(user=self.user)

        response = self.client.get(f"/api/v1/products/{self.product.id}/purchase-cost/", {"days": "30"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"product_id": str(self.product.id), "days": 30, "average_cost": "3.00", "current_cost": "2.50"},
        )


class StockServiceTests(TestCase):
    def setUp(self):
        self.company = Company.objects.create(code="SS", name="Stock Services")
        self.product = Product.objects.create(company=self.company, sku="NUT", name="Nut", cost=Decimal("10.00"))

    def test_increment_creates_then_adds(self):
        self.assertEqual(current_stock(self.product.id), Decimal("0"))

        increment_stock(self.product.id, 5)
        increment_stock(self.product.id, Decimal("2.5"))

        stock = ProductStock.objects.get(product=self.product)
        self.assertEqual(stock.available_quantity, Decimal("7.50"))
        self.assertEqual(stock.total_quantity, Decimal("7.50"))
        self.assertEqual(current_stock(self.product.id), Decimal("7.50"))

    @override_settings(INVENTORY_WEIGHTED_AVERAGE_COST=False)
    def test_last_cost(self):
        cost = update_product_cost(self.product, 10, Decimal("14.00"), current_stock_qty=Decimal("10"))

        self.assertEqual(cost, Decimal("14.00"))
        self.product.refresh_from_db()
        self.assertEqual(self.product.cost, Decimal("14.00"))

    @override_settings(INVENTORY_WEIGHTED_AVERAGE_COST=True)
    def test_weighted_average_cost(self):
        cost = update_product_cost(self.product, 10, Decimal("14.00"), current_stock_qty=Decimal("30"))

        self.assertEqual(cost, Decimal("11.00"))

    def test_zero_quantity_keeps_cost(self):
        self.assertEqual(update_product_cost(self.product, 0, Decimal("99.00")), Decimal("10.00"))

    def test_purchase_move_references_order(self):
        order_id = uuid.uuid4()

        move = record_purchase_move(
            company_id=self.company.id, product=self.product, quantity=3, unit_cost=Decimal("1.00"), order_id=order_id
        )

        self.assertEqual(move.reason, StockMove.Reason.PURCHASE)
        self.assertEqual(move.source_ref_type, "purchasing.purchase_order")
        self.assertEqual(StockMove.objects.filter(source_ref_id=order_id).count(), 1)
