from decimal import Decimal

from django.test import TestCase

from purchasing import suppliers
from purchasing.errors import InvalidInput, NotFound
from purchasing.tests.base import ProcurementFixturesMixin


class SupplierCatalogTests(ProcurementFixturesMixin, TestCase):
    def test_link_stores_terms_and_lists_by_sku(self):
        with self.assertLogs("purchasing.suppliers", level="INFO") as logs:
            suppliers.link_product(
                self.supplier.id,
                self.company.id,
                self.paper.id,
                {"supplier_code": " AND-PAP ", "purchase_price": "48.00", "lead_time_days": 5},
            )
        suppliers.link_product(self.supplier.id, self.company.id, self.drill.id)

        catalog = list(suppliers.supplier_catalog(self.supplier.id, self.company.id))
        self.assertEqual([link.product.sku for link in catalog], ["DRL", "PAP"])
        paper = catalog[1]
        self.assertEqual(paper.supplier_code, "AND-PAP")
        self.assertEqual(paper.purchase_price, Decimal("48.00"))
        self.assertEqual(paper.lead_time_days, 5)
        self.assertIsNone(catalog[0].purchase_price)
        self.assertIn("supplier_product_linked", logs.output[0])

    def test_invalid_terms_are_rejected(self):
        cases = [
            {"lead_time_days": -1},
            {"lead_time_days": True},
            {"purchase_price": "0"},
            {"supplier_code": "X" * 65},
            {"discount": "5"},
        ]
        for data in cases:
            with self.subTest(data=data):
                with self.assertRaises(InvalidInput):
                    suppliers.link_product(self.supplier.id, self.company.id, self.paper.id, data)

    def test_products_and_suppliers_are_company_scoped(self):
        with self.assertRaises(NotFound):
            suppliers.link_product(self.supplier.id, self.company.id, self.foreign_product.id)
        with self.assertRaises(NotFound):
            suppliers.link_product(self.other_supplier.id, self.company.id, self.paper.id)
        with self.assertRaises(NotFound):
            suppliers.supplier_catalog(self.other_supplier.id, self.company.id)

    def test_duplicate_link_and_unlink(self):
        suppliers.link_product(self.supplier.id, self.company.id, self.paper.id)

        with self.assertRaises(InvalidInput) as raised:
            suppliers.link_product(self.supplier.id, self.company.id, self.paper.id)
        self.assertEqual(raised.exception.field, "product_id")

        suppliers.unlink_product(self.supplier.id, self.company.id, self.paper.id)
        self.assertFalse(suppliers.supplier_catalog(self.supplier.id, self.company.id).exists())
        with self.assertRaises(NotFound):
            suppliers.unlink_product(self.supplier.id, self.company.id, self.paper.id)
