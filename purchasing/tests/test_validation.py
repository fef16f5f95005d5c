import uuid
from datetime import date, timedelta
from decimal import Decimal

from django.test import TestCase

from core.models import Company
from purchasing.errors import BusinessRuleViolation, InvalidInput, NotFound
from purchasing.rules import ProcurementRules
from purchasing.tests.base import ProcurementFixturesMixin
from purchasing.validation import ProcurementValidator


class ProcurementValidatorTests(ProcurementFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.validator = ProcurementValidator(ProcurementRules())

    def test_company_must_exist_and_be_active(self):
        with self.assertRaises(NotFound):
            self.validator.company(uuid.uuid4())
        with self.assertRaises(InvalidInput):
            self.validator.company("not-a-uuid")

        self.company.status = Company.Status.SUSPENDED
        self.company.save(update_fields=["status"])
        with self.assertRaises(BusinessRuleViolation) as ctx:
            self.validator.company(self.company.id)
        self.assertEqual(ctx.exception.field, "company_id")

    def test_supplier_must_belong_to_company_and_be_active(self):
        self.assertEqual(self.validator.supplier(self.supplier.id, self.company.id), self.supplier)

        with self.assertRaises(NotFound):
            self.validator.supplier(self.other_supplier.id, self.company.id)

        self.supplier.is_active = False
        self.supplier.save(update_fields=["is_active"])
        with self.assertRaises(BusinessRuleViolation):
            self.validator.supplier(self.supplier.id, self.company.id)

    def test_order_number_format(self):
        self.assertEqual(self.validator.order_number(" OC-2026-001 "), "OC-2026-001")
        self.assertEqual(self.validator.order_number("OC-2026-100001"), "OC-2026-100001")

        for bad in ["", "OC-26-001", "PO-2026-001", "OC-2026-01", "OC-2026-1234567", "OC-2026-0001x"]:
            with self.subTest(number=bad), self.assertRaises(InvalidInput):
                self.validator.order_number(bad)

    def test_order_number_must_be_unique_per_company(self):
        order = self.make_order(number="OC-2026-0001")

        with self.assertRaises(InvalidInput) as ctx:
            self.validator.order_number_unique("OC-2026-0001", self.company.id)
        self.assertEqual(ctx.exception.field, "order_number")

        self.validator.order_number_unique("OC-2026-0001", self.company.id, exclude_id=order.id)
        self.validator.order_number_unique("OC-2026-0001", self.other_company.id)

    def test_delivery_date_window(self):
        emission = date(2026, 3, 10)
        self.validator.delivery_date(emission, None)
        self.validator.delivery_date(emission, emission)
        self.validator.delivery_date(emission, emission + timedelta(days=365))

        with self.assertRaises(BusinessRuleViolation):
            self.validator.delivery_date(emission, emission - timedelta(days=1))
        with self.assertRaises(BusinessRuleViolation):
            self.validator.delivery_date(emission, emission + timedelta(days=366))

    def test_quantity_rules(self):
        self.assertEqual(self.validator.quantity(3), 3)
        self.assertEqual(self.validator.quantity("999999"), 999999)

        for bad in [0, -1, "1.5", 1000000, True, None, "abc"]:
            with self.subTest(quantity=bad), self.assertRaises(InvalidInput):
                self.validator.quantity(bad)

    def test_unit_price_rules(self):
        self.assertEqual(self.validator.unit_price("10.50"), Decimal("10.50"))
        self.assertEqual(self.validator.unit_price("10.500"), Decimal("10.500"))

        for bad in ["0", "-1", "10.505", "1000000.01", "NaN"]:
            with self.subTest(price=bad), self.assertRaises(InvalidInput):
                self.validator.unit_price(bad)

    def test_lines_are_normalized(self):
        items = self.validator.lines(self.scenario_lines())

        self.assertEqual(len(items), 2)
        self.assertEqual(items[0].product_id, self.paper.id)
        self.assertEqual(items[0].discount, Decimal("0"))
        self.assertEqual(items[1].discount, Decimal("5"))

    def test_lines_reject_empty_and_oversized_lists(self):
        with self.assertRaises(InvalidInput):
            self.validator.lines([])

        validator = ProcurementValidator(ProcurementRules(max_lines=1))
        with self.assertRaises(InvalidInput) as ctx:
            validator.lines(self.scenario_lines())
        self.assertEqual(ctx.exception.field, "lines")

    def test_lines_reject_duplicate_products(self):
        lines = self.scenario_lines()
        lines.append({"product_id": str(self.paper.id), "quantity": 1, "unit_price": "5.00"})

        with self.assertRaises(InvalidInput) as ctx:
            self.validator.lines(lines)

        self.assertEqual(ctx.exception.field, "lines[2].product_id")

    def test_lines_report_offending_index(self):
        lines = self.scenario_lines()
        lines[1]["quantity"] = 0

        with self.assertRaises(InvalidInput) as ctx:
            self.validator.lines(lines)

        self.assertEqual(ctx.exception.field, "lines[1].quantity")

    def test_products_must_belong_to_company_and_be_active(self):
        items = self.validator.lines([{"product_id": self.foreign_product.id, "quantity": 1, "unit_price": "1.00"}])
        with self.assertRaises(NotFound):
            self.validator.products(items, self.company.id)

        self.paper.is_active = False
        self.paper.save(update_fields=["is_active"])
        items = self.validator.lines(self.scenario_lines())
        with self.assertRaises(BusinessRuleViolation) as ctx:
            self.validator.products(items, self.company.id)
        self.assertEqual(ctx.exception.field, "lines[0].product_id")

    def test_monthly_quota_counts_every_order_of_the_month(self):
        validator = ProcurementValidator(ProcurementRules(monthly_order_limit=2))
        self.make_order(number="OC-2026-0001", emission_date=date(2026, 3, 1))
        self.make_order(number="OC-2026-0002", emission_date=date(2026, 3, 31), status="cancelled")
        self.make_order(number="OC-2026-0003", emission_date=date(2026, 2, 28))

        with self.assertRaises(BusinessRuleViolation):
            validator.monthly_quota(self.company.id, date(2026, 3, 15))
        validator.monthly_quota(self.company.id, date(2026, 4, 1))
        validator.monthly_quota(self.other_company.id, date(2026, 3, 15))

    def test_order_total_ceiling(self):
        self.validator.order_total(Decimal("1000000.00"))
        with self.assertRaises(BusinessRuleViolation):
            self.validator.order_total(Decimal("1000000.01"))

    def test_tax_id_rules(self):
        self.assertEqual(self.validator.tax_id(" 20512345678 "), "20512345678")

        for bad in ["2051234567", "205123456789", "30512345678", "2051234567a", "２0512345678"]:
            with self.subTest(tax_id=bad), self.assertRaises(InvalidInput):
                self.validator.tax_id(bad)

        with self.assertRaises(InvalidInput):
            self.validator.tax_id_unique("20512345678", self.company.id)
        self.validator.tax_id_unique("20512345678", self.company.id, exclude_id=self.supplier.id)
