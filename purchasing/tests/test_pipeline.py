from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase

from core.models import OutboxEvent
from inventory.models import ProductStock
from purchasing import lifecycle, pipeline
from purchasing.calculation import LineInput, PurchaseCalculator
from purchasing.errors import BusinessRuleViolation, CalculationInconsistency, ConcurrencyConflict, NotFound
from purchasing.models import PurchaseOrder, SupplierQuotation
from purchasing.rules import get_rules
from purchasing.tests.base import ProcurementFixturesMixin


class CreateQuotationTests(ProcurementFixturesMixin, TestCase):
    def test_quotation_is_priced_with_company_rules(self):
        quotation = pipeline.create_quotation(
            self.company.id,
            self.supplier.id,
            self.scenario_lines(),
            issue_date=date(2026, 3, 1),
            valid_until=date(2026, 3, 31),
            reference="COT-77",
        )

        self.assertEqual(quotation.status, SupplierQuotation.Status.PENDING)
        self.assertEqual(quotation.total, Decimal("389.40"))
        self.assertEqual(list(quotation.lines.values_list("subtotal", flat=True)), [Decimal("150.00"), Decimal("190.00")])

    def test_expiry_before_issue_is_rejected(self):
        with self.assertRaises(BusinessRuleViolation):
            pipeline.create_quotation(
                self.company.id,
                self.supplier.id,
                self.scenario_lines(),
                issue_date=date(2026, 3, 10),
                valid_until=date(2026, 3, 9),
            )

    def test_reject_only_pending(self):
        quotation = self.make_quotation()

        quotation = pipeline.reject_quotation(quotation.id, self.company.id)
        self.assertEqual(quotation.status, SupplierQuotation.Status.REJECTED)

        with self.assertRaises(BusinessRuleViolation):
            pipeline.reject_quotation(quotation.id, self.company.id)
        with self.assertRaises(NotFound):
            pipeline.reject_quotation(quotation.id, self.other_company.id)


class ConvertQuotationTests(ProcurementFixturesMixin, TestCase):
    def test_conversion_copies_lines_and_links_quotation(self):
        quotation = self.make_quotation(notes="from supplier")

        with self.captureOnCommitCallbacks(execute=True):
            result = pipeline.convert_quotation_to_order(quotation.id, self.company.id, user_id=self.buyer.id)

        today = lifecycle.company_today(self.company)
        order = result.order
        self.assertTrue(result.success)
        self.assertEqual(result.status, PurchaseOrder.Status.PENDING)
        self.assertEqual(result.order_number, f"OC-{today:%Y}-{today:%m}0001")
        self.assertEqual(result.total, Decimal("389.40"))
        self.assertEqual(order.emission_date, today)
        self.assertEqual(order.delivery_date, today + timedelta(days=15))
        self.assertEqual(order.notes, "from supplier")
        self.assertIsNone(order.confirmed_at)
        self.assertEqual([line.subtotal for line in order.lines.all()], [Decimal("150.00"), Decimal("190.00")])

        quotation.refresh_from_db()
        self.assertEqual(quotation.status, SupplierQuotation.Status.CONVERTED)
        self.assertEqual(quotation.converted_order_id, order.id)
        self.assertTrue(OutboxEvent.objects.filter(event_type="quotation.converted").exists())

    def test_converted_lines_recompute_to_the_order_totals(self):
        quotation = pipeline.create_quotation(self.company.id, self.supplier.id, self.scenario_lines())
        self.assertEqual(
            list(quotation.lines.values_list("discount_value", "discount")),
            [(Decimal("0.00"), Decimal("0.00")), (Decimal("5.00"), Decimal("10.00"))],
        )

        order = pipeline.convert_quotation_to_order(quotation.id, self.company.id).order

        items = [
            LineInput(line.product_id, line.quantity, line.unit_price, line.discount_value) for line in order.lines.all()
        ]
        recomputed = PurchaseCalculator(get_rules(self.company)).calculate(items)
        self.assertEqual(
            (recomputed.subtotal, recomputed.discount, recomputed.tax, recomputed.total),
            (order.subtotal, order.discount, order.tax, order.total),
        )
        self.assertEqual(order.total, Decimal("389.40"))

    def test_auto_approve_confirms_the_order(self):
        quotation = self.make_quotation()
        delivery = lifecycle.company_today(self.company) + timedelta(days=3)

        result = pipeline.convert_quotation_to_order(
            quotation.id,
            self.company.id,
            pipeline.ConversionOptions(auto_approve=True, notes="rush", delivery_date=delivery),
        )

        self.assertEqual(result.order.status, PurchaseOrder.Status.CONFIRMED)
        self.assertIsNotNone(result.order.confirmed_at)
        self.assertEqual(result.order.delivery_date, delivery)
        self.assertEqual(result.order.notes, "rush")

    def test_converted_quotation_cannot_be_converted_twice(self):
        quotation = self.make_quotation()
        pipeline.convert_quotation_to_order(quotation.id, self.company.id)

        with self.assertRaises(NotFound):
            pipeline.convert_quotation_to_order(quotation.id, self.company.id)

        self.assertEqual(PurchaseOrder.objects.count(), 1)

    def test_zero_total_quotation_is_rejected(self):
        quotation = self.make_quotation(total=Decimal("0.00"))

        with self.assertRaises(BusinessRuleViolation):
            pipeline.convert_quotation_to_order(quotation.id, self.company.id)

        quotation.refresh_from_db()
        self.assertEqual(quotation.status, SupplierQuotation.Status.PENDING)

    def test_inconsistent_quotation_is_rejected(self):
        quotation = self.make_quotation(total=Decimal("500.00"))

        with self.assertRaises(CalculationInconsistency):
            pipeline.convert_quotation_to_order(quotation.id, self.company.id)

        self.assertFalse(PurchaseOrder.objects.exists())

    def test_quotation_of_other_company_is_not_found(self):
        quotation = self.make_quotation()

        with self.assertRaises(NotFound):
            pipeline.convert_quotation_to_order(quotation.id, self.other_company.id)


class FullCycleTests(ProcurementFixturesMixin, TestCase):
    def test_full_cycle_without_reception(self):
        quotation = self.make_quotation()

        result = pipeline.run_full_cycle(quotation.id, self.company.id)

        self.assertTrue(result.completed)
        self.assertEqual(result.order.status, PurchaseOrder.Status.CONFIRMED)
        self.assertIsNone(result.reception)
        self.assertEqual([step["step"] for step in result.steps], ["convert"])

    def test_full_cycle_with_reception_stocks_products(self):
        quotation = self.make_quotation()

        result = pipeline.run_full_cycle(quotation.id, self.company.id, auto_receive=True)

        self.assertTrue(result.completed)
        self.assertEqual(result.order.status, PurchaseOrder.Status.RECEIVED)
        self.assertEqual([step["status"] for step in result.steps], ["completed", "completed"])
        self.assertEqual(ProductStock.objects.get(product=self.paper).total_quantity, Decimal("3"))

    def test_reception_failure_keeps_confirmed_order(self):
        quotation = self.make_quotation()

        with patch("purchasing.lifecycle.receive_order", side_effect=ConcurrencyConflict("order locked")):
            with self.assertLogs("purchasing.pipeline", level="ERROR"):
                result = pipeline.run_full_cycle(quotation.id, self.company.id, auto_receive=True)

        self.assertFalse(result.completed)
        self.assertEqual(result.error["kind"], "concurrency_conflict")
        self.assertEqual(result.error["message"], "order locked")
        self.assertEqual(result.steps[-1], {"step": "receive", "status": "failed", "message": "order locked"})
        order = PurchaseOrder.objects.get(id=result.order.id)
        self.assertEqual(order.status, PurchaseOrder.Status.CONFIRMED)
        quotation.refresh_from_db()
        self.assertEqual(quotation.status, SupplierQuotation.Status.CONVERTED)


class PipelineStatsTests(ProcurementFixturesMixin, TestCase):
    def test_counts_and_rates(self):
        self.make_quotation(status=SupplierQuotation.Status.CONVERTED)
        self.make_quotation()
        self.make_quotation(status=SupplierQuotation.Status.REJECTED)
        self.make_quotation(total=Decimal("100.00"))
        self.make_order(number="OC-2026-0001", status=PurchaseOrder.Status.RECEIVED)
        self.make_order(number="OC-2026-0002", status=PurchaseOrder.Status.PENDING)
        self.make_order(number="OC-2026-0003", status=PurchaseOrder.Status.IN_PROGRESS)
        self.make_order(number="OC-2026-0004", status=PurchaseOrder.Status.CANCELLED)

        stats = pipeline.pipeline_stats(self.company.id)

        self.assertEqual(stats["quotation_count"], 4)
        self.assertEqual(stats["pending_quotations"], 2)
        self.assertEqual(stats["converted_quotations"], 1)
        self.assertEqual(stats["pending_value"], Decimal("489.40"))
        self.assertEqual(stats["order_count"], 3)
        self.assertEqual(stats["pending_orders"], 1)
        self.assertEqual(stats["in_progress_orders"], 1)
        self.assertEqual(stats["received_orders"], 1)
        self.assertEqual(stats["pipeline_value"], Decimal("1168.20"))
        self.assertEqual(stats["open_value"], Decimal("778.80"))
        self.assertEqual(stats["conversion_rate"], Decimal("25.00"))
        self.assertEqual(stats["reception_rate"], Decimal("33.33"))
        self.assertEqual(
            [str(stats[key]) for key in ("pending_value", "pipeline_value", "open_value")],
            ["489.40", "1168.20", "778.80"],
        )

    def test_date_window_and_empty_company(self):
        self.make_order(number="OC-2026-0001", emission_date=date(2026, 1, 5))

        stats = pipeline.pipeline_stats(self.company.id, date_from=date(2026, 2, 1))
        self.assertEqual(stats["order_count"], 0)
        self.assertEqual(stats["reception_rate"], Decimal("0.00"))

        empty = pipeline.pipeline_stats(self.other_company.id)
        self.assertEqual(empty["quotation_count"], 0)
        self.assertEqual(empty["conversion_rate"], Decimal("0.00"))


class OrderFollowUpTests(ProcurementFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        confirmed = PurchaseOrder.Status.CONFIRMED
        self.on_track = self.make_order(status=confirmed, number="OC-2026-0001", emission_date=date(2026, 3, 10))
        self.due_soon = self.make_order(
            status=PurchaseOrder.Status.IN_PROGRESS,
            number="OC-2026-0002",
            emission_date=date(2026, 3, 12),
            delivery_date=date(2026, 3, 21),
        )
        self.late = self.make_order(
            status=confirmed, number="OC-2026-0003", emission_date=date(2026, 3, 1), delivery_date=date(2026, 3, 15)
        )
        self.stale = self.make_order(
            status=confirmed, number="OC-2026-0004", emission_date=date(2026, 1, 10), delivery_date=date(2026, 6, 30)
        )
        self.make_order(number="OC-2026-0005")
        self.make_order(status=PurchaseOrder.Status.RECEIVED, number="OC-2026-0006")
        self.make_order(
            status=confirmed, number="OC-2026-0001", company=self.other_company, supplier=self.other_supplier
        )

    def test_open_orders_are_tracked_oldest_first(self):
        rows = pipeline.order_follow_up(self.company.id, today=date(2026, 3, 20))

        self.assertEqual(
            [row["order_id"] for row in rows], [self.stale.id, self.late.id, self.on_track.id, self.due_soon.id]
        )
        self.assertEqual([row["alert"] for row in rows], ["red", "red", "green", "yellow"])

        on_track = rows[2]
        self.assertEqual(on_track["expected_delivery_date"], date(2026, 3, 25))
        self.assertEqual(on_track["days_elapsed"], 10)
        self.assertEqual(on_track["days_remaining"], 5)
        self.assertEqual(on_track["supplier_name"], "Distribuidora Andina")
        self.assertEqual(on_track["next_action"], "Routine follow-up.")

        self.assertEqual(rows[1]["days_remaining"], -5)
        self.assertEqual(rows[0]["days_elapsed"], 69)
        self.assertIn("review it", rows[0]["next_action"])
        self.assertEqual(rows[3]["days_remaining"], 1)

    def test_other_company_sees_only_its_orders(self):
        rows = pipeline.order_follow_up(self.other_company.id, today=date(2026, 3, 20))

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["supplier_name"], "Foreign Supplier")

    def test_unknown_company_is_not_found(self):
        with self.assertRaises(NotFound):
            pipeline.order_follow_up("5f0c6a52-9a57-4a35-9d3b-3f1b9b5c1d11", today=date(2026, 3, 20))
