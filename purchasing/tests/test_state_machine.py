from django.test import SimpleTestCase, TestCase

from purchasing import lifecycle
from purchasing.errors import InvalidStateTransition
from purchasing.models import PurchaseOrder
from purchasing.state_machine import OrderOperation, allowed_operations, ensure_allowed, is_allowed
from purchasing.tests.base import ProcurementFixturesMixin

Status = PurchaseOrder.Status

EXPECTED = {
    Status.PENDING: {OrderOperation.CONFIRM, OrderOperation.MODIFY, OrderOperation.CANCEL},
    Status.CONFIRMED: {
        OrderOperation.START,
        OrderOperation.MODIFY,
        OrderOperation.INVOICE,
        OrderOperation.RECEIVE,
        OrderOperation.CANCEL,
    },
    Status.IN_PROGRESS: {OrderOperation.MODIFY, OrderOperation.INVOICE, OrderOperation.RECEIVE, OrderOperation.CANCEL},
    Status.RECEIVED: {OrderOperation.INVOICE},
    Status.CANCELLED: set(),
}


class TransitionTableTests(SimpleTestCase):
    def test_allowed_operations_per_status(self):
        for status, expected in EXPECTED.items():
            with self.subTest(status=status):
                self.assertEqual(set(allowed_operations(status)), expected)

    def test_create_only_applies_to_new_orders(self):
        self.assertTrue(is_allowed(OrderOperation.CREATE, None))
        for status in Status:
            self.assertFalse(is_allowed(OrderOperation.CREATE, status))

    def test_rejection_carries_operation_and_status(self):
        with self.assertRaises(InvalidStateTransition) as ctx:
            ensure_allowed(OrderOperation.RECEIVE, Status.PENDING)

        self.assertEqual(ctx.exception.operation, "receive")
        self.assertEqual(ctx.exception.current_status, "pending")
        self.assertEqual(ctx.exception.status_code, 409)


class DisallowedTransitionTests(ProcurementFixturesMixin, TestCase):
    def _attempt(self, operation, order):
        if operation == OrderOperation.CONFIRM:
            return lifecycle.confirm_order(order.id, self.company.id)
        if operation == OrderOperation.START:
            return lifecycle.start_order(order.id, self.company.id)
        if operation == OrderOperation.MODIFY:
            return lifecycle.update_order(order.id, self.company.id, {"notes": "changed"})
        if operation == OrderOperation.INVOICE:
            return lifecycle.add_invoice(order.id, self.company.id, {"invoice_number": f"F001-{order.order_number}"})
        if operation == OrderOperation.RECEIVE:
            return lifecycle.receive_order(order.id, self.company.id)
        if operation == OrderOperation.CANCEL:
            return lifecycle.cancel_order(order.id, self.company.id, "no longer needed")
        raise AssertionError(operation)

    def test_every_disallowed_pair_raises_and_leaves_order_unchanged(self):
        operations = [operation for operation in OrderOperation if operation != OrderOperation.CREATE]
        for index, status in enumerate(Status):
            order = self.make_order(status=status, number=f"OC-2026-{index + 1:04d}")
            for operation in operations:
                if operation in EXPECTED[status]:
                    continue
                with self.subTest(status=status, operation=operation):
                    snapshot = PurchaseOrder.objects.values().get(id=order.id)

                    with self.assertRaises(InvalidStateTransition):
                        self._attempt(operation, order)

                    self.assertEqual(PurchaseOrder.objects.values().get(id=order.id), snapshot)
                    self.assertFalse(order.invoices.exists())
