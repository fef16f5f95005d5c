"""Purchase order lifecycle.

Every mutating operation runs in one database transaction: validation reads,
the header write, the wholesale line replacement and any stock effect either
all commit or all roll back. Notifications are queued with
``transaction.on_commit`` so they only fire for committed work, and a failing
notification never affects the operation's result.
"""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.db import IntegrityError, transaction
from django.utils import timezone

from common.notifications import notify
from inventory.services import (
    current_stock,
    increment_stock,
    lock_products,
    record_purchase_move,
    update_product_cost,
)
from purchasing.calculation import CalculationResult, PurchaseCalculator, _to_money
from purchasing.errors import BusinessRuleViolation, ConcurrencyConflict, InvalidInput
from purchasing.models import PurchaseInvoice, PurchaseOrder, PurchaseOrderLine, PurchasePayment
from purchasing.numbering import allocate_order_number
from purchasing.repository import STORES, DocumentKind, get_document
from purchasing.rules import ProcurementRules
from purchasing.state_machine import TARGET_STATUS, OrderOperation, ensure_allowed
from purchasing.validation import ProcurementValidator

logger = logging.getLogger(__name__)

ORDER_STORE = STORES[DocumentKind.PURCHASE_ORDER]
INVOICE_STORE = STORES[DocumentKind.PURCHASE_INVOICE]

UPDATABLE_FIELDS = {"supplier_id", "order_number", "delivery_date", "notes"}


def company_today(company):
    try:
        return timezone.localdate(timezone=ZoneInfo(company.timezone))
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.localdate()


def order_event_payload(order, **extra):
    payload = {
        "company_id": str(order.company_id),
        "entity_id": str(order.id),
        "order_id": str(order.id),
        "order_number": order.order_number,
        "supplier_id": str(order.supplier_id),
        "status": order.status,
        "total": str(order.total),
    }
    payload.update(extra)
    return payload


def _notify_on_commit(event_type, payload):
    transaction.on_commit(lambda: notify(event_type, payload))


def _money_field(data, name, default=None):
    value = data.get(name, default)
    if value is None:
        raise InvalidInput(f"{name} is required when no lines are given.", field=name)
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidInput(f"{name} must be a decimal number.", field=name, value=value)
    if not amount.is_finite() or amount < 0:
        raise InvalidInput(f"{name} must be zero or greater.", field=name, value=value)
    if amount != _to_money(amount):
        raise InvalidInput(f"{name} cannot have more than 2 decimal places.", field=name, value=value)
    return amount


class PurchaseOrderEngine:
    """Create, modify and move purchase orders through their states."""

    def __init__(self, rules=None):
        self.base_rules = rules

    def _rules(self, company=None):
        rules = self.base_rules or ProcurementRules.from_settings()
        return rules.for_company(company)

    def _tools(self, company):
        rules = self._rules(company)
        return rules, ProcurementValidator(rules), PurchaseCalculator(rules)

    def _load_company(self, company_id, lock=False):
        return ProcurementValidator(self._rules()).company(company_id, lock=lock)

    def _save_order(self, company_id, values, order=None):
        try:
            with transaction.atomic():
                return ORDER_STORE.persist(company_id, values, document=order)
        except IntegrityError:
            raise ConcurrencyConflict(
                f"Order number {values.get('order_number')} was taken by a concurrent request.",
                field="order_number",
            )

    def create_order(
        self,
        company_id,
        supplier_id,
        order_number,
        lines,
        delivery_date=None,
        notes="",
        *,
        user_id=None,
        emission_date=None,
    ):
        """Validate, price and persist a new ``pending`` purchase order.

        Pass ``order_number=None`` to take the next number of the company's
        monthly sequence. The company row stays locked until commit, which
        serializes the quota and numbering checks of concurrent creates.
        """
        with transaction.atomic():
            company = self._load_company(company_id, lock=True)
            rules, validator, calculator = self._tools(company)
            emission_date = emission_date or company_today(company)

            supplier = validator.supplier(supplier_id, company.id)
            if order_number is not None:
                order_number = validator.order_number(order_number)
                validator.order_number_unique(order_number, company.id)
            validator.delivery_date(emission_date, delivery_date)
            validator.monthly_quota(company.id, emission_date)

            items = validator.lines(lines)
            validator.products(items, company.id)
            result = calculator.calculate(items)
            calculator.verify(result)
            validator.order_total(result.total)

            values = {
                "supplier_id": supplier.id,
                "emission_date": emission_date,
                "delivery_date": delivery_date,
                "subtotal": result.subtotal,
                "discount": result.discount,
                "tax": result.tax,
                "total": result.total,
                "status": TARGET_STATUS[OrderOperation.CREATE],
                "notes": notes or "",
                "created_by_id": user_id,
            }
            if order_number is None:
                order = allocate_order_number(
                    company.id,
                    emission_date,
                    rules,
                    lambda number: ORDER_STORE.persist(company.id, {**values, "order_number": number}),
                )
            else:
                order = self._save_order(company.id, {**values, "order_number": order_number})

            ORDER_STORE.replace_lines(order, result.lines)
            order = ORDER_STORE.reload(order)
            logger.info(
                "purchase_order_created",
                extra={"company_id": company.id, "order_id": order.id, "order_number": order.order_number, "user_id": user_id},
            )
            _notify_on_commit("purchase_order.created", order_event_payload(order))
        return order

    def update_order(self, order_id, company_id, patch=None, lines=None):
        """Patch header fields and, when ``lines`` is given, replace every line.

        Without ``lines`` the stored totals are re-verified before saving so a
        header edit can never persist an inconsistent order.
        """
        patch = dict(patch or {})
        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidInput(
                "Unsupported fields: " + ", ".join(sorted(unknown)) + ".",
                field=sorted(unknown)[0],
            )

        with transaction.atomic():
            company = self._load_company(company_id)
            rules, validator, calculator = self._tools(company)
            order = get_document(DocumentKind.PURCHASE_ORDER, order_id, company.id, lock=True)
            ensure_allowed(OrderOperation.MODIFY, order.status)

            values = {}
            if "supplier_id" in patch:
                values["supplier_id"] = validator.supplier(patch["supplier_id"], company.id).id
            if "order_number" in patch:
                number = validator.order_number(patch["order_number"])
                validator.order_number_unique(number, company.id, exclude_id=order.id)
                values["order_number"] = number
            if "delivery_date" in patch:
                validator.delivery_date(order.emission_date, patch["delivery_date"])
                values["delivery_date"] = patch["delivery_date"]
            if "notes" in patch:
                values["notes"] = patch["notes"] or ""

            result = None
            if lines is not None:
                items = validator.lines(lines)
                validator.products(items, company.id)
                result = calculator.calculate(items)
                calculator.verify(result)
                validator.order_total(result.total)
                values.update(subtotal=result.subtotal, discount=result.discount, tax=result.tax, total=result.total)
            else:
                calculator.verify(order)

            order = self._save_order(company.id, values, order=order)
            if result is not None:
                ORDER_STORE.replace_lines(order, result.lines)

            order = ORDER_STORE.reload(order)
            logger.info(
                "purchase_order_updated",
                extra={"company_id": company.id, "order_id": order.id, "order_number": order.order_number},
            )
            _notify_on_commit("purchase_order.updated", order_event_payload(order, lines_replaced=result is not None))
        return order

    def _transition(self, order_id, company_id, operation, values, event_type):
        with transaction.atomic():
            company = self._load_company(company_id)
            order = get_document(DocumentKind.PURCHASE_ORDER, order_id, company.id, lock=True)
            ensure_allowed(operation, order.status)
            previous_status = order.status
            ORDER_STORE.persist(company.id, {"status": TARGET_STATUS[operation], **values}, document=order)
            order = ORDER_STORE.reload(order)
            logger.info(
                "purchase_order_transition",
                extra={"company_id": company.id, "order_id": order.id, "operation": str(operation), "status": order.status},
            )
            _notify_on_commit(event_type, order_event_payload(order, previous_status=previous_status))
        return order

    def confirm_order(self, order_id, company_id):
        return self._transition(
            order_id, company_id, OrderOperation.CONFIRM, {"confirmed_at": timezone.now()}, "purchase_order.confirmed"
        )

    def start_order(self, order_id, company_id):
        return self._transition(order_id, company_id, OrderOperation.START, {}, "purchase_order.in_progress")

    def cancel_order(self, order_id, company_id, reason=""):
        with transaction.atomic():
            order = self._transition(
                order_id,
                company_id,
                OrderOperation.CANCEL,
                {"cancelled_at": timezone.now(), "cancel_reason": (reason or "")[:255]},
                "purchase_order.cancelled",
            )
            PurchaseOrderLine.objects.filter(purchase_order_id=order.id).update(status=PurchaseOrderLine.Status.CANCELLED)
            order = ORDER_STORE.reload(order)
        return order

    def receive_order(self, order_id, company_id):
        """Mark the order received and add every goods line to stock.

        Service products are skipped. A failure on any line rolls back the
        status change and the stock of every other line.
        """
        with transaction.atomic():
            company = self._load_company(company_id)
            order = get_document(DocumentKind.PURCHASE_ORDER, order_id, company.id, lock=True)
            ensure_allowed(OrderOperation.RECEIVE, order.status)

            ORDER_STORE.persist(
                company.id,
                {"status": TARGET_STATUS[OrderOperation.RECEIVE], "received_at": timezone.now()},
                document=order,
            )

            lines = PurchaseOrderLine.objects.filter(purchase_order_id=order.id).select_related("product")
            goods = [line for line in lines if not line.product.is_service]
            products = lock_products([line.product_id for line in goods])

            stocked_lines = 0
            for line in goods:
                product = products[line.product_id]
                on_hand = current_stock(product.id)
                increment_stock(product.id, line.quantity)
                unit_cost = _to_money(line.subtotal / line.quantity)
                record_purchase_move(
                    company_id=company.id,
                    product=product,
                    quantity=line.quantity,
                    unit_cost=unit_cost,
                    order_id=order.id,
                )
                update_product_cost(product, line.quantity, unit_cost, current_stock_qty=on_hand)
                stocked_lines += 1

            PurchaseOrderLine.objects.filter(purchase_order_id=order.id).update(status=PurchaseOrderLine.Status.RECEIVED)
            order = ORDER_STORE.reload(order)
            logger.info(
                "purchase_order_received",
                extra={"company_id": company.id, "order_id": order.id, "order_number": order.order_number},
            )
            _notify_on_commit("purchase_order.received", order_event_payload(order, stocked_lines=stocked_lines))
        return order

    def add_invoice(self, order_id, company_id, invoice_data):
        """Register a supplier invoice against an invoiceable order.

        With ``lines`` the amounts are computed; without them the caller's
        ``subtotal``/``discount``/``tax``/``total`` (or the order's own totals
        when none are given) must reconcile within tolerance.
        """
        data = dict(invoice_data or {})
        with transaction.atomic():
            company = self._load_company(company_id)
            rules, validator, calculator = self._tools(company)
            order = get_document(DocumentKind.PURCHASE_ORDER, order_id, company.id, lock=True)
            ensure_allowed(OrderOperation.INVOICE, order.status)

            invoice_number = (data.get("invoice_number") or "").strip()
            if not invoice_number:
                raise InvalidInput("Invoice number is required.", field="invoice_number")
            if len(invoice_number) > 32:
                raise InvalidInput("Invoice number cannot exceed 32 characters.", field="invoice_number")
            if PurchaseInvoice.objects.filter(company_id=company.id, invoice_number=invoice_number).exists():
                raise InvalidInput(
                    f"Invoice number {invoice_number} already exists.",
                    field="invoice_number",
                    value=invoice_number,
                )

            issue_date = data.get("issue_date") or company_today(company)
            due_date = data.get("due_date")
            if due_date is not None and due_date < issue_date:
                raise BusinessRuleViolation("Due date cannot be before the issue date.", field="due_date")

            result = None
            if data.get("lines"):
                items = validator.lines(data["lines"])
                validator.products(items, company.id)
                result = calculator.calculate(items)
                totals = result
            elif any(data.get(name) is not None for name in ("subtotal", "tax", "total")):
                totals = CalculationResult(
                    subtotal=_money_field(data, "subtotal"),
                    discount=_money_field(data, "discount", default=Decimal("0")),
                    tax=_money_field(data, "tax"),
                    total=_money_field(data, "total"),
                )
            else:
                totals = CalculationResult(subtotal=order.subtotal, discount=order.discount, tax=order.tax, total=order.total)

            calculator.verify(totals)
            validator.order_total(totals.total)

            try:
                with transaction.atomic():
                    invoice = INVOICE_STORE.persist(
                        company.id,
                        {
                            "purchase_order": order,
                            "supplier_id": order.supplier_id,
                            "invoice_number": invoice_number,
                            "issue_date": issue_date,
                            "due_date": due_date,
                            "subtotal": totals.subtotal,
                            "discount": totals.discount,
                            "tax": totals.tax,
                            "total": totals.total,
                            "notes": data.get("notes") or "",
                        },
                    )
            except IntegrityError:
                raise ConcurrencyConflict(
                    f"Invoice number {invoice_number} was taken by a concurrent request.",
                    field="invoice_number",
                )
            if result is not None:
                INVOICE_STORE.replace_lines(invoice, result.lines)

            invoice = INVOICE_STORE.reload(invoice)
            logger.info(
                "purchase_invoice_created",
                extra={"company_id": company.id, "order_id": order.id, "invoice_id": invoice.id},
            )
            _notify_on_commit(
                "purchase_invoice.created",
                {
                    "company_id": str(company.id),
                    "entity_id": str(invoice.id),
                    "invoice_number": invoice.invoice_number,
                    "order_id": str(order.id),
                    "total": str(invoice.total),
                },
            )
        return invoice

    def add_payment(self, invoice_id, company_id, payment_data):
        data = dict(payment_data or {})
        with transaction.atomic():
            company = self._load_company(company_id)
            invoice = get_document(DocumentKind.PURCHASE_INVOICE, invoice_id, company.id, lock=True)
            if invoice.status == PurchaseInvoice.Status.VOID:
                raise BusinessRuleViolation("Payments cannot be registered on a void invoice.", field="invoice_id")
            if invoice.status == PurchaseInvoice.Status.PAID:
                raise BusinessRuleViolation("Invoice is already paid.", field="invoice_id")

            amount = _money_field(data, "amount")
            if amount <= 0:
                raise InvalidInput("amount must be greater than zero.", field="amount")
            outstanding = invoice.total - invoice.amount_paid
            if amount > outstanding:
                raise BusinessRuleViolation(
                    f"Payment exceeds the outstanding balance of {outstanding}.",
                    field="amount",
                    outstanding=outstanding,
                )

            method = data.get("method") or PurchasePayment.Method.TRANSFER
            if method not in PurchasePayment.Method.values:
                raise InvalidInput("Unknown payment method.", field="method", value=method)
            status = data.get("status") or PurchasePayment.Status.COMPLETED
            if status not in PurchasePayment.Status.values:
                raise InvalidInput("Unknown payment status.", field="status", value=status)

            payment = PurchasePayment.objects.create(
                company_id=company.id,
                invoice=invoice,
                amount=amount,
                method=method,
                paid_at=data.get("paid_at") or timezone.now(),
                reference=data.get("reference") or "",
                status=status,
            )

            if status == PurchasePayment.Status.COMPLETED:
                invoice.amount_paid = invoice.amount_paid + amount
                update_fields = ["amount_paid", "updated_at"]
                if invoice.amount_paid >= invoice.total:
                    invoice.status = PurchaseInvoice.Status.PAID
                    update_fields.append("status")
                invoice.save(update_fields=update_fields)

            logger.info(
                "purchase_payment_created",
                extra={"company_id": company.id, "invoice_id": invoice.id, "status": status},
            )
            _notify_on_commit(
                "purchase_payment.created",
                {
                    "company_id": str(company.id),
                    "entity_id": str(payment.id),
                    "invoice_id": str(invoice.id),
                    "amount": str(amount),
                    "invoice_status": invoice.status,
                },
            )
        return payment

    def mark_overdue_invoices(self, company_id, today=None):
        """Flag pending invoices whose due date is before ``today`` as overdue.

        Overdue invoices still accept payments and become paid once settled.
        """
        company = self._load_company(company_id)
        today = today or company_today(company)
        with transaction.atomic():
            updated = PurchaseInvoice.objects.filter(
                company_id=company.id,
                status=PurchaseInvoice.Status.PENDING,
                due_date__lt=today,
            ).update(status=PurchaseInvoice.Status.OVERDUE, updated_at=timezone.now())
        if updated:
            logger.info("purchase_invoices_overdue", extra={"company_id": company.id, "count": updated})
        return updated

    def preview_order(self, company_id, lines):
        """Price ``lines`` without writing anything."""
        company = self._load_company(company_id)
        rules, validator, calculator = self._tools(company)
        items = validator.lines(lines)
        validator.products(items, company.id)
        result = calculator.calculate(items)
        calculator.verify(result)
        gross = sum((line.gross for line in result.lines), Decimal("0"))
        return {
            "result": result,
            "summary": calculator.summary(result),
            "suggested_volume_discount": calculator.volume_discount(result.subtotal),
            "savings": calculator.savings(gross, result.discount),
            "exceeds_order_limit": result.total > rules.max_order_total,
        }


def get_engine(rules=None):
    return PurchaseOrderEngine(rules=rules)


def create_order(company_id, supplier_id, order_number, lines, delivery_date=None, notes="", **kwargs):
    return get_engine().create_order(company_id, supplier_id, order_number, lines, delivery_date, notes, **kwargs)


def update_order(order_id, company_id, patch=None, lines=None):
    return get_engine().update_order(order_id, company_id, patch, lines)


def confirm_order(order_id, company_id):
    return get_engine().confirm_order(order_id, company_id)


def start_order(order_id, company_id):
    return get_engine().start_order(order_id, company_id)


def receive_order(order_id, company_id):
    return get_engine().receive_order(order_id, company_id)


def cancel_order(order_id, company_id, reason=""):
    return get_engine().cancel_order(order_id, company_id, reason)


def add_invoice(order_id, company_id, invoice_data):
    return get_engine().add_invoice(order_id, company_id, invoice_data)


def add_payment(invoice_id, company_id, payment_data):
    return get_engine().add_payment(invoice_id, company_id, payment_data)


def preview_order(company_id, lines):
    return get_engine().preview_order(company_id, lines)


def mark_overdue_invoices(company_id, today=None):
    return get_engine().mark_overdue_invoices(company_id, today)
