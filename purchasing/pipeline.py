"""Quotation to order to reception pipeline."""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from django.db import transaction
from django.db.models import Count, Q, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from common.notifications import notify
from purchasing import lifecycle
from purchasing.calculation import PurchaseCalculator, _to_money
from purchasing.errors import BusinessRuleViolation, NotFound, ProcurementError
from purchasing.models import PurchaseOrder, PurchaseOrderLine, SupplierQuotation, SupplierQuotationLine
from purchasing.numbering import allocate_order_number
from purchasing.repository import STORES, DocumentKind
from purchasing.rules import ProcurementRules
from purchasing.validation import ProcurementValidator, _as_uuid

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
ORDER_STORE = STORES[DocumentKind.PURCHASE_ORDER]


@dataclass(frozen=True)
class ConversionOptions:
    auto_approve: bool = False
    notes: str = ""
    delivery_date: object = None


@dataclass(frozen=True)
class ConversionResult:
    success: bool
    quotation: SupplierQuotation
    order: PurchaseOrder
    order_number: str
    total: Decimal
    status: str
    message: str
    converted_at: object


@dataclass
class FullCycleResult:
    quotation: SupplierQuotation
    order: PurchaseOrder
    reception: PurchaseOrder = None
    steps: list = field(default_factory=list)
    error: dict = None

    @property
    def completed(self):
        return self.error is None


def create_quotation(company_id, supplier_id, lines, *, issue_date=None, valid_until=None, reference="", notes=""):
    """Record a supplier quotation priced with the company's rules."""
    with transaction.atomic():
        base_rules = ProcurementRules.from_settings()
        company = ProcurementValidator(base_rules).company(company_id)
        rules = base_rules.for_company(company)
        validator = ProcurementValidator(rules)
        calculator = PurchaseCalculator(rules)

        supplier = validator.supplier(supplier_id, company.id)
        issue_date = issue_date or lifecycle.company_today(company)
        if valid_until is not None and valid_until < issue_date:
            raise BusinessRuleViolation("Quotation cannot expire before its issue date.", field="valid_until")

        items = validator.lines(lines)
        validator.products(items, company.id)
        result = calculator.calculate(items)
        validator.order_total(result.total)

        quotation = SupplierQuotation.objects.create(
            company=company,
            supplier=supplier,
            reference=reference or "",
            issue_date=issue_date,
            valid_until=valid_until,
            subtotal=result.subtotal,
            discount=result.discount,
            tax=result.tax,
            total=result.total,
            notes=notes or "",
        )
        SupplierQuotationLine.objects.bulk_create(
            [
                SupplierQuotationLine(
                    quotation=quotation,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    discount_value=line.discount_value,
                    discount=line.discount,
                    subtotal=line.subtotal,
                    position=position,
                )
                for position, line in enumerate(result.lines)
            ]
        )
        logger.info("quotation_created", extra={"company_id": company.id, "quotation_id": quotation.id})
    return quotation


def reject_quotation(quotation_id, company_id):
    with transaction.atomic():
        quotation = (
            SupplierQuotation.objects.select_for_update()
            .filter(id=_as_uuid(quotation_id, "quotation_id"), company_id=company_id)
            .first()
        )
        if quotation is None:
            raise NotFound("Quotation not found.", field="quotation_id", quotation_id=quotation_id)
        if quotation.status != SupplierQuotation.Status.PENDING:
            raise BusinessRuleViolation(
                f"Only pending quotations can be rejected; this one is {quotation.status}.",
                field="status",
            )
        quotation.status = SupplierQuotation.Status.REJECTED
        quotation.save(update_fields=["status", "updated_at"])
    return quotation


def convert_quotation_to_order(quotation_id, company_id, options=None, *, user_id=None, rules=None):
    """Turn a pending supplier quotation into a purchase order.

    Lines and amounts are copied as priced by the supplier; the calculator
    only verifies that they reconcile. The quotation is marked converted in
    the same transaction that creates the order.
    """
    options = options or ConversionOptions()
    with transaction.atomic():
        base_rules = rules or ProcurementRules.from_settings()
        company = ProcurementValidator(base_rules).company(company_id, lock=True)
        rules = base_rules.for_company(company)
        validator = ProcurementValidator(rules)
        calculator = PurchaseCalculator(rules)

        quotation = (
            SupplierQuotation.objects.select_for_update()
            .filter(
                id=_as_uuid(quotation_id, "quotation_id"),
                company_id=company.id,
                status=SupplierQuotation.Status.PENDING,
            )
            .first()
        )
        if quotation is None:
            raise NotFound("Pending quotation not found.", field="quotation_id", quotation_id=quotation_id)
        if quotation.total <= 0:
            raise BusinessRuleViolation(
                "Quotation total must be greater than zero.",
                field="total",
                quotation_id=quotation.id,
            )

        validator.supplier(quotation.supplier_id, company.id)
        emission_date = lifecycle.company_today(company)
        validator.monthly_quota(company.id, emission_date)
        calculator.verify(quotation)
        validator.order_total(quotation.total)

        delivery_date = options.delivery_date or emission_date + timedelta(days=rules.default_lead_days)
        validator.delivery_date(emission_date, delivery_date)

        now = timezone.now()
        status = PurchaseOrder.Status.CONFIRMED if options.auto_approve else PurchaseOrder.Status.PENDING
        values = {
            "supplier_id": quotation.supplier_id,
            "emission_date": emission_date,
            "delivery_date": delivery_date,
            "subtotal": quotation.subtotal,
            "discount": quotation.discount,
            "tax": quotation.tax,
            "total": quotation.total,
            "status": status,
            "notes": options.notes or quotation.notes or "",
            "created_by_id": user_id,
            "confirmed_at": now if options.auto_approve else None,
        }
        order = allocate_order_number(
            company.id,
            emission_date,
            rules,
            lambda number: ORDER_STORE.persist(company.id, {**values, "order_number": number}),
        )

        PurchaseOrderLine.objects.bulk_create(
            [
                PurchaseOrderLine(
                    purchase_order=order,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    discount_value=line.discount_value,
                    discount=line.discount,
                    subtotal=line.subtotal,
                    position=position,
                )
                for position, line in enumerate(quotation.lines.order_by("position"))
            ]
        )

        quotation.status = SupplierQuotation.Status.CONVERTED
        quotation.converted_order = order
        quotation.converted_at = now
        quotation.save(update_fields=["status", "converted_order", "converted_at", "updated_at"])

        order = ORDER_STORE.reload(order)
        logger.info(
            "quotation_converted",
            extra={"company_id": company.id, "quotation_id": quotation.id, "order_id": order.id, "status": status},
        )
        payload = lifecycle.order_event_payload(order, quotation_id=str(quotation.id))
        transaction.on_commit(lambda: notify("quotation.converted", payload))

    return ConversionResult(
        success=True,
        quotation=quotation,
        order=order,
        order_number=order.order_number,
        total=order.total,
        status=order.status,
        message=f"Quotation converted to purchase order {order.order_number}.",
        converted_at=now,
    )


def run_full_cycle(quotation_id, company_id, auto_receive=False, notes="", delivery_date=None, *, user_id=None):
    """Convert a quotation with auto-approval and optionally receive the order.

    Each step commits on its own. When reception fails the confirmed order
    is kept and the result carries the error of the failed step.
    """
    conversion = convert_quotation_to_order(
        quotation_id,
        company_id,
        ConversionOptions(auto_approve=True, notes=notes, delivery_date=delivery_date),
        user_id=user_id,
    )
    result = FullCycleResult(quotation=conversion.quotation, order=conversion.order)
    result.steps.append({"step": "convert", "status": "completed", "order_number": conversion.order_number})

    if not auto_receive:
        return result

    try:
        result.reception = lifecycle.receive_order(conversion.order.id, company_id)
    except ProcurementError as exc:
        logger.error(
            "full_cycle_reception_failed",
            extra={"company_id": company_id, "order_id": conversion.order.id, "error_kind": exc.kind},
        )
        result.error = exc.as_dict() | {"message": exc.message}
        result.steps.append({"step": "receive", "status": "failed", "message": exc.message})
        return result

    result.order = result.reception
    result.steps.append({"step": "receive", "status": "completed", "order_number": conversion.order_number})
    return result


def _rate(numerator, denominator):
    if not denominator:
        return ZERO
    return _to_money(Decimal(numerator) * HUNDRED / Decimal(denominator))


def pipeline_stats(company_id, date_from=None, date_to=None):
    quotations = SupplierQuotation.objects.filter(company_id=company_id)
    orders = PurchaseOrder.objects.filter(company_id=company_id)
    if date_from:
        quotations = quotations.filter(issue_date__gte=date_from)
        orders = orders.filter(emission_date__gte=date_from)
    if date_to:
        quotations = quotations.filter(issue_date__lte=date_to)
        orders = orders.filter(emission_date__lte=date_to)

    quotation_totals = quotations.aggregate(
        quotation_count=Count("id"),
        pending_quotations=Count("id", filter=Q(status=SupplierQuotation.Status.PENDING)),
        converted_quotations=Count("id", filter=Q(status=SupplierQuotation.Status.CONVERTED)),
        pending_value=Coalesce(Sum("total", filter=Q(status=SupplierQuotation.Status.PENDING)), ZERO),
    )
    open_statuses = ORDER_STORE.open_statuses
    order_totals = orders.exclude(status=PurchaseOrder.Status.CANCELLED).aggregate(
        order_count=Count("id"),
        pending_orders=Count("id", filter=Q(status=PurchaseOrder.Status.PENDING)),
        in_progress_orders=Count("id", filter=Q(status=PurchaseOrder.Status.IN_PROGRESS)),
        received_orders=Count("id", filter=Q(status=PurchaseOrder.Status.RECEIVED)),
        pipeline_value=Coalesce(Sum("total"), ZERO),
        open_value=Coalesce(Sum("total", filter=Q(status__in=open_statuses)), ZERO),
    )

    stats = {**quotation_totals, **order_totals}
    for key in ("pending_value", "pipeline_value", "open_value"):
        stats[key] = _to_money(stats[key])
    stats["conversion_rate"] = _rate(stats["converted_quotations"], stats["quotation_count"])
    stats["reception_rate"] = _rate(stats["received_orders"], stats["order_count"])
    return stats


FOLLOW_UP_STATUSES = (PurchaseOrder.Status.CONFIRMED, PurchaseOrder.Status.IN_PROGRESS)
DUE_SOON_DAYS = 2
STALE_ORDER_DAYS = 30

ALERT_GREEN = "green"
ALERT_YELLOW = "yellow"
ALERT_RED = "red"
FOLLOW_UP_ALERTS = (ALERT_GREEN, ALERT_YELLOW, ALERT_RED)


def _follow_up_alert(days_elapsed, days_remaining):
    if days_remaining < 0:
        return ALERT_RED, "Contact the supplier urgently: the delivery date has passed."
    if days_remaining <= DUE_SOON_DAYS:
        return ALERT_YELLOW, "Confirm the delivery status with the supplier."
    if days_elapsed > STALE_ORDER_DAYS:
        return ALERT_RED, "Old unresolved order: review it and cancel it if it is no longer needed."
    return ALERT_GREEN, "Routine follow-up."


def order_follow_up(company_id, today=None, *, rules=None):
    """Delivery tracking for confirmed and in-progress orders, oldest first.

    Orders without a delivery date are expected ``default_lead_days`` after
    emission.
    """
    base_rules = rules or ProcurementRules.from_settings()
    company = ProcurementValidator(base_rules).company(company_id)
    rules = base_rules.for_company(company)
    today = today or lifecycle.company_today(company)

    orders = (
        PurchaseOrder.objects.filter(company_id=company.id, status__in=FOLLOW_UP_STATUSES)
        .select_related("supplier")
        .order_by("emission_date", "order_number")
    )
    rows = []
    for order in orders:
        expected = order.delivery_date or order.emission_date + timedelta(days=rules.default_lead_days)
        days_elapsed = (today - order.emission_date).days
        days_remaining = (expected - today).days
        alert, next_action = _follow_up_alert(days_elapsed, days_remaining)
        rows.append(
            {
                "order_id": order.id,
                "order_number": order.order_number,
                "supplier_id": order.supplier_id,
                "supplier_name": order.supplier.name,
                "status": order.status,
                "total": order.total,
                "emission_date": order.emission_date,
                "expected_delivery_date": expected,
                "days_elapsed": days_elapsed,
                "days_remaining": days_remaining,
                "alert": alert,
                "next_action": next_action,
            }
        )
    return rows
