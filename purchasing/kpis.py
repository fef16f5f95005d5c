"""Read-only purchase KPIs over committed orders.

Nothing here locks or writes. The same inputs against unchanged data give the
same snapshot: the payload holds no timestamps and every ranking breaks ties
by name.
"""

from dataclasses import asdict, dataclass, field
from datetime import timedelta
from decimal import Decimal

from django.db.models import Count, Q, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from common.utils import _to_json_compatible
from purchasing.calculation import _to_money
from purchasing.models import PurchaseOrder, PurchaseOrderLine

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
UNCATEGORIZED = "Uncategorized"

COUNTED_STATUSES = (
    PurchaseOrder.Status.CONFIRMED,
    PurchaseOrder.Status.IN_PROGRESS,
    PurchaseOrder.Status.RECEIVED,
)


@dataclass(frozen=True)
class KpiSnapshot:
    date_from: object
    date_to: object
    previous_date_from: object
    previous_date_to: object
    total_spend: Decimal
    previous_spend: Decimal
    growth_percent: Decimal
    order_count: int
    average_order_value: Decimal
    active_supplier_count: int
    fulfillment_rate: Decimal
    average_lead_time_days: Decimal
    top_suppliers: list = field(default_factory=list)
    top_categories: list = field(default_factory=list)

    def as_dict(self):
        return _to_json_compatible(asdict(self))


def _share(part, whole):
    if not whole:
        return ZERO
    return _to_money(Decimal(part) * HUNDRED / Decimal(whole))


def counted_orders(company_id, date_from, date_to):
    return PurchaseOrder.objects.filter(
        company_id=company_id,
        status__in=COUNTED_STATUSES,
        emission_date__gte=date_from,
        emission_date__lte=date_to,
    )


def previous_window(date_from, date_to):
    length = (date_to - date_from).days + 1
    previous_to = date_from - timedelta(days=1)
    return previous_to - timedelta(days=length - 1), previous_to


def growth_percent(current, previous):
    if not previous:
        return ZERO
    return _to_money((Decimal(current) - Decimal(previous)) * HUNDRED / Decimal(previous))


def top_suppliers(orders, total_spend, limit):
    rows = (
        orders.values("supplier_id", "supplier__name", "supplier__tax_id")
        .annotate(spend=Coalesce(Sum("total"), ZERO), order_count=Count("id"))
        .order_by("-spend", "supplier__name", "supplier_id")[:limit]
    )
    return [
        {
            "supplier_id": row["supplier_id"],
            "name": row["supplier__name"],
            "tax_id": row["supplier__tax_id"],
            "spend": _to_money(row["spend"]),
            "order_count": row["order_count"],
            "participation_percent": _share(row["spend"], total_spend),
        }
        for row in rows
    ]


def top_categories(orders, limit):
    lines = PurchaseOrderLine.objects.filter(purchase_order__in=orders)
    line_total = lines.aggregate(total=Coalesce(Sum("subtotal"), ZERO))["total"]
    rows = lines.values("product__category__name").annotate(
        amount=Coalesce(Sum("subtotal"), ZERO),
        quantity=Coalesce(Sum("quantity"), 0),
    )

    grouped = {}
    for row in rows:
        name = row["product__category__name"] or UNCATEGORIZED
        entry = grouped.setdefault(name, {"name": name, "amount": ZERO, "quantity": 0})
        entry["amount"] += row["amount"]
        entry["quantity"] += row["quantity"]

    ranked = sorted(grouped.values(), key=lambda entry: (-entry["amount"], entry["name"]))[:limit]
    return [
        {
            "name": entry["name"],
            "amount": _to_money(entry["amount"]),
            "quantity": entry["quantity"],
            "participation_percent": _share(entry["amount"], line_total),
        }
        for entry in ranked
    ]


def average_lead_time(orders):
    received = orders.filter(status=PurchaseOrder.Status.RECEIVED, received_at__isnull=False).values_list(
        "emission_date", "received_at"
    )
    days = [(timezone.localtime(received_at).date() - emission_date).days for emission_date, received_at in received]
    if not days:
        return ZERO
    return _to_money(Decimal(sum(days)) / Decimal(len(days)))


def compute_purchase_kpis(company_id, date_from, date_to, top_n=5):
    """Spend, supplier and category rollups for ``[date_from, date_to]``.

    Only confirmed, in-progress and received orders count. Growth compares
    against the window of equal length that ends the day before
    ``date_from`` and is 0 when that window has no spend.
    """
    orders = counted_orders(company_id, date_from, date_to)
    totals = orders.aggregate(
        total_spend=Coalesce(Sum("total"), ZERO),
        order_count=Count("id"),
        received_count=Count("id", filter=Q(status=PurchaseOrder.Status.RECEIVED)),
        active_supplier_count=Count("supplier_id", distinct=True),
    )
    total_spend = _to_money(totals["total_spend"])
    order_count = totals["order_count"]

    previous_from, previous_to = previous_window(date_from, date_to)
    previous_spend = _to_money(
        counted_orders(company_id, previous_from, previous_to).aggregate(total=Coalesce(Sum("total"), ZERO))["total"]
    )

    return KpiSnapshot(
        date_from=date_from,
        date_to=date_to,
        previous_date_from=previous_from,
        previous_date_to=previous_to,
        total_spend=total_spend,
        previous_spend=previous_spend,
        growth_percent=growth_percent(total_spend, previous_spend),
        order_count=order_count,
        average_order_value=_to_money(total_spend / order_count) if order_count else ZERO,
        active_supplier_count=totals["active_supplier_count"],
        fulfillment_rate=_share(totals["received_count"], order_count),
        average_lead_time_days=average_lead_time(orders),
        top_suppliers=top_suppliers(orders, total_spend, top_n),
        top_categories=top_categories(orders, top_n),
    )


def average_purchase_cost(company_id, product_id, days=90, today=None):
    """Weighted average net unit cost of ``product_id`` over recent receptions."""
    today = today or timezone.localdate()
    totals = PurchaseOrderLine.objects.filter(
        purchase_order__company_id=company_id,
        purchase_order__status=PurchaseOrder.Status.RECEIVED,
        purchase_order__emission_date__gte=today - timedelta(days=days),
        product_id=product_id,
    ).aggregate(amount=Coalesce(Sum("subtotal"), ZERO), quantity=Coalesce(Sum("quantity"), 0))
    if not totals["quantity"]:
        return None
    return _to_money(totals["amount"] / totals["quantity"])
