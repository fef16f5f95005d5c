"""Company-scoped persistence for purchase documents.

Purchase orders and purchase invoices share one set of operations. The
differences (model, line model, number and date fields, status values) live
in a :class:`DocumentStore` per :class:`DocumentKind`, and the module-level
functions dispatch on the kind.
"""

import enum
import uuid
from dataclasses import dataclass
from decimal import Decimal

from django.db.models import Avg, Count, Q, Sum
from django.db.models.functions import Coalesce

from purchasing.calculation import _to_money
from purchasing.errors import NotFound
from purchasing.models import PurchaseInvoice, PurchaseInvoiceLine, PurchaseOrder, PurchaseOrderLine

ZERO = Decimal("0.00")


class DocumentKind(enum.Enum):
    PURCHASE_ORDER = "purchase_order"
    PURCHASE_INVOICE = "purchase_invoice"


@dataclass
class DocumentQuery:
    search: str = ""
    status: str = ""
    supplier_id: object = None
    date_from: object = None
    date_to: object = None
    ordering: str = ""


@dataclass(frozen=True)
class DocumentStore:
    kind: DocumentKind
    model: type
    line_model: type
    line_parent_field: str
    number_field: str
    date_field: str
    open_statuses: tuple
    completed_status: str
    related: tuple = ("supplier",)

    def queryset(self, company_id):
        return (
            self.model.objects.filter(company_id=company_id)
            .select_related(*self.related)
            .prefetch_related("lines__product")
        )

    def build_filter(self, query):
        condition = Q()
        if query.search:
            term = query.search.strip()
            condition &= (
                Q(**{f"{self.number_field}__icontains": term})
                | Q(supplier__name__icontains=term)
                | Q(supplier__tax_id__icontains=term)
                | Q(notes__icontains=term)
            )
        if query.status:
            condition &= Q(status=query.status)
        if query.supplier_id:
            condition &= Q(supplier_id=query.supplier_id)
        if query.date_from:
            condition &= Q(**{f"{self.date_field}__gte": query.date_from})
        if query.date_to:
            condition &= Q(**{f"{self.date_field}__lte": query.date_to})
        return condition

    def run_query(self, company_id, query):
        ordering = query.ordering or f"-{self.date_field}"
        return self.queryset(company_id).filter(self.build_filter(query)).order_by(ordering, f"-{self.number_field}")

    def persist(self, company_id, values, document=None):
        if document is None:
            return self.model.objects.create(company_id=company_id, **values)
        for name, value in values.items():
            setattr(document, name, value)
        document.save(update_fields=[*values.keys(), "updated_at"])
        return document

    def replace_lines(self, document, breakdown, extra=None):
        """Delete every line of ``document`` and insert ``breakdown`` in order."""
        self.line_model.objects.filter(**{self.line_parent_field: document}).delete()
        rows = []
        for position, line in enumerate(breakdown):
            values = {
                self.line_parent_field: document,
                "product_id": line.product_id,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "discount_value": line.discount_value,
                "discount": line.discount,
                "subtotal": line.subtotal,
                "position": position,
            }
            values.update(extra or {})
            rows.append(self.line_model(**values))
        return self.line_model.objects.bulk_create(rows)

    def reload(self, document):
        return self.queryset(document.company_id).get(id=document.id)


STORES = {
    DocumentKind.PURCHASE_ORDER: DocumentStore(
        kind=DocumentKind.PURCHASE_ORDER,
        model=PurchaseOrder,
        line_model=PurchaseOrderLine,
        line_parent_field="purchase_order",
        number_field="order_number",
        date_field="emission_date",
        open_statuses=(
            PurchaseOrder.Status.PENDING,
            PurchaseOrder.Status.CONFIRMED,
            PurchaseOrder.Status.IN_PROGRESS,
        ),
        completed_status=PurchaseOrder.Status.RECEIVED,
    ),
    DocumentKind.PURCHASE_INVOICE: DocumentStore(
        kind=DocumentKind.PURCHASE_INVOICE,
        model=PurchaseInvoice,
        line_model=PurchaseInvoiceLine,
        line_parent_field="invoice",
        number_field="invoice_number",
        date_field="issue_date",
        open_statuses=(PurchaseInvoice.Status.PENDING, PurchaseInvoice.Status.OVERDUE),
        completed_status=PurchaseInvoice.Status.PAID,
        related=("supplier", "purchase_order"),
    ),
}


def store_for(kind):
    return STORES[kind]


def search(kind, company_id, query=None):
    return store_for(kind).run_query(company_id, query or DocumentQuery())


def get_document(kind, document_id, company_id, lock=False):
    store = store_for(kind)
    try:
        document_id = uuid.UUID(str(document_id))
    except (TypeError, ValueError):
        raise NotFound(f"{store.model._meta.verbose_name.capitalize()} not found.", document_id=document_id)

    if lock:
        document = store.model.objects.select_for_update().filter(id=document_id, company_id=company_id).first()
    else:
        document = store.queryset(company_id).filter(id=document_id).first()
    if document is None:
        raise NotFound(f"{store.model._meta.verbose_name.capitalize()} not found.", document_id=document_id)
    return document


def document_stats(kind, company_id, date_from=None, date_to=None):
    store = store_for(kind)
    queryset = store.run_query(company_id, DocumentQuery(date_from=date_from, date_to=date_to)).order_by()
    totals = queryset.aggregate(
        document_count=Count("id"),
        total_amount=Coalesce(Sum("total"), ZERO),
        average_amount=Coalesce(Avg("total"), ZERO),
        open_count=Count("id", filter=Q(status__in=store.open_statuses)),
        completed_count=Count("id", filter=Q(status=store.completed_status)),
        supplier_count=Count("supplier_id", distinct=True),
    )
    totals["total_amount"] = _to_money(totals["total_amount"])
    totals["average_amount"] = _to_money(totals["average_amount"])
    totals["kind"] = kind.value
    return totals
