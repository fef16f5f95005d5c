import uuid
from decimal import Decimal

from django.db import models

from core.models import Company
from inventory.models import Product

ZERO = Decimal("0.00")


def _money(**kwargs):
    return models.DecimalField(max_digits=14, decimal_places=2, **kwargs)


class Supplier(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey(Company, on_delete=models.PROTECT, related_name="suppliers")
    name = models.CharField(max_length=255)
    tax_id = models.CharField(max_length=11)
    address = models.CharField(max_length=255, blank=True, default="")
    phone = models.CharField(max_length=32, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    contact_name = models.CharField(max_length=255, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["company", "tax_id"], name="uniq_supplier_company_tax_id"),
        ]
        indexes = [models.Index(fields=["company", "is_active"], name="supplier_company_active_idx")]

    def __str__(self):
        return self.name


class SupplierProduct(models.Model):
    """A product a supplier offers, with the supplier's own terms for it."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    supplier = models.ForeignKey(Supplier, on_delete=models.CASCADE, related_name="catalog")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="supplier_links")
    supplier_code = models.CharField(max_length=64, blank=True, default="")
    purchase_price = _money(null=True, blank=True)
    lead_time_days = models.PositiveIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["supplier", "product"], name="uniq_supplier_product"),
        ]


class SupplierQuotation(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        CONVERTED = "converted", "Converted"
        REJECTED = "rejected", "Rejected"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey(Company, on_delete=models.PROTECT, related_name="quotations")
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, related_name="quotations")
    reference = models.CharField(max_length=64, blank=True, default="")
    issue_date = models.DateField()
    valid_until = models.DateField(null=True, blank=True)
    subtotal = _money(default=ZERO)
    discount = _money(default=ZERO)
    tax = _money(default=ZERO)
    total = _money(default=ZERO)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    converted_order = models.OneToOneField(
        "PurchaseOrder",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="source_quotation",
    )
    converted_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=["company", "status"], name="quotation_company_status_idx")]


class SupplierQuotationLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    quotation = models.ForeignKey(SupplierQuotation, on_delete=models.CASCADE, related_name="lines")
    product = models.ForeignKey(Product, on_delete=models.PROTECT)
    quantity = models.PositiveIntegerField()
    unit_price = _money()
    discount_value = _money(default=ZERO)
    discount = _money(default=ZERO)
    subtotal = _money()
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position"]


class PurchaseOrder(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        CONFIRMED = "confirmed", "Confirmed"
        IN_PROGRESS = "in_progress", "In progress"
        RECEIVED = "received", "Received"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey(Company, on_delete=models.PROTECT, related_name="purchase_orders")
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, related_name="purchase_orders")
    order_number = models.CharField(max_length=20)
    emission_date = models.DateField()
    delivery_date = models.DateField(null=True, blank=True)
    subtotal = _money(default=ZERO)
    discount = _money(default=ZERO)
    tax = _money(default=ZERO)
    total = _money(default=ZERO)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey("core.User", on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    confirmed_at = models.DateTimeField(null=True, blank=True)
    received_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["company", "order_number"], name="uniq_purchase_order_number"),
        ]
        indexes = [
            models.Index(fields=["company", "status", "emission_date"], name="po_company_status_date_idx"),
            models.Index(fields=["supplier", "status"], name="po_supplier_status_idx"),
        ]

    def __str__(self):
        return self.order_number


class PurchaseOrderLine(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        RECEIVED = "received", "Received"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    purchase_order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, related_name="lines")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="purchase_order_lines")
    quantity = models.PositiveIntegerField()
    unit_price = _money()
    discount_value = _money(default=ZERO)
    discount = _money(default=ZERO)
    subtotal = _money()
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position"]
        indexes = [
            models.Index(fields=["purchase_order"], name="po_line_order_idx"),
            models.Index(fields=["product"], name="po_line_product_idx"),
        ]


class PurchaseInvoice(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        OVERDUE = "overdue", "Overdue"
        VOID = "void", "Void"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey(Company, on_delete=models.PROTECT, related_name="purchase_invoices")
    purchase_order = models.ForeignKey(PurchaseOrder, on_delete=models.PROTECT, related_name="invoices")
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, related_name="invoices")
    invoice_number = models.CharField(max_length=32)
    issue_date = models.DateField()
    due_date = models.DateField(null=True, blank=True)
    subtotal = _money(default=ZERO)
    discount = _money(default=ZERO)
    tax = _money(default=ZERO)
    total = _money(default=ZERO)
    amount_paid = _money(default=ZERO)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["company", "invoice_number"], name="uniq_purchase_invoice_number"),
        ]
        indexes = [
            models.Index(fields=["company", "status", "issue_date"], name="pinv_company_status_date_idx"),
        ]

    @property
    def balance_due(self):
        return max(self.total - self.amount_paid, ZERO)


class PurchaseInvoiceLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice = models.ForeignKey(PurchaseInvoice, on_delete=models.CASCADE, related_name="lines")
    product = models.ForeignKey(Product, on_delete=models.PROTECT)
    quantity = models.PositiveIntegerField()
    unit_price = _money()
    discount_value = _money(default=ZERO)
    discount = _money(default=ZERO)
    subtotal = _money()
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position"]


class PurchasePayment(models.Model):
    class Method(models.TextChoices):
        CASH = "cash", "Cash"
        TRANSFER = "transfer", "Bank transfer"
        CARD = "card", "Card"
        CHECK = "check", "Check"
        OTHER = "other", "Other"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey(Company, on_delete=models.PROTECT, related_name="purchase_payments")
    invoice = models.ForeignKey(PurchaseInvoice, on_delete=models.PROTECT, related_name="payments")
    amount = _money()
    method = models.CharField(max_length=16, choices=Method.choices, default=Method.TRANSFER)
    paid_at = models.DateTimeField()
    reference = models.CharField(max_length=64, blank=True, default="")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.COMPLETED)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=["invoice", "paid_at"], name="ppay_invoice_paid_idx")]
