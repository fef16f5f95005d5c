from rest_framework import serializers

from purchasing.models import (
    PurchaseInvoice,
    PurchaseInvoiceLine,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchasePayment,
    Supplier,
    SupplierProduct,
    SupplierQuotation,
    SupplierQuotationLine,
)
from purchasing.state_machine import allowed_operations


class SupplierSerializer(serializers.ModelSerializer):
    class Meta:
        model = Supplier
        fields = [
            "id",
            "name",
            "tax_id",
            "address",
            "phone",
            "email",
            "contact_name",
            "notes",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]


class SupplierProductSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    product_sku = serializers.CharField(source="product.sku", read_only=True)

    class Meta:
        model = SupplierProduct
        fields = [
            "id",
            "product",
            "product_name",
            "product_sku",
            "supplier_code",
            "purchase_price",
            "lead_time_days",
            "created_at",
        ]
        read_only_fields = fields


class SupplierProductCreateSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    supplier_code = serializers.CharField(required=False, allow_blank=True, default="", max_length=64)
    purchase_price = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, allow_null=True)
    lead_time_days = serializers.IntegerField(required=False, allow_null=True, min_value=0)


class LineInputSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField()
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=2)
    discount = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, default=0)


class PurchaseOrderLineSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    product_sku = serializers.CharField(source="product.sku", read_only=True)

    class Meta:
        model = PurchaseOrderLine
        fields = [
            "id",
            "product",
            "product_name",
            "product_sku",
            "quantity",
            "unit_price",
            "discount_value",
            "discount",
            "subtotal",
            "status",
            "position",
        ]
        read_only_fields = fields


class PurchaseOrderSerializer(serializers.ModelSerializer):
    supplier_name = serializers.CharField(source="supplier.name", read_only=True)
    supplier_tax_id = serializers.CharField(source="supplier.tax_id", read_only=True)
    lines = PurchaseOrderLineSerializer(many=True, read_only=True)
    allowed_operations = serializers.SerializerMethodField()

    class Meta:
        model = PurchaseOrder
        fields = [
            "id",
            "order_number",
            "supplier",
            "supplier_name",
            "supplier_tax_id",
            "emission_date",
            "delivery_date",
            "subtotal",
            "discount",
            "tax",
            "total",
            "status",
            "allowed_operations",
            "notes",
            "created_by",
            "confirmed_at",
            "received_at",
            "cancelled_at",
            "cancel_reason",
            "lines",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_allowed_operations(self, obj):
        return [str(operation) for operation in allowed_operations(obj.status)]


class PurchaseOrderCreateSerializer(serializers.Serializer):
    supplier_id = serializers.UUIDField()
    order_number = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    delivery_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    lines = LineInputSerializer(many=True, allow_empty=True)


class PurchaseOrderUpdateSerializer(serializers.Serializer):
    supplier_id = serializers.UUIDField(required=False)
    order_number = serializers.CharField(max_length=64, required=False)
    delivery_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    lines = LineInputSerializer(many=True, required=False, allow_empty=True)


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)


class PreviewSerializer(serializers.Serializer):
    lines = LineInputSerializer(many=True, allow_empty=True)


class PurchaseInvoiceLineSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = PurchaseInvoiceLine
        fields = ["id", "product", "product_name", "quantity", "unit_price", "discount_value", "discount", "subtotal", "position"]
        read_only_fields = fields


class PurchasePaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = PurchasePayment
        fields = ["id", "invoice", "amount", "method", "paid_at", "reference", "status", "created_at"]
        read_only_fields = fields


class PurchaseInvoiceSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source="purchase_order.order_number", read_only=True)
    supplier_name = serializers.CharField(source="supplier.name", read_only=True)
    balance_due = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    lines = PurchaseInvoiceLineSerializer(many=True, read_only=True)

    class Meta:
        model = PurchaseInvoice
        fields = [
            "id",
            "invoice_number",
            "purchase_order",
            "order_number",
            "supplier",
            "supplier_name",
            "issue_date",
            "due_date",
            "subtotal",
            "discount",
            "tax",
            "total",
            "amount_paid",
            "balance_due",
            "status",
            "notes",
            "lines",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PurchaseInvoiceCreateSerializer(serializers.Serializer):
    invoice_number = serializers.CharField(max_length=64)
    issue_date = serializers.DateField(required=False, allow_null=True)
    due_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    lines = LineInputSerializer(many=True, required=False, allow_empty=True)
    subtotal = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)
    discount = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)
    tax = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)
    total = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)


class PurchasePaymentCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    method = serializers.ChoiceField(choices=PurchasePayment.Method.choices, default=PurchasePayment.Method.TRANSFER)
    status = serializers.ChoiceField(choices=PurchasePayment.Status.choices, default=PurchasePayment.Status.COMPLETED)
    paid_at = serializers.DateTimeField(required=False, allow_null=True)
    reference = serializers.CharField(required=False, allow_blank=True, default="", max_length=64)


class SupplierQuotationLineSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = SupplierQuotationLine
        fields = [
            "id",
            "product",
            "product_name",
            "quantity",
            "unit_price",
            "discount_value",
            "discount",
            "subtotal",
            "position",
        ]
        read_only_fields = fields


class SupplierQuotationSerializer(serializers.ModelSerializer):
    supplier_name = serializers.CharField(source="supplier.name", read_only=True)
    converted_order_number = serializers.CharField(
        source="converted_order.order_number", read_only=True, allow_null=True
    )
    lines = SupplierQuotationLineSerializer(many=True, read_only=True)

    class Meta:
        model = SupplierQuotation
        fields = [
            "id",
            "supplier",
            "supplier_name",
            "reference",
            "issue_date",
            "valid_until",
            "subtotal",
            "discount",
            "tax",
            "total",
            "status",
            "converted_order",
            "converted_order_number",
            "converted_at",
            "notes",
            "lines",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class SupplierQuotationCreateSerializer(serializers.Serializer):
    supplier_id = serializers.UUIDField()
    reference = serializers.CharField(required=False, allow_blank=True, default="", max_length=64)
    issue_date = serializers.DateField(required=False, allow_null=True)
    valid_until = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    lines = LineInputSerializer(many=True, allow_empty=True)


class ConversionSerializer(serializers.Serializer):
    auto_approve = serializers.BooleanField(required=False, default=False)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    delivery_date = serializers.DateField(required=False, allow_null=True)


class FullCycleSerializer(serializers.Serializer):
    auto_receive = serializers.BooleanField(required=False, default=False)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    delivery_date = serializers.DateField(required=False, allow_null=True)
