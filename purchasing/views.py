from decimal import Decimal

from django.utils.dateparse import parse_date
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from common.permissions import BelongsToCompany, RoleCapabilityPermission
from purchasing import lifecycle, pipeline, suppliers
from purchasing.models import PurchaseInvoice, Supplier, SupplierQuotation
from purchasing.repository import DocumentKind, DocumentQuery, document_stats, get_document, search
from purchasing.serializers import (
    CancelSerializer,
    ConversionSerializer,
    FullCycleSerializer,
    PreviewSerializer,
    PurchaseInvoiceCreateSerializer,
    PurchaseInvoiceSerializer,
    PurchaseOrderCreateSerializer,
    PurchaseOrderSerializer,
    PurchaseOrderUpdateSerializer,
    PurchasePaymentCreateSerializer,
    PurchasePaymentSerializer,
    SupplierProductCreateSerializer,
    SupplierProductSerializer,
    SupplierQuotationCreateSerializer,
    SupplierQuotationSerializer,
    SupplierSerializer,
)


def _lines(validated):
    return [dict(line) for line in validated]


class CompanyScopedMixin:
    permission_classes = [IsAuthenticated, BelongsToCompany, RoleCapabilityPermission]

    @property
    def company_id(self):
        return self.request.user.company_id

    def _audit(self, *, action, entity, instance, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity=entity,
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )


class DocumentQueryMixin:
    def _document_query(self):
        params = self.request.query_params
        date_from = parse_date(params.get("date_from", ""))
        date_to = parse_date(params.get("date_to", ""))
        if date_from and date_to and date_from > date_to:
            raise ValidationError({"date_range": "date_from must be before or equal to date_to."})
        return DocumentQuery(
            search=params.get("search", ""),
            status=params.get("status", ""),
            supplier_id=params.get("supplier_id") or None,
            date_from=date_from,
            date_to=date_to,
        )


class SupplierViewSet(CompanyScopedMixin, viewsets.ModelViewSet):
    serializer_class = SupplierSerializer
    http_method_names = ["get", "post", "patch", "delete", "head", "options"]
    permission_action_map = {
        "list": "purchasing.view",
        "retrieve": "purchasing.view",
        "create": "supplier.manage",
        "partial_update": "supplier.manage",
        "destroy": "supplier.manage",
        "products": "purchasing.view",
        "add_product": "supplier.manage",
        "remove_product": "supplier.manage",
    }

    def get_queryset(self):
        qs = Supplier.objects.filter(company_id=self.company_id).order_by("name")
        term = self.request.query_params.get("search")
        if term:
            qs = qs.filter(name__icontains=term) | qs.filter(tax_id__icontains=term)
        if self.request.query_params.get("active") == "true":
            qs = qs.filter(is_active=True)
        return qs

    def perform_create(self, serializer):
        serializer.instance = suppliers.create_supplier(self.company_id, dict(serializer.validated_data))
        self._audit(action="supplier.create", entity="supplier", instance=serializer.instance, after_snapshot=serializer.data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        serializer.instance = suppliers.update_supplier(serializer.instance.id, self.company_id, dict(serializer.validated_data))
        self._audit(
            action="supplier.update",
            entity="supplier",
            instance=serializer.instance,
            before_snapshot=before_snapshot,
            after_snapshot=serializer.data,
        )

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        instance = suppliers.deactivate_supplier(instance.id, self.company_id)
        self._audit(
            action="supplier.deactivate",
            entity="supplier",
            instance=instance,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )

    @action(detail=True, methods=["get"])
    def products(self, request, pk=None):
        supplier = self.get_object()
        queryset = suppliers.supplier_catalog(supplier.id, self.company_id)
        page = self.paginate_queryset(queryset)
        return self.get_paginated_response(SupplierProductSerializer(page, many=True).data)

    @products.mapping.post
    def add_product(self, request, pk=None):
        supplier = self.get_object()
        serializer = SupplierProductCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        product_id = data.pop("product_id")
        link = suppliers.link_product(supplier.id, self.company_id, product_id, data)
        payload = SupplierProductSerializer(link).data
        self._audit(action="supplier.product_link", entity="supplier", instance=supplier, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["delete"], url_path=r"products/(?P<product_id>[^/.]+)")
    def remove_product(self, request, pk=None, product_id=None):
        supplier = self.get_object()
        link = suppliers.unlink_product(supplier.id, self.company_id, product_id)
        self._audit(
            action="supplier.product_unlink",
            entity="supplier",
            instance=supplier,
            before_snapshot={"product": str(link.product_id), "supplier_code": link.supplier_code},
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


class PurchaseOrderViewSet(CompanyScopedMixin, DocumentQueryMixin, viewsets.GenericViewSet):
    serializer_class = PurchaseOrderSerializer
    permission_action_map = {
        "list": "purchasing.view",
        "retrieve": "purchasing.view",
        "stats": "purchasing.view",
        "preview": "purchasing.view",
        "create": "purchasing.order.create",
        "partial_update": "purchasing.order.update",
        "confirm": "purchasing.order.approve",
        "start": "purchasing.order.update",
        "receive": "purchasing.order.receive",
        "cancel": "purchasing.order.cancel",
        "destroy": "purchasing.order.cancel",
        "invoices": "purchasing.invoice.create",
    }

    def list(self, request):
        queryset = search(DocumentKind.PURCHASE_ORDER, self.company_id, self._document_query())
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(self.get_serializer(page, many=True).data)
        return Response(self.get_serializer(queryset, many=True).data)

    def retrieve(self, request, pk=None):
        order = get_document(DocumentKind.PURCHASE_ORDER, pk, self.company_id)
        return Response(self.get_serializer(order).data)

    def create(self, request):
        serializer = PurchaseOrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        order = lifecycle.create_order(
            self.company_id,
            data["supplier_id"],
            data.get("order_number") or None,
            _lines(data["lines"]),
            data.get("delivery_date"),
            data.get("notes", ""),
            user_id=request.user.id,
        )
        payload = self.get_serializer(order).data
        self._audit(action="purchase_order.create", entity="purchase_order", instance=order, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        serializer = PurchaseOrderUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        patch = dict(serializer.validated_data)
        lines = patch.pop("lines", None)

        before = self.get_serializer(get_document(DocumentKind.PURCHASE_ORDER, pk, self.company_id)).data
        order = lifecycle.update_order(pk, self.company_id, patch, _lines(lines) if lines is not None else None)
        payload = self.get_serializer(order).data
        self._audit(
            action="purchase_order.update",
            entity="purchase_order",
            instance=order,
            before_snapshot=before,
            after_snapshot=payload,
        )
        return Response(payload)

    def _transition(self, request, pk, operation, **kwargs):
        before_status = get_document(DocumentKind.PURCHASE_ORDER, pk, self.company_id).status
        order = operation(pk, self.company_id, **kwargs)
        self._audit(
            action=f"purchase_order.{self.action}",
            entity="purchase_order",
            instance=order,
            before_snapshot={"status": before_status},
            after_snapshot={"status": order.status},
        )
        return Response(self.get_serializer(order).data)

    @action(detail=True, methods=["post"])
    def confirm(self, request, pk=None):
        return self._transition(request, pk, lifecycle.confirm_order)

    @action(detail=True, methods=["post"])
    def start(self, request, pk=None):
        return self._transition(request, pk, lifecycle.start_order)

    @action(detail=True, methods=["post"])
    def receive(self, request, pk=None):
        return self._transition(request, pk, lifecycle.receive_order)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._transition(request, pk, lifecycle.cancel_order, reason=serializer.validated_data["reason"])

    def destroy(self, request, pk=None):
        return self._transition(request, pk, lifecycle.cancel_order, reason="Deleted through the API")

    @action(detail=True, methods=["post"])
    def invoices(self, request, pk=None):
        serializer = PurchaseInvoiceCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        if "lines" in data:
            data["lines"] = _lines(data["lines"])
        invoice = lifecycle.add_invoice(pk, self.company_id, data)
        payload = PurchaseInvoiceSerializer(invoice).data
        self._audit(action="purchase_invoice.create", entity="purchase_invoice", instance=invoice, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"])
    def stats(self, request):
        query = self._document_query()
        stats = document_stats(DocumentKind.PURCHASE_ORDER, self.company_id, query.date_from, query.date_to)
        return Response({key: str(value) if isinstance(value, Decimal) else value for key, value in stats.items()})

    @action(detail=False, methods=["post"])
    def preview(self, request):
        serializer = PreviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        preview = lifecycle.preview_order(self.company_id, _lines(serializer.validated_data["lines"]))
        result = preview["result"]
        return Response(
            {
                "subtotal": str(result.subtotal),
                "discount": str(result.discount),
                "tax_base": str(result.tax_base),
                "tax": str(result.tax),
                "total": str(result.total),
                "lines": [
                    {
                        "product_id": str(line.product_id),
                        "quantity": line.quantity,
                        "unit_price": str(line.unit_price),
                        "discount": str(line.discount),
                        "subtotal": str(line.subtotal),
                    }
                    for line in result.lines
                ],
                "summary": preview["summary"],
                "suggested_volume_discount": str(preview["suggested_volume_discount"]),
                "savings": {key: str(value) for key, value in preview["savings"].items()},
                "exceeds_order_limit": preview["exceeds_order_limit"],
            }
        )


class PurchaseInvoiceViewSet(CompanyScopedMixin, DocumentQueryMixin, viewsets.ReadOnlyModelViewSet):
    serializer_class = PurchaseInvoiceSerializer
    permission_action_map = {
        "list": "purchasing.view",
        "retrieve": "purchasing.view",
        "payments": "purchasing.payment.create",
    }

    def get_queryset(self):
        if self.action == "list":
            return search(DocumentKind.PURCHASE_INVOICE, self.company_id, self._document_query())
        return PurchaseInvoice.objects.filter(company_id=self.company_id).select_related("supplier", "purchase_order")

    @action(detail=True, methods=["post"])
    def payments(self, request, pk=None):
        serializer = PurchasePaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = lifecycle.add_payment(pk, self.company_id, dict(serializer.validated_data))
        payload = PurchasePaymentSerializer(payment).data
        self._audit(action="purchase_payment.create", entity="purchase_payment", instance=payment, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)


class SupplierQuotationViewSet(CompanyScopedMixin, mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    serializer_class = SupplierQuotationSerializer
    permission_action_map = {
        "list": "purchasing.view",
        "retrieve": "purchasing.view",
        "create": "purchasing.quotation.create",
        "reject": "purchasing.quotation.create",
        "convert": "purchasing.quotation.convert",
        "full_cycle": "purchasing.quotation.convert",
    }

    def get_queryset(self):
        qs = (
            SupplierQuotation.objects.filter(company_id=self.company_id)
            .select_related("supplier", "converted_order")
            .prefetch_related("lines__product")
            .order_by("-issue_date", "-created_at")
        )
        status_filter = self.request.query_params.get("status")
        if status_filter:
            qs = qs.filter(status=status_filter)
        return qs

    def create(self, request):
        serializer = SupplierQuotationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        quotation = pipeline.create_quotation(
            self.company_id,
            data["supplier_id"],
            _lines(data["lines"]),
            issue_date=data.get("issue_date"),
            valid_until=data.get("valid_until"),
            reference=data.get("reference", ""),
            notes=data.get("notes", ""),
        )
        payload = self.get_serializer(quotation).data
        self._audit(action="quotation.create", entity="quotation", instance=quotation, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def reject(self, request, pk=None):
        quotation = pipeline.reject_quotation(pk, self.company_id)
        self._audit(action="quotation.reject", entity="quotation", instance=quotation, after_snapshot={"status": quotation.status})
        return Response(self.get_serializer(quotation).data)

    @action(detail=True, methods=["post"])
    def convert(self, request, pk=None):
        serializer = ConversionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = pipeline.convert_quotation_to_order(
            pk,
            self.company_id,
            pipeline.ConversionOptions(**serializer.validated_data),
            user_id=request.user.id,
        )
        order_payload = PurchaseOrderSerializer(result.order).data
        self._audit(action="quotation.convert", entity="purchase_order", instance=result.order, after_snapshot=order_payload)
        return Response(
            {
                "success": result.success,
                "message": result.message,
                "quotation_id": str(result.quotation.id),
                "order": order_payload,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="full-cycle")
    def full_cycle(self, request, pk=None):
        serializer = FullCycleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = pipeline.run_full_cycle(pk, self.company_id, user_id=request.user.id, **serializer.validated_data)
        order_payload = PurchaseOrderSerializer(result.order).data
        self._audit(action="quotation.full_cycle", entity="purchase_order", instance=result.order, after_snapshot=order_payload)
        return Response(
            {
                "completed": result.completed,
                "steps": result.steps,
                "error": result.error,
                "quotation_id": str(result.quotation.id),
                "order": order_payload,
            },
            status=status.HTTP_201_CREATED,
        )
