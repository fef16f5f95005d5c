from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from common.permissions import BelongsToCompany, RoleCapabilityPermission
from common.utils import emit_outbox
from core.views import scoped_queryset_for_user
from inventory.models import Category, Product, StockMove
from inventory.serializers import CategorySerializer, ProductSerializer, StockMoveSerializer
from purchasing.kpis import average_purchase_cost


class OutboxMutationMixin:
    audit_entity = None

    def _audit(self, *, action, instance, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity=self.audit_entity,
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    def _emit(self, instance, op):
        emit_outbox(
            company_id=instance.company_id,
            event_type=f"{self.audit_entity}.{op}",
            entity_id=instance.id,
            payload=self.get_serializer(instance).data,
        )

    def perform_create(self, serializer):
        instance = serializer.save(company_id=self.request.user.company_id)
        self._emit(instance, "created")
        self._audit(action=f"{self.audit_entity}.create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._emit(instance, "updated")
        self._audit(
            action=f"{self.audit_entity}.update",
            instance=instance,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )


class CategoryViewSet(OutboxMutationMixin, viewsets.ModelViewSet):
    queryset = Category.objects.all().order_by("name")
    serializer_class = CategorySerializer
    permission_classes = [IsAuthenticated, BelongsToCompany, RoleCapabilityPermission]
    http_method_names = ["get", "post", "patch", "head", "options"]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "create": "inventory.manage",
        "partial_update": "inventory.manage",
    }
    audit_entity = "category"

    def get_queryset(self):
        return scoped_queryset_for_user(super().get_queryset(), self.request.user)


class ProductViewSet(OutboxMutationMixin, viewsets.ModelViewSet):
    queryset = Product.objects.select_related("category", "stock").order_by("name")
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated, BelongsToCompany, RoleCapabilityPermission]
    http_method_names = ["get", "post", "patch", "head", "options"]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "stock_moves": "inventory.view",
        "purchase_cost": "inventory.view",
        "create": "inventory.manage",
        "partial_update": "inventory.manage",
    }
    audit_entity = "product"

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        search = self.request.query_params.get("search")
        if search:
            qs = qs.filter(name__icontains=search) | qs.filter(sku__icontains=search)
        if self.request.query_params.get("active") == "true":
            qs = qs.filter(is_active=True)
        return qs

    @action(detail=True, methods=["get"], url_path="stock-moves")
    def stock_moves(self, request, pk=None):
        product = self.get_object()
        moves = StockMove.objects.filter(product=product).select_related("product").order_by("-created_at")
        page = self.paginate_queryset(moves)
        serializer = StockMoveSerializer(page if page is not None else moves, many=True)
        if page is not None:
            return self.get_paginated_response(serializer.data)
        return Response(serializer.data)

    @action(detail=True, methods=["get"], url_path="purchase-cost")
    def purchase_cost(self, request, pk=None):
        product = self.get_object()
        try:
            days = int(request.query_params.get("days", 90))
        except (TypeError, ValueError):
            days = 90
        days = min(max(days, 1), 365)
        cost = average_purchase_cost(product.company_id, product.id, days=days)
        return Response(
            {
                "product_id": str(product.id),
                "days": days,
                "average_cost": str(cost) if cost is not None else None,
                "current_cost": str(product.cost) if product.cost is not None else None,
            }
        )
