from rest_framework import serializers

from inventory.models import Category, Product, StockMove


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ["id", "company", "name", "parent", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "company", "created_at", "updated_at"]

    def validate_parent(self, value):
        request = self.context.get("request")
        if value is not None and request is not None and value.company_id != request.user.company_id:
            raise serializers.ValidationError("Parent category must belong to your company.")
        return value


class ProductSerializer(serializers.ModelSerializer):
    category_name = serializers.CharField(source="category.name", read_only=True, allow_null=True)
    available_quantity = serializers.DecimalField(
        source="stock.available_quantity", max_digits=14, decimal_places=2, read_only=True, allow_null=True
    )
    total_quantity = serializers.DecimalField(
        source="stock.total_quantity", max_digits=14, decimal_places=2, read_only=True, allow_null=True
    )

    class Meta:
        model = Product
        fields = [
            "id",
            "company",
            "category",
            "category_name",
            "sku",
            "name",
            "unit",
            "is_service",
            "cost",
            "available_quantity",
            "total_quantity",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "company", "cost", "created_at", "updated_at"]

    def validate_category(self, value):
        request = self.context.get("request")
        if value is not None and request is not None and value.company_id != request.user.company_id:
            raise serializers.ValidationError("Category must belong to your company.")
        return value

    def validate_sku(self, value):
        value = value.strip()
        request = self.context.get("request")
        if request is None:
            return value
        queryset = Product.objects.filter(company_id=request.user.company_id, sku=value)
        if self.instance is not None:
            queryset = queryset.exclude(id=self.instance.id)
        if queryset.exists():
            raise serializers.ValidationError("A product with this SKU already exists.")
        return value


class StockMoveSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = StockMove
        fields = [
            "id",
            "product",
            "product_name",
            "quantity",
            "unit_cost",
            "reason",
            "source_ref_type",
            "source_ref_id",
            "created_at",
        ]
        read_only_fields = fields
