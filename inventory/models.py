import uuid

from django.db import models

from core.models import Company


class Category(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey(Company, on_delete=models.PROTECT)
    name = models.CharField(max_length=255)
    parent = models.ForeignKey("self", on_delete=models.PROTECT, null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "categories"
        indexes = [
            models.Index(fields=["company", "is_active"], name="category_company_active_idx"),
        ]

    def __str__(self):
        return self.name


class Product(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey(Company, on_delete=models.PROTECT)
    category = models.ForeignKey(Category, on_delete=models.PROTECT, null=True, blank=True, related_name="products")
    sku = models.CharField(max_length=64)
    name = models.CharField(max_length=255)
    unit = models.CharField(max_length=16, default="NIU")
    is_service = models.BooleanField(default=False)
    cost = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["company", "sku"], name="uniq_product_company_sku"),
        ]
        indexes = [
            models.Index(fields=["company", "is_active"], name="product_company_active_idx"),
        ]

    def __str__(self):
        return f"{self.sku} {self.name}"


class ProductStock(models.Model):
    """Running stock counters for a product.

    ``available_quantity`` is what can still be committed; ``total_quantity``
    is everything physically on hand. Receptions raise both.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.OneToOneField(Product, on_delete=models.CASCADE, related_name="stock")
    available_quantity = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    total_quantity = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    updated_at = models.DateTimeField(auto_now=True)


class StockMove(models.Model):
    class Reason(models.TextChoices):
        PURCHASE = "purchase", "Purchase"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey(Company, on_delete=models.PROTECT)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="stock_moves")
    quantity = models.DecimalField(max_digits=14, decimal_places=2)
    unit_cost = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    reason = models.CharField(max_length=32, choices=Reason.choices)
    source_ref_type = models.CharField(max_length=64, null=True, blank=True)
    source_ref_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["product", "created_at"], name="stockmove_product_created_idx"),
            models.Index(fields=["company", "created_at"], name="stockmove_company_created_idx"),
            models.Index(fields=["source_ref_id", "source_ref_type"], name="stockmove_source_ref_idx"),
        ]
