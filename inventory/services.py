import logging
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from inventory.models import Product, ProductStock, StockMove

MONEY_QUANT = Decimal("0.01")

logger = logging.getLogger(__name__)


def _to_money(value):
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def update_product_cost(product, incoming_qty, incoming_unit_cost, current_stock_qty=Decimal("0")):
    """
    Update product cost using either last cost or weighted average costing.
    Enable weighted average by setting INVENTORY_WEIGHTED_AVERAGE_COST=True.
    """
    incoming_qty = Decimal(incoming_qty or 0)
    incoming_unit_cost = Decimal(incoming_unit_cost or 0)
    current_stock_qty = Decimal(current_stock_qty or 0)

    if incoming_qty <= 0:
        return product.cost

    use_weighted_average = getattr(settings, "INVENTORY_WEIGHTED_AVERAGE_COST", False)
    current_cost = Decimal(product.cost or 0)

    if use_weighted_average:
        total_existing_cost = current_stock_qty * current_cost
        total_incoming_cost = incoming_qty * incoming_unit_cost
        total_qty = current_stock_qty + incoming_qty
        new_cost = incoming_unit_cost if total_qty <= 0 else (total_existing_cost + total_incoming_cost) / total_qty
    else:
        new_cost = incoming_unit_cost

    product.cost = _to_money(new_cost)
    product.save(update_fields=["cost", "updated_at"])
    return product.cost


def increment_stock(product_id, amount):
    """Add ``amount`` to both stock counters of a product, creating the row if absent.

    The increment runs as a single UPDATE with F() expressions, so concurrent
    receptions of the same product never lose each other's quantities.
    """
    amount = Decimal(amount)
    values = {
        "available_quantity": F("available_quantity") + amount,
        "total_quantity": F("total_quantity") + amount,
        "updated_at": timezone.now(),
    }
    updated = ProductStock.objects.filter(product_id=product_id).update(**values)
    if updated:
        return

    try:
        with transaction.atomic():
            ProductStock.objects.create(product_id=product_id, available_quantity=amount, total_quantity=amount)
    except IntegrityError:
        # Another transaction initialized the row first.
        ProductStock.objects.filter(product_id=product_id).update(**values)


def lock_products(product_ids):
    """Lock the given product rows in primary key order and return them by id."""
    products = Product.objects.select_for_update().filter(id__in=set(product_ids)).order_by("id")
    return {product.id: product for product in products}


def current_stock(product_id):
    stock = ProductStock.objects.filter(product_id=product_id).first()
    if stock is None:
        return Decimal("0")
    return stock.total_quantity


def record_purchase_move(*, company_id, product, quantity, unit_cost, order_id):
    return StockMove.objects.create(
        company_id=company_id,
        product=product,
        quantity=quantity,
        unit_cost=unit_cost,
        reason=StockMove.Reason.PURCHASE,
        source_ref_type="purchasing.purchase_order",
        source_ref_id=order_id,
    )
