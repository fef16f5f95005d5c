import logging
import uuid
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from core.models import Company
from inventory.models import Product
from purchasing.calculation import LineInput
from purchasing.errors import BusinessRuleViolation, InvalidInput, NotFound
from purchasing.models import PurchaseOrder, Supplier

logger = logging.getLogger(__name__)


def _as_uuid(value, field):
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be a valid identifier.", field=field, value=value)


def _as_decimal(value, field):
    try:
        result = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInput(f"{field} must be a decimal number.", field=field)
    if not result.is_finite():
        raise InvalidInput(f"{field} must be a decimal number.", field=field)
    return result


class ProcurementValidator:
    """Independent precondition checks for purchasing commands.

    Every check either returns (sometimes the loaded record) or raises a
    :class:`~purchasing.errors.ProcurementError` subclass naming the field.
    """

    def __init__(self, rules):
        self.rules = rules

    def company(self, company_id, lock=False):
        company_id = _as_uuid(company_id, "company_id")
        queryset = Company.objects.all()
        if lock:
            queryset = queryset.select_for_update()
        company = queryset.filter(id=company_id).first()
        if company is None:
            raise NotFound("Company not found.", field="company_id", company_id=company_id)
        if not company.is_active:
            raise BusinessRuleViolation(
                f"Company is {company.status}; purchasing is disabled.",
                field="company_id",
                company_id=company_id,
            )
        return company

    def supplier(self, supplier_id, company_id):
        supplier_id = _as_uuid(supplier_id, "supplier_id")
        supplier = Supplier.objects.filter(id=supplier_id, company_id=company_id).first()
        if supplier is None:
            raise NotFound("Supplier not found.", field="supplier_id", supplier_id=supplier_id)
        if not supplier.is_active:
            raise BusinessRuleViolation("Supplier is inactive.", field="supplier_id", supplier_id=supplier_id)
        return supplier

    def order_number(self, number):
        number = (number or "").strip()
        if not number:
            raise InvalidInput("Order number is required.", field="order_number")
        if len(number) > self.rules.order_number_max_length:
            raise InvalidInput(
                f"Order number cannot exceed {self.rules.order_number_max_length} characters.",
                field="order_number",
            )
        if not self.rules.order_number_pattern.match(number):
            raise InvalidInput(
                f"Order number must look like {self.rules.order_number_prefix}-YYYY-NNNN.",
                field="order_number",
                value=number,
            )
        return number

    def order_number_unique(self, number, company_id, exclude_id=None):
        queryset = PurchaseOrder.objects.filter(company_id=company_id, order_number=number)
        if exclude_id:
            queryset = queryset.exclude(id=exclude_id)
        if queryset.exists():
            raise InvalidInput(f"Order number {number} already exists.", field="order_number", value=number)

    def delivery_date(self, emission_date, delivery_date):
        if delivery_date is None:
            return
        if delivery_date < emission_date:
            raise BusinessRuleViolation(
                "Delivery date cannot be before the emission date.",
                field="delivery_date",
                emission_date=emission_date,
                delivery_date=delivery_date,
            )
        latest = emission_date + timedelta(days=self.rules.delivery_window_days)
        if delivery_date > latest:
            raise BusinessRuleViolation(
                f"Delivery date cannot be more than {self.rules.delivery_window_days} days after emission.",
                field="delivery_date",
                emission_date=emission_date,
                delivery_date=delivery_date,
            )

    def quantity(self, value, field="quantity"):
        if isinstance(value, bool):
            raise InvalidInput("Quantity must be a positive integer.", field=field)
        quantity = _as_decimal(value, field)
        if quantity != quantity.to_integral_value() or quantity <= 0:
            raise InvalidInput("Quantity must be a positive integer.", field=field, value=value)
        if quantity > self.rules.max_quantity:
            raise InvalidInput(f"Quantity cannot exceed {self.rules.max_quantity}.", field=field, value=value)
        return int(quantity)

    def unit_price(self, value, field="unit_price"):
        price = _as_decimal(value, field)
        if price <= 0:
            raise InvalidInput("Unit price must be greater than zero.", field=field, value=value)
        if price > self.rules.max_unit_price:
            raise InvalidInput(f"Unit price cannot exceed {self.rules.max_unit_price}.", field=field, value=value)
        if price.as_tuple().exponent < -2 and price != price.quantize(Decimal("0.01")):
            raise InvalidInput("Unit price cannot have more than 2 decimal places.", field=field, value=value)
        return price

    def discount(self, value, field="discount"):
        discount = _as_decimal(value if value not in (None, "") else 0, field)
        if discount < 0:
            raise InvalidInput("Discount cannot be negative.", field=field, value=value)
        return discount

    def lines(self, lines):
        """Normalize raw line dicts into ``LineInput`` values."""
        if not lines:
            raise InvalidInput("At least one line is required.", field="lines")
        if len(lines) > self.rules.max_lines:
            raise InvalidInput(f"An order cannot have more than {self.rules.max_lines} lines.", field="lines")

        seen = set()
        normalized = []
        for index, line in enumerate(lines):
            product_id = line.get("product_id")
            if not product_id:
                raise InvalidInput("Product is required.", field=f"lines[{index}].product_id")
            product_id = _as_uuid(product_id, f"lines[{index}].product_id")
            key = str(product_id)
            if key in seen:
                raise InvalidInput(
                    "Each product may appear only once per order.",
                    field=f"lines[{index}].product_id",
                    product_id=product_id,
                )
            seen.add(key)
            normalized.append(
                LineInput(
                    product_id=product_id,
                    quantity=self.quantity(line.get("quantity"), field=f"lines[{index}].quantity"),
                    unit_price=self.unit_price(line.get("unit_price"), field=f"lines[{index}].unit_price"),
                    discount=self.discount(line.get("discount"), field=f"lines[{index}].discount"),
                )
            )
        return normalized

    def products(self, lines, company_id):
        ids = [line.product_id for line in lines]
        products = {str(product.id): product for product in Product.objects.filter(company_id=company_id, id__in=ids)}
        for index, line in enumerate(lines):
            product = products.get(str(line.product_id))
            if product is None:
                raise NotFound("Product not found.", field=f"lines[{index}].product_id", product_id=line.product_id)
            if not product.is_active:
                raise BusinessRuleViolation(
                    "Product is inactive.",
                    field=f"lines[{index}].product_id",
                    product_id=line.product_id,
                )
        return products

    def monthly_quota(self, company_id, on_date):
        month_start = on_date.replace(day=1)
        next_month = (month_start + timedelta(days=32)).replace(day=1)
        count = PurchaseOrder.objects.filter(
            company_id=company_id,
            emission_date__gte=month_start,
            emission_date__lt=next_month,
        ).count()
        if count >= self.rules.monthly_order_limit:
            logger.warning("monthly_order_limit_reached", extra={"company_id": company_id})
            raise BusinessRuleViolation(
                f"The monthly limit of {self.rules.monthly_order_limit} purchase orders has been reached.",
                field="emission_date",
                limit=self.rules.monthly_order_limit,
            )

    def order_total(self, total):
        if total > self.rules.max_order_total:
            raise BusinessRuleViolation(
                f"Order total cannot exceed {self.rules.max_order_total}.",
                field="total",
                total=total,
                limit=self.rules.max_order_total,
            )

    def tax_id(self, value):
        value = (value or "").strip()
        length = self.rules.tax_id_length
        if len(value) != length or not (value.isascii() and value.isdigit()):
            raise InvalidInput(f"RUC must be exactly {length} digits.", field="tax_id", value=value)
        if not value.startswith(tuple(self.rules.tax_id_prefixes)):
            raise InvalidInput(
                "RUC must start with " + ", ".join(self.rules.tax_id_prefixes) + ".",
                field="tax_id",
                value=value,
            )
        return value

    def tax_id_unique(self, value, company_id, exclude_id=None):
        queryset = Supplier.objects.filter(company_id=company_id, tax_id=value)
        if exclude_id:
            queryset = queryset.exclude(id=exclude_id)
        if queryset.exists():
            raise InvalidInput(f"A supplier with RUC {value} already exists.", field="tax_id", value=value)
