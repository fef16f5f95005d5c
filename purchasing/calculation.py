"""Monetary arithmetic for purchase orders and invoices.

All amounts are :class:`~decimal.Decimal`. Line amounts are rounded half-up
to cents; order aggregates are summed from unrounded line values and rounded
once, so per-line rounding never accumulates into the totals.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from purchasing.errors import CalculationInconsistency, InvalidInput

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _to_money(value):
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineInput:
    product_id: object
    quantity: int
    unit_price: Decimal
    discount: Decimal = ZERO


@dataclass(frozen=True)
class LineBreakdown:
    product_id: object
    quantity: int
    unit_price: Decimal
    discount_value: Decimal
    gross: Decimal
    raw_discount: Decimal

    @property
    def discount(self):
        return _to_money(self.raw_discount)

    @property
    def net(self):
        return self.gross - self.raw_discount

    @property
    def subtotal(self):
        return _to_money(self.net)


@dataclass(frozen=True)
class CalculationResult:
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    lines: list = field(default_factory=list)

    @property
    def tax_base(self):
        return self.subtotal - self.discount


class PurchaseCalculator:
    """Computes line and document totals with the configured IGV rate.

    A line's raw discount is read by magnitude: values in (0, 100] are a
    percentage of the line amount, larger values a fixed amount in soles.
    A genuine fixed discount of 100 soles or less is therefore read as a
    percentage; historical documents were priced this way and the rule is
    kept as is. The applied discount never exceeds the line amount.
    """

    def __init__(self, rules):
        self.rules = rules

    def line(self, item):
        quantity = int(item.quantity)
        unit_price = Decimal(item.unit_price)
        discount_value = Decimal(item.discount or 0)
        if discount_value < 0:
            raise InvalidInput("Discount cannot be negative.", field="discount", product_id=item.product_id)

        gross = quantity * unit_price
        if ZERO < discount_value <= HUNDRED:
            raw_discount = gross * discount_value / HUNDRED
        else:
            raw_discount = discount_value
        raw_discount = min(raw_discount, gross)

        return LineBreakdown(
            product_id=item.product_id,
            quantity=quantity,
            unit_price=unit_price,
            discount_value=discount_value,
            gross=gross,
            raw_discount=raw_discount,
        )

    def calculate(self, items):
        breakdown = [self.line(item) for item in items]
        subtotal = _to_money(sum((line.net for line in breakdown), ZERO))
        discount = _to_money(sum((line.raw_discount for line in breakdown), ZERO))
        tax = self.tax_for(subtotal - discount)
        total = self.total_for(subtotal, discount, tax)
        return CalculationResult(subtotal=subtotal, discount=discount, tax=tax, total=total, lines=breakdown)

    def tax_for(self, base):
        return _to_money(Decimal(base) * self.rules.tax_rate)

    def total_for(self, subtotal, discount, tax):
        return _to_money(Decimal(subtotal) - Decimal(discount) + Decimal(tax))

    def verify(self, totals):
        """Raise :class:`CalculationInconsistency` when stored totals drift.

        ``totals`` is anything with ``subtotal``, ``discount``, ``tax`` and
        ``total`` attributes: a :class:`CalculationResult`, an order, an
        invoice or a quotation.
        """
        subtotal = Decimal(totals.subtotal)
        discount = Decimal(totals.discount or 0)
        tax = Decimal(totals.tax)
        total = Decimal(totals.total)
        tolerance = self.rules.tolerance

        expected_tax = self.tax_for(subtotal - discount)
        if abs(expected_tax - tax) > tolerance:
            logger.error("calculation_inconsistency tax expected=%s actual=%s", expected_tax, tax)
            raise CalculationInconsistency("tax", expected_tax, tax)

        expected_total = self.total_for(subtotal, discount, tax)
        if abs(expected_total - total) > tolerance:
            logger.error("calculation_inconsistency total expected=%s actual=%s", expected_total, total)
            raise CalculationInconsistency("total", expected_total, total)

    def volume_discount(self, subtotal):
        """Suggested supplier discount for large orders, in soles."""
        subtotal = Decimal(subtotal)
        for minimum, percent in self.rules.volume_discount_tiers:
            if subtotal >= minimum:
                return _to_money(subtotal * percent / HUNDRED)
        return _to_money(ZERO)

    def savings(self, gross, discount):
        gross = Decimal(gross)
        discount = Decimal(discount)
        percent = discount / gross * HUNDRED if gross > 0 else ZERO
        return {"percent": _to_money(percent), "amount": _to_money(discount)}

    def summary(self, result):
        rate = (self.rules.tax_rate * HUNDRED).quantize(Decimal("1"))
        return "\n".join(
            [
                "Purchase calculation summary:",
                f"- Subtotal: S/ {result.subtotal:.2f}",
                f"- Discount: S/ {result.discount:.2f}",
                f"- Tax base: S/ {result.tax_base:.2f}",
                f"- IGV ({rate}%): S/ {result.tax:.2f}",
                f"- Total: S/ {result.total:.2f}",
                f"- Lines: {len(result.lines)}",
            ]
        )
