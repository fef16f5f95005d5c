import re
from dataclasses import dataclass, fields, replace
from decimal import Decimal

from django.conf import settings

DEFAULT_VOLUME_DISCOUNT_TIERS = (
    (Decimal("50000"), Decimal("5")),
    (Decimal("20000"), Decimal("3")),
    (Decimal("10000"), Decimal("1")),
)

_DECIMAL_FIELDS = {"tax_rate", "max_unit_price", "max_order_total", "tolerance"}


@dataclass(frozen=True)
class ProcurementRules:
    """Limits and rates applied by the calculator and the validator.

    Built once from ``settings.PROCUREMENT``; ``for_company`` layers the
    per-company overrides stored on :class:`core.models.Company` on top.
    """

    tax_rate: Decimal = Decimal("0.18")
    max_lines: int = 100
    max_quantity: int = 999999
    max_unit_price: Decimal = Decimal("1000000.00")
    max_order_total: Decimal = Decimal("1000000.00")
    monthly_order_limit: int = 500
    delivery_window_days: int = 365
    default_lead_days: int = 15
    order_number_prefix: str = "OC"
    order_number_max_length: int = 20
    tax_id_length: int = 11
    tax_id_prefixes: tuple = ("10", "15", "17", "20")
    tolerance: Decimal = Decimal("0.01")
    number_allocation_attempts: int = 5
    # (minimum subtotal, percent) ordered from the highest tier down
    volume_discount_tiers: tuple = DEFAULT_VOLUME_DISCOUNT_TIERS

    @classmethod
    def from_settings(cls):
        config = getattr(settings, "PROCUREMENT", None) or {}
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in config.items():
            if key not in known:
                continue
            if key in _DECIMAL_FIELDS:
                value = Decimal(str(value))
            elif key == "tax_id_prefixes":
                value = tuple(value)
            values[key] = value
        return cls(**values)

    def for_company(self, company):
        overrides = {}
        if company is not None and company.tax_rate is not None:
            overrides["tax_rate"] = Decimal(company.tax_rate)
        if company is not None and company.monthly_order_limit is not None:
            overrides["monthly_order_limit"] = company.monthly_order_limit
        return replace(self, **overrides) if overrides else self

    @property
    def order_number_pattern(self):
        return re.compile(rf"^{re.escape(self.order_number_prefix)}-\d{{4}}-\d{{3,6}}$")


def get_rules(company=None):
    return ProcurementRules.from_settings().for_company(company)
