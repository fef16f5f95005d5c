import logging
import re

from django.db import IntegrityError, transaction

from purchasing.errors import BusinessRuleViolation, ConcurrencyConflict
from purchasing.models import PurchaseOrder

logger = logging.getLogger(__name__)

SEQUENCE_DIGITS = 4
MAX_SEQUENCE = 10**SEQUENCE_DIGITS - 1


def month_prefix(rules, on_date):
    return f"{rules.order_number_prefix}-{on_date:%Y}-{on_date:%m}"


def next_order_number(company_id, on_date, rules):
    """Return the next number of the company's sequence for ``on_date``'s month.

    Numbers look like ``OC-2026-030042`` (prefix, year, month, sequence). The
    sequence continues from the highest number already issued in the month
    and starts again at 0001 when the month has none.
    """
    prefix = month_prefix(rules, on_date)
    pattern = re.compile(rf"^{re.escape(prefix)}(\d{{{SEQUENCE_DIGITS}}})$")
    existing = PurchaseOrder.objects.filter(company_id=company_id, order_number__startswith=prefix).values_list(
        "order_number", flat=True
    )

    highest = 0
    for number in existing:
        match = pattern.match(number)
        if match:
            highest = max(highest, int(match.group(1)))

    if highest >= MAX_SEQUENCE:
        raise BusinessRuleViolation(
            f"Order number sequence for {on_date:%Y-%m} is exhausted.",
            field="order_number",
        )
    return f"{prefix}{highest + 1:0{SEQUENCE_DIGITS}d}"


def allocate_order_number(company_id, on_date, rules, create):
    """Call ``create(number)`` with fresh numbers until one is accepted.

    ``create`` runs inside a savepoint; a unique-constraint violation on
    ``(company, order_number)`` rolls back just that attempt and the number is
    recomputed. After ``rules.number_allocation_attempts`` failures the
    caller gets :class:`ConcurrencyConflict`.
    """
    attempts = max(rules.number_allocation_attempts, 1)
    for attempt in range(1, attempts + 1):
        number = next_order_number(company_id, on_date, rules)
        try:
            with transaction.atomic():
                return create(number)
        except IntegrityError:
            if not PurchaseOrder.objects.filter(company_id=company_id, order_number=number).exists():
                raise
            logger.warning(
                "order_number_conflict",
                extra={"company_id": company_id, "order_number": number, "attempt": attempt},
            )

    raise ConcurrencyConflict(
        "Could not allocate a unique order number; retry the request.",
        field="order_number",
        attempts=attempts,
    )
