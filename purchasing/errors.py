from common.utils import _to_json_compatible


class ProcurementError(Exception):
    """Base class for every failure raised by the purchasing services.

    ``kind`` is the stable machine code surfaced in API error envelopes;
    ``field`` names the offending input when there is one and ``details``
    carries anything else a caller needs to act on the error.
    """

    kind = "procurement_error"
    status_code = 400
    default_message = "The purchasing operation could not be completed."

    def __init__(self, message=None, *, field=None, **details):
        self.message = message or self.default_message
        self.field = field
        self.details = details
        super().__init__(self.message)

    def as_dict(self):
        data = {"kind": self.kind}
        if self.field:
            data["field"] = self.field
        data.update(_to_json_compatible(self.details))
        return data


class NotFound(ProcurementError):
    kind = "not_found"
    status_code = 404
    default_message = "The requested record does not exist."


class InvalidInput(ProcurementError):
    kind = "invalid_input"
    status_code = 400
    default_message = "The request contains invalid data."


class BusinessRuleViolation(ProcurementError):
    kind = "business_rule_violation"
    status_code = 422
    default_message = "The request violates a purchasing rule."


class InvalidStateTransition(ProcurementError):
    kind = "invalid_state_transition"
    status_code = 409

    def __init__(self, operation, current_status, message=None):
        self.operation = str(operation)
        self.current_status = str(current_status)
        super().__init__(
            message or f"Operation '{self.operation}' is not allowed for a purchase order in status '{self.current_status}'.",
            field="status",
            operation=self.operation,
            current_status=self.current_status,
        )


class CalculationInconsistency(ProcurementError):
    kind = "calculation_inconsistency"
    status_code = 422

    def __init__(self, field, expected, actual, message=None):
        super().__init__(
            message or f"Stored {field} {actual} does not match the recomputed value {expected}.",
            field=field,
            expected=expected,
            actual=actual,
        )


class ConcurrencyConflict(ProcurementError):
    kind = "concurrency_conflict"
    status_code = 409
    default_message = "The record was modified concurrently; retry the operation."
