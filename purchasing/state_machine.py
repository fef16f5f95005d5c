from django.db import models

from purchasing.errors import InvalidStateTransition
from purchasing.models import PurchaseOrder

Status = PurchaseOrder.Status


class OrderOperation(models.TextChoices):
    CREATE = "create", "Create"
    CONFIRM = "confirm", "Confirm"
    START = "start", "Start"
    MODIFY = "modify", "Modify"
    INVOICE = "invoice", "Invoice"
    RECEIVE = "receive", "Receive"
    CANCEL = "cancel", "Cancel"


ALLOWED_FROM = {
    OrderOperation.CONFIRM: frozenset({Status.PENDING}),
    OrderOperation.START: frozenset({Status.CONFIRMED}),
    OrderOperation.MODIFY: frozenset({Status.PENDING, Status.CONFIRMED, Status.IN_PROGRESS}),
    OrderOperation.INVOICE: frozenset({Status.CONFIRMED, Status.IN_PROGRESS, Status.RECEIVED}),
    OrderOperation.RECEIVE: frozenset({Status.CONFIRMED, Status.IN_PROGRESS}),
    OrderOperation.CANCEL: frozenset({Status.PENDING, Status.CONFIRMED, Status.IN_PROGRESS}),
}

# Status an operation leaves the order in; absent means unchanged.
TARGET_STATUS = {
    OrderOperation.CREATE: Status.PENDING,
    OrderOperation.CONFIRM: Status.CONFIRMED,
    OrderOperation.START: Status.IN_PROGRESS,
    OrderOperation.RECEIVE: Status.RECEIVED,
    OrderOperation.CANCEL: Status.CANCELLED,
}

TERMINAL_STATUSES = frozenset({Status.RECEIVED, Status.CANCELLED})


def is_allowed(operation, status):
    if operation == OrderOperation.CREATE:
        return status is None
    return status in ALLOWED_FROM.get(operation, frozenset())


def ensure_allowed(operation, status):
    if not is_allowed(operation, status):
        raise InvalidStateTransition(operation, status)


def allowed_operations(status):
    return [operation for operation in OrderOperation if operation != OrderOperation.CREATE and is_allowed(operation, status)]
