"""Best-effort notification sink.

Callers hand events to :func:`notify` after their transaction commits. The
configured backend decides where they go; a failing backend is logged and
never propagates to the caller.
"""

import logging

from django.conf import settings
from django.utils.module_loading import import_string

from common.utils import emit_outbox

logger = logging.getLogger(__name__)


class OutboxNotificationBackend:
    """Persist every event to the outbox table for out-of-process delivery."""

    def send(self, event_type, payload):
        emit_outbox(
            company_id=payload.get("company_id"),
            event_type=event_type,
            entity_id=payload.get("entity_id"),
            payload=payload,
        )


class LoggingNotificationBackend:
    def send(self, event_type, payload):
        logger.info("notification", extra={"event_type": event_type, "company_id": payload.get("company_id")})


def get_backend():
    return import_string(settings.NOTIFICATION_BACKEND)()


def notify(event_type, payload):
    try:
        get_backend().send(event_type, dict(payload or {}))
    except Exception:
        logger.exception(
            "notification_failed",
            extra={"event_type": event_type, "company_id": (payload or {}).get("company_id")},
        )
        return False
    return True
