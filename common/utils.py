import datetime
import decimal
import uuid

from core.models import OutboxEvent


def _to_json_compatible(value):
    if isinstance(value, dict):
        return {key: _to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value


def emit_outbox(company_id, event_type, entity_id, payload):
    payload_data = _to_json_compatible(dict(payload or {}))
    if company_id and payload_data.get("company_id") in (None, ""):
        payload_data["company_id"] = str(company_id)

    envelope = {
        "event_type": event_type,
        "entity_id": str(entity_id) if entity_id else None,
        "payload": payload_data,
    }

    return OutboxEvent.objects.create(
        company_id=company_id,
        event_type=event_type,
        entity_id=entity_id,
        payload=envelope,
    )
