"""
Trigger payload construction for domain events.

Collaborators hand over the raw entity row; these builders add the
conventional aliases (client_name, invoice_amount, ...) that workflow
authors reference in templates and conditions.
"""

import math
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, Union

from automation_engine.core.clock import utc_now
from automation_engine.core.models import TriggerType


def _parse_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def days_between(start: Any, end: datetime) -> Optional[int]:
    """Whole days from start to end, floored; None if start is not a date."""
    parsed = _parse_date(start)
    if parsed is None:
        return None
    return math.floor((end - parsed).total_seconds() / 86400)


def _full_name(data: dict[str, Any]) -> Optional[str]:
    if data.get("name"):
        return data["name"]
    parts = [data.get("first_name"), data.get("last_name")]
    name = " ".join(p for p in parts if p)
    return name or None


def _client_fields(entity_id: Any, data: dict[str, Any], now: datetime) -> dict[str, Any]:
    return {
        "client_id": entity_id,
        "client_name": _full_name(data),
        "client_email": data.get("email"),
        "client_phone": data.get("phone"),
        "client_address": data.get("address"),
    }


def _appointment_fields(entity_id: Any, data: dict[str, Any], now: datetime) -> dict[str, Any]:
    return {
        "appointment_id": entity_id,
        "appointment_date": data.get("date"),
        "appointment_time": data.get("time"),
        "appointment_title": data.get("title"),
        "appointment_description": data.get("description"),
    }


def _invoice_fields(entity_id: Any, data: dict[str, Any], now: datetime) -> dict[str, Any]:
    return {
        "invoice_id": entity_id,
        "invoice_number": data.get("invoice_number"),
        "invoice_amount": data.get("total"),
        "invoice_due_date": data.get("due_date"),
    }


def _overdue_invoice_fields(entity_id: Any, data: dict[str, Any], now: datetime) -> dict[str, Any]:
    fields = _invoice_fields(entity_id, data, now)
    fields["days_overdue"] = days_between(data.get("due_date"), now)
    return fields


def _paid_invoice_fields(entity_id: Any, data: dict[str, Any], now: datetime) -> dict[str, Any]:
    fields = _invoice_fields(entity_id, data, now)
    fields["payment_date"] = now.isoformat()
    return fields


def _service_fields(entity_id: Any, data: dict[str, Any], now: datetime) -> dict[str, Any]:
    return {
        "service_id": entity_id,
        "service_title": data.get("title"),
        "service_description": data.get("description"),
        "service_date": data.get("date"),
    }


def _piano_fields(entity_id: Any, data: dict[str, Any], now: datetime) -> dict[str, Any]:
    return {
        "piano_id": entity_id,
        "piano_brand": data.get("brand"),
        "piano_model": data.get("model"),
        "piano_serial": data.get("serial_number"),
    }


EnrichFn = Callable[[Any, dict[str, Any], datetime], dict[str, Any]]

ENRICHERS: dict[TriggerType, EnrichFn] = {
    TriggerType.CLIENT_CREATED: _client_fields,
    TriggerType.CLIENT_UPDATED: _client_fields,
    TriggerType.APPOINTMENT_CREATED: _appointment_fields,
    TriggerType.APPOINTMENT_UPDATED: _appointment_fields,
    TriggerType.APPOINTMENT_COMPLETED: _appointment_fields,
    TriggerType.INVOICE_CREATED: _invoice_fields,
    TriggerType.INVOICE_DUE: _invoice_fields,
    TriggerType.INVOICE_OVERDUE: _overdue_invoice_fields,
    TriggerType.INVOICE_PAID: _paid_invoice_fields,
    TriggerType.SERVICE_CREATED: _service_fields,
    TriggerType.SERVICE_COMPLETED: _service_fields,
    TriggerType.PIANO_CREATED: _piano_fields,
    TriggerType.PIANO_UPDATED: _piano_fields,
}


def build_trigger_payload(
    event_type: Union[TriggerType, str],
    entity_data: dict[str, Any],
    user_id: Optional[str] = None,
    entity_id: Any = None,
    timestamp: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Build the trigger payload for a domain event.

    Derived aliases come first so values present in the entity row win;
    the event envelope (event_type, entity_id, user_id, timestamp) is
    always set last.
    """
    event_type = TriggerType(event_type)
    now = timestamp or utc_now()
    data = dict(entity_data or {})
    if entity_id is None:
        entity_id = data.get("id")

    enrich = ENRICHERS.get(event_type)
    derived = enrich(entity_id, data, now) if enrich else {}
    derived = {k: v for k, v in derived.items() if v is not None}

    return {
        **derived,
        **data,
        "event_type": event_type.value,
        "entity_id": entity_id,
        "user_id": user_id,
        "timestamp": now.isoformat(),
    }
