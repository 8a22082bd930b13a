"""
Action handlers for each supported action type.

Notification handlers catch their own provider errors and report them as
failed outcomes so a broken channel never aborts a traversal by itself.
"""

import json
import logging
from typing import Any, Optional

import httpx

from automation_engine.actions.base import ActionHandler, first_param, split_addresses
from automation_engine.channels.calendar import CalendarSender, event_from_appointment
from automation_engine.channels.email import EmailMessage, EmailSender
from automation_engine.channels.email_templates import CUSTOM_TEMPLATE, get_email_template
from automation_engine.channels.whatsapp import WhatsAppSender, normalize_phone_number
from automation_engine.core.context import ExecutionContext
from automation_engine.core.exceptions import (
    ChannelDeliveryError,
    ChannelUnavailableError,
    UnknownEntityTypeError,
)
from automation_engine.core.models import ActionOutcome, ActionType
from automation_engine.storage.base import WorkflowStore
from automation_engine.template.resolver import stringify

logger = logging.getLogger(__name__)


def _has_placeholder(value: Any) -> bool:
    return isinstance(value, str) and "{{" in value and "}}" in value


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None and v != ""}


# ==================== Notifications ====================

class SendEmailHandler(ActionHandler):
    """Sends an e-mail through the tenant's e-mail channel."""

    action_type = ActionType.SEND_EMAIL

    def __init__(self, sender: EmailSender):
        self.sender = sender

    async def handle(self, params: dict[str, Any], context: ExecutionContext) -> ActionOutcome:
        recipients = split_addresses(first_param(params, "to", "emailTo", "email"))
        if not recipients:
            return ActionOutcome.failed("No e-mail recipient")

        subject = stringify(first_param(params, "subject", "emailSubject", default=""))
        body = stringify(first_param(params, "body", "emailBody", "html", default=""))
        text = first_param(params, "text")

        template_key = first_param(params, "template", "emailTemplate")
        template = get_email_template(stringify(template_key)) if template_key else None
        if template is not None:
            body = stringify(context.render(template.html))
            subject = subject or stringify(context.render(template.subject))
        elif template_key and template_key != CUSTOM_TEMPLATE:
            logger.warning(f"Unknown e-mail template '{template_key}', using the inline body")

        message = EmailMessage(
            to=recipients,
            subject=subject,
            html=body,
            text=stringify(text) if text is not None else None,
            cc=split_addresses(params.get("cc")),
            reply_to=first_param(params, "reply_to", "replyTo"),
        )

        try:
            if context.channels.email is None:
                raise ChannelUnavailableError("email")
            message_id = await self.sender.send(context.channels.email, message)
        except (ChannelUnavailableError, ChannelDeliveryError, httpx.HTTPError) as e:
            logger.warning(f"E-mail to {recipients} failed: {e}")
            return ActionOutcome.failed(str(e))

        logger.info(f"E-mail sent to {recipients} (execution {context.execution_id})")
        return ActionOutcome.ok(**({"last_email_id": message_id} if message_id else {}))


class SendWhatsAppHandler(ActionHandler):
    """Sends a WhatsApp text message through the tenant's WhatsApp channel."""

    action_type = ActionType.SEND_WHATSAPP

    def __init__(self, sender: WhatsAppSender):
        self.sender = sender

    async def handle(self, params: dict[str, Any], context: ExecutionContext) -> ActionOutcome:
        phone = first_param(params, "to", "phone", "whatsappPhone")
        if phone is None or _has_placeholder(phone):
            return ActionOutcome.failed("No WhatsApp recipient")

        to = normalize_phone_number(stringify(phone))
        body = stringify(first_param(params, "message", "whatsappMessage", "body", default=""))

        try:
            if context.channels.whatsapp is None:
                raise ChannelUnavailableError("whatsapp")
            message_id = await self.sender.send(context.channels.whatsapp, to, body)
        except (ChannelUnavailableError, ChannelDeliveryError, httpx.HTTPError) as e:
            logger.warning(f"WhatsApp message to {to} failed: {e}")
            return ActionOutcome.failed(str(e))

        logger.info(f"WhatsApp message sent to {to} (execution {context.execution_id})")
        return ActionOutcome.ok(**({"last_whatsapp_id": message_id} if message_id else {}))


# ==================== Data Store Writes ====================

class CreateReminderHandler(ActionHandler):
    """Creates a reminder entity."""

    action_type = ActionType.CREATE_REMINDER

    def __init__(self, store: WorkflowStore):
        self.store = store

    async def handle(self, params: dict[str, Any], context: ExecutionContext) -> ActionOutcome:
        values = _compact({
            "title": first_param(params, "title", "reminderTitle", default="Reminder"),
            "due_date": first_param(params, "due_date", "dueDate", "date"),
            "client_id": first_param(params, "client_id", "clientId"),
            "notes": first_param(params, "notes", "description"),
            "user_id": first_param(params, "user_id", "userId", default=context.acting_user_id),
        })

        try:
            reminder_id = await self.store.create_entity("reminder", values)
        except UnknownEntityTypeError as e:
            return ActionOutcome.failed(str(e))

        logger.info(f"Created reminder {reminder_id} (execution {context.execution_id})")
        return ActionOutcome.ok(reminder_id=reminder_id, last_created_id=reminder_id)


class CreateAppointmentHandler(ActionHandler):
    """
    Creates an appointment entity and mirrors it into the tenant's calendar.

    The calendar event is best effort: when the calendar channel is missing
    or rejects the event, the appointment row still stands and the outcome
    is successful without a ``calendar_event_id`` binding.
    """

    action_type = ActionType.CREATE_APPOINTMENT

    def __init__(self, store: WorkflowStore, calendar_sender: Optional[CalendarSender] = None):
        self.store = store
        self.calendar_sender = calendar_sender

    async def handle(self, params: dict[str, Any], context: ExecutionContext) -> ActionOutcome:
        values = _compact({
            "client_id": first_param(params, "client_id", "clientId"),
            "piano_id": first_param(params, "piano_id", "pianoId"),
            "date": first_param(params, "date", "appointmentDate"),
            "time": first_param(params, "time", "appointmentTime"),
            "title": first_param(params, "title", default="Appointment"),
            "type": first_param(params, "type", "appointmentType"),
            "duration": first_param(params, "duration"),
            "notes": first_param(params, "notes"),
            "user_id": first_param(params, "user_id", "userId", default=context.acting_user_id),
        })
        if context.channels.calendar is not None:
            values.setdefault("calendar_id", context.channels.calendar.calendar_id)

        try:
            appointment_id = await self.store.create_entity("appointment", _compact(values))
        except UnknownEntityTypeError as e:
            return ActionOutcome.failed(str(e))

        logger.info(f"Created appointment {appointment_id} (execution {context.execution_id})")
        bindings: dict[str, Any] = {"appointment_id": appointment_id, "last_created_id": appointment_id}

        event_id = await self._create_calendar_event(values, context)
        if event_id:
            bindings["calendar_event_id"] = event_id
        return ActionOutcome(success=True, bindings=bindings)

    async def _create_calendar_event(self, values: dict[str, Any], context: ExecutionContext) -> Optional[str]:
        calendar = context.channels.calendar
        if calendar is None or self.calendar_sender is None:
            return None

        event = event_from_appointment(values)
        if event is None:
            logger.warning(f"Appointment date {values.get('date')!r} is not a date; calendar event skipped")
            return None
        attendee = context.get("client_email")
        if isinstance(attendee, str) and "@" in attendee:
            event.attendees.append(attendee)

        try:
            return await self.calendar_sender.create_event(calendar, event)
        except (ChannelDeliveryError, httpx.HTTPError) as e:
            logger.warning(f"Calendar event for appointment failed: {e}")
            return None


class UpdateStatusHandler(ActionHandler):
    """Sets the status column of an existing entity."""

    action_type = ActionType.UPDATE_STATUS

    def __init__(self, store: WorkflowStore):
        self.store = store

    async def handle(self, params: dict[str, Any], context: ExecutionContext) -> ActionOutcome:
        entity_type = first_param(params, "entity_type", "entityType")
        entity_id = first_param(params, "entity_id", "entityId")
        status = first_param(params, "status", "new_status", "newStatus")
        status_field = first_param(params, "status_field", "statusField", default="status")

        if not entity_type or entity_id is None or status is None:
            return ActionOutcome.failed("update_status requires entity_type, entity_id and status")
        if _has_placeholder(entity_id):
            return ActionOutcome.failed(f"Unresolved entity id: {entity_id}")

        try:
            updated = await self.store.update_entity(
                str(entity_type), stringify(entity_id), {status_field: status}
            )
        except UnknownEntityTypeError as e:
            return ActionOutcome.failed(str(e))

        if not updated:
            return ActionOutcome.failed(f"{entity_type} {entity_id} not found")

        logger.info(f"Set {entity_type} {entity_id} {status_field}={status}")
        return ActionOutcome.ok(updated_entity_id=stringify(entity_id), updated_status=status)


# ==================== Outbound HTTP ====================

class WebhookHandler(ActionHandler):
    """Calls an external HTTP endpoint with a JSON body."""

    action_type = ActionType.WEBHOOK

    def __init__(self, client: httpx.AsyncClient, default_timeout: float = 15.0):
        self.client = client
        self.default_timeout = default_timeout

    async def handle(self, params: dict[str, Any], context: ExecutionContext) -> ActionOutcome:
        url = first_param(params, "url", "webhookUrl")
        if not url or _has_placeholder(url):
            return ActionOutcome.failed("Webhook url is missing or unresolved")

        method = str(first_param(params, "method", default="POST")).upper()

        raw_headers = params.get("headers") or {}
        if not isinstance(raw_headers, dict):
            return ActionOutcome.failed(f"Webhook headers must be a mapping, got {type(raw_headers).__name__}")
        headers = {str(k): stringify(v) for k, v in raw_headers.items()}

        raw_timeout = first_param(params, "timeout", default=self.default_timeout)
        try:
            timeout = float(raw_timeout)
        except (TypeError, ValueError):
            return ActionOutcome.failed(f"Invalid webhook timeout: {raw_timeout!r}")
        if timeout <= 0:
            return ActionOutcome.failed(f"Invalid webhook timeout: {raw_timeout!r}")

        body = params.get("body")
        if body is None:
            body = {
                "workflow_id": str(context.workflow_id),
                "execution_id": str(context.execution_id),
                "data": context.variables,
            }

        content: Optional[str] = None
        if method not in ("GET", "DELETE", "HEAD"):
            content = json.dumps(body, default=str)
            headers.setdefault("Content-Type", "application/json")

        try:
            response = await self.client.request(
                method, str(url), content=content, headers=headers, timeout=timeout
            )
        except httpx.HTTPError as e:
            logger.warning(f"Webhook {method} {url} failed: {e}")
            return ActionOutcome.failed(f"Webhook request failed: {e}")

        bindings: dict[str, Any] = {"webhook_status_code": response.status_code}
        if not response.is_success:
            logger.warning(f"Webhook {method} {url} returned {response.status_code}")
            return ActionOutcome(
                success=False,
                error=f"Webhook returned HTTP {response.status_code}",
                bindings=bindings,
            )

        if params.get("merge_response"):
            response_key = params.get("response_key")
            try:
                data = response.json()
            except ValueError:
                data = response.text
            if isinstance(data, dict) and not response_key:
                bindings.update(data)
            else:
                bindings[response_key or "webhook_response"] = data

        return ActionOutcome(success=True, bindings=bindings)
