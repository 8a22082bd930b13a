"""
Unit tests for the action dispatcher and handlers.
"""

import json
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from automation_engine.actions.base import first_param, split_addresses
from automation_engine.actions.dispatcher import ActionDispatcher, build_dispatcher
from automation_engine.channels.calendar import GoogleCalendarSender
from automation_engine.core.context import ExecutionContext
from automation_engine.core.models import ActionConfig, ActionType, CalendarChannelConfig, ChannelConfig


@pytest.fixture
def context(channels) -> ExecutionContext:
    return ExecutionContext.seeded(
        uuid4(),
        uuid4(),
        {
            "client_name": "Anna",
            "client_email": "anna@example.com",
            "client_phone": "0033 6 12-34-56-78",
            "invoice_id": "inv-1",
        },
        channels=channels,
        acting_user_id="user-1",
    )


def action_config(action_type: str, **params) -> ActionConfig:
    return ActionConfig.model_validate({"actionType": action_type, **params})


class TestParamHelpers:
    """Tests for parameter helpers."""

    def test_first_param_skips_blank(self):
        """Test alias lookup ignores None and empty strings."""
        assert first_param({"to": "", "emailTo": "a@b.c"}, "to", "emailTo") == "a@b.c"
        assert first_param({}, "to", default="x") == "x"

    def test_split_addresses(self):
        """Test address lists from strings and lists."""
        assert split_addresses("a@b.c; d@e.f, ") == ["a@b.c", "d@e.f"]
        assert split_addresses(["a@b.c", " "]) == ["a@b.c"]
        assert split_addresses(None) == []


class TestActionDispatcher:
    """Tests for action routing."""

    @pytest.mark.asyncio
    async def test_unknown_action_type(self, dispatcher, context):
        """Test that an unknown type yields a failed outcome."""
        config = action_config("webhook")

        outcome = await dispatcher.dispatch("teleport", config, context)

        assert not outcome.success
        assert "Unknown action type" in outcome.error

    @pytest.mark.asyncio
    async def test_unregistered_handler(self, context):
        """Test a known type without a handler."""
        outcome = await ActionDispatcher().dispatch(ActionType.WEBHOOK, action_config("webhook"), context)

        assert not outcome.success
        assert "No handler" in outcome.error

    def test_all_types_registered(self, dispatcher):
        """Test the default dispatcher covers every action type."""
        assert set(dispatcher.action_types) == set(ActionType)


class TestSendEmailHandler:
    """Tests for the send_email action."""

    @pytest.mark.asyncio
    async def test_renders_and_sends(self, dispatcher, context, email_sender):
        """Test templates are rendered before the e-mail is sent."""
        config = action_config(
            "send_email",
            emailTo="{{client_email}}",
            emailSubject="Hello {{client_name}}",
            emailBody="<p>Dear {{client_name}}</p>",
        )

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert outcome.success
        assert outcome.bindings == {"last_email_id": "email-1"}
        message = email_sender.sent[0]
        assert message.to == ["anna@example.com"]
        assert message.subject == "Hello Anna"
        assert message.html == "<p>Dear Anna</p>"

    @pytest.mark.asyncio
    async def test_missing_recipient(self, dispatcher, context, email_sender):
        """Test that no recipient fails without sending."""
        config = action_config("send_email", emailSubject="Hi")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert not outcome.success
        assert email_sender.sent == []

    @pytest.mark.asyncio
    async def test_channel_unavailable(self, dispatcher, context, email_sender):
        """Test that a missing e-mail channel is a failed outcome."""
        context.channels = ChannelConfig()
        config = action_config("send_email", emailTo="a@b.c")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert not outcome.success
        assert "email" in outcome.error
        assert email_sender.sent == []

    @pytest.mark.asyncio
    async def test_provider_error(self, dispatcher, context, email_sender):
        """Test that provider errors become failed outcomes."""
        email_sender.fail_with = "quota exceeded"
        config = action_config("send_email", emailTo="a@b.c")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert not outcome.success
        assert "quota exceeded" in outcome.error


class TestSendWhatsAppHandler:
    """Tests for the send_whatsapp action."""

    @pytest.mark.asyncio
    async def test_sends_normalised_number(self, dispatcher, context, whatsapp_sender):
        """Test the phone number is normalised and the message rendered."""
        config = action_config(
            "send_whatsapp",
            whatsappPhone="{{client_phone}}",
            whatsappMessage="Hi {{client_name}}",
        )

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert outcome.success
        assert outcome.bindings["last_whatsapp_id"] == "wamid-1"
        assert whatsapp_sender.sent == [("+33612345678", "Hi Anna")]

    @pytest.mark.asyncio
    async def test_unresolved_phone(self, dispatcher, context, whatsapp_sender):
        """Test that an unresolved phone placeholder fails."""
        config = action_config("send_whatsapp", whatsappPhone="{{unknown_phone}}", whatsappMessage="x")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert not outcome.success
        assert whatsapp_sender.sent == []


class TestEntityHandlers:
    """Tests for data store writing actions."""

    @pytest.mark.asyncio
    async def test_create_reminder(self, dispatcher, context, store):
        """Test reminder creation binds its id."""
        config = action_config("create_reminder", title="Call {{client_name}}", dueDate="2026-03-10")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert outcome.success
        reminder_id = outcome.bindings["reminder_id"]
        assert outcome.bindings["last_created_id"] == reminder_id
        row = store.entities["reminder"][reminder_id]
        assert row["title"] == "Call Anna"
        assert row["due_date"] == "2026-03-10"
        assert row["user_id"] == "user-1"

    @pytest.mark.asyncio
    async def test_create_appointment(self, dispatcher, context, store):
        """Test appointment creation binds its id."""
        config = action_config("create_appointment", date="2026-04-01", time="10:00", title="Tuning")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert outcome.success
        appointment_id = outcome.bindings["appointment_id"]
        assert store.entities["appointment"][appointment_id]["title"] == "Tuning"

    @pytest.mark.asyncio
    async def test_update_status(self, dispatcher, context, store):
        """Test status update on an existing entity."""
        await store.create_entity("invoice", {"id": "inv-1", "status": "sent"})
        config = action_config("update_status", entityType="invoice", entityId="{{invoice_id}}", status="overdue")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert outcome.success
        assert outcome.bindings == {"updated_entity_id": "inv-1", "updated_status": "overdue"}
        assert store.entities["invoice"]["inv-1"]["status"] == "overdue"

    @pytest.mark.asyncio
    async def test_update_status_missing_entity(self, dispatcher, context):
        """Test updating a missing entity fails."""
        config = action_config("update_status", entityType="invoice", entityId="nope", status="paid")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert not outcome.success
        assert "not found" in outcome.error

    @pytest.mark.asyncio
    async def test_update_status_unknown_entity_type(self, dispatcher, context):
        """Test an unknown entity type is a failed outcome."""
        config = action_config("update_status", entityType="spaceship", entityId="1", status="x")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert not outcome.success
        assert "spaceship" in outcome.error


class TestWebhookHandler:
    """Tests for the webhook action."""

    @pytest_asyncio.fixture
    async def recorded(self, store, email_sender, whatsapp_sender):
        """Dispatcher whose webhook client records requests."""
        requests: list[httpx.Request] = []
        responses: dict[str, httpx.Response] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return responses.get(request.url.path, httpx.Response(200, json={"crm_id": "c-9"}))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            yield build_dispatcher(store, email_sender, whatsapp_sender, client), requests, responses

    @pytest.mark.asyncio
    async def test_default_body(self, recorded, context):
        """Test the default JSON body carries ids and variables."""
        dispatcher, requests, _ = recorded
        config = action_config("webhook", url="https://hooks.example.com/notify")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert outcome.success
        assert outcome.bindings == {"webhook_status_code": 200}
        body = json.loads(requests[0].content)
        assert body["execution_id"] == str(context.execution_id)
        assert body["data"]["client_name"] == "Anna"
        assert requests[0].method == "POST"

    @pytest.mark.asyncio
    async def test_rendered_body_and_merge(self, recorded, context):
        """Test templated bodies and merging the JSON response."""
        dispatcher, requests, _ = recorded
        config = action_config(
            "webhook",
            url="https://hooks.example.com/crm",
            body={"name": "{{client_name}}"},
            merge_response=True,
        )

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert outcome.bindings["crm_id"] == "c-9"
        assert json.loads(requests[0].content) == {"name": "Anna"}

    @pytest.mark.asyncio
    async def test_non_2xx_fails(self, recorded, context):
        """Test that an error status fails but records the code."""
        dispatcher, _, responses = recorded
        responses["/broken"] = httpx.Response(503)
        config = action_config("webhook", url="https://hooks.example.com/broken")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert not outcome.success
        assert outcome.bindings["webhook_status_code"] == 503

    @pytest.mark.asyncio
    async def test_get_has_no_body(self, recorded, context):
        """Test GET requests are sent without content."""
        dispatcher, requests, _ = recorded
        config = action_config("webhook", url="https://hooks.example.com/ping", method="get")

        await dispatcher.dispatch(config.action_type, config, context)

        assert requests[0].method == "GET"
        assert requests[0].content == b""

    @pytest.mark.asyncio
    async def test_unresolved_url(self, dispatcher, context):
        """Test an unresolved URL fails without a request."""
        config = action_config("webhook", url="{{hook_url}}")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert not outcome.success

    @pytest.mark.asyncio
    async def test_non_numeric_timeout_fails(self, recorded, context):
        """Test a timeout rendered from a non-numeric payload value fails without a request."""
        dispatcher, requests, _ = recorded
        context.bind({"timeout": "soon"})
        config = action_config("webhook", url="https://hooks.example.com/notify", timeout="{{timeout}}")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert not outcome.success
        assert "timeout" in outcome.error
        assert requests == []

    @pytest.mark.asyncio
    async def test_non_positive_timeout_fails(self, recorded, context):
        """Test a zero timeout is rejected."""
        dispatcher, requests, _ = recorded
        config = action_config("webhook", url="https://hooks.example.com/notify", timeout=0)

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert not outcome.success
        assert requests == []

    @pytest.mark.asyncio
    async def test_numeric_string_timeout(self, recorded, context):
        """Test a timeout given as a numeric string is accepted."""
        dispatcher, requests, _ = recorded
        context.bind({"timeout": "2.5"})
        config = action_config("webhook", url="https://hooks.example.com/notify", timeout="{{timeout}}")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert outcome.success
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_string_headers_fail(self, recorded, context):
        """Test headers that are not a mapping fail without a request."""
        dispatcher, requests, _ = recorded
        config = action_config("webhook", url="https://hooks.example.com/notify", headers="X-Token: abc")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert not outcome.success
        assert "headers" in outcome.error
        assert requests == []

    @pytest.mark.asyncio
    async def test_mapping_headers_are_sent(self, recorded, context):
        """Test rendered header mappings are sent with the request."""
        dispatcher, requests, _ = recorded
        config = action_config(
            "webhook",
            url="https://hooks.example.com/notify",
            headers={"X-Client": "{{client_name}}"},
        )

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert outcome.success
        assert requests[0].headers["X-Client"] == "Anna"


class TestEmailTemplates:
    """Tests for predefined e-mail templates on send_email."""

    @pytest.mark.asyncio
    async def test_template_body_and_subject(self, dispatcher, context, email_sender):
        """Test a named template supplies the rendered body and subject."""
        config = action_config(
            "send_email",
            emailTo="{{client_email}}",
            emailTemplate="welcome",
            emailBody="ignored",
        )

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert outcome.success
        message = email_sender.sent[0]
        assert message.subject == "Welcome to Piano Emotion"
        assert "<h1>Welcome Anna!</h1>" in message.html
        assert "ignored" not in message.html

    @pytest.mark.asyncio
    async def test_explicit_subject_wins(self, dispatcher, context, email_sender):
        """Test an author subject overrides the template subject."""
        config = action_config(
            "send_email",
            emailTo="a@b.c",
            emailSubject="Hi {{client_name}}",
            emailTemplate="welcome",
        )

        await dispatcher.dispatch(config.action_type, config, context)

        assert email_sender.sent[0].subject == "Hi Anna"

    @pytest.mark.asyncio
    async def test_custom_uses_inline_body(self, dispatcher, context, email_sender):
        """Test the custom template keeps the author's body."""
        config = action_config(
            "send_email",
            emailTo="a@b.c",
            emailSubject="Note",
            emailTemplate="custom",
            emailBody="<p>Dear {{client_name}}</p>",
        )

        await dispatcher.dispatch(config.action_type, config, context)

        assert email_sender.sent[0].html == "<p>Dear Anna</p>"

    @pytest.mark.asyncio
    async def test_unknown_template_falls_back(self, dispatcher, context, email_sender):
        """Test an unknown template key falls back to the inline body."""
        config = action_config(
            "send_email",
            emailTo="a@b.c",
            emailSubject="Note",
            emailTemplate="does_not_exist",
            emailBody="plain body",
        )

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert outcome.success
        assert email_sender.sent[0].html == "plain body"


class TestAppointmentCalendar:
    """Tests for mirroring created appointments into the calendar."""

    @pytest_asyncio.fixture
    async def calendar(self, store, email_sender, whatsapp_sender):
        """Dispatcher with a Google calendar sender over a recording transport."""
        requests: list[httpx.Request] = []
        status = {"code": 200}

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if status["code"] >= 400:
                return httpx.Response(status["code"], text="forbidden")
            return httpx.Response(200, json={"id": "evt-1"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = build_dispatcher(
                store,
                email_sender,
                whatsapp_sender,
                client,
                calendar_sender=GoogleCalendarSender(client),
            )
            yield dispatcher, requests, status

    @pytest.fixture
    def calendar_context(self, context) -> ExecutionContext:
        context.channels.calendar = CalendarChannelConfig(
            provider="google",
            calendar_id="studio@group.calendar.google.com",
            timezone="Europe/Madrid",
            credentials={"access_token": "ya29.token"},
        )
        return context

    @pytest.mark.asyncio
    async def test_creates_event(self, calendar, calendar_context, store):
        """Test the appointment is posted to the calendar and the event id bound."""
        dispatcher, requests, _ = calendar
        config = action_config(
            "create_appointment", date="2026-04-01", time="10:00", title="Tuning", duration=90
        )

        outcome = await dispatcher.dispatch(config.action_type, config, calendar_context)

        assert outcome.success
        assert outcome.bindings["calendar_event_id"] == "evt-1"
        row = store.entities["appointment"][outcome.bindings["appointment_id"]]
        assert row["calendar_id"] == "studio@group.calendar.google.com"

        request = requests[0]
        assert request.url.host == "www.googleapis.com"
        assert request.url.path == "/calendar/v3/calendars/studio@group.calendar.google.com/events"
        assert request.headers["Authorization"] == "Bearer ya29.token"
        body = json.loads(request.content)
        assert body["summary"] == "Tuning"
        assert body["start"] == {"dateTime": "2026-04-01T10:00:00", "timeZone": "Europe/Madrid"}
        assert body["end"]["dateTime"] == "2026-04-01T11:30:00"
        assert body["attendees"] == [{"email": "anna@example.com"}]

    @pytest.mark.asyncio
    async def test_calendar_failure_keeps_appointment(self, calendar, calendar_context, store):
        """Test a rejected calendar event does not fail the appointment."""
        dispatcher, requests, status = calendar
        status["code"] = 403
        config = action_config("create_appointment", date="2026-04-01", title="Tuning")

        outcome = await dispatcher.dispatch(config.action_type, config, calendar_context)

        assert outcome.success
        assert "calendar_event_id" not in outcome.bindings
        assert outcome.bindings["appointment_id"] in store.entities["appointment"]
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_undated_appointment_skips_calendar(self, calendar, calendar_context):
        """Test an appointment without a parseable date creates no event."""
        dispatcher, requests, _ = calendar
        config = action_config("create_appointment", date="next week", title="Tuning")

        outcome = await dispatcher.dispatch(config.action_type, config, calendar_context)

        assert outcome.success
        assert requests == []

    @pytest.mark.asyncio
    async def test_no_calendar_channel(self, calendar, context):
        """Test no request is made when the user has no calendar channel."""
        dispatcher, requests, _ = calendar
        config = action_config("create_appointment", date="2026-04-01")

        outcome = await dispatcher.dispatch(config.action_type, config, context)

        assert outcome.success
        assert requests == []
