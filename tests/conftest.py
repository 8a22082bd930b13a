"""
Pytest fixtures and configuration for tests.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx
import pytest
import pytest_asyncio

from automation_engine.actions.dispatcher import ActionDispatcher, build_dispatcher
from automation_engine.channels.email import EmailMessage, EmailSender
from automation_engine.channels.whatsapp import WhatsAppSender
from automation_engine.config import Environment, Settings
from automation_engine.config.settings import EngineSettings
from automation_engine.core.clock import Clock
from automation_engine.core.exceptions import ChannelDeliveryError
from automation_engine.core.models import (
    ChannelConfig,
    Connection,
    EmailChannelConfig,
    TriggerType,
    WhatsAppChannelConfig,
    Workflow,
    WorkflowDefinition,
    WorkflowStatus,
    parse_node,
)
from automation_engine.orchestrator.executor import WorkflowExecutor
from automation_engine.storage.memory import InMemoryWorkflowStore


# ==================== Fakes ====================

class FakeEmailSender(EmailSender):
    """Records e-mails instead of calling a provider."""

    def __init__(self, fail_with: Optional[str] = None):
        self.sent: list[EmailMessage] = []
        self.fail_with = fail_with

    async def send(self, config: EmailChannelConfig, message: EmailMessage) -> Optional[str]:
        if self.fail_with:
            raise ChannelDeliveryError("email", self.fail_with, status_code=500)
        self.sent.append(message)
        return f"email-{len(self.sent)}"


class FakeWhatsAppSender(WhatsAppSender):
    """Records WhatsApp messages instead of calling the Graph API."""

    def __init__(self, fail_with: Optional[str] = None):
        self.sent: list[tuple[str, str]] = []
        self.fail_with = fail_with

    async def send(self, config: WhatsAppChannelConfig, to: str, body: str) -> Optional[str]:
        if self.fail_with:
            raise ChannelDeliveryError("whatsapp", self.fail_with, status_code=400)
        self.sent.append((to, body))
        return f"wamid-{len(self.sent)}"


class FakeClock(Clock):
    """Manually advanced clock; sleeping advances time instantly."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)

    async def sleep(self, seconds: float, interrupt: Optional[asyncio.Event] = None) -> bool:
        await asyncio.sleep(0)
        if interrupt is not None and interrupt.is_set():
            return False
        self.sleeps.append(seconds)
        self.advance(seconds)
        return True


# ==================== Settings ====================

@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        environment=Environment.TEST,
        log_level="DEBUG",
    )


@pytest.fixture
def engine_settings() -> EngineSettings:
    return EngineSettings(sync_delay_threshold_seconds=60, max_concurrent_workflows=4)


@pytest.fixture
def channels() -> ChannelConfig:
    """A user channel configuration with e-mail and WhatsApp available."""
    return ChannelConfig(
        email=EmailChannelConfig(
            provider="sendgrid",
            api_key="SG.test",
            from_email="studio@example.com",
            from_name="Piano Studio",
        ),
        whatsapp=WhatsAppChannelConfig(access_token="token", phone_number_id="1234567890"),
    )


# ==================== Engine Components ====================

@pytest.fixture
def store() -> InMemoryWorkflowStore:
    return InMemoryWorkflowStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def whatsapp_sender() -> FakeWhatsAppSender:
    return FakeWhatsAppSender()


@pytest_asyncio.fixture
async def http_client():
    """httpx client whose transport answers every request with 200 {}."""
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))
    async with httpx.AsyncClient(transport=transport) as client:
        yield client


@pytest.fixture
def dispatcher(store, email_sender, whatsapp_sender, http_client) -> ActionDispatcher:
    return build_dispatcher(store, email_sender, whatsapp_sender, http_client)


@pytest.fixture
def executor(store, dispatcher, clock, engine_settings, channels) -> WorkflowExecutor:
    """Executor over the in-memory store with fake channels as defaults."""
    return WorkflowExecutor(
        store,
        dispatcher,
        clock=clock,
        settings=engine_settings,
        default_channels=channels,
    )


# ==================== Workflow Builders ====================

@pytest.fixture
def make_definition() -> Callable[..., WorkflowDefinition]:
    """Build a WorkflowDefinition from raw node and connection dicts."""

    def build(
        nodes: list[dict[str, Any]],
        connections: list[dict[str, Any]],
        trigger_type: TriggerType = TriggerType.MANUAL,
        status: WorkflowStatus = WorkflowStatus.ACTIVE,
        trigger_config: Optional[dict[str, Any]] = None,
        name: str = "Test workflow",
        created_at: Optional[datetime] = None,
    ) -> WorkflowDefinition:
        workflow = Workflow(
            name=name,
            trigger_type=trigger_type,
            trigger_config=trigger_config or {},
            status=status,
        )
        if created_at is not None:
            workflow.created_at = created_at
        return WorkflowDefinition(
            workflow=workflow,
            nodes=[parse_node(n) for n in nodes],
            connections=[Connection.model_validate(c) for c in connections],
        )

    return build


@pytest.fixture
def overdue_invoice_definition(make_definition) -> WorkflowDefinition:
    """Trigger -> condition(days_overdue > 7) -> true: email / false: nothing."""
    return make_definition(
        nodes=[
            {"id": "t", "kind": "trigger"},
            {"id": "c", "kind": "condition",
             "config": {"field": "days_overdue", "operator": "greater_than", "value": 7}},
            {"id": "a", "kind": "action",
             "config": {
                 "actionType": "send_email",
                 "emailTo": "{{client_email}}",
                 "emailSubject": "Invoice {{invoice_number}} overdue",
                 "emailBody": "Hello {{client_name}}, {{days_overdue}} days overdue.",
             }},
        ],
        connections=[
            {"sourceNodeId": "t", "targetNodeId": "c"},
            {"sourceNodeId": "c", "targetNodeId": "a", "connectionType": "true"},
        ],
        trigger_type=TriggerType.INVOICE_OVERDUE,
    )
