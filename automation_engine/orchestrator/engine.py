"""
Automation engine facade.

Wires the action dispatcher, graph executor, event router and checkpoint
scheduler around one injected store and exposes the operations the API and
host application call.
"""

import asyncio
import logging
from typing import Any, Optional, Union
from uuid import UUID

import httpx

from automation_engine.actions.dispatcher import ActionDispatcher, build_dispatcher
from automation_engine.channels.calendar import CalendarSender, GoogleCalendarSender
from automation_engine.channels.config import channel_config_from_settings
from automation_engine.channels.email import EmailSender, HttpEmailSender
from automation_engine.channels.whatsapp import GraphWhatsAppSender, WhatsAppSender
from automation_engine.config.settings import Settings
from automation_engine.core.clock import Clock
from automation_engine.core.context import CancellationToken
from automation_engine.core.exceptions import WorkflowNotFoundError
from automation_engine.core.graph import WorkflowGraph
from automation_engine.core.models import (
    ChannelConfig,
    Execution,
    ExecutionResult,
    TriggerType,
    Workflow,
    WorkflowDefinition,
    WorkflowRunSummary,
    WorkflowStatus,
)
from automation_engine.core.templates import instantiate_template
from automation_engine.orchestrator.executor import WorkflowExecutor
from automation_engine.orchestrator.router import EventTriggerRouter
from automation_engine.orchestrator.scheduler import CheckpointScheduler
from automation_engine.storage.base import WorkflowStore

logger = logging.getLogger(__name__)


class AutomationEngine:
    """
    Entry point for running workflow automations.

    Responsibilities:
    - Manage workflow definitions and their activation
    - Route domain events to listening workflows
    - Run, resume and approve executions
    - Drive the checkpoint scheduler
    """

    def __init__(
        self,
        store: WorkflowStore,
        settings: Optional[Settings] = None,
        email_sender: Optional[EmailSender] = None,
        whatsapp_sender: Optional[WhatsAppSender] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Clock] = None,
        calendar_sender: Optional[CalendarSender] = None,
    ):
        self.store = store
        self.settings = settings or Settings()
        self.clock = clock or Clock()

        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=self.settings.channels.http_timeout)

        timeout = self.settings.channels.http_timeout
        self.email_sender = email_sender or HttpEmailSender(self.http_client, timeout=timeout)
        self.dispatcher: ActionDispatcher = build_dispatcher(
            store,
            self.email_sender,
            whatsapp_sender or GraphWhatsAppSender(self.http_client, timeout=timeout),
            self.http_client,
            webhook_timeout=self.settings.channels.webhook_timeout,
            calendar_sender=calendar_sender or GoogleCalendarSender(self.http_client, timeout=timeout),
        )
        self.executor = WorkflowExecutor(
            store,
            self.dispatcher,
            clock=self.clock,
            settings=self.settings.engine,
            default_channels=channel_config_from_settings(self.settings.channels),
        )
        self.router = EventTriggerRouter(store, self.executor, settings=self.settings.engine)
        self.scheduler = CheckpointScheduler(
            store,
            self.executor,
            clock=self.clock,
            settings=self.settings.engine,
            email_sender=self.email_sender,
        )

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Start the checkpoint scheduler."""
        await self.scheduler.start()
        logger.info("Automation engine started")

    async def stop(self) -> None:
        """Wait for in-flight event dispatches, then stop background work."""
        await self.router.drain(timeout=self.settings.engine.shutdown_timeout)
        await self.scheduler.stop()
        if self._owns_http_client:
            await self.http_client.aclose()
        logger.info("Automation engine stopped")

    # ==================== Workflow Management ====================

    async def create_workflow(self, definition: WorkflowDefinition) -> Workflow:
        """
        Validate and store a new workflow. New workflows start inactive.

        Raises:
            MissingTriggerError: If the graph has no trigger node
            InvalidWorkflowGraphError: If the graph is otherwise malformed
        """
        workflow = definition.workflow
        WorkflowGraph(definition.nodes, definition.connections).ensure_valid(workflow.id)
        workflow.status = WorkflowStatus.INACTIVE
        saved = await self.store.save_workflow(definition)
        logger.info(f"Created workflow '{saved.name}' ({saved.id})")
        return saved

    async def instantiate_template(
        self,
        key: str,
        owner_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Workflow:
        """
        Create an inactive workflow from a pre-built template.

        Raises:
            KeyError: If the template does not exist
        """
        definition = instantiate_template(key, owner_id=owner_id, name=name)
        return await self.create_workflow(definition)

    async def get_workflow(self, workflow_id: UUID) -> Optional[WorkflowDefinition]:
        """Get a workflow together with its graph."""
        workflow = await self.store.get_workflow(workflow_id)
        if workflow is None:
            return None
        nodes, connections = await self.store.get_graph(workflow_id)
        return WorkflowDefinition(workflow=workflow, nodes=nodes, connections=connections)

    async def list_workflows(self, owner_id: Optional[str] = None) -> list[Workflow]:
        return await self.store.list_workflows(owner_id)

    async def activate_workflow(self, workflow_id: UUID) -> Workflow:
        """
        Activate a workflow after re-validating its graph.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
            MissingTriggerError: If the graph has no trigger node
            InvalidWorkflowGraphError: If the graph is otherwise malformed
        """
        if await self.store.get_workflow(workflow_id) is None:
            raise WorkflowNotFoundError(workflow_id)
        nodes, connections = await self.store.get_graph(workflow_id)
        WorkflowGraph(nodes, connections).ensure_valid(workflow_id)

        workflow = await self.store.set_workflow_status(workflow_id, WorkflowStatus.ACTIVE)
        logger.info(f"Activated workflow {workflow_id}")
        return workflow

    async def deactivate_workflow(self, workflow_id: UUID) -> Workflow:
        workflow = await self.store.set_workflow_status(workflow_id, WorkflowStatus.INACTIVE)
        logger.info(f"Deactivated workflow {workflow_id}")
        return workflow

    async def delete_workflow(self, workflow_id: UUID) -> bool:
        """Delete a workflow. Its execution history is kept."""
        deleted = await self.store.delete_workflow(workflow_id)
        if deleted:
            logger.info(f"Deleted workflow {workflow_id}")
        return deleted

    async def save_channel_config(self, user_id: str, config: ChannelConfig) -> None:
        await self.store.save_channel_config(user_id, config)

    # ==================== Execution ====================

    async def execute_workflow(
        self,
        workflow_id: UUID,
        trigger_payload: Optional[dict[str, Any]] = None,
        acting_user_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        return await self.executor.execute_workflow(
            workflow_id, trigger_payload or {}, acting_user_id=acting_user_id, cancel_token=cancel_token
        )

    def trigger_workflow_event(
        self,
        event_type: Union[TriggerType, str],
        entity_data: dict[str, Any],
        acting_user_id: Optional[str] = None,
        entity_id: Any = None,
    ) -> asyncio.Task:
        """Emit a domain event without waiting for the workflows it starts."""
        return self.router.trigger_workflow_event(
            event_type, entity_data, acting_user_id=acting_user_id, entity_id=entity_id
        )

    async def dispatch_event(
        self,
        event_type: Union[TriggerType, str],
        entity_data: dict[str, Any],
        acting_user_id: Optional[str] = None,
        entity_id: Any = None,
    ) -> list[WorkflowRunSummary]:
        """Emit a domain event and wait for every matching workflow."""
        return await self.router.dispatch_event(
            event_type, entity_data, acting_user_id=acting_user_id, entity_id=entity_id
        )

    async def resume_execution(
        self,
        execution_id: UUID,
        variables: Optional[dict[str, Any]] = None,
        force: bool = False,
    ) -> ExecutionResult:
        return await self.executor.resume_execution(execution_id, variables=variables, force=force)

    async def resolve_approval(
        self,
        execution_id: UUID,
        approved: bool,
        actor_id: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> ExecutionResult:
        return await self.executor.resolve_approval(
            execution_id, approved, actor_id=actor_id, comment=comment
        )

    # ==================== Query Methods ====================

    async def get_execution(self, execution_id: UUID) -> Optional[Execution]:
        return await self.store.get_execution(execution_id)

    async def list_executions(self, workflow_id: UUID, limit: Optional[int] = None) -> list[Execution]:
        """Execution history of a workflow, newest first."""
        return await self.store.list_executions(
            workflow_id, limit or self.settings.engine.execution_history_limit
        )
