"""
In-process store for tests and single-process deployments.
"""

import asyncio
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID, uuid4

from automation_engine.core.clock import utc_now
from automation_engine.core.exceptions import UnknownEntityTypeError, WorkflowNotFoundError
from automation_engine.core.models import (
    ChannelConfig,
    CheckpointReason,
    Connection,
    Execution,
    Node,
    TriggerType,
    Workflow,
    WorkflowDefinition,
    WorkflowStatus,
)
from automation_engine.core.state_machine import ExecutionStatus
from automation_engine.storage.base import WorkflowStore

DEFAULT_ENTITY_TYPES = ("reminder", "appointment", "client", "invoice", "service", "piano")


class InMemoryWorkflowStore(WorkflowStore):
    """
    Dictionary-backed store.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store. A single lock serialises writes.
    """

    def __init__(self, entity_types: Iterable[str] = DEFAULT_ENTITY_TYPES):
        self._lock = asyncio.Lock()
        self._workflows: dict[UUID, Workflow] = {}
        self._nodes: dict[UUID, list[Node]] = {}
        self._connections: dict[UUID, list[Connection]] = {}
        self._executions: dict[UUID, Execution] = {}
        self._channels: dict[str, ChannelConfig] = {}
        self.entities: dict[str, dict[str, dict[str, Any]]] = {t: {} for t in entity_types}

    # ==================== Workflow Operations ====================

    async def get_workflow(self, workflow_id: UUID) -> Optional[Workflow]:
        workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    async def list_workflows(self, owner_id: Optional[str] = None) -> list[Workflow]:
        workflows = [
            w for w in self._workflows.values()
            if owner_id is None or w.owner_id == owner_id
        ]
        workflows.sort(key=lambda w: (w.created_at, str(w.id)))
        return [w.model_copy(deep=True) for w in workflows]

    async def list_active_workflows(self, trigger_type: TriggerType) -> list[Workflow]:
        workflows = [
            w for w in self._workflows.values()
            if w.status == WorkflowStatus.ACTIVE and w.trigger_type == trigger_type
        ]
        workflows.sort(key=lambda w: (w.created_at, str(w.id)))
        return [w.model_copy(deep=True) for w in workflows]

    async def get_graph(self, workflow_id: UUID) -> tuple[list[Node], list[Connection]]:
        nodes = [n.model_copy(deep=True) for n in self._nodes.get(workflow_id, [])]
        connections = [c.model_copy(deep=True) for c in self._connections.get(workflow_id, [])]
        return nodes, connections

    async def save_workflow(self, definition: WorkflowDefinition) -> Workflow:
        async with self._lock:
            workflow = definition.workflow.model_copy(deep=True)
            existing = self._workflows.get(workflow.id)
            if existing is not None:
                workflow.created_at = existing.created_at
                workflow.updated_at = utc_now()
            self._workflows[workflow.id] = workflow
            self._nodes[workflow.id] = [n.model_copy(deep=True) for n in definition.nodes]
            self._connections[workflow.id] = [c.model_copy(deep=True) for c in definition.connections]
            return workflow.model_copy(deep=True)

    async def set_workflow_status(self, workflow_id: UUID, status: WorkflowStatus) -> Workflow:
        async with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(workflow_id)
            workflow.status = status
            workflow.updated_at = utc_now()
            return workflow.model_copy(deep=True)

    async def delete_workflow(self, workflow_id: UUID) -> bool:
        async with self._lock:
            if self._workflows.pop(workflow_id, None) is None:
                return False
            self._nodes.pop(workflow_id, None)
            self._connections.pop(workflow_id, None)
            return True

    # ==================== Execution Operations ====================

    async def create_execution(self, execution: Execution) -> Execution:
        async with self._lock:
            self._executions[execution.id] = execution.model_copy(deep=True)
            return execution

    async def update_execution(self, execution: Execution) -> Execution:
        async with self._lock:
            self._executions[execution.id] = execution.model_copy(deep=True)
            return execution

    async def transition_execution(
        self,
        execution_id: UUID,
        from_status: ExecutionStatus,
        to_status: ExecutionStatus,
    ) -> bool:
        async with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None or execution.status != from_status:
                return False
            execution.status = to_status
            return True

    async def get_execution(self, execution_id: UUID) -> Optional[Execution]:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list_executions(self, workflow_id: UUID, limit: int = 50) -> list[Execution]:
        executions = [e for e in self._executions.values() if e.workflow_id == workflow_id]
        executions.sort(key=lambda e: e.started_at, reverse=True)
        return [e.model_copy(deep=True) for e in executions[:limit]]

    async def list_due_executions(self, now: datetime, limit: int = 50) -> list[Execution]:
        due = [
            e for e in self._executions.values()
            if e.status == ExecutionStatus.PAUSED
            and e.checkpoint is not None
            and e.checkpoint.reason == CheckpointReason.DELAY
            and e.checkpoint.resume_after is not None
            and e.checkpoint.resume_after <= now
        ]
        due.sort(key=lambda e: e.checkpoint.resume_after)
        return [e.model_copy(deep=True) for e in due[:limit]]

    async def list_stale_approvals(self, paused_before: datetime, limit: int = 50) -> list[Execution]:
        stale = [
            e for e in self._executions.values()
            if self._awaiting_reminder(e) and e.checkpoint.created_at <= paused_before
        ]
        stale.sort(key=lambda e: e.checkpoint.created_at)
        return [e.model_copy(deep=True) for e in stale[:limit]]

    async def mark_approval_reminded(self, execution_id: UUID, at: datetime) -> bool:
        async with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None or not self._awaiting_reminder(execution):
                return False
            execution.checkpoint.reminder_sent_at = at
            return True

    @staticmethod
    def _awaiting_reminder(execution: Execution) -> bool:
        return (
            execution.status == ExecutionStatus.PAUSED
            and execution.checkpoint is not None
            and execution.checkpoint.reason == CheckpointReason.APPROVAL
            and execution.checkpoint.reminder_sent_at is None
        )

    # ==================== Collaborator Operations ====================

    async def get_channel_config(self, user_id: str) -> Optional[ChannelConfig]:
        config = self._channels.get(user_id)
        return config.model_copy(deep=True) if config else None

    async def save_channel_config(self, user_id: str, config: ChannelConfig) -> None:
        self._channels[user_id] = config.model_copy(deep=True)

    async def create_entity(self, entity_type: str, values: dict[str, Any]) -> str:
        table = self._table(entity_type)
        async with self._lock:
            entity_id = str(values.get("id") or uuid4())
            table[entity_id] = {**values, "id": entity_id}
            return entity_id

    async def update_entity(self, entity_type: str, entity_id: str, values: dict[str, Any]) -> bool:
        table = self._table(entity_type)
        async with self._lock:
            row = table.get(str(entity_id))
            if row is None:
                return False
            row.update(values)
            return True

    def _table(self, entity_type: str) -> dict[str, dict[str, Any]]:
        table = self.entities.get(entity_type)
        if table is None:
            raise UnknownEntityTypeError(entity_type)
        return table
