"""
Abstract data store consumed by the engine.

The engine only ever talks to this interface; PostgreSQL and in-memory
implementations live beside it.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from automation_engine.core.models import (
    ChannelConfig,
    Connection,
    Execution,
    Node,
    TriggerType,
    Workflow,
    WorkflowDefinition,
    WorkflowStatus,
)
from automation_engine.core.state_machine import ExecutionStatus


class WorkflowStore(ABC):
    """Workflow definitions, execution ledger, channel config and entity writes."""

    # ==================== Workflow Operations ====================

    @abstractmethod
    async def get_workflow(self, workflow_id: UUID) -> Optional[Workflow]:
        pass

    @abstractmethod
    async def list_workflows(self, owner_id: Optional[str] = None) -> list[Workflow]:
        pass

    @abstractmethod
    async def list_active_workflows(self, trigger_type: TriggerType) -> list[Workflow]:
        """Active workflows for a trigger type, ordered by created_at then id."""
        pass

    @abstractmethod
    async def get_graph(self, workflow_id: UUID) -> tuple[list[Node], list[Connection]]:
        """All nodes and connections of a workflow, in a single read."""
        pass

    @abstractmethod
    async def save_workflow(self, definition: WorkflowDefinition) -> Workflow:
        """Insert or replace a workflow together with its nodes and connections."""
        pass

    @abstractmethod
    async def set_workflow_status(self, workflow_id: UUID, status: WorkflowStatus) -> Workflow:
        """
        Raises:
            WorkflowNotFoundError: If the workflow does not exist
        """
        pass

    @abstractmethod
    async def delete_workflow(self, workflow_id: UUID) -> bool:
        """Delete a workflow, its nodes and connections. Executions are kept."""
        pass

    # ==================== Execution Operations ====================

    @abstractmethod
    async def create_execution(self, execution: Execution) -> Execution:
        pass

    @abstractmethod
    async def update_execution(self, execution: Execution) -> Execution:
        """Persist the full execution record."""
        pass

    @abstractmethod
    async def transition_execution(
        self,
        execution_id: UUID,
        from_status: ExecutionStatus,
        to_status: ExecutionStatus,
    ) -> bool:
        """
        Compare-and-set the execution status.

        Returns:
            True if this caller performed the transition
        """
        pass

    @abstractmethod
    async def get_execution(self, execution_id: UUID) -> Optional[Execution]:
        pass

    @abstractmethod
    async def list_executions(self, workflow_id: UUID, limit: int = 50) -> list[Execution]:
        """Executions of a workflow, newest first."""
        pass

    @abstractmethod
    async def list_due_executions(self, now: datetime, limit: int = 50) -> list[Execution]:
        """Paused executions whose delay checkpoint is due."""
        pass

    @abstractmethod
    async def list_stale_approvals(self, paused_before: datetime, limit: int = 50) -> list[Execution]:
        """Executions paused on an approval since before ``paused_before`` and not yet reminded."""
        pass

    @abstractmethod
    async def mark_approval_reminded(self, execution_id: UUID, at: datetime) -> bool:
        """
        Stamp ``checkpoint.reminder_sent_at`` if the execution is still a
        paused, unreminded approval.

        Returns:
            True if this caller stamped it
        """
        pass

    # ==================== Collaborator Operations ====================

    @abstractmethod
    async def get_channel_config(self, user_id: str) -> Optional[ChannelConfig]:
        pass

    @abstractmethod
    async def save_channel_config(self, user_id: str, config: ChannelConfig) -> None:
        pass

    @abstractmethod
    async def create_entity(self, entity_type: str, values: dict[str, Any]) -> str:
        """
        Insert a business entity row.

        Returns:
            The new entity id

        Raises:
            UnknownEntityTypeError: If the entity type is not writable
        """
        pass

    @abstractmethod
    async def update_entity(self, entity_type: str, entity_id: str, values: dict[str, Any]) -> bool:
        """
        Update a business entity row.

        Returns:
            False if no row matched the id
        """
        pass
