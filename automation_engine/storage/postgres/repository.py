"""
Repository layer for workflow data access.

Provides high-level data access methods; all methods operate within the
provided session's transaction.
"""

import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import DateTime, and_, delete, literal, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession

from automation_engine.core.models import (
    ChannelConfig,
    CheckpointReason,
    Connection,
    Execution,
    ExecutionCheckpoint,
    Node,
    Workflow,
    WorkflowDefinition,
    parse_node,
)
from automation_engine.core.state_machine import ExecutionStatus
from automation_engine.storage.postgres.models import (
    ChannelConfigModel,
    WorkflowConnectionModel,
    WorkflowExecutionModel,
    WorkflowModel,
    WorkflowNodeModel,
)


def to_jsonable(value: Any) -> Any:
    """Round-trip through JSON so JSONB columns never see datetimes or UUIDs."""
    return json.loads(json.dumps(value, default=str))


class WorkflowRepository:
    """
    Repository for workflows, executions and channel configuration.

    All methods operate within the provided session's transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== Workflow Operations ====================

    async def get_workflow(self, workflow_id: UUID) -> Optional[WorkflowModel]:
        """Get workflow by ID."""
        result = await self.session.execute(
            select(WorkflowModel).where(WorkflowModel.id == workflow_id)
        )
        return result.scalar_one_or_none()

    async def list_workflows(
        self,
        owner_id: Optional[str] = None,
        trigger_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[WorkflowModel]:
        """List workflows in creation order, optionally filtered."""
        conditions = []
        if owner_id is not None:
            conditions.append(WorkflowModel.owner_id == owner_id)
        if trigger_type is not None:
            conditions.append(WorkflowModel.trigger_type == trigger_type)
        if status is not None:
            conditions.append(WorkflowModel.status == status)

        query = select(WorkflowModel).order_by(WorkflowModel.created_at, WorkflowModel.id)
        if conditions:
            query = query.where(and_(*conditions))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_graph(
        self,
        workflow_id: UUID,
    ) -> tuple[list[WorkflowNodeModel], list[WorkflowConnectionModel]]:
        """Get all nodes and connections of a workflow."""
        nodes = await self.session.execute(
            select(WorkflowNodeModel)
            .where(WorkflowNodeModel.workflow_id == workflow_id)
            .order_by(WorkflowNodeModel.pk)
        )
        connections = await self.session.execute(
            select(WorkflowConnectionModel)
            .where(WorkflowConnectionModel.workflow_id == workflow_id)
            .order_by(WorkflowConnectionModel.position)
        )
        return list(nodes.scalars().all()), list(connections.scalars().all())

    async def save_workflow(self, definition: WorkflowDefinition) -> WorkflowModel:
        """Insert or replace a workflow and its graph."""
        workflow = definition.workflow
        model = await self.get_workflow(workflow.id)
        if model is None:
            model = WorkflowModel(id=workflow.id, created_at=workflow.created_at)
            self.session.add(model)

        model.name = workflow.name
        model.description = workflow.description
        model.owner_id = workflow.owner_id
        model.trigger_type = workflow.trigger_type.value
        model.trigger_config = to_jsonable(workflow.trigger_config)
        model.status = workflow.status.value

        await self.session.execute(
            delete(WorkflowNodeModel).where(WorkflowNodeModel.workflow_id == workflow.id)
        )
        await self.session.execute(
            delete(WorkflowConnectionModel).where(WorkflowConnectionModel.workflow_id == workflow.id)
        )

        for node in definition.nodes:
            self.session.add(WorkflowNodeModel(
                workflow_id=workflow.id,
                node_id=node.id,
                kind=node.kind,
                config=node.config.model_dump(mode="json", by_alias=True, exclude_none=True),
                position_x=node.position_x,
                position_y=node.position_y,
            ))

        for position, connection in enumerate(definition.connections):
            self.session.add(WorkflowConnectionModel(
                workflow_id=workflow.id,
                connection_id=connection.id or f"e{position + 1}",
                source_node_id=connection.source_node_id,
                target_node_id=connection.target_node_id,
                connection_type=connection.connection_type.value if connection.connection_type else None,
                position=position,
            ))

        await self.session.flush()
        return model

    async def set_workflow_status(self, workflow_id: UUID, status: str) -> Optional[WorkflowModel]:
        """Update workflow status; returns None if the workflow is missing."""
        model = await self.get_workflow(workflow_id)
        if model is None:
            return None
        model.status = status
        await self.session.flush()
        return model

    async def delete_workflow(self, workflow_id: UUID) -> bool:
        """Delete a workflow; nodes and connections cascade."""
        result = await self.session.execute(
            delete(WorkflowModel).where(WorkflowModel.id == workflow_id)
        )
        return result.rowcount > 0

    # ==================== Execution Operations ====================

    async def create_execution(self, execution: Execution) -> WorkflowExecutionModel:
        """Create a new execution record."""
        model = WorkflowExecutionModel(id=execution.id, workflow_id=execution.workflow_id)
        self._apply_execution(model, execution)
        self.session.add(model)
        await self.session.flush()
        return model

    async def update_execution(self, execution: Execution) -> None:
        """Write the full execution record."""
        model = await self.get_execution(execution.id)
        if model is None:
            await self.create_execution(execution)
            return
        self._apply_execution(model, execution)
        await self.session.flush()

    async def transition_execution(
        self,
        execution_id: UUID,
        from_status: str,
        to_status: str,
    ) -> bool:
        """
        Guarded status update.

        The WHERE clause on the current status makes concurrent callers
        race on the row; exactly one sees a row count of 1.
        """
        result = await self.session.execute(
            update(WorkflowExecutionModel)
            .where(
                and_(
                    WorkflowExecutionModel.id == execution_id,
                    WorkflowExecutionModel.status == from_status,
                )
            )
            .values(status=to_status)
        )
        return result.rowcount == 1

    async def get_execution(self, execution_id: UUID) -> Optional[WorkflowExecutionModel]:
        """Get execution by ID."""
        result = await self.session.execute(
            select(WorkflowExecutionModel).where(WorkflowExecutionModel.id == execution_id)
        )
        return result.scalar_one_or_none()

    async def list_executions(self, workflow_id: UUID, limit: int = 50) -> list[WorkflowExecutionModel]:
        """Executions of a workflow, newest first."""
        result = await self.session.execute(
            select(WorkflowExecutionModel)
            .where(WorkflowExecutionModel.workflow_id == workflow_id)
            .order_by(WorkflowExecutionModel.started_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_due_executions(self, now: datetime, limit: int = 50) -> list[WorkflowExecutionModel]:
        """Paused executions whose delay checkpoint has elapsed."""
        result = await self.session.execute(
            select(WorkflowExecutionModel)
            .where(
                and_(
                    WorkflowExecutionModel.status == ExecutionStatus.PAUSED.value,
                    WorkflowExecutionModel.resume_after.is_not(None),
                    WorkflowExecutionModel.resume_after <= now,
                )
            )
            .order_by(WorkflowExecutionModel.resume_after)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_stale_approvals(
        self, paused_before: datetime, limit: int = 50
    ) -> list[WorkflowExecutionModel]:
        """Paused approval checkpoints older than ``paused_before`` with no reminder yet."""
        checkpoint = WorkflowExecutionModel.checkpoint
        result = await self.session.execute(
            select(WorkflowExecutionModel)
            .where(
                and_(
                    WorkflowExecutionModel.status == ExecutionStatus.PAUSED.value,
                    checkpoint["reason"].astext == CheckpointReason.APPROVAL.value,
                    checkpoint["reminder_sent_at"].astext.is_(None),
                    checkpoint["created_at"].astext.cast(DateTime(timezone=True)) <= paused_before,
                )
            )
            .order_by(WorkflowExecutionModel.started_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def mark_approval_reminded(self, execution_id: UUID, at: datetime) -> bool:
        """Guarded stamp of ``checkpoint.reminder_sent_at``."""
        checkpoint = WorkflowExecutionModel.checkpoint
        result = await self.session.execute(
            update(WorkflowExecutionModel)
            .where(
                and_(
                    WorkflowExecutionModel.id == execution_id,
                    WorkflowExecutionModel.status == ExecutionStatus.PAUSED.value,
                    checkpoint["reason"].astext == CheckpointReason.APPROVAL.value,
                    checkpoint["reminder_sent_at"].astext.is_(None),
                )
            )
            .values(
                checkpoint=checkpoint.op("||")(
                    literal({"reminder_sent_at": at.isoformat()}, type_=JSONB)
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ==================== Channel Configuration ====================

    async def get_channel_config(self, user_id: str) -> Optional[ChannelConfigModel]:
        return await self.session.get(ChannelConfigModel, user_id)

    async def save_channel_config(self, user_id: str, config: ChannelConfig) -> None:
        model = await self.session.get(ChannelConfigModel, user_id)
        data = config.model_dump(mode="json", exclude_none=True)
        if model is None:
            self.session.add(ChannelConfigModel(user_id=user_id, config=data))
        else:
            model.config = data
        await self.session.flush()

    # ==================== Helper Methods ====================

    def _apply_execution(self, model: WorkflowExecutionModel, execution: Execution) -> None:
        checkpoint = execution.checkpoint
        model.status = execution.status.value
        model.trigger_data = to_jsonable(execution.trigger_data)
        model.variables = to_jsonable(execution.variables)
        model.acting_user_id = execution.acting_user_id
        model.visited_node_ids = list(execution.visited_node_ids)
        model.checkpoint = checkpoint.model_dump(mode="json") if checkpoint else None
        model.resume_after = checkpoint.resume_after if checkpoint else None
        model.error_message = execution.error_message
        model.started_at = execution.started_at
        model.completed_at = execution.completed_at

    @staticmethod
    def model_to_workflow(model: WorkflowModel) -> Workflow:
        """Convert database model to domain model."""
        return Workflow(
            id=model.id,
            name=model.name,
            description=model.description,
            trigger_type=model.trigger_type,
            trigger_config=model.trigger_config or {},
            status=model.status,
            owner_id=model.owner_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def model_to_node(model: WorkflowNodeModel) -> Node:
        return parse_node({
            "id": model.node_id,
            "kind": model.kind,
            "workflow_id": model.workflow_id,
            "position_x": model.position_x,
            "position_y": model.position_y,
            "config": model.config or {},
        })

    @staticmethod
    def model_to_connection(model: WorkflowConnectionModel) -> Connection:
        return Connection(
            id=model.connection_id,
            workflow_id=model.workflow_id,
            source_node_id=model.source_node_id,
            target_node_id=model.target_node_id,
            connection_type=model.connection_type,
        )

    @staticmethod
    def model_to_execution(model: WorkflowExecutionModel) -> Execution:
        """Convert database model to domain model."""
        return Execution(
            id=model.id,
            workflow_id=model.workflow_id,
            status=model.status,
            trigger_data=model.trigger_data or {},
            variables=model.variables or {},
            acting_user_id=model.acting_user_id,
            visited_node_ids=model.visited_node_ids or [],
            checkpoint=ExecutionCheckpoint.model_validate(model.checkpoint) if model.checkpoint else None,
            started_at=model.started_at,
            completed_at=model.completed_at,
            error_message=model.error_message,
        )
