"""
PostgreSQL-backed WorkflowStore.

Each store call runs in its own session so a guarded status transition
commits before the caller acts on it. Business entity tables are owned by
the host application; they are reflected on first use and only the
whitelisted ones may be written.
"""

import logging
from datetime import date, datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import Date, DateTime, Integer, MetaData, Table, insert, update

from automation_engine.core.exceptions import UnknownEntityTypeError, WorkflowNotFoundError
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
from automation_engine.storage.base import WorkflowStore
from automation_engine.storage.postgres.database import Database
from automation_engine.storage.postgres.repository import WorkflowRepository
from automation_engine.storage.redis.cache import WorkflowCache

logger = logging.getLogger(__name__)


def coerce_column_value(column: Any, value: Any) -> Any:
    """Parse ISO strings bound for date and timestamp columns."""
    if not isinstance(value, str):
        return value
    if isinstance(column.type, DateTime):
        return datetime.fromisoformat(value)
    if isinstance(column.type, Date):
        return date.fromisoformat(value[:10])
    return value


class PostgresWorkflowStore(WorkflowStore):
    """
    WorkflowStore over SQLAlchemy async sessions.

    An optional WorkflowCache fronts the two hot reads (active workflows
    per trigger type and workflow graphs).
    """

    def __init__(
        self,
        database: Database,
        cache: Optional[WorkflowCache] = None,
        entity_tables: Optional[dict[str, str]] = None,
    ):
        self.database = database
        self.cache = cache
        self.entity_tables = dict(entity_tables or {})
        self._reflected: dict[str, Table] = {}

    # ==================== Workflow Operations ====================

    async def get_workflow(self, workflow_id: UUID) -> Optional[Workflow]:
        async with self.database.session() as session:
            model = await WorkflowRepository(session).get_workflow(workflow_id)
            return WorkflowRepository.model_to_workflow(model) if model else None

    async def list_workflows(self, owner_id: Optional[str] = None) -> list[Workflow]:
        async with self.database.session() as session:
            models = await WorkflowRepository(session).list_workflows(owner_id=owner_id)
            return [WorkflowRepository.model_to_workflow(m) for m in models]

    async def list_active_workflows(self, trigger_type: TriggerType) -> list[Workflow]:
        if self.cache:
            cached = await self.cache.get_active_workflows(trigger_type)
            if cached is not None:
                return cached

        async with self.database.session() as session:
            models = await WorkflowRepository(session).list_workflows(
                trigger_type=trigger_type.value,
                status=WorkflowStatus.ACTIVE.value,
            )
            workflows = [WorkflowRepository.model_to_workflow(m) for m in models]

        if self.cache:
            await self.cache.set_active_workflows(trigger_type, workflows)
        return workflows

    async def get_graph(self, workflow_id: UUID) -> tuple[list[Node], list[Connection]]:
        if self.cache:
            cached = await self.cache.get_graph(workflow_id)
            if cached is not None:
                return cached

        async with self.database.session() as session:
            node_models, connection_models = await WorkflowRepository(session).get_graph(workflow_id)
            nodes = [WorkflowRepository.model_to_node(m) for m in node_models]
            connections = [WorkflowRepository.model_to_connection(m) for m in connection_models]

        if self.cache and nodes:
            await self.cache.set_graph(workflow_id, nodes, connections)
        return nodes, connections

    async def save_workflow(self, definition: WorkflowDefinition) -> Workflow:
        async with self.database.session() as session:
            model = await WorkflowRepository(session).save_workflow(definition)
            await session.refresh(model)
            workflow = WorkflowRepository.model_to_workflow(model)

        await self._invalidate(workflow.id)
        logger.info(f"Saved workflow {workflow.id} ({len(definition.nodes)} nodes)")
        return workflow

    async def set_workflow_status(self, workflow_id: UUID, status: WorkflowStatus) -> Workflow:
        async with self.database.session() as session:
            model = await WorkflowRepository(session).set_workflow_status(workflow_id, status.value)
            if model is None:
                raise WorkflowNotFoundError(workflow_id)
            await session.refresh(model)
            workflow = WorkflowRepository.model_to_workflow(model)

        await self._invalidate(workflow_id)
        return workflow

    async def delete_workflow(self, workflow_id: UUID) -> bool:
        async with self.database.session() as session:
            deleted = await WorkflowRepository(session).delete_workflow(workflow_id)

        if deleted:
            await self._invalidate(workflow_id)
        return deleted

    # ==================== Execution Operations ====================

    async def create_execution(self, execution: Execution) -> Execution:
        async with self.database.session() as session:
            await WorkflowRepository(session).create_execution(execution)
        return execution

    async def update_execution(self, execution: Execution) -> Execution:
        async with self.database.session() as session:
            await WorkflowRepository(session).update_execution(execution)
        return execution

    async def transition_execution(
        self,
        execution_id: UUID,
        from_status: ExecutionStatus,
        to_status: ExecutionStatus,
    ) -> bool:
        async with self.database.session() as session:
            return await WorkflowRepository(session).transition_execution(
                execution_id, from_status.value, to_status.value
            )

    async def get_execution(self, execution_id: UUID) -> Optional[Execution]:
        async with self.database.session() as session:
            model = await WorkflowRepository(session).get_execution(execution_id)
            return WorkflowRepository.model_to_execution(model) if model else None

    async def list_executions(self, workflow_id: UUID, limit: int = 50) -> list[Execution]:
        async with self.database.session() as session:
            models = await WorkflowRepository(session).list_executions(workflow_id, limit)
            return [WorkflowRepository.model_to_execution(m) for m in models]

    async def list_due_executions(self, now: datetime, limit: int = 50) -> list[Execution]:
        async with self.database.session() as session:
            models = await WorkflowRepository(session).list_due_executions(now, limit)
            return [WorkflowRepository.model_to_execution(m) for m in models]

    async def list_stale_approvals(self, paused_before: datetime, limit: int = 50) -> list[Execution]:
        async with self.database.session() as session:
            models = await WorkflowRepository(session).list_stale_approvals(paused_before, limit)
            return [WorkflowRepository.model_to_execution(m) for m in models]

    async def mark_approval_reminded(self, execution_id: UUID, at: datetime) -> bool:
        async with self.database.session() as session:
            return await WorkflowRepository(session).mark_approval_reminded(execution_id, at)

    # ==================== Collaborator Operations ====================

    async def get_channel_config(self, user_id: str) -> Optional[ChannelConfig]:
        async with self.database.session() as session:
            model = await WorkflowRepository(session).get_channel_config(user_id)
            return ChannelConfig.model_validate(model.config) if model else None

    async def save_channel_config(self, user_id: str, config: ChannelConfig) -> None:
        async with self.database.session() as session:
            await WorkflowRepository(session).save_channel_config(user_id, config)

    async def create_entity(self, entity_type: str, values: dict[str, Any]) -> str:
        table = await self._entity_table(entity_type)
        row = self._row_values(table, values)

        id_column = table.c.get("id")
        if id_column is not None and "id" not in row and id_column.server_default is None:
            if not isinstance(id_column.type, Integer):
                row["id"] = str(uuid4())

        async with self.database.session() as session:
            if id_column is None:
                await session.execute(insert(table).values(**row))
                return ""
            result = await session.execute(insert(table).values(**row).returning(id_column))
            return str(result.scalar_one())

    async def update_entity(self, entity_type: str, entity_id: str, values: dict[str, Any]) -> bool:
        table = await self._entity_table(entity_type)
        id_column = table.c.get("id")
        if id_column is None:
            raise UnknownEntityTypeError(entity_type)

        row = self._row_values(table, values)
        if not row:
            return False

        key: Any = entity_id
        if isinstance(id_column.type, Integer):
            if not str(entity_id).isdigit():
                return False
            key = int(entity_id)

        async with self.database.session() as session:
            result = await session.execute(
                update(table).where(id_column == key).values(**row)
            )
            return result.rowcount > 0

    # ==================== Helper Methods ====================

    async def _entity_table(self, entity_type: str) -> Table:
        table_name = self.entity_tables.get(entity_type)
        if table_name is None:
            raise UnknownEntityTypeError(entity_type)

        table = self._reflected.get(table_name)
        if table is None:
            async with self.database.engine.connect() as conn:
                table = await conn.run_sync(
                    lambda sync_conn: Table(table_name, MetaData(), autoload_with=sync_conn)
                )
            self._reflected[table_name] = table
        return table

    @staticmethod
    def _row_values(table: Table, values: dict[str, Any]) -> dict[str, Any]:
        """Keep values for existing columns only."""
        row: dict[str, Any] = {}
        for name, value in values.items():
            column = table.c.get(name)
            if column is None:
                logger.debug(f"Dropping unknown column {name!r} for table {table.name}")
                continue
            row[name] = coerce_column_value(column, value)
        return row

    async def _invalidate(self, workflow_id: UUID) -> None:
        if self.cache:
            await self.cache.invalidate_workflow(workflow_id)
