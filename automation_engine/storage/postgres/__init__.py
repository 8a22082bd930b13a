"""PostgreSQL storage layer."""

from automation_engine.storage.postgres.database import Database
from automation_engine.storage.postgres.models import (
    Base,
    ChannelConfigModel,
    WorkflowConnectionModel,
    WorkflowExecutionModel,
    WorkflowModel,
    WorkflowNodeModel,
)
from automation_engine.storage.postgres.repository import WorkflowRepository
from automation_engine.storage.postgres.store import PostgresWorkflowStore

__all__ = [
    "Base",
    "ChannelConfigModel",
    "Database",
    "PostgresWorkflowStore",
    "WorkflowConnectionModel",
    "WorkflowExecutionModel",
    "WorkflowModel",
    "WorkflowNodeModel",
    "WorkflowRepository",
]
