"""Storage layer for workflow persistence."""

from automation_engine.storage.base import WorkflowStore
from automation_engine.storage.memory import InMemoryWorkflowStore

__all__ = ["WorkflowStore", "InMemoryWorkflowStore"]
