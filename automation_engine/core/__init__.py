"""Core domain models and business logic."""

from automation_engine.core.models import (
    ActionConfig,
    ActionType,
    Connection,
    Execution,
    ExecutionResult,
    Node,
    TriggerType,
    Workflow,
    WorkflowDefinition,
    WorkflowStatus,
)
from automation_engine.core.state_machine import (
    ExecutionStatus,
    ExecutionStateMachine,
)
from automation_engine.core.graph import WorkflowGraph, ValidationResult

__all__ = [
    "ActionConfig",
    "ActionType",
    "Connection",
    "Execution",
    "ExecutionResult",
    "Node",
    "TriggerType",
    "Workflow",
    "WorkflowDefinition",
    "WorkflowStatus",
    "ExecutionStatus",
    "ExecutionStateMachine",
    "WorkflowGraph",
    "ValidationResult",
]
