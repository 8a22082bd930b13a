"""Workflow orchestration: execution, event routing and checkpoint resumption."""

from automation_engine.orchestrator.engine import AutomationEngine
from automation_engine.orchestrator.executor import WorkflowExecutor
from automation_engine.orchestrator.router import EventTriggerRouter
from automation_engine.orchestrator.scheduler import CheckpointScheduler

__all__ = ["AutomationEngine", "WorkflowExecutor", "EventTriggerRouter", "CheckpointScheduler"]
