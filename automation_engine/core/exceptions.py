"""
Exception hierarchy for the automation engine.

Definition errors are raised before traversal starts, traversal errors mark
the execution failed, and channel errors are absorbed by action handlers.
"""

from typing import Any, Optional
from uuid import UUID


class AutomationEngineError(Exception):
    """Base class for all engine errors."""


# ==================== Definition Errors ====================

class WorkflowNotFoundError(AutomationEngineError):
    """Raised when a workflow id does not resolve to a workflow."""

    def __init__(self, workflow_id: UUID):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id} not found")


class WorkflowNotActiveError(AutomationEngineError):
    """Raised when executing a workflow whose status is not active."""

    def __init__(self, workflow_id: UUID, status: str):
        self.workflow_id = workflow_id
        self.status = status
        super().__init__(f"Workflow {workflow_id} is not active (status: {status})")


class InvalidWorkflowGraphError(AutomationEngineError):
    """Raised when a workflow graph fails structural validation."""

    def __init__(self, message: str, errors: Optional[list[Any]] = None):
        self.errors = errors or []
        super().__init__(message)


class MissingTriggerError(InvalidWorkflowGraphError):
    """Raised when a workflow graph has no trigger node."""

    def __init__(self, workflow_id: Optional[UUID] = None):
        self.workflow_id = workflow_id
        super().__init__(
            f"No trigger node found in workflow {workflow_id}"
            if workflow_id else "No trigger node found in workflow"
        )


# ==================== Traversal Errors ====================

class ActionFailedError(AutomationEngineError):
    """Raised when an action node that does not continue on error fails."""

    def __init__(self, node_id: str, action_type: str, error: Optional[str]):
        self.node_id = node_id
        self.action_type = action_type
        self.error = error
        super().__init__(f"Action '{action_type}' on node '{node_id}' failed: {error}")


class ExecutionCancelledError(AutomationEngineError):
    """Raised when a cancellation request stops a traversal."""

    def __init__(self, message: str = "Execution cancelled"):
        super().__init__(message)


class UnknownEntityTypeError(AutomationEngineError):
    """Raised when an action targets an entity type the store cannot write."""

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"Unknown entity type: {entity_type}")


# ==================== Resumption Errors ====================

class ExecutionNotFoundError(AutomationEngineError):
    """Raised when an execution id does not resolve to an execution."""

    def __init__(self, execution_id: UUID):
        self.execution_id = execution_id
        super().__init__(f"Execution {execution_id} not found")


class ExecutionNotPausedError(AutomationEngineError):
    """Raised when resuming an execution that is not (or no longer) paused."""

    def __init__(self, execution_id: UUID, status: str):
        self.execution_id = execution_id
        self.status = status
        super().__init__(f"Execution {execution_id} is not paused (status: {status})")


class CheckpointNotDueError(AutomationEngineError):
    """Raised when resuming a delay checkpoint before its resume time."""

    def __init__(self, execution_id: UUID, resume_after: Any):
        self.execution_id = execution_id
        self.resume_after = resume_after
        super().__init__(f"Execution {execution_id} cannot resume before {resume_after}")


class ExecutionNotAwaitingApprovalError(ExecutionNotPausedError):
    """Raised when approving an execution that is paused on something else."""

    def __init__(self, execution_id: UUID, reason: str):
        self.reason = reason
        super().__init__(execution_id, f"paused on {reason}, not approval")


# ==================== Channel Errors ====================

class ChannelUnavailableError(AutomationEngineError):
    """Raised when the tenant has no usable configuration for a channel."""

    def __init__(self, channel: str):
        self.channel = channel
        super().__init__(f"{channel} channel is not configured")


class ChannelDeliveryError(AutomationEngineError):
    """Raised when a notification provider rejects or fails a delivery."""

    def __init__(self, channel: str, message: str, status_code: Optional[int] = None):
        self.channel = channel
        self.status_code = status_code
        super().__init__(f"{channel} delivery failed: {message}")
