"""
FastAPI routes for the automation engine API.

Implements the core API endpoints:
- /v1/templates - Browse and instantiate pre-built workflows
- /v1/workflows - Manage workflow definitions and run them
- /v1/executions - Inspect, resume and approve executions
- /v1/events - Emit domain events
- /health - Health check
"""

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from automation_engine import __version__
from automation_engine.core.exceptions import AutomationEngineError
from automation_engine.core.models import (
    Connection,
    Execution,
    ExecutionResult,
    Node,
    TriggerType,
    Workflow,
    WorkflowDefinition,
)
from automation_engine.core.templates import list_templates
from automation_engine.orchestrator.engine import AutomationEngine

router = APIRouter(prefix="/v1", tags=["workflows"])
health_router = APIRouter(tags=["health"])

ERROR_STATUS_CODES = {
    "WorkflowNotFoundError": status.HTTP_404_NOT_FOUND,
    "ExecutionNotFoundError": status.HTTP_404_NOT_FOUND,
    "WorkflowNotActiveError": status.HTTP_400_BAD_REQUEST,
    "MissingTriggerError": status.HTTP_400_BAD_REQUEST,
    "InvalidWorkflowGraphError": status.HTTP_400_BAD_REQUEST,
    "ExecutionNotPausedError": status.HTTP_409_CONFLICT,
    "ExecutionNotAwaitingApprovalError": status.HTTP_409_CONFLICT,
    "CheckpointNotDueError": status.HTTP_409_CONFLICT,
}


# ==================== Request/Response Models ====================

class WorkflowCreateRequest(BaseModel):
    """Request body for workflow creation."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "name": "Overdue invoice escalation",
                "triggerType": "invoice_overdue",
                "nodes": [
                    {"id": "t", "kind": "trigger"},
                    {"id": "c", "kind": "condition",
                     "config": {"field": "days_overdue", "operator": "greater_than", "value": 7}},
                    {"id": "a", "kind": "action",
                     "config": {"actionType": "send_email", "emailTo": "{{client_email}}",
                                "emailSubject": "Invoice overdue"}},
                ],
                "connections": [
                    {"sourceNodeId": "t", "targetNodeId": "c"},
                    {"sourceNodeId": "c", "targetNodeId": "a", "connectionType": "true"},
                ],
            }
        },
    )

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    trigger_type: TriggerType = Field(..., alias="triggerType")
    trigger_config: dict[str, Any] = Field(default_factory=dict, alias="triggerConfig")
    owner_id: Optional[str] = Field(default=None, alias="ownerId")
    nodes: list[Node] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)

    def to_definition(self) -> WorkflowDefinition:
        workflow = Workflow(
            name=self.name,
            description=self.description,
            trigger_type=self.trigger_type,
            trigger_config=self.trigger_config,
            owner_id=self.owner_id,
        )
        return WorkflowDefinition(workflow=workflow, nodes=self.nodes, connections=self.connections)


class TemplateInstantiateRequest(BaseModel):
    """Request body for creating a workflow from a template."""

    owner_id: Optional[str] = None
    name: Optional[str] = None


class ExecuteWorkflowRequest(BaseModel):
    """Request body for a manual workflow run."""

    trigger_data: dict[str, Any] = Field(default_factory=dict, description="Payload seeding the execution")
    acting_user_id: Optional[str] = None


class ApprovalRequest(BaseModel):
    """Request body for approving or rejecting an execution."""

    actor_id: Optional[str] = None
    comment: Optional[str] = None


class ResumeRequest(BaseModel):
    """Request body for resuming a paused execution."""

    variables: dict[str, Any] = Field(default_factory=dict)
    force: bool = Field(default=False, description="Resume a delay before it is due")


class EventRequest(BaseModel):
    """Request body for emitting a domain event."""

    event_type: str = Field(..., description="Trigger type, e.g. invoice_overdue")
    entity_data: dict[str, Any] = Field(default_factory=dict)
    entity_id: Optional[str] = None
    acting_user_id: Optional[str] = None


class EventAcceptedResponse(BaseModel):
    event_type: str
    message: str = "Event accepted"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    services: dict[str, str]


# ==================== Dependency Injection ====================

async def get_engine(request: Request) -> AutomationEngine:
    """Get engine from app state."""
    return request.app.state.engine


def _http_error(error_type: Optional[str], detail: str) -> HTTPException:
    code = ERROR_STATUS_CODES.get(error_type or "", status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=code, detail=detail)


def _check_result(result: ExecutionResult) -> ExecutionResult:
    """Raise for failures that happened before or instead of a traversal."""
    if not result.success and result.error_type in ERROR_STATUS_CODES:
        raise _http_error(result.error_type, result.error or "")
    return result


# ==================== Template Routes ====================

@router.get("/templates", summary="List workflow templates")
async def get_templates() -> list[dict[str, Any]]:
    return [template.summary() for template in list_templates()]


@router.post(
    "/templates/{key}",
    response_model=Workflow,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow from a template",
    description="The new workflow is inactive until activated."
)
async def instantiate_template(
    key: str,
    request: Optional[TemplateInstantiateRequest] = None,
    engine: AutomationEngine = Depends(get_engine),
) -> Workflow:
    request = request or TemplateInstantiateRequest()
    try:
        return await engine.instantiate_template(key, owner_id=request.owner_id, name=request.name)
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Workflow template not found: {key}",
        )


# ==================== Workflow Routes ====================

@router.post(
    "/workflows",
    response_model=Workflow,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow",
    description="Validate and store a workflow graph. New workflows start inactive."
)
async def create_workflow(
    request: WorkflowCreateRequest,
    engine: AutomationEngine = Depends(get_engine),
) -> Workflow:
    try:
        definition = request.to_definition()
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        return await engine.create_workflow(definition)
    except AutomationEngineError as e:
        raise _http_error(type(e).__name__, str(e))


@router.get("/workflows/{workflow_id}", response_model=WorkflowDefinition, summary="Get a workflow")
async def get_workflow(
    workflow_id: UUID,
    engine: AutomationEngine = Depends(get_engine),
) -> WorkflowDefinition:
    definition = await engine.get_workflow(workflow_id)
    if definition is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Workflow not found: {workflow_id}",
        )
    return definition


@router.post("/workflows/{workflow_id}/activate", response_model=Workflow, summary="Activate a workflow")
async def activate_workflow(
    workflow_id: UUID,
    engine: AutomationEngine = Depends(get_engine),
) -> Workflow:
    try:
        return await engine.activate_workflow(workflow_id)
    except AutomationEngineError as e:
        raise _http_error(type(e).__name__, str(e))


@router.post("/workflows/{workflow_id}/deactivate", response_model=Workflow, summary="Deactivate a workflow")
async def deactivate_workflow(
    workflow_id: UUID,
    engine: AutomationEngine = Depends(get_engine),
) -> Workflow:
    try:
        return await engine.deactivate_workflow(workflow_id)
    except AutomationEngineError as e:
        raise _http_error(type(e).__name__, str(e))


@router.delete(
    "/workflows/{workflow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a workflow",
    description="Execution history of the workflow is kept."
)
async def delete_workflow(
    workflow_id: UUID,
    engine: AutomationEngine = Depends(get_engine),
) -> None:
    if not await engine.delete_workflow(workflow_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Workflow not found: {workflow_id}",
        )


@router.post(
    "/workflows/{workflow_id}/execute",
    response_model=ExecutionResult,
    summary="Run a workflow",
    description="Run an active workflow now and wait until it completes, pauses or fails."
)
async def execute_workflow(
    workflow_id: UUID,
    request: Optional[ExecuteWorkflowRequest] = None,
    engine: AutomationEngine = Depends(get_engine),
) -> ExecutionResult:
    request = request or ExecuteWorkflowRequest()
    result = await engine.execute_workflow(
        workflow_id, request.trigger_data, acting_user_id=request.acting_user_id
    )
    return _check_result(result)


@router.get(
    "/workflows/{workflow_id}/executions",
    response_model=list[Execution],
    summary="List executions of a workflow",
)
async def list_executions(
    workflow_id: UUID,
    limit: Optional[int] = None,
    engine: AutomationEngine = Depends(get_engine),
) -> list[Execution]:
    return await engine.list_executions(workflow_id, limit)


# ==================== Execution Routes ====================

@router.get("/executions/{execution_id}", response_model=Execution, summary="Get an execution")
async def get_execution(
    execution_id: UUID,
    engine: AutomationEngine = Depends(get_engine),
) -> Execution:
    execution = await engine.get_execution(execution_id)
    if execution is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Execution not found: {execution_id}",
        )
    return execution


@router.post("/executions/{execution_id}/approve", response_model=ExecutionResult, summary="Approve")
async def approve_execution(
    execution_id: UUID,
    request: Optional[ApprovalRequest] = None,
    engine: AutomationEngine = Depends(get_engine),
) -> ExecutionResult:
    request = request or ApprovalRequest()
    result = await engine.resolve_approval(
        execution_id, True, actor_id=request.actor_id, comment=request.comment
    )
    return _check_result(result)


@router.post("/executions/{execution_id}/reject", response_model=ExecutionResult, summary="Reject")
async def reject_execution(
    execution_id: UUID,
    request: Optional[ApprovalRequest] = None,
    engine: AutomationEngine = Depends(get_engine),
) -> ExecutionResult:
    request = request or ApprovalRequest()
    result = await engine.resolve_approval(
        execution_id, False, actor_id=request.actor_id, comment=request.comment
    )
    return _check_result(result)


@router.post("/executions/{execution_id}/resume", response_model=ExecutionResult, summary="Resume")
async def resume_execution(
    execution_id: UUID,
    request: Optional[ResumeRequest] = None,
    engine: AutomationEngine = Depends(get_engine),
) -> ExecutionResult:
    request = request or ResumeRequest()
    result = await engine.resume_execution(
        execution_id, variables=request.variables, force=request.force
    )
    return _check_result(result)


# ==================== Event Routes ====================

@router.post(
    "/events",
    response_model=EventAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Emit a domain event",
    description="Matching workflows run in the background; the call returns immediately."
)
async def emit_event(
    request: EventRequest,
    engine: AutomationEngine = Depends(get_engine),
) -> EventAcceptedResponse:
    try:
        engine.trigger_workflow_event(
            request.event_type,
            request.entity_data,
            acting_user_id=request.acting_user_id,
            entity_id=request.entity_id,
        )
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown event type: {request.event_type}",
        )
    return EventAcceptedResponse(event_type=request.event_type)


# ==================== Health Check Routes ====================

@health_router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the engine and its backing services."
)
async def health_check(request: Request) -> HealthResponse:
    """Check health of all services."""
    services = {}

    database = getattr(request.app.state, "database", None)
    if database is not None:
        services["postgres"] = "healthy" if await database.ping() else "unhealthy"

    redis_connection = getattr(request.app.state, "redis", None)
    if redis_connection is not None:
        services["redis"] = "healthy" if await redis_connection.health_check() else "unhealthy"

    engine: AutomationEngine = request.app.state.engine
    services["scheduler"] = "healthy" if engine.scheduler.is_running else "stopped"

    unhealthy_count = sum(1 for s in services.values() if s == "unhealthy")
    if unhealthy_count == 0:
        overall_status = "healthy"
    elif unhealthy_count == len(services):
        overall_status = "unhealthy"
    else:
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version=__version__,
        services=services,
    )
