"""
Domain models for the automation engine.

All models use Pydantic for validation and serialization. Nodes form a closed
tagged union on ``kind`` so the executor can match them exhaustively.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)

from automation_engine.core.clock import utc_now
from automation_engine.core.state_machine import ExecutionStatus


class TriggerType(str, Enum):
    """Domain event kinds a workflow can listen for."""

    CLIENT_CREATED = "client_created"
    CLIENT_UPDATED = "client_updated"
    APPOINTMENT_CREATED = "appointment_created"
    APPOINTMENT_UPDATED = "appointment_updated"
    APPOINTMENT_COMPLETED = "appointment_completed"
    INVOICE_CREATED = "invoice_created"
    INVOICE_DUE = "invoice_due"
    INVOICE_OVERDUE = "invoice_overdue"
    INVOICE_PAID = "invoice_paid"
    SERVICE_CREATED = "service_created"
    SERVICE_COMPLETED = "service_completed"
    PIANO_CREATED = "piano_created"
    PIANO_UPDATED = "piano_updated"
    MANUAL = "manual"


class WorkflowStatus(str, Enum):
    """Lifecycle status of a workflow definition."""

    INACTIVE = "inactive"
    ACTIVE = "active"


class NodeKind(str, Enum):
    """Supported node kinds."""

    TRIGGER = "trigger"
    CONDITION = "condition"
    ACTION = "action"
    DELAY = "delay"
    APPROVAL = "approval"


class ConnectionType(str, Enum):
    """Branch labels for edges leaving a condition node."""

    TRUE = "true"
    FALSE = "false"


class ActionType(str, Enum):
    """Side-effecting actions an action node can perform."""

    SEND_EMAIL = "send_email"
    SEND_WHATSAPP = "send_whatsapp"
    CREATE_REMINDER = "create_reminder"
    CREATE_APPOINTMENT = "create_appointment"
    UPDATE_STATUS = "update_status"
    WEBHOOK = "webhook"


class DelayUnit(str, Enum):
    """Units accepted by delay nodes."""

    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

    @property
    def seconds(self) -> int:
        return {
            DelayUnit.SECONDS: 1,
            DelayUnit.MINUTES: 60,
            DelayUnit.HOURS: 3600,
            DelayUnit.DAYS: 86400,
        }[self]


class CheckpointReason(str, Enum):
    """Why an execution was suspended."""

    DELAY = "delay"
    APPROVAL = "approval"


# ==================== Conditions ====================

class Condition(BaseModel):
    """A single ``{field, operator, value}`` comparison."""

    model_config = ConfigDict(extra="ignore")

    field: str = Field(..., min_length=1, description="Variable or payload field to test")
    operator: str = Field(default="equals", description="Comparison operator")
    value: Any = Field(default=None, description="Comparison value")


class ConditionGroup(BaseModel):
    """Composite condition reduced with AND/OR."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    conditions: list[Union["ConditionGroup", Condition]]
    logic_operator: str = Field(default="AND", alias="logicOperator")


ConditionSpec = Union[Condition, ConditionGroup]


# ==================== Node Configurations ====================

class TriggerConfig(BaseModel):
    """Trigger node metadata. Filtering lives on the workflow's trigger_config."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    trigger_type: Optional[str] = Field(default=None, alias="triggerType")
    description: Optional[str] = None


class ConditionConfig(BaseModel):
    """Condition node config: a single comparison or a composite group."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    field: Optional[str] = None
    operator: Optional[str] = None
    value: Any = None
    conditions: Optional[list[Union[ConditionGroup, Condition]]] = None
    logic_operator: str = Field(default="AND", alias="logicOperator")
    description: Optional[str] = None

    def to_spec(self) -> Optional[ConditionSpec]:
        """Build the evaluable condition, or None if the config is empty."""
        if self.conditions is not None:
            return ConditionGroup(conditions=self.conditions, logic_operator=self.logic_operator)
        if self.field:
            return Condition(field=self.field, operator=self.operator or "equals", value=self.value)
        return None


_ACTION_CONFIG_KEYS = frozenset({
    "action_type", "actionType", "continue_on_error",
    "continueOnError", "params", "description",
})


class ActionConfig(BaseModel):
    """
    Action node config.

    Unknown top-level keys are folded into ``params`` so flat author configs
    such as ``{"actionType": "send_email", "emailTo": "..."}`` stay valid.
    """

    model_config = ConfigDict(populate_by_name=True)

    action_type: ActionType = Field(..., alias="actionType")
    continue_on_error: bool = Field(default=True, alias="continueOnError")
    params: dict[str, Any] = Field(default_factory=dict)
    description: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def fold_flat_params(cls, data: Any) -> Any:
        """Move unrecognised keys into params."""
        if not isinstance(data, dict):
            return data
        extra = {k: v for k, v in data.items() if k not in _ACTION_CONFIG_KEYS}
        if not extra:
            return data
        folded = {k: v for k, v in data.items() if k in _ACTION_CONFIG_KEYS}
        folded["params"] = {**extra, **(data.get("params") or {})}
        return folded


class DelayConfig(BaseModel):
    """Delay node config."""

    model_config = ConfigDict(extra="allow")

    duration: float = Field(default=0, ge=0, description="Delay length in units")
    unit: DelayUnit = Field(default=DelayUnit.MINUTES)
    description: Optional[str] = None

    @property
    def total_seconds(self) -> float:
        return self.duration * self.unit.seconds

    def to_timedelta(self) -> timedelta:
        return timedelta(seconds=self.total_seconds)


class ApprovalConfig(BaseModel):
    """Approval node config (metadata only)."""

    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    description: Optional[str] = None
    approvers: list[str] = Field(default_factory=list)


# ==================== Nodes ====================

class NodeBase(BaseModel):
    """Attributes shared by every node kind."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, max_length=255, description="Node identifier")
    workflow_id: Optional[UUID] = Field(default=None, description="Owning workflow")
    position_x: float = Field(default=0.0, alias="positionX")
    position_y: float = Field(default=0.0, alias="positionY")


class TriggerNode(NodeBase):
    kind: Literal["trigger"] = "trigger"
    config: TriggerConfig = Field(default_factory=TriggerConfig)


class ConditionNode(NodeBase):
    kind: Literal["condition"] = "condition"
    config: ConditionConfig = Field(default_factory=ConditionConfig)


class ActionNode(NodeBase):
    kind: Literal["action"] = "action"
    config: ActionConfig


class DelayNode(NodeBase):
    kind: Literal["delay"] = "delay"
    config: DelayConfig = Field(default_factory=DelayConfig)


class ApprovalNode(NodeBase):
    kind: Literal["approval"] = "approval"
    config: ApprovalConfig = Field(default_factory=ApprovalConfig)


Node = Annotated[
    Union[TriggerNode, ConditionNode, ActionNode, DelayNode, ApprovalNode],
    Field(discriminator="kind"),
]

_node_adapter: TypeAdapter[Node] = TypeAdapter(Node)


def parse_node(data: dict[str, Any]) -> Node:
    """Validate a raw node dict into its typed variant."""
    return _node_adapter.validate_python(data)


class Connection(BaseModel):
    """Directed edge between two nodes."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None)
    workflow_id: Optional[UUID] = Field(default=None)
    source_node_id: str = Field(..., alias="sourceNodeId")
    target_node_id: str = Field(..., alias="targetNodeId")
    connection_type: Optional[ConnectionType] = Field(default=None, alias="connectionType")

    @field_validator("connection_type", mode="before")
    @classmethod
    def normalize_connection_type(cls, v: Any) -> Any:
        """Map booleans and blank/default labels onto the branch enum."""
        if isinstance(v, bool):
            return ConnectionType.TRUE if v else ConnectionType.FALSE
        if isinstance(v, str):
            v = v.strip().lower()
            if v in ("", "default", "next"):
                return None
        return v


# ==================== Workflows ====================

class Workflow(BaseModel):
    """A named automation definition."""

    model_config = ConfigDict(populate_by_name=True)

    id: UUID = Field(default_factory=uuid4, description="Unique workflow ID")
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None)
    trigger_type: TriggerType = Field(..., alias="triggerType")
    trigger_config: dict[str, Any] = Field(default_factory=dict, alias="triggerConfig")
    status: WorkflowStatus = Field(default=WorkflowStatus.INACTIVE)
    owner_id: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_active(self) -> bool:
        return self.status == WorkflowStatus.ACTIVE


class WorkflowDefinition(BaseModel):
    """A workflow together with its node and edge sets."""

    workflow: Workflow
    nodes: list[Node] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)

    @field_validator("nodes")
    @classmethod
    def validate_unique_node_ids(cls, v: list[Node]) -> list[Node]:
        """Ensure all node IDs are unique."""
        ids = [node.id for node in v]
        if len(ids) != len(set(ids)):
            duplicates = {x for x in ids if ids.count(x) > 1}
            raise ValueError(f"Duplicate node IDs found: {duplicates}")
        return v

    @model_validator(mode="after")
    def stamp_workflow_ids(self) -> "WorkflowDefinition":
        """Point nodes and connections at the owning workflow."""
        for node in self.nodes:
            node.workflow_id = self.workflow.id
        for index, connection in enumerate(self.connections):
            connection.workflow_id = self.workflow.id
            if connection.id is None:
                connection.id = f"e{index + 1}"
        return self


# ==================== Executions ====================

class ExecutionCheckpoint(BaseModel):
    """Persisted resumption point for a suspended execution."""

    reason: CheckpointReason
    node_id: str = Field(..., description="Node that suspended the run")
    next_node_ids: list[str] = Field(default_factory=list, description="Frontier in visit order")
    resume_after: Optional[datetime] = Field(default=None, description="Earliest resume time (delays)")
    created_at: datetime = Field(default_factory=utc_now)
    reminder_sent_at: Optional[datetime] = Field(default=None, description="When approvers were reminded (approvals)")


class Execution(BaseModel):
    """One run of a workflow."""

    id: UUID = Field(default_factory=uuid4, description="Unique execution ID")
    workflow_id: UUID = Field(..., description="Workflow being executed")
    status: ExecutionStatus = Field(default=ExecutionStatus.RUNNING)
    trigger_data: dict[str, Any] = Field(default_factory=dict)
    variables: dict[str, Any] = Field(default_factory=dict)
    acting_user_id: Optional[str] = Field(default=None)
    visited_node_ids: list[str] = Field(default_factory=list)
    checkpoint: Optional[ExecutionCheckpoint] = Field(default=None)
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = Field(default=None)
    error_message: Optional[str] = Field(default=None)


class ExecutionResult(BaseModel):
    """Structured outcome returned to callers of the executor."""

    success: bool
    execution_id: Optional[UUID] = None
    status: Optional[ExecutionStatus] = None
    error: Optional[str] = None
    error_type: Optional[str] = Field(default=None, description="Exception class name of the failure")

    @classmethod
    def from_error(
        cls,
        error: Exception,
        execution_id: Optional[UUID] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> "ExecutionResult":
        return cls(
            success=False,
            execution_id=execution_id,
            status=status,
            error=str(error),
            error_type=type(error).__name__,
        )


class WorkflowRunSummary(BaseModel):
    """Per-workflow result of dispatching a domain event."""

    workflow_id: UUID
    result: Optional[ExecutionResult] = None
    error: Optional[str] = None


class ActionOutcome(BaseModel):
    """Result of a single action handler invocation."""

    success: bool
    error: Optional[str] = None
    bindings: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, **bindings: Any) -> "ActionOutcome":
        return cls(success=True, bindings=bindings)

    @classmethod
    def failed(cls, error: str) -> "ActionOutcome":
        return cls(success=False, error=error)


# ==================== Channel Configuration ====================

class EmailChannelConfig(BaseModel):
    """Credentials for the tenant's e-mail provider."""

    provider: Literal["sendgrid", "mailgun"]
    api_key: str = Field(..., min_length=1)
    domain: Optional[str] = Field(default=None, description="Mailgun sending domain")
    from_email: str
    from_name: Optional[str] = None

    @model_validator(mode="after")
    def validate_domain(self) -> "EmailChannelConfig":
        """Mailgun needs a sending domain."""
        if self.provider == "mailgun" and not self.domain:
            raise ValueError("mailgun provider requires a domain")
        return self


class WhatsAppChannelConfig(BaseModel):
    """Credentials for the WhatsApp Business Cloud API."""

    access_token: str = Field(..., min_length=1)
    phone_number_id: str = Field(..., min_length=1)
    api_version: str = Field(default="v18.0")


class CalendarChannelConfig(BaseModel):
    """Calendar used to mirror appointments created by actions (provider "google")."""

    model_config = ConfigDict(extra="allow")

    provider: str
    calendar_id: Optional[str] = None
    timezone: str = Field(default="UTC")
    credentials: dict[str, Any] = Field(default_factory=dict, description="Holds the OAuth access_token")


class ChannelConfig(BaseModel):
    """Per-user channel configuration; a missing section means unavailable."""

    email: Optional[EmailChannelConfig] = None
    whatsapp: Optional[WhatsAppChannelConfig] = None
    calendar: Optional[CalendarChannelConfig] = None
