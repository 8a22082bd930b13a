"""
SQLAlchemy models for PostgreSQL persistence.

Workflows own their nodes and connections (cascade delete). Executions
reference their workflow by id only, so execution history outlives the
workflow it ran.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
    }


class WorkflowModel(Base):
    """Stores workflow definitions."""

    __tablename__ = "workflows"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    owner_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    trigger_type: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger_config: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="inactive")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    nodes: Mapped[list["WorkflowNodeModel"]] = relationship(
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    connections: Mapped[list["WorkflowConnectionModel"]] = relationship(
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="WorkflowConnectionModel.position",
    )

    __table_args__ = (
        Index("ix_workflows_trigger_status", "trigger_type", "status"),
    )


class WorkflowNodeModel(Base):
    """One vertex of a workflow graph."""

    __tablename__ = "workflow_nodes"

    pk: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workflow_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    node_id: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    config: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    position_x: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    position_y: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    workflow: Mapped[WorkflowModel] = relationship(back_populates="nodes")

    __table_args__ = (
        UniqueConstraint("workflow_id", "node_id", name="uq_workflow_node"),
    )


class WorkflowConnectionModel(Base):
    """A directed edge between two nodes of the same workflow."""

    __tablename__ = "workflow_connections"

    pk: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workflow_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    connection_id: Mapped[str] = mapped_column(String(255), nullable=False)
    source_node_id: Mapped[str] = mapped_column(String(255), nullable=False)
    target_node_id: Mapped[str] = mapped_column(String(255), nullable=False)
    connection_type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    # Listing order; drives traversal order of sibling branches
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    workflow: Mapped[WorkflowModel] = relationship(back_populates="connections")


class WorkflowExecutionModel(Base):
    """Execution ledger entry."""

    __tablename__ = "workflow_executions"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    workflow_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running", index=True)
    trigger_data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    variables: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    acting_user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    visited_node_ids: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)

    checkpoint: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    resume_after: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_workflow_executions_workflow_started", "workflow_id", "started_at"),
        Index("ix_workflow_executions_status_resume", "status", "resume_after"),
    )


class ChannelConfigModel(Base):
    """Per-user notification channel credentials."""

    __tablename__ = "automation_channel_configs"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    config: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )
