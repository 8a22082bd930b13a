"""Initial database schema

Revision ID: 20260901_000001
Revises:
Create Date: 2026-09-01

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '20260901_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create workflows table
    op.create_table(
        'workflows',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('owner_id', sa.String(255), nullable=True),
        sa.Column('trigger_type', sa.String(50), nullable=False),
        sa.Column('trigger_config', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('status', sa.String(20), nullable=False, server_default='inactive'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_workflows_owner_id', 'workflows', ['owner_id'])
    op.create_index('ix_workflows_trigger_status', 'workflows', ['trigger_type', 'status'])

    # Create workflow_nodes table
    op.create_table(
        'workflow_nodes',
        sa.Column('pk', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('workflow_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('node_id', sa.String(255), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('config', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('position_x', sa.Float(), nullable=False, server_default='0'),
        sa.Column('position_y', sa.Float(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('pk'),
        sa.ForeignKeyConstraint(['workflow_id'], ['workflows.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('workflow_id', 'node_id', name='uq_workflow_node'),
    )
    op.create_index('ix_workflow_nodes_workflow_id', 'workflow_nodes', ['workflow_id'])

    # Create workflow_connections table
    op.create_table(
        'workflow_connections',
        sa.Column('pk', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('workflow_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('connection_id', sa.String(255), nullable=False),
        sa.Column('source_node_id', sa.String(255), nullable=False),
        sa.Column('target_node_id', sa.String(255), nullable=False),
        sa.Column('connection_type', sa.String(10), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('pk'),
        sa.ForeignKeyConstraint(['workflow_id'], ['workflows.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_workflow_connections_workflow_id', 'workflow_connections', ['workflow_id'])

    # Create workflow_executions table (no FK: history outlives the workflow)
    op.create_table(
        'workflow_executions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('workflow_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='running'),
        sa.Column('trigger_data', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('variables', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('acting_user_id', sa.String(255), nullable=True),
        sa.Column('visited_node_ids', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('checkpoint', postgresql.JSONB(), nullable=True),
        sa.Column('resume_after', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_workflow_executions_workflow_id', 'workflow_executions', ['workflow_id'])
    op.create_index('ix_workflow_executions_status', 'workflow_executions', ['status'])
    op.create_index('ix_workflow_executions_workflow_started', 'workflow_executions', ['workflow_id', 'started_at'])
    op.create_index('ix_workflow_executions_status_resume', 'workflow_executions', ['status', 'resume_after'])

    # Create automation_channel_configs table
    op.create_table(
        'automation_channel_configs',
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('config', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('user_id'),
    )


def downgrade() -> None:
    op.drop_table('automation_channel_configs')
    op.drop_table('workflow_executions')
    op.drop_table('workflow_connections')
    op.drop_table('workflow_nodes')
    op.drop_table('workflows')
