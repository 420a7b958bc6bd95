"""Add agent state storage and proposal status reasons.

AgentState keeps per-agent JSON values (scheduler run statistics).
Proposal.status_reason records why a proposal was archived or rejected.

Revision ID: 20261002_agent_states
Revises: 20260918_initial
Create Date: 2026-10-02
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261002_agent_states"
down_revision = "20260918_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create agent_states and add proposals.status_reason."""
    op.create_table(
        "agent_states",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("agent_id", sa.String(length=64), nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["agent_id"], ["agents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("agent_id", "key", name="uq_agent_state_key"),
    )
    op.create_index("ix_agent_states_agent_id", "agent_states", ["agent_id"])

    with op.batch_alter_table("proposals") as batch_op:
        batch_op.add_column(sa.Column("status_reason", sa.Text(), nullable=True))


def downgrade() -> None:
    """Drop agent_states and proposals.status_reason."""
    with op.batch_alter_table("proposals") as batch_op:
        batch_op.drop_column("status_reason")

    op.drop_index("ix_agent_states_agent_id", table_name="agent_states")
    op.drop_table("agent_states")
