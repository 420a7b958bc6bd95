"""Initial proposal schema.

Creates agents, proposals and proposal_applications.

Revision ID: 20260918_initial
Revises:
Create Date: 2026-09-18
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20260918_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create the proposal tables."""
    op.create_table(
        "agents",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("agent_type", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("name != ''", name="ck_agent_non_empty_name"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_agents_created_at", "agents", ["created_at"])

    op.create_table(
        "proposals",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("agent_id", sa.String(length=64), nullable=False),
        sa.Column("proposal_type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("event_id", sa.String(length=64), nullable=True),
        sa.Column("edition_id", sa.String(length=64), nullable=True),
        sa.Column("race_id", sa.String(length=64), nullable=True),
        sa.Column("target_key", sa.String(length=200), nullable=False),
        sa.Column("changes", sa.JSON(), nullable=False),
        sa.Column("approved_blocks", sa.JSON(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("internal", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name="ck_proposal_confidence_range"
        ),
        sa.ForeignKeyConstraint(["agent_id"], ["agents.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_proposals_agent_id", "proposals", ["agent_id"])
    op.create_index("ix_proposals_status", "proposals", ["status"])
    op.create_index("ix_proposals_event_id", "proposals", ["event_id"])
    op.create_index("ix_proposals_edition_id", "proposals", ["edition_id"])
    op.create_index("ix_proposals_target_key", "proposals", ["target_key"])
    op.create_index("ix_proposals_created_at", "proposals", ["created_at"])

    op.create_table(
        "proposal_applications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("proposal_id", sa.String(length=64), nullable=False),
        sa.Column("block_type", sa.String(length=32), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("applied_changes", sa.JSON(), nullable=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("replay_count", sa.Integer(), nullable=False),
        sa.Column("logs", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_proposal_applications_proposal_id", "proposal_applications", ["proposal_id"]
    )
    op.create_index(
        "ix_proposal_applications_block_type", "proposal_applications", ["block_type"]
    )
    op.create_index("ix_proposal_applications_status", "proposal_applications", ["status"])
    op.create_index(
        "ix_proposal_applications_created_at", "proposal_applications", ["created_at"]
    )


def downgrade() -> None:
    """Drop the proposal tables."""
    op.drop_table("proposal_applications")
    op.drop_table("proposals")
    op.drop_table("agents")
