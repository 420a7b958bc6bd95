"""
Proposal Models
----------------

Models for agent proposals and the audit trail of their application.

Models:
    - Agent: Registered extraction/validation agent
    - AgentState: Key/value JSON state per agent (run statistics, ...)
    - Proposal: One agent's proposed changes for a target
    - ProposalApplication: One block write of a proposal

Ids of proposals and agents are strings chosen by the producers;
applications use an integer key exposed as a string by the store.
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

# --- Third party imports ---
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

# --- Local imports ---
from dataagents.core.enums import ApplicationStatus, BlockType, ProposalStatus, ProposalType

from .base import Base, TimestampMixin


def _enum(enum_cls: type) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        values_callable=lambda x: [e.value for e in x],
        native_enum=False,
        length=32,
    )


def new_id() -> str:
    return uuid.uuid4().hex


class Agent(Base, TimestampMixin):
    """
    Registered agent.

    Attributes:
        id: Agent id used in proposals
        name: Display name
        agent_type: Kind of agent (extractor, validator, ...)
        is_active: Whether the agent still produces proposals
    """

    __tablename__ = "agents"
    __table_args__ = (CheckConstraint("name != ''", name="ck_agent_non_empty_name"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    agent_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    proposals: Mapped[List["Proposal"]] = relationship("Proposal", back_populates="agent")
    states: Mapped[List["AgentState"]] = relationship(
        "AgentState", back_populates="agent", cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def __repr__(self) -> str:
        return f"<Agent(id={self.id}, name={self.name})>"


class AgentState(Base):
    """JSON value stored under (agent_id, key)."""

    __tablename__ = "agent_states"
    __table_args__ = (UniqueConstraint("agent_id", "key", name="uq_agent_state_key"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    agent_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    agent: Mapped["Agent"] = relationship("Agent", back_populates="states")

    def __repr__(self) -> str:
        return f"<AgentState(agent_id={self.agent_id}, key={self.key})>"


class Proposal(Base, TimestampMixin):
    """
    Proposed changes of one agent for one target.

    Attributes:
        id: Proposal id
        agent_id: Producing agent
        proposal_type: NEW_EVENT, EVENT_UPDATE, ...
        status: Review status
        event_id / edition_id / race_id: Target ids (empty for new entities)
        target_key: "event:edition:race" lookup key
        changes: Field -> {old, new, confidence}
        approved_blocks: Block -> approved flag
        confidence: Overall confidence in [0, 1]
        internal: Built from the platform's own data
        status_reason: Why the status last changed (archive reason, ...)
    """

    __tablename__ = "proposals"
    __table_args__ = (
        CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name="ck_proposal_confidence_range"
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    agent_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("agents.id"), nullable=False, index=True
    )
    proposal_type: Mapped[ProposalType] = mapped_column(_enum(ProposalType), nullable=False)
    status: Mapped[ProposalStatus] = mapped_column(
        _enum(ProposalStatus), default=ProposalStatus.PENDING, nullable=False, index=True
    )
    event_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    edition_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    race_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    target_key: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    changes: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    approved_blocks: Mapped[Dict[str, bool]] = mapped_column(JSON, nullable=False, default=dict)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    agent: Mapped["Agent"] = relationship("Agent", back_populates="proposals")
    applications: Mapped[List["ProposalApplication"]] = relationship(
        "ProposalApplication",
        back_populates="proposal",
        cascade="all, delete-orphan",
        order_by="ProposalApplication.id",
    )

    def __repr__(self) -> str:
        return (
            f"<Proposal(id={self.id}, type={self.proposal_type}, "
            f"status={self.status}, target={self.target_key})>"
        )


class ProposalApplication(Base, TimestampMixin):
    """
    One block write of a proposal.

    Attributes:
        id: Integer key (exposed as a string)
        proposal_id: Owning proposal
        block_type: Written block, NULL for legacy whole-proposal applications
        status: PENDING, APPLIED or FAILED
        applied_changes: Field -> value written
        applied_at: When the write succeeded
        error_message: Last failure message
        replay_count: Number of replays
        logs: Audit lines
    """

    __tablename__ = "proposal_applications"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    proposal_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    block_type: Mapped[Optional[BlockType]] = mapped_column(
        _enum(BlockType), nullable=True, index=True
    )
    status: Mapped[ApplicationStatus] = mapped_column(
        _enum(ApplicationStatus), default=ApplicationStatus.PENDING, nullable=False, index=True
    )
    applied_changes: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    replay_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    logs: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    proposal: Mapped["Proposal"] = relationship("Proposal", back_populates="applications")

    def __repr__(self) -> str:
        return (
            f"<ProposalApplication(id={self.id}, proposal_id={self.proposal_id}, "
            f"block={self.block_type}, status={self.status})>"
        )
