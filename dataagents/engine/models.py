#!/usr/bin/env python3
"""
models.py
-------------------
In-memory domain objects of the proposal engine.

Classes:
    - TargetKey: Logical entity a proposal targets
    - Proposal: One agent's proposed changes
    - ValueCandidate / ConsolidatedField: Reconciled view of one field
    - WorkingGroup: All proposals for a target, consolidated
    - ProposalApplication: One block write and its audit trail
    - WriteResult: What the entity store did with a block
    - BlockOutcome / ApplyResult: Structured executor results

These objects are plain dataclasses; persistence lives in
dataagents.database and is reached only through the store protocols.
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

# --- Local imports ---
from dataagents.blocks.fields import blocks_for_fields, get_block_for_field
from dataagents.blocks.graph import coerce_block_type
from dataagents.core.enums import (
    ApplicationStatus,
    BlockType,
    ProposalStatus,
    ProposalType,
)
from dataagents.core.exceptions import ConflictError, ValidationError
from dataagents.engine.changes import (
    ChangeValue,
    FieldChange,
    parse_changes,
    validate_confidence,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _optional_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


# ═══════════════════════════════════════════════════════════════════════════
# TARGETS & PROPOSALS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TargetKey:
    """
    Logical entity targeted by proposals.

    Ids are kept as strings; a NEW_EVENT proposal has no ids yet.
    """

    event_id: Optional[str] = None
    edition_id: Optional[str] = None
    race_id: Optional[str] = None

    @classmethod
    def of(cls, event_id: Any = None, edition_id: Any = None, race_id: Any = None) -> "TargetKey":
        return cls(_optional_id(event_id), _optional_id(edition_id), _optional_id(race_id))

    @classmethod
    def parse(cls, text: str) -> "TargetKey":
        """Inverse of as_string()."""
        parts = (text.split(":") + ["", "", ""])[:3]
        return cls.of(*parts)

    def as_string(self) -> str:
        """Render as ``event:edition:race`` with empty slots for missing ids."""
        return ":".join(part or "" for part in (self.event_id, self.edition_id, self.race_id))

    def __str__(self) -> str:
        return self.as_string()


@dataclass
class Proposal:
    """
    One agent's proposed changes for a target.

    Attributes:
        id: Proposal id
        agent_id: Agent that produced the proposal
        target_key: Targeted entity
        type: Proposal type
        status: Review status
        changes: Field name -> FieldChange
        approved_blocks: Block -> approved flag set by reviewers
        confidence: Overall confidence in [0, 1]
        created_at: Creation instant (FIFO and tie-break order)
        internal: Built from the platform's own data (e.g. attendee counts)
    """

    id: str
    agent_id: str
    target_key: TargetKey
    type: ProposalType
    status: ProposalStatus = ProposalStatus.PENDING
    changes: Dict[str, FieldChange] = field(default_factory=dict)
    approved_blocks: Dict[BlockType, bool] = field(default_factory=dict)
    confidence: float = 0.0
    created_at: datetime = field(default_factory=utcnow)
    internal: bool = False

    def __post_init__(self) -> None:
        validate_confidence(self.confidence)
        try:
            self.type = ProposalType(self.type)
            self.status = ProposalStatus(self.status)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        self.approved_blocks = normalize_approved_blocks(self.approved_blocks)
        if self.created_at.tzinfo is None:
            self.created_at = self.created_at.replace(tzinfo=timezone.utc)

    @classmethod
    def from_raw(
        cls,
        id: str,
        agent_id: str,
        target_key: TargetKey,
        type: Any,
        changes: Any,
        **kwargs: Any,
    ) -> "Proposal":
        """Build a proposal from a raw JSON changes map."""
        return cls(
            id=id,
            agent_id=agent_id,
            target_key=target_key,
            type=type,
            changes=parse_changes(changes),
            **kwargs,
        )

    def blocks(self) -> List[BlockType]:
        """Blocks this proposal contributes fields to."""
        return blocks_for_fields(self.changes)

    def is_block_approved(self, block: BlockType) -> bool:
        return self.approved_blocks.get(block, False) is True

    def field_confidence(self, name: str) -> float:
        change = self.changes[name]
        return change.confidence if change.confidence is not None else self.confidence

    @property
    def sort_key(self) -> tuple:
        return (self.created_at, self.id)


def normalize_approved_blocks(raw: Optional[Mapping[Any, Any]]) -> Dict[BlockType, bool]:
    """
    Coerce a raw approved-blocks mapping to BlockType keys.

    Raises:
        ValidationError: On an unknown block key
    """
    result: Dict[BlockType, bool] = {}
    for key, value in (raw or {}).items():
        block = coerce_block_type(key)
        if block is None:
            raise ValidationError(f"Unknown block type: {key}")
        result[block] = bool(value)
    return result


# ═══════════════════════════════════════════════════════════════════════════
# CONSOLIDATED VIEW
# ═══════════════════════════════════════════════════════════════════════════

class FieldState(str, Enum):
    CONSENSUS = "consensus"
    CONFLICTING = "conflicting"
    SINGLE_SOURCED = "single_sourced"


@dataclass
class ValueCandidate:
    """One distinct proposed value of a field and who backs it."""

    value: ChangeValue
    agent_ids: List[str] = field(default_factory=list)
    proposal_ids: List[str] = field(default_factory=list)
    max_confidence: float = 0.0

    @property
    def agent_count(self) -> int:
        return len(set(self.agent_ids))


@dataclass
class ConsolidatedField:
    """
    Candidates of one field across the pending proposals of a group.

    Consensus means at least two distinct agents agree on one value. When
    several values reach that bar, the one with more agents (then higher
    confidence) wins; an exact tie there is treated as a conflict.
    """

    field: str
    block: Optional[BlockType]
    candidates: List[ValueCandidate] = field(default_factory=list)

    def _consensus_candidate(self) -> Optional[ValueCandidate]:
        backed = [c for c in self.candidates if c.agent_count >= 2]
        if not backed:
            return None
        backed.sort(key=lambda c: (c.agent_count, c.max_confidence), reverse=True)
        if len(backed) > 1 and (
            backed[0].agent_count,
            backed[0].max_confidence,
        ) == (backed[1].agent_count, backed[1].max_confidence):
            return None
        return backed[0]

    @property
    def state(self) -> FieldState:
        if self._consensus_candidate() is not None:
            return FieldState.CONSENSUS
        if len(self.candidates) > 1:
            return FieldState.CONFLICTING
        return FieldState.SINGLE_SOURCED

    @property
    def consensus_value(self) -> Optional[ChangeValue]:
        candidate = self._consensus_candidate()
        return candidate.value if candidate is not None else None

    def resolved_value(self) -> ChangeValue:
        """
        Value to write for this field.

        Consensus value if any, otherwise the single highest-confidence
        candidate.

        Raises:
            ConflictError: If the top candidates tie on confidence
        """
        consensus = self._consensus_candidate()
        if consensus is not None:
            return consensus.value
        if not self.candidates:
            raise ConflictError(self.field, getattr(self.block, "value", None), "No candidate value")

        ranked = sorted(self.candidates, key=lambda c: c.max_confidence, reverse=True)
        if len(ranked) > 1 and ranked[0].max_confidence == ranked[1].max_confidence:
            raise ConflictError(
                self.field,
                getattr(self.block, "value", None),
                f"Field '{self.field}' needs manual resolution: "
                f"{len(ranked)} values tie at confidence {ranked[0].max_confidence}",
            )
        return ranked[0].value


@dataclass
class WorkingGroup:
    """
    Consolidated view of every proposal for one target.

    Only open proposals feed consolidated_changes and approved_blocks;
    historical proposals are carried for display only. Superseded proposals
    count towards consolidated_changes and approved_blocks but are not part
    of pending_proposals.
    """

    target_key: TargetKey
    pending_proposals: List[Proposal] = field(default_factory=list)
    historical_proposals: List[Proposal] = field(default_factory=list)
    superseded: Dict[str, str] = field(default_factory=dict)
    superseded_proposals: List[Proposal] = field(default_factory=list)
    consolidated_changes: Dict[str, ConsolidatedField] = field(default_factory=dict)
    approved_blocks: Dict[BlockType, bool] = field(default_factory=dict)

    @property
    def confidence(self) -> float:
        return max((p.confidence for p in self.pending_proposals), default=0.0)

    @property
    def proposal_type(self) -> Optional[ProposalType]:
        if not self.pending_proposals:
            return None
        return min(self.pending_proposals, key=lambda p: p.sort_key).type

    @property
    def oldest_created_at(self) -> Optional[datetime]:
        return min((p.created_at for p in self.pending_proposals), default=None)

    @property
    def proposal_ids(self) -> List[str]:
        return [p.id for p in self.pending_proposals]

    @property
    def is_empty(self) -> bool:
        return not self.pending_proposals

    def blocks(self) -> List[BlockType]:
        """Blocks with at least one consolidated field, in declaration order."""
        touched = {f.block for f in self.consolidated_changes.values()}
        return [block for block in BlockType if block in touched]

    def approved_block_list(self) -> List[BlockType]:
        return [block for block in BlockType if self.approved_blocks.get(block) is True]

    def fields_for_block(self, block: BlockType) -> List[ConsolidatedField]:
        return [f for f in self.consolidated_changes.values() if f.block == block]

    def proposals_for_block(self, block: BlockType) -> List[Proposal]:
        return [
            p for p in self.pending_proposals
            if any(get_block_for_field(name) == block for name in p.changes)
        ]


# ═══════════════════════════════════════════════════════════════════════════
# APPLICATIONS & RESULTS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ProposalApplication:
    """
    One block write of a proposal.

    block_type is None for legacy applications created before block-level
    approval existed.
    """

    id: str
    proposal_id: str
    block_type: Optional[BlockType]
    status: ApplicationStatus = ApplicationStatus.PENDING
    applied_changes: Dict[str, Any] = field(default_factory=dict)
    applied_at: Optional[datetime] = None
    error_message: Optional[str] = None
    replay_count: int = 0
    logs: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class WriteResult:
    """Result of EntityStore.upsert_block()."""

    block_type: BlockType
    target_key: TargetKey
    record_id: Optional[str] = None
    created: bool = False
    changed_fields: List[str] = field(default_factory=list)


class OutcomeStatus(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    BLOCKED = "blocked"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"


@dataclass
class BlockOutcome:
    block_type: Optional[BlockType]
    status: OutcomeStatus
    application_id: Optional[str] = None
    message: Optional[str] = None


@dataclass
class ApplyResult:
    """
    Structured result of an apply or replay.

    Attributes:
        success: Blocks written (or found already written with the same payload)
        failed: Blocks whose write failed
        blocked: Blocks with unresolved conflicts
        skipped: Blocks not attempted because a prerequisite failed or was blocked
        errors: "<application or proposal id>: message" entries
        applied_ids: Application ids that ended APPLIED
        failed_ids: Application ids that ended FAILED
        archived_ids: Superseded proposals archived before the writes
        outcomes: Per-block details, in execution order
    """

    success: int = 0
    failed: int = 0
    blocked: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    applied_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)
    archived_ids: List[str] = field(default_factory=list)
    outcomes: List[BlockOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.blocked == 0 and self.skipped == 0

    def merge(self, other: "ApplyResult") -> None:
        self.success += other.success
        self.failed += other.failed
        self.blocked += other.blocked
        self.skipped += other.skipped
        self.errors.extend(other.errors)
        self.applied_ids.extend(other.applied_ids)
        self.failed_ids.extend(other.failed_ids)
        self.archived_ids.extend(other.archived_ids)
        self.outcomes.extend(other.outcomes)

    def summary(self) -> str:
        return (
            f"{self.success} applied, {self.failed} failed, "
            f"{self.blocked} blocked, {self.skipped} skipped"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "failed": self.failed,
            "blocked": self.blocked,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "applied_ids": list(self.applied_ids),
            "failed_ids": list(self.failed_ids),
            "archived_ids": list(self.archived_ids),
            "outcomes": [
                {
                    "block_type": o.block_type.value if o.block_type else None,
                    "status": o.status.value,
                    "application_id": o.application_id,
                    "message": o.message,
                }
                for o in self.outcomes
            ],
        }
