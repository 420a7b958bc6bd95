#!/usr/bin/env python3
"""
proposal_manager.py
--------------------
Persistence of Proposal rows.

Proposals are written by agents and read by the engine grouped by target
key. Status changes are checked against the allowed transitions: once a
proposal is REJECTED or ARCHIVED it can no longer move.

Key Features:
    - Create proposals with validated change maps and confidence
    - Look up proposals by target key (all or open ones), oldest first
    - List targets with open proposals, FIFO by their oldest open proposal
    - Guarded status transitions and block approvals

Usage:
    proposal_mgr = ProposalManager(session, logger)
    proposal = proposal_mgr.create(
        agent_id="ffa-scraper",
        proposal_type=ProposalType.EDITION_UPDATE,
        target_key=TargetKey.of(12, 34),
        changes={"startDate": {"old": None, "new": "2025-06-01T08:00:00Z"}},
        confidence=0.9,
    )
    proposal_mgr.update_status(proposal.id, ProposalStatus.REJECTED, reason="duplicate")
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

# --- Third party imports ---
from sqlalchemy import func

# --- Local imports ---
from dataagents.core.enums import ProposalStatus, ProposalType
from dataagents.core.exceptions import ValidationError
from dataagents.database.decorators import DatabaseOperation, handle_db_errors
from dataagents.database.models import Agent, Proposal, as_utc
from dataagents.engine.changes import changes_to_dict, parse_changes, validate_confidence
from dataagents.engine.models import TargetKey, normalize_approved_blocks

from .base_manager import BaseManager


OPEN_STATUSES = [s for s in ProposalStatus if s.is_open]


def _blocks_to_json(blocks: Mapping[Any, bool]) -> Dict[str, bool]:
    return {block.value: bool(flag) for block, flag in normalize_approved_blocks(blocks).items()}


class ProposalManager(BaseManager):
    """CRUD and status transitions for proposals."""

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create(
        self,
        agent_id: str,
        proposal_type: Any,
        target_key: TargetKey,
        changes: Mapping[str, Any],
        confidence: float = 0.0,
        approved_blocks: Optional[Mapping[Any, bool]] = None,
        internal: bool = False,
        proposal_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        status: ProposalStatus = ProposalStatus.PENDING,
    ) -> Proposal:
        """
        Insert a proposal.

        Args:
            agent_id: Producing agent (registered on first use)
            proposal_type: ProposalType or its value
            target_key: Targeted entity
            changes: Raw changes map ``field -> {old, new, confidence}``
            confidence: Overall confidence in [0, 1]
            approved_blocks: Initial block approvals
            internal: Built from the platform's own data
            proposal_id: Explicit id (generated when omitted)
            created_at: Explicit creation instant (now when omitted)
            status: Initial status

        Returns:
            The new Proposal row

        Raises:
            ValidationError: On an invalid type, change map, block or confidence
        """
        try:
            proposal_type = ProposalType(proposal_type)
            status = ProposalStatus(status)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        validate_confidence(confidence)
        normalized_changes = changes_to_dict(parse_changes(changes))
        blocks = _blocks_to_json(approved_blocks or {})

        with DatabaseOperation(
            self.logger,
            "create_proposal",
            details={"agent_id": agent_id, "target_key": target_key.as_string()},
        ):
            self._get_or_create(Agent, {"id": agent_id}, {"name": agent_id})
            proposal = Proposal(
                agent_id=agent_id,
                proposal_type=proposal_type,
                status=status,
                event_id=target_key.event_id,
                edition_id=target_key.edition_id,
                race_id=target_key.race_id,
                target_key=target_key.as_string(),
                changes=normalized_changes,
                approved_blocks=blocks,
                confidence=float(confidence),
                internal=internal,
            )
            if proposal_id is not None:
                proposal.id = proposal_id
            if created_at is not None:
                proposal.created_at = as_utc(created_at)
            self.session.add(proposal)
            self.session.flush()
            return proposal

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @handle_db_errors
    def get(self, proposal_id: str) -> Optional[Proposal]:
        return self._get_by_id(Proposal, proposal_id)

    @handle_db_errors
    def find_by_target_key(self, key: TargetKey, open_only: bool = False) -> List[Proposal]:
        """Proposals for ``key``, oldest first (created_at, then id)."""
        query = self.session.query(Proposal).filter(Proposal.target_key == key.as_string())
        if open_only:
            query = query.filter(Proposal.status.in_(OPEN_STATUSES))
        return query.order_by(Proposal.created_at, Proposal.id).all()

    def find_open_by_target_key(self, key: TargetKey) -> List[Proposal]:
        return self.find_by_target_key(key, open_only=True)

    @handle_db_errors
    def list_open_target_keys(self) -> List[TargetKey]:
        """Targets with at least one open proposal, FIFO by their oldest open proposal."""
        oldest = func.min(Proposal.created_at)
        rows = (
            self.session.query(Proposal.target_key, oldest)
            .filter(Proposal.status.in_(OPEN_STATUSES))
            .group_by(Proposal.target_key)
            .order_by(oldest, Proposal.target_key)
            .all()
        )
        return [TargetKey.parse(target) for target, _ in rows]

    @handle_db_errors
    def count_by_status(self) -> Dict[str, int]:
        rows = (
            self.session.query(Proposal.status, func.count(Proposal.id))
            .group_by(Proposal.status)
            .all()
        )
        return {status.value: count for status, count in rows}

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    def _require(self, proposal_id: str) -> Proposal:
        proposal = self.get(proposal_id)
        if proposal is None:
            raise ValidationError(f"Proposal not found: {proposal_id}")
        return proposal

    def update_status(
        self, proposal_id: str, status: ProposalStatus, reason: Optional[str] = None
    ) -> Proposal:
        """
        Move a proposal to ``status``.

        Raises:
            ValidationError: If the proposal does not exist or the transition
                is not allowed (e.g. out of REJECTED or ARCHIVED)
        """
        status = ProposalStatus(status)
        proposal = self._require(proposal_id)
        if not proposal.status.can_transition_to(status):
            raise ValidationError(
                f"Illegal status transition for {proposal_id}: "
                f"{proposal.status.value} -> {status.value}"
            )

        with DatabaseOperation(
            self.logger,
            "update_proposal_status",
            details={"proposal_id": proposal_id, "status": status.value},
        ):
            proposal.status = status
            if reason is not None:
                proposal.status_reason = reason
            self.session.flush()
            return proposal

    def update_approved_blocks(
        self, proposal_id: str, blocks: Mapping[Any, bool]
    ) -> Proposal:
        """
        Merge ``blocks`` into the proposal's approved blocks.

        Raises:
            ValidationError: If the proposal does not exist, is closed, or a
                block key is unknown
        """
        proposal = self._require(proposal_id)
        if proposal.status.is_terminal:
            raise ValidationError(
                f"Cannot approve blocks of {proposal.status.value} proposal {proposal_id}"
            )
        merged = dict(proposal.approved_blocks or {})
        merged.update(_blocks_to_json(blocks))

        with DatabaseOperation(
            self.logger,
            "update_approved_blocks",
            details={"proposal_id": proposal_id, "blocks": merged},
        ):
            proposal.approved_blocks = merged
            self.session.flush()
            return proposal
