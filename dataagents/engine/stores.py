#!/usr/bin/env python3
"""
stores.py
---------
Store contracts used by the engine.

The engine only talks to persistence through these protocols. The SQLAlchemy
implementations live in dataagents.database.store and
dataagents.database.entity_store; tests may supply in-memory ones.
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

# --- Local imports ---
from dataagents.core.enums import ApplicationStatus, BlockType, ProposalStatus
from dataagents.engine.models import Proposal, ProposalApplication, TargetKey, WriteResult


@runtime_checkable
class ProposalStore(Protocol):
    """Proposal and application persistence."""

    def find_pending_by_target_key(self, key: TargetKey) -> List[Proposal]:
        """Open (PENDING or PARTIALLY_APPROVED) proposals for ``key``, oldest first."""
        ...

    def find_by_target_key(self, key: TargetKey) -> List[Proposal]:
        """Every proposal for ``key`` regardless of status, oldest first."""
        ...

    def list_pending_target_keys(self) -> List[TargetKey]:
        """Targets with at least one open proposal, by oldest open proposal."""
        ...

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        ...

    def update_status(
        self, proposal_id: str, status: ProposalStatus, reason: Optional[str] = None
    ) -> Proposal:
        """
        Raises:
            ValidationError: On a transition out of a terminal status
        """
        ...

    def update_approved_blocks(
        self, proposal_id: str, blocks: Mapping[BlockType, bool]
    ) -> Proposal:
        ...

    def create_application(
        self,
        proposal_id: str,
        block_type: Optional[BlockType],
        applied_changes: Dict[str, Any],
    ) -> ProposalApplication:
        ...

    def get_application(self, application_id: str) -> Optional[ProposalApplication]:
        ...

    def find_applications(
        self, proposal_ids: Sequence[str], block_type: Optional[BlockType] = None
    ) -> List[ProposalApplication]:
        """Applications of ``proposal_ids``, oldest first."""
        ...

    def update_application(
        self,
        application_id: str,
        status: ApplicationStatus,
        error: Optional[str] = None,
        applied_changes: Optional[Dict[str, Any]] = None,
        log: Optional[str] = None,
    ) -> ProposalApplication:
        ...

    def reset_application(
        self,
        application_id: str,
        applied_changes: Optional[Dict[str, Any]] = None,
        log: Optional[str] = None,
    ) -> ProposalApplication:
        """Move an application back to PENDING and bump its replay count."""
        ...


@runtime_checkable
class EntityStore(Protocol):
    """Downstream event database, written one block at a time."""

    def upsert_block(
        self, block_type: BlockType, target_key: TargetKey, fields: Dict[str, Any]
    ) -> WriteResult:
        """
        Create or update the record(s) of ``block_type`` for ``target_key``.

        Raises:
            StoreError: With kind constraint_violation, not_found, timeout
                or unreachable
        """
        ...

    def get_event_flags(self, event_id: str) -> Dict[str, Any]:
        """Flags of an event, e.g. {"is_featured": True}."""
        ...

    def get_edition_flags(self, edition_id: str) -> Dict[str, Any]:
        """Flags of an edition, e.g. {"customer_type": "PREMIUM", "registrants_number": None}."""
        ...
