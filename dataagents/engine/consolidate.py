#!/usr/bin/env python3
"""
consolidate.py
--------------
Merge the proposals of one target into a WorkingGroup.

Several agents may propose changes for the same event/edition. This module
reconciles them field by field so that reviewers and the executor see one
view per target.

Key Features:
    - Splits open proposals from historical ones (only open ones count)
    - Groups structurally equal values and tracks which agents back them
    - Folds per-proposal block approvals into group approvals
    - Drops proposals whose changes are contained in another proposal

Redundant proposals still back their values: consensus and approvals are
computed over every open proposal, and only then are the redundant ones
taken out of pending_proposals.

Consensus rules:
    consensus       at least two distinct agents agree on one value
    conflicting     several values, none reaching consensus
    single_sourced  one value only

Usage:
    from dataagents.engine.consolidate import ConsolidationEngine

    engine = ConsolidationEngine(order_sensitive_lists=False, logger=logger)
    group = engine.consolidate(proposal_store.find_by_target_key(key))
    for name, fld in group.consolidated_changes.items():
        print(name, fld.state.value)
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from collections import OrderedDict
from typing import Dict, Hashable, Iterable, List, Optional

# --- Local imports ---
from dataagents.blocks.fields import get_block_for_field
from dataagents.core.enums import BlockType
from dataagents.core.exceptions import ValidationError
from dataagents.core.logging_manager import DataAgentsLogger, safe_logger
from dataagents.engine.changes import canonical
from dataagents.engine.models import (
    ConsolidatedField,
    Proposal,
    TargetKey,
    ValueCandidate,
    WorkingGroup,
)


# =============================================================================
# Grouping
# =============================================================================

def group_by_target(proposals: Iterable[Proposal]) -> Dict[TargetKey, List[Proposal]]:
    """
    Bucket proposals by target key.

    Targets appear in order of their first proposal; within a target the
    input order is kept.
    """
    groups: Dict[TargetKey, List[Proposal]] = OrderedDict()
    for proposal in proposals:
        groups.setdefault(proposal.target_key, []).append(proposal)
    return dict(groups)


# =============================================================================
# Engine
# =============================================================================

class ConsolidationEngine:
    """
    Builds WorkingGroups from raw proposals.

    Attributes:
        order_sensitive_lists: Compare list values (races, ...) in order;
            when False they compare as multisets
        logger: Optional logger
    """

    def __init__(
        self,
        order_sensitive_lists: bool = False,
        logger: Optional[DataAgentsLogger] = None,
    ) -> None:
        self.order_sensitive_lists = order_sensitive_lists
        self.logger = logger

    def _key(self, value) -> Hashable:
        return canonical(value, self.order_sensitive_lists)

    # -------------------------------------------------------------------------
    # Deduplication
    # -------------------------------------------------------------------------

    def is_subset(self, a: Proposal, b: Proposal) -> bool:
        """True when every field proposed by ``a`` has an equal new value in ``b``."""
        for name, change in a.changes.items():
            other = b.changes.get(name)
            if other is None or self._key(change.new) != self._key(other.new):
                return False
        return True

    def _dominates(self, b: Proposal, a: Proposal) -> bool:
        """``b`` makes ``a`` redundant."""
        if a.id == b.id or not self.is_subset(a, b):
            return False
        if self.is_subset(b, a):
            # Identical change sets: the oldest survives.
            return b.sort_key < a.sort_key
        return True

    def deduplicate(self, pending: List[Proposal]) -> Dict[str, str]:
        """
        Find redundant proposals.

        Args:
            pending: Open proposals, oldest first

        Returns:
            Mapping of superseded proposal id -> id of the surviving
            proposal that contains it
        """
        survivors = [
            p for p in pending if not any(self._dominates(other, p) for other in pending)
        ]
        survivor_ids = {p.id for p in survivors}
        superseded: Dict[str, str] = {}
        for proposal in pending:
            if proposal.id in survivor_ids:
                continue
            for survivor in survivors:
                if self._dominates(survivor, proposal):
                    superseded[proposal.id] = survivor.id
                    break
        return superseded

    # -------------------------------------------------------------------------
    # Consolidation
    # -------------------------------------------------------------------------

    def _consolidate_fields(self, pending: List[Proposal]) -> Dict[str, ConsolidatedField]:
        fields: Dict[str, ConsolidatedField] = {}
        buckets: Dict[str, Dict[Hashable, ValueCandidate]] = {}

        for proposal in pending:
            for name, change in proposal.changes.items():
                if name not in fields:
                    fields[name] = ConsolidatedField(field=name, block=get_block_for_field(name))
                    buckets[name] = OrderedDict()

                key = self._key(change.new)
                candidate = buckets[name].get(key)
                if candidate is None:
                    candidate = ValueCandidate(value=change.new)
                    buckets[name][key] = candidate
                    fields[name].candidates.append(candidate)

                if proposal.agent_id not in candidate.agent_ids:
                    candidate.agent_ids.append(proposal.agent_id)
                candidate.proposal_ids.append(proposal.id)
                candidate.max_confidence = max(
                    candidate.max_confidence, proposal.field_confidence(name)
                )
        return fields

    @staticmethod
    def _fold_approvals(pending: List[Proposal]) -> Dict[BlockType, bool]:
        approved: Dict[BlockType, bool] = {}
        for block in BlockType:
            contributors = [p for p in pending if block in p.blocks()]
            approved[block] = bool(contributors) and all(
                p.is_block_approved(block) for p in contributors
            )
        return approved

    def consolidate(
        self,
        proposals: Iterable[Proposal],
        target_key: Optional[TargetKey] = None,
    ) -> WorkingGroup:
        """
        Build the WorkingGroup of one target.

        Args:
            proposals: Every proposal of the target, any status
            target_key: Target of an empty group (defaults to the proposals' key)

        Returns:
            WorkingGroup; empty input gives an empty group

        Raises:
            ValidationError: If the proposals target different keys
        """
        proposals = list(proposals)
        keys = {p.target_key for p in proposals}
        if len(keys) > 1:
            raise ValidationError(
                "Cannot consolidate proposals of different targets: "
                + ", ".join(sorted(k.as_string() for k in keys))
            )
        key = next(iter(keys)) if keys else (target_key or TargetKey())

        ordered = sorted(proposals, key=lambda p: p.sort_key)
        pending = [p for p in ordered if p.status.is_open]
        historical = [p for p in ordered if not p.status.is_open]

        consolidated = self._consolidate_fields(pending)
        approved = self._fold_approvals(pending)

        superseded = self.deduplicate(pending)
        remaining = [p for p in pending if p.id not in superseded]

        group = WorkingGroup(
            target_key=key,
            pending_proposals=remaining,
            historical_proposals=historical,
            superseded=superseded,
            superseded_proposals=[p for p in pending if p.id in superseded],
            consolidated_changes=consolidated,
            approved_blocks=approved,
        )

        safe_logger(self.logger).log_debug(
            "Consolidated working group",
            {
                "target_key": key.as_string(),
                "pending": len(remaining),
                "historical": len(historical),
                "superseded": len(superseded),
                "fields": len(group.consolidated_changes),
                "approved_blocks": [b.value for b in group.approved_block_list()],
            },
        )
        return group

    def consolidate_all(self, proposals: Iterable[Proposal]) -> List[WorkingGroup]:
        """Consolidate a mixed batch, one WorkingGroup per target."""
        return [
            self.consolidate(items, target_key=key)
            for key, items in group_by_target(proposals).items()
        ]
