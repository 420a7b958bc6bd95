#!/usr/bin/env python3
"""
validate.py
-----------
Checks run before a WorkingGroup is applied.

Classes:
    RequiredBlockValidator: Required blocks per proposal type
    AutoValidationRules: Whether a group may be applied unattended

Exclusion reasons (auto-validation):
    new_event         the target has no event yet (new events are reviewed by hand)
    other_agent       a pending proposal comes from an agent not allowed
    low_confidence    group confidence below the configured minimum
    featured_event    the target event is featured
    premium_customer  the target edition belongs to a customer, unless an
                      internal proposal only fills an empty registrantsNumber
    new_races         races would be created (no race id)

The scheduler also reports no_blocks (nothing approved or approvable) and
missing_required_blocks (the proposal type needs a block that cannot be
approved).

Usage:
    validator = RequiredBlockValidator()
    validator.ensure(group)            # raises RequiredBlocksError

    rules = AutoValidationRules(settings.auto_apply, entity_store)
    verdict = rules.evaluate(group)
    if not verdict.eligible:
        print(verdict.reason.value, verdict.message)
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

# --- Local imports ---
from dataagents.blocks.graph import (
    REQUIRED_BLOCKS,
    RequiredBlocksResult,
    validate_required_blocks,
)
from dataagents.core.config import AutoApplySettings
from dataagents.core.enums import BlockType, ProposalType
from dataagents.core.exceptions import RequiredBlocksError, StoreError
from dataagents.core.logging_manager import DataAgentsLogger, safe_logger
from dataagents.engine.models import Proposal, WorkingGroup
from dataagents.engine.stores import EntityStore


REGISTRANTS_FIELD = "registrantsNumber"


class RequiredBlockValidator:
    """Validates approved blocks of a group against its proposal type."""

    @staticmethod
    def required_blocks(proposal_type: Optional[ProposalType]) -> List[BlockType]:
        if proposal_type is None:
            return []
        return list(REQUIRED_BLOCKS.get(ProposalType(proposal_type), []))

    def check(self, group: WorkingGroup) -> RequiredBlocksResult:
        return validate_required_blocks(
            group.approved_block_list(), group.proposal_type, key=lambda block: block
        )

    def ensure(self, group: WorkingGroup) -> None:
        """
        Raises:
            RequiredBlocksError: Listing the missing blocks
        """
        result = self.check(group)
        if not result.valid:
            ptype = group.proposal_type.value if group.proposal_type else None
            raise RequiredBlocksError(ptype, result.missing)


# =============================================================================
# Auto-validation
# =============================================================================

class ExclusionReason(str, Enum):
    OTHER_AGENT = "other_agent"
    LOW_CONFIDENCE = "low_confidence"
    FEATURED_EVENT = "featured_event"
    PREMIUM_CUSTOMER = "premium_customer"
    NEW_RACES = "new_races"
    NEW_EVENT = "new_event"
    NO_BLOCKS = "no_blocks"
    MISSING_REQUIRED_BLOCKS = "missing_required_blocks"

    @classmethod
    def choices(cls) -> List[str]:
        return [reason.value for reason in cls]


@dataclass
class Eligibility:
    eligible: bool
    reason: Optional[ExclusionReason] = None
    message: str = ""

    @classmethod
    def ok(cls) -> "Eligibility":
        return cls(eligible=True)

    @classmethod
    def excluded(cls, reason: ExclusionReason, message: str) -> "Eligibility":
        return cls(eligible=False, reason=reason, message=message)


def _new_value(proposal: Proposal, name: str) -> Any:
    change = proposal.changes.get(name)
    return change.new.raw if change is not None else None


def count_new_races(proposal: Proposal) -> int:
    """Races the proposal would create (entries without an id)."""
    count = 0
    to_add = _new_value(proposal, "racesToAdd")
    if isinstance(to_add, list):
        count += len(to_add)

    for name, id_keys in (("racesToUpdate", ("raceId",)), ("races", ("id", "raceId"))):
        races = _new_value(proposal, name)
        if isinstance(races, list):
            count += sum(
                1 for race in races
                if isinstance(race, dict) and not any(race.get(k) for k in id_keys)
            )
    return count


class AutoValidationRules:
    """
    Eligibility of a WorkingGroup for unattended application.

    Flags are read from the entity store on every call; nothing is cached.
    A failed flag lookup excludes the group.
    """

    def __init__(
        self,
        settings: AutoApplySettings,
        entity_store: Optional[EntityStore] = None,
        logger: Optional[DataAgentsLogger] = None,
    ) -> None:
        self.settings = settings
        self.entity_store = entity_store
        self.logger = logger

    def enabled_blocks(self) -> List[BlockType]:
        """Blocks the scheduler may approve on its own."""
        toggles = {
            BlockType.EVENT: True,
            BlockType.EDITION: self.settings.enable_edition_block,
            BlockType.ORGANIZER: self.settings.enable_organizer_block,
            BlockType.RACES: self.settings.enable_races_block,
        }
        return [block for block, enabled in toggles.items() if enabled]

    def approvable_blocks(self, group: WorkingGroup) -> List[BlockType]:
        enabled = set(self.enabled_blocks())
        return [block for block in group.blocks() if block in enabled]

    def _flags(self, kind: str, entity_id: str) -> Dict[str, Any]:
        if self.entity_store is None:
            return {}
        if kind == "event":
            return self.entity_store.get_event_flags(entity_id) or {}
        return self.entity_store.get_edition_flags(entity_id) or {}

    def _is_internal_registrants_fill(
        self, group: WorkingGroup, edition_flags: Dict[str, Any]
    ) -> bool:
        if edition_flags.get("registrants_number") is not None:
            return False
        return all(
            p.internal and set(p.changes) == {REGISTRANTS_FIELD}
            for p in group.pending_proposals
        )

    def _lookup_failed(
        self, error: StoreError, group: WorkingGroup, reason: ExclusionReason
    ) -> Eligibility:
        safe_logger(self.logger).log_error(
            error,
            {"operation": "auto_validation_flags", "target_key": group.target_key.as_string()},
        )
        return Eligibility.excluded(reason, f"Flag lookup failed: {error}")

    def evaluate(self, group: WorkingGroup) -> Eligibility:
        """
        Decide whether ``group`` may be applied unattended.

        Returns:
            Eligibility with the first exclusion reason found
        """
        if not group.target_key.event_id:
            return Eligibility.excluded(
                ExclusionReason.NEW_EVENT, "Creating an event requires manual review"
            )

        allowed = set(self.settings.allowed_agent_ids)
        if allowed:
            others = sorted({p.agent_id for p in group.pending_proposals} - allowed)
            if others:
                return Eligibility.excluded(
                    ExclusionReason.OTHER_AGENT,
                    f"Proposals from agents not enabled for auto-apply: {', '.join(others)}",
                )

        if group.confidence < self.settings.min_confidence:
            return Eligibility.excluded(
                ExclusionReason.LOW_CONFIDENCE,
                f"Confidence too low: {group.confidence} < {self.settings.min_confidence}",
            )

        key = group.target_key
        if key.event_id:
            try:
                event_flags = self._flags("event", key.event_id)
            except StoreError as e:
                return self._lookup_failed(e, group, ExclusionReason.FEATURED_EVENT)
            if event_flags.get("is_featured") is True:
                return Eligibility.excluded(
                    ExclusionReason.FEATURED_EVENT, f"Featured event: {key.event_id}"
                )

        if key.edition_id:
            try:
                edition_flags = self._flags("edition", key.edition_id)
            except StoreError as e:
                return self._lookup_failed(e, group, ExclusionReason.PREMIUM_CUSTOMER)
            customer_type = edition_flags.get("customer_type")
            if customer_type is not None and not self._is_internal_registrants_fill(
                group, edition_flags
            ):
                return Eligibility.excluded(
                    ExclusionReason.PREMIUM_CUSTOMER,
                    f"Edition {key.edition_id} has customer type {customer_type}",
                )

        new_races = sum(count_new_races(p) for p in group.pending_proposals)
        if new_races:
            return Eligibility.excluded(
                ExclusionReason.NEW_RACES, f"Group would create {new_races} new race(s)"
            )

        return Eligibility.ok()
