"""
Enumeration Types
------------------

Enum classes shared by the engine, the scheduler and the database models.

Enums:
    - BlockType: Independently approvable group of fields
    - ProposalType: Kind of change an agent proposes
    - ProposalStatus: Review state of a proposal
    - ApplicationStatus: State of one block write
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from enum import Enum
from typing import Dict, FrozenSet, List


class BlockType(str, Enum):
    """
    Groups of fields approved and applied together.
    - EVENT: Event identity and location
    - EDITION: Yearly edition dates and registration
    - ORGANIZER: Organizer record
    - RACES: Races of the edition
    """

    EVENT = "event"
    EDITION = "edition"
    ORGANIZER = "organizer"
    RACES = "races"

    @classmethod
    def choices(cls) -> List[str]:
        """Get all available block type values."""
        return [block.value for block in cls]


class ProposalType(str, Enum):
    NEW_EVENT = "NEW_EVENT"
    EVENT_UPDATE = "EVENT_UPDATE"
    EDITION_UPDATE = "EDITION_UPDATE"
    RACE_UPDATE = "RACE_UPDATE"
    EVENT_MERGE = "EVENT_MERGE"

    @classmethod
    def choices(cls) -> List[str]:
        return [ptype.value for ptype in cls]


class ProposalStatus(str, Enum):
    """
    Review state of a proposal.

    PENDING and PARTIALLY_APPROVED move freely between each other.
    REJECTED and ARCHIVED are terminal; APPROVED may only be archived.
    """

    PENDING = "PENDING"
    PARTIALLY_APPROVED = "PARTIALLY_APPROVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ARCHIVED = "ARCHIVED"

    @classmethod
    def choices(cls) -> List[str]:
        return [status.value for status in cls]

    @property
    def is_open(self) -> bool:
        """True for statuses that still take part in consolidation."""
        return self in (ProposalStatus.PENDING, ProposalStatus.PARTIALLY_APPROVED)

    @property
    def is_terminal(self) -> bool:
        return self in (ProposalStatus.REJECTED, ProposalStatus.ARCHIVED)

    def can_transition_to(self, target: "ProposalStatus") -> bool:
        """Check whether moving from this status to ``target`` is allowed."""
        if self == target:
            return True
        return target in _TRANSITIONS[self]


_TRANSITIONS: Dict[ProposalStatus, FrozenSet[ProposalStatus]] = {
    ProposalStatus.PENDING: frozenset(
        {
            ProposalStatus.PARTIALLY_APPROVED,
            ProposalStatus.APPROVED,
            ProposalStatus.REJECTED,
            ProposalStatus.ARCHIVED,
        }
    ),
    ProposalStatus.PARTIALLY_APPROVED: frozenset(
        {
            ProposalStatus.PENDING,
            ProposalStatus.APPROVED,
            ProposalStatus.REJECTED,
            ProposalStatus.ARCHIVED,
        }
    ),
    ProposalStatus.APPROVED: frozenset({ProposalStatus.ARCHIVED}),
    ProposalStatus.REJECTED: frozenset(),
    ProposalStatus.ARCHIVED: frozenset(),
}


class ApplicationStatus(str, Enum):
    """State of one block write to the entity store."""

    PENDING = "PENDING"
    APPLIED = "APPLIED"
    FAILED = "FAILED"

    @classmethod
    def choices(cls) -> List[str]:
        return [status.value for status in cls]
