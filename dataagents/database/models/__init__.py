"""
Database Models Package
------------------------

SQLAlchemy ORM models.

- base: Base class, timestamp mixin, UTC helpers
- proposals: Agent, AgentState, Proposal, ProposalApplication
- entities: Downstream Event, Edition, Organizer, Race (separate base)

Usage:
    from dataagents.database.models import Proposal, ProposalApplication
"""
# Base classes
from .base import Base, TimestampMixin, as_utc, utcnow

# Proposal database
from .proposals import Agent, AgentState, Proposal, ProposalApplication

# Downstream entity database
from .entities import Edition, EntityBase, Event, Organizer, Race

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "as_utc",
    "utcnow",
    # Proposals
    "Agent",
    "AgentState",
    "Proposal",
    "ProposalApplication",
    # Entities
    "EntityBase",
    "Event",
    "Edition",
    "Organizer",
    "Race",
]
