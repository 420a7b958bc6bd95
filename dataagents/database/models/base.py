"""
Base Classes and Mixins
------------------------

Foundational ORM classes for the proposal database.

Classes:
    - Base: Declarative base for proposal, application and agent models
    - TimestampMixin: created_at / updated_at columns
    - utcnow / as_utc: Timezone helpers for SQLite round-trips
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from datetime import datetime, timezone
from typing import Optional

# --- Third party ---
from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; values are stored as UTC so re-attach it."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# --- Base ORM class ---
class Base(DeclarativeBase):
    """
    Declarative base of the proposal database.

    Its metadata is the Alembic target (dataagents/migrations).
    """

    pass


class TimestampMixin:
    """
    Attributes:
        created_at: Row creation instant (UTC)
        updated_at: Last modification instant (UTC)
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
