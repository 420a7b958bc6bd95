"""
Entity Models
--------------

Downstream event database written by DatabaseEntityStore.

These tables belong to the event platform, not to the proposal database:
they use their own declarative base and are not managed by Alembic.

Models:
    - Event: Sporting event (identity and location)
    - Edition: Yearly edition of an event
    - Organizer: Organizer of an edition
    - Race: Race of an edition
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
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
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from .base import utcnow


class EntityBase(DeclarativeBase):
    """Declarative base of the downstream event database."""

    pass


class Event(EntityBase):
    __tablename__ = "events"
    __table_args__ = (CheckConstraint("name != ''", name="ck_event_non_empty_name"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[Optional[str]] = mapped_column(String(255))
    country: Mapped[Optional[str]] = mapped_column(String(8))
    country_subdivision_name_level1: Mapped[Optional[str]] = mapped_column(String(255))
    country_subdivision_name_level2: Mapped[Optional[str]] = mapped_column(String(255))
    country_subdivision_display_code_level1: Mapped[Optional[str]] = mapped_column(String(16))
    country_subdivision_display_code_level2: Mapped[Optional[str]] = mapped_column(String(16))
    website_url: Mapped[Optional[str]] = mapped_column(Text)
    facebook_url: Mapped[Optional[str]] = mapped_column(Text)
    instagram_url: Mapped[Optional[str]] = mapped_column(Text)
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    full_address: Mapped[Optional[str]] = mapped_column(Text)
    data_source: Mapped[Optional[str]] = mapped_column(String(64))
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    editions: Mapped[List["Edition"]] = relationship(
        "Edition", back_populates="event", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, name={self.name})>"


class Edition(EntityBase):
    __tablename__ = "editions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    year: Mapped[Optional[int]] = mapped_column(Integer)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    calendar_status: Mapped[Optional[str]] = mapped_column(String(32))
    time_zone: Mapped[Optional[str]] = mapped_column(String(64))
    registration_opening_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    registration_closing_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    registrants_number: Mapped[Optional[int]] = mapped_column(Integer)
    customer_type: Mapped[Optional[str]] = mapped_column(String(32))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    event: Mapped["Event"] = relationship("Event", back_populates="editions")
    organizer: Mapped[Optional["Organizer"]] = relationship(
        "Organizer", uselist=False, back_populates="edition", cascade="all, delete-orphan"
    )
    races: Mapped[List["Race"]] = relationship(
        "Race", back_populates="edition", cascade="all, delete-orphan", order_by="Race.id"
    )

    def __repr__(self) -> str:
        return f"<Edition(id={self.id}, event_id={self.event_id}, year={self.year})>"


class Organizer(EntityBase):
    __tablename__ = "organizers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    edition_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("editions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    name: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(64))
    website_url: Mapped[Optional[str]] = mapped_column(Text)
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    edition: Mapped["Edition"] = relationship("Edition", back_populates="organizer")


class Race(EntityBase):
    __tablename__ = "races"
    __table_args__ = (CheckConstraint("name != ''", name="ck_race_non_empty_name"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    edition_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("editions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    run_distance: Mapped[Optional[float]] = mapped_column(Float)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    price: Mapped[Optional[float]] = mapped_column(Float)
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    edition: Mapped["Edition"] = relationship("Edition", back_populates="races")

    def __repr__(self) -> str:
        return f"<Race(id={self.id}, name={self.name})>"
