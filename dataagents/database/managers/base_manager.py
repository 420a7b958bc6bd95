#!/usr/bin/env python3
"""
base_manager.py
--------------------
Base manager providing common query and persistence helpers.
All entity managers inherit from this class.

Key Features:
    - Generic get-or-create, safe against concurrent inserts
    - Lookups by id and filtered listing

Lock retries are handled one level up, by DataAgentsDB.execute_with_retry.

Example:
    class AgentManager(BaseManager):
        def get(self, agent_id: str) -> Optional[Agent]:
            return self._get_by_id(Agent, agent_id)
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from abc import ABC
from typing import Any, Dict, List, Optional, Type, TypeVar

# --- Third party imports ---
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

# --- Local imports ---
from dataagents.core.exceptions import DatabaseError
from dataagents.core.logging_manager import DataAgentsLogger


T = TypeVar("T")


class BaseManager(ABC):
    """
    Base manager bound to one session.

    Attributes:
        session: SQLAlchemy session for database operations
        logger: Optional logger for operation tracking
    """

    def __init__(self, session: Session, logger: Optional[DataAgentsLogger] = None):
        self.session = session
        self.logger = logger

    # -------------------------------------------------------------------------
    # Core Helper Methods
    # -------------------------------------------------------------------------

    def _get_or_create(
        self,
        model_class: Type[T],
        lookup_fields: Dict[str, Any],
        extra_fields: Optional[Dict[str, Any]] = None,
    ) -> T:
        """
        Fetch the row matching ``lookup_fields`` or insert it.

        Raises:
            DatabaseError: If the insert conflicts and the row still cannot be found
        """
        obj = self.session.query(model_class).filter_by(**lookup_fields).first()
        if obj is not None:
            return obj

        fields = dict(lookup_fields)
        if extra_fields:
            fields.update(extra_fields)

        try:
            with self.session.begin_nested():
                obj = model_class(**fields)
                self.session.add(obj)
            return obj
        except IntegrityError:
            obj = self.session.query(model_class).filter_by(**lookup_fields).first()
            if obj is not None:
                return obj
            raise DatabaseError(
                f"Failed to create {model_class.__name__} even after handling race condition"
            )

    # -------------------------------------------------------------------------
    # Generic Query Helpers
    # -------------------------------------------------------------------------

    def _get_by_id(self, model_class: Type[T], entity_id: Any) -> Optional[T]:
        if entity_id is None:
            return None
        return self.session.get(model_class, entity_id)

    def _get_all(
        self,
        model_class: Type[T],
        order_by: Optional[List[Any]] = None,
        **filters: Any,
    ) -> List[T]:
        query = self.session.query(model_class)
        if filters:
            query = query.filter_by(**filters)
        if order_by:
            query = query.order_by(*order_by)
        return query.all()
