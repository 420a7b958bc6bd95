#!/usr/bin/env python3
"""
agent_manager.py
--------------------
Registry of agents producing proposals.

The engine only needs lookups: proposals reference agents by id and
reports show their display names. Agents unknown to the registry are
registered on first use with their id as name.

Usage:
    agent_mgr = AgentManager(session, logger)
    agent = agent_mgr.get_or_create("ffa-scraper", name="FFA Scraper")
    print(agent_mgr.display_name("ffa-scraper"))
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from typing import List, Optional

# --- Local imports ---
from dataagents.core.exceptions import ValidationError
from dataagents.database.decorators import DatabaseOperation, handle_db_errors
from dataagents.database.models import Agent

from .base_manager import BaseManager


class AgentManager(BaseManager):
    """Lookup and registration of Agent rows."""

    @handle_db_errors
    def get(self, agent_id: str) -> Optional[Agent]:
        return self._get_by_id(Agent, agent_id)

    def get_or_create(
        self,
        agent_id: str,
        name: Optional[str] = None,
        agent_type: Optional[str] = None,
    ) -> Agent:
        """
        Fetch an agent, registering it when unknown.

        Args:
            agent_id: Agent id used in proposals
            name: Display name for a new agent (defaults to the id)
            agent_type: Kind of agent for a new agent

        Raises:
            ValidationError: If ``agent_id`` is empty
        """
        if not agent_id or not str(agent_id).strip():
            raise ValidationError("Agent id is required")

        with DatabaseOperation(self.logger, "get_or_create_agent", details={"agent_id": agent_id}):
            return self._get_or_create(
                Agent,
                {"id": str(agent_id)},
                {"name": name or str(agent_id), "agent_type": agent_type},
            )

    @handle_db_errors
    def display_name(self, agent_id: str) -> str:
        """Display name of ``agent_id``, or the id itself when unregistered."""
        agent = self.get(agent_id)
        return agent.display_name if agent is not None else str(agent_id)

    @handle_db_errors
    def list(self, active_only: bool = False) -> List[Agent]:
        if active_only:
            return self._get_all(Agent, order_by=[Agent.id], is_active=True)
        return self._get_all(Agent, order_by=[Agent.id])
