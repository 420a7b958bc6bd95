#!/usr/bin/env python3
"""
agent_state_manager.py
--------------------
Key/value JSON state attached to an agent.

Used by the auto-apply scheduler to persist its run statistics between
processes (key ``run_stats`` under the scheduler's agent id).

Usage:
    state_mgr = AgentStateManager(session, logger)
    state_mgr.set("auto-apply", "run_stats", {"total_runs": 3})
    stats = state_mgr.get("auto-apply", "run_stats", default={})
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import copy
from typing import Any, Dict, Optional

# --- Local imports ---
from dataagents.database.decorators import DatabaseOperation, handle_db_errors
from dataagents.database.models import Agent, AgentState, utcnow

from .base_manager import BaseManager


class AgentStateManager(BaseManager):
    """Reads and writes AgentState rows."""

    def _find(self, agent_id: str, key: str) -> Optional[AgentState]:
        return (
            self.session.query(AgentState)
            .filter_by(agent_id=agent_id, key=key)
            .first()
        )

    @handle_db_errors
    def get(self, agent_id: str, key: str, default: Any = None) -> Any:
        state = self._find(agent_id, key)
        if state is None or state.value is None:
            return default
        return copy.deepcopy(state.value)

    def set(self, agent_id: str, key: str, value: Any) -> AgentState:
        """
        Store ``value`` under (agent_id, key), registering the agent if needed.

        Returns:
            The created or updated AgentState
        """
        with DatabaseOperation(
            self.logger, "set_agent_state", details={"agent_id": agent_id, "key": key}
        ):
            self._get_or_create(Agent, {"id": agent_id}, {"name": agent_id})
            state = self._find(agent_id, key)
            if state is None:
                state = AgentState(agent_id=agent_id, key=key)
                self.session.add(state)
            # New object so the JSON column is flagged dirty
            state.value = copy.deepcopy(value)
            state.updated_at = utcnow()
            self.session.flush()
            return state

    @handle_db_errors
    def get_all(self, agent_id: str) -> Dict[str, Any]:
        states = self._get_all(AgentState, order_by=[AgentState.key], agent_id=agent_id)
        return {state.key: copy.deepcopy(state.value) for state in states}
