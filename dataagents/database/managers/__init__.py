#!/usr/bin/env python3
"""
managers package
--------------------
Entity managers for the proposal database.

Each manager handles one kind of row and inherits from BaseManager.

Available Managers:
    BaseManager: Abstract base class with common utilities
    AgentManager: Agent registry (lookup, display names)
    AgentStateManager: Key/value JSON state per agent
    ProposalManager: Proposals, status transitions, block approvals
    ApplicationManager: Block applications and their audit logs

Usage:
    from dataagents.database.managers import ProposalManager

    proposal_mgr = ProposalManager(session, logger)
"""
from .base_manager import BaseManager
from .agent_manager import AgentManager
from .agent_state_manager import AgentStateManager
from .proposal_manager import ProposalManager
from .application_manager import ApplicationManager

__all__ = [
    "BaseManager",
    "AgentManager",
    "AgentStateManager",
    "ProposalManager",
    "ApplicationManager",
]
