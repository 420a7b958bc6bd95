#!/usr/bin/env python3
"""
Data Agents Database Package
----------------------------
Persistence of proposals, block applications and agent state, plus the
SQLAlchemy implementations of the engine's store protocols.

- manager: DataAgentsDB (engine, sessions, Alembic)
- managers: Per-entity managers used inside session_scope()
- store: DatabaseProposalStore
- entity_store: DatabaseEntityStore (downstream event database)
- decorators: Logging and error conversion helpers
"""

from .manager import DataAgentsDB
from .store import DatabaseProposalStore
from .entity_store import DatabaseEntityStore
from .decorators import DatabaseOperation, handle_db_errors, log_database_operation

__all__ = [
    "DataAgentsDB",
    "DatabaseProposalStore",
    "DatabaseEntityStore",
    "DatabaseOperation",
    "handle_db_errors",
    "log_database_operation",
]
