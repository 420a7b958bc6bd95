"""
Data Agents Proposal Engine
===========================

Consolidation and block-by-block application of agent proposals.

Extraction agents propose changes to sporting-event records. This package
groups the proposals targeting the same event edition, reconciles their
field-level changes, and writes approved blocks (event, edition,
organizer, races) to the event database in dependency order, either on
demand or from a scheduled auto-apply loop.

Main Components:
    - blocks: Block dependency graph and field -> block map
    - engine: Consolidation, validation, locking and the application executor
    - scheduler: Frequency configuration and the auto-apply scheduler
    - database: SQLAlchemy models, managers and store implementations
    - core: Logging, configuration, paths, exceptions

Primary Interfaces:
    - dataagents.cli: Command line interface
    - dataagents.database.manager.DataAgentsDB: Proposal database

Example Usage:
    >>> from dataagents import DataAgentsDB
    >>> from dataagents.core.paths import DB_PATH, ALEMBIC_DIR, LOG_DIR
    >>> db = DataAgentsDB(db_path=DB_PATH, alembic_dir=ALEMBIC_DIR, log_dir=LOG_DIR)
    >>> with db.session_scope():
    ...     keys = db.proposals.list_open_target_keys()
"""

__version__ = "1.0.0"

# Expose primary interfaces for convenience
from dataagents.database.manager import DataAgentsDB
from dataagents.core.paths import CONFIG_PATH, DATA_DIR, DB_PATH, ENTITY_DB_PATH, LOG_DIR

__all__ = [
    "DataAgentsDB",
    "CONFIG_PATH",
    "DATA_DIR",
    "DB_PATH",
    "ENTITY_DB_PATH",
    "LOG_DIR",
]
