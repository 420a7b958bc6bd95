#!/usr/bin/env python3
"""
manager.py
--------------------
Database manager for the Data Agents proposal database.

Provides the DataAgentsDB class wrapping the SQLite engine, the session
factory and Alembic schema versioning.
Handles:
    - Initialization of the database engine and sessionmaker
    - Transactional sessions exposing the entity managers
    - Fresh databases created from the ORM models and stamped to head
    - Existing databases upgraded through Alembic migrations

Key Features:
    - Transaction management with automatic rollback
    - Retry logic for database lock handling
    - Managers bound per session (db.proposals, db.applications, ...)
    - Logging of every session and schema operation

Usage:
    db = DataAgentsDB(DB_PATH, ALEMBIC_DIR, log_dir=LOG_DIR)
    with db.session_scope():
        proposal = db.proposals.get("b1f3...")
        apps = db.applications.find_for_proposals([proposal.id])

Notes
==============
- Migrations live in dataagents/migrations
- All datetime fields are stored as UTC
- Managers are bound per thread, so the scheduler thread and an
  interactive caller can each hold their own session
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Union

# --- Third party imports ---
from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from sqlalchemy import Engine, create_engine, inspect
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

# --- Local imports ---
from dataagents.core.exceptions import DatabaseError
from dataagents.core.logging_manager import DataAgentsLogger, safe_logger
from dataagents.core.paths import ALEMBIC_DIR, ALEMBIC_INI

from .decorators import handle_db_errors, log_database_operation
from .managers import AgentManager, AgentStateManager, ApplicationManager, ProposalManager
from .models import Base


class DataAgentsDB:
    """
    Main database manager for the proposal database.

    Attributes:
        db_path: Filesystem path to the SQLite database file
        alembic_dir: Filesystem path to the Alembic directory
        engine: SQLAlchemy engine instance
        SessionLocal: SQLAlchemy session factory
        logger: Optional logger

    Usage:
        db = DataAgentsDB("~/data/proposals.db")
        with db.session_scope() as session:
            keys = db.proposals.list_open_target_keys()
    """

    # ---- Initialization ----
    def __init__(
        self,
        db_path: Union[str, Path],
        alembic_dir: Union[str, Path] = ALEMBIC_DIR,
        log_dir: Optional[Union[str, Path]] = None,
        logger: Optional[DataAgentsLogger] = None,
        auto_migrate: bool = True,
    ) -> None:
        """
        Initialize database engine and session factory.

        Args:
            db_path: Path to the SQLite file
            alembic_dir: Path to the Alembic directory
            log_dir: Directory for log files (ignored when ``logger`` is given)
            logger: Logger to use instead of creating one
            auto_migrate: Create or upgrade the schema on startup
        """
        self.db_path = Path(db_path).expanduser().resolve()
        self.alembic_dir = Path(alembic_dir).expanduser().resolve()

        # --- Logging ---
        if logger is not None:
            self.logger: Optional[DataAgentsLogger] = logger
        elif log_dir:
            self.logger = DataAgentsLogger(
                Path(log_dir).expanduser().resolve() / "system",
                component_name="database",
            )
        else:
            self.logger = None

        # Managers are bound per thread inside session_scope
        self._local = threading.local()

        self._setup_engine(auto_migrate)

    def _setup_engine(self, auto_migrate: bool) -> None:
        """Initialize database engine and session factory."""
        log = safe_logger(self.logger)
        try:
            log.log_operation(
                "database_init_start",
                {"db_path": str(self.db_path), "alembic_dir": str(self.alembic_dir)},
            )
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            self.engine: Engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                future=True,
                pool_pre_ping=True,
                connect_args={"check_same_thread": False},
            )
            self.SessionLocal: sessionmaker = sessionmaker(
                bind=self.engine,
                autoflush=True,
                expire_on_commit=False,
                future=True,
            )
            self.alembic_cfg: Config = self._setup_alembic()

            if auto_migrate:
                self.initialize_schema()

            log.log_operation("database_init_complete", {"success": True})
        except Exception as e:
            log.log_error(e, {"operation": "database_init"})
            raise DatabaseError(f"Database initialization failed: {e}") from e

    def dispose(self) -> None:
        """Close every pooled connection."""
        self.engine.dispose()

    # ---- Session Management ----
    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Provide a transactional scope around operations with logging.

        Managers are available via properties (db.proposals, db.applications,
        db.agents, db.agent_states) for the duration of the scope.

        Usage:
            with db.session_scope() as session:
                db.proposals.update_status(pid, ProposalStatus.REJECTED)
        """
        log = safe_logger(self.logger)
        session = self.SessionLocal()
        session_id = datetime.now().strftime("%Y%m%d_%H%M%S_%f")

        self._local.managers = {
            "proposals": ProposalManager(session, self.logger),
            "applications": ApplicationManager(session, self.logger),
            "agents": AgentManager(session, self.logger),
            "agent_states": AgentStateManager(session, self.logger),
        }
        log.log_debug("session_start", {"session_id": session_id})

        try:
            yield session
            session.commit()
            log.log_debug("session_commit", {"session_id": session_id})
        except Exception as e:
            session.rollback()
            log.log_error(e, {"operation": "session_rollback", "session_id": session_id})
            raise
        finally:
            self._local.managers = None
            session.close()
            log.log_debug("session_close", {"session_id": session_id})

    def get_session(self) -> Session:
        """Create and return a new SQLAlchemy session."""
        return self.SessionLocal()

    # -------------------------------------------------------------------------
    # Entity Manager Properties
    # -------------------------------------------------------------------------

    def _manager(self, name: str) -> Any:
        managers = getattr(self._local, "managers", None)
        if not managers:
            raise DatabaseError(
                f"db.{name} requires an active session. "
                f"Use within session_scope: with db.session_scope(): db.{name}..."
            )
        return managers[name]

    @property
    def proposals(self) -> ProposalManager:
        """
        Access ProposalManager for proposal operations.

        Raises:
            DatabaseError: If accessed outside of session_scope context
        """
        return self._manager("proposals")

    @property
    def applications(self) -> ApplicationManager:
        """
        Access ApplicationManager for block application operations.

        Raises:
            DatabaseError: If accessed outside of session_scope context
        """
        return self._manager("applications")

    @property
    def agents(self) -> AgentManager:
        return self._manager("agents")

    @property
    def agent_states(self) -> AgentStateManager:
        return self._manager("agent_states")

    # ---- Alembic setup ----
    def _setup_alembic(self) -> Config:
        """Setup Alembic configuration."""
        try:
            safe_logger(self.logger).log_debug("Setting up Alembic configuration...")
            alembic_cfg: Config = Config(str(ALEMBIC_INI))
            alembic_cfg.set_main_option("script_location", str(self.alembic_dir))
            alembic_cfg.set_main_option("sqlalchemy.url", f"sqlite:///{self.db_path}")
            # Keep our handlers; env.py only configures logging for the alembic CLI
            alembic_cfg.attributes["configure_logger"] = False
            return alembic_cfg
        except Exception as e:
            safe_logger(self.logger).log_error(e, {"operation": "setup_alembic"})
            raise DatabaseError(f"Alembic configuration failed: {e}") from e

    @handle_db_errors
    @log_database_operation("initialize_schema")
    def initialize_schema(self) -> None:
        """
        Initialize database - create tables if needed and run migrations.

        Actions:
            Checks if the database is fresh (no tables)
            If fresh,
                creates all tables from the ORM models
                stamps the Alembic revision to head
            If not,
                runs pending migrations to update schema
        """
        log = safe_logger(self.logger)
        table_names = inspect(self.engine).get_table_names()

        if not table_names:
            Base.metadata.create_all(bind=self.engine)
            command.stamp(self.alembic_cfg, "head")
            log.log_operation(
                "fresh_database_created", {"tables_created": len(Base.metadata.tables)}
            )
        else:
            self.upgrade_database()
            log.log_operation("existing_database_migrated", {"table_count": len(table_names)})

    @handle_db_errors
    @log_database_operation("upgrade_database")
    def upgrade_database(self, revision: str = "head") -> None:
        """
        Upgrade the database schema to the specified Alembic revision.

        Args:
            revision: Target revision (defaults to 'head')
        """
        try:
            command.upgrade(self.alembic_cfg, revision)
        except Exception as e:
            raise DatabaseError(f"Database upgrade failed: {e}") from e

    def get_migration_history(self) -> Dict[str, Optional[str]]:
        """
        Get the current migration status of the database.

        Returns:
            Dictionary with 'current_revision' and 'status'
            ('up_to_date' or 'needs_migration'), or 'error'
        """
        try:
            with self.engine.connect() as conn:
                context = MigrationContext.configure(conn)
                current_rev = context.get_current_revision()

            return {
                "current_revision": current_rev,
                "status": "up_to_date" if current_rev else "needs_migration",
            }
        except Exception as e:
            safe_logger(self.logger).log_error(e, {"operation": "get_migration_history"})
            return {"error": str(e)}

    # ----  Helper methods ----
    def execute_with_retry(
        self,
        operation: Callable[[], Any],
        max_retries: int = 3,
        retry_delay: float = 0.1,
    ) -> Any:
        """
        Execute a database operation, retrying while SQLite is locked.

        Raises:
            OperationalError: If all retries are exhausted
        """
        for attempt in range(max_retries):
            try:
                return operation()
            except OperationalError as e:
                error_msg = str(e).lower()
                if ("locked" in error_msg or "busy" in error_msg) and attempt < max_retries - 1:
                    wait_time = retry_delay * (2**attempt)
                    safe_logger(self.logger).log_debug(
                        f"Database locked, retrying in {wait_time}s",
                        {"attempt": attempt + 1, "max_retries": max_retries},
                    )
                    time.sleep(wait_time)
                    continue
                raise

        raise DatabaseError("Retry loop completed without success")
