#!/usr/bin/env python3
"""
Data Agents CLI
-----------------------------------

Command-line interface of the proposal engine.

This module provides the main CLI group and the shared context setup
(database, stores, executor) for all commands.

Command Structure:
    - Review (consolidate, order)
    - Application (apply, replay)
    - Scheduling (scheduler run, scheduler next-run, scheduler stats)

Usage:
    # Get general help
    dataagents --help

    # Show the consolidated group of an edition
    dataagents consolidate 12 34

    # Run one auto-apply cycle
    dataagents scheduler run --once
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import logging
from pathlib import Path
from typing import Optional

# --- Third party imports ---
import click

# --- Local imports ---
from dataagents.core.cli import setup_logger
from dataagents.core.config import EngineSettings, load_settings
from dataagents.core.paths import ALEMBIC_DIR, CONFIG_PATH, DB_PATH, ENTITY_DB_PATH, LOG_DIR
from dataagents.database import DataAgentsDB, DatabaseEntityStore, DatabaseProposalStore
from dataagents.engine.consolidate import ConsolidationEngine
from dataagents.engine.executor import ApplicationExecutor
from dataagents.engine.models import TargetKey


@click.group()
@click.option(
    "--db-path",
    type=click.Path(),
    default=str(DB_PATH),
    help="Path to the proposal database",
)
@click.option(
    "--entity-db-path",
    type=click.Path(),
    default=str(ENTITY_DB_PATH),
    help="Path to the downstream entity database",
)
@click.option(
    "--log-dir",
    type=click.Path(),
    default=str(LOG_DIR),
    help="Path to log directory",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(),
    default=str(CONFIG_PATH),
    help="Path to settings.yaml",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Show detailed errors and tracebacks",
)
@click.pass_context
def cli(ctx, db_path, entity_db_path, log_dir, config_path, verbose):
    """Data Agents proposal engine"""

    # Suppress Alembic INFO logging by default
    logging.getLogger("alembic").setLevel(logging.WARNING)

    ctx.ensure_object(dict)
    ctx.obj["db_path"] = Path(db_path)
    ctx.obj["entity_db_path"] = Path(entity_db_path)
    ctx.obj["log_dir"] = Path(log_dir)
    ctx.obj["config_path"] = Path(config_path)
    ctx.obj["verbose"] = verbose
    ctx.obj["logger"] = setup_logger(Path(log_dir), "engine")


def get_settings(ctx) -> EngineSettings:
    """Get or load the settings from context."""
    if "settings" not in ctx.obj:
        ctx.obj["settings"] = load_settings(ctx.obj["config_path"])
    return ctx.obj["settings"]


def get_db(ctx) -> DataAgentsDB:
    """Get or create database instance from context."""
    if "db" not in ctx.obj:
        ctx.obj["db"] = DataAgentsDB(
            db_path=ctx.obj["db_path"],
            alembic_dir=ALEMBIC_DIR,
            logger=ctx.obj["logger"],
        )
    return ctx.obj["db"]


def get_store(ctx) -> DatabaseProposalStore:
    if "store" not in ctx.obj:
        ctx.obj["store"] = DatabaseProposalStore(get_db(ctx), ctx.obj["logger"])
    return ctx.obj["store"]


def get_entity_store(ctx) -> DatabaseEntityStore:
    if "entity_store" not in ctx.obj:
        ctx.obj["entity_store"] = DatabaseEntityStore(
            ctx.obj["entity_db_path"], logger=ctx.obj["logger"]
        )
    return ctx.obj["entity_store"]


def get_engine(ctx) -> ConsolidationEngine:
    settings = get_settings(ctx)
    return ConsolidationEngine(
        order_sensitive_lists=settings.consolidation.order_sensitive_lists,
        logger=ctx.obj["logger"],
    )


def get_executor(ctx) -> ApplicationExecutor:
    """Get or create the executor; closed when the command ends."""
    if "executor" not in ctx.obj:
        executor = ApplicationExecutor(
            get_store(ctx),
            get_entity_store(ctx),
            store_timeout=get_settings(ctx).store.timeout_seconds,
            logger=ctx.obj["logger"],
        )
        ctx.obj["executor"] = executor
        ctx.call_on_close(executor.close)
    return ctx.obj["executor"]


def target_key(event_id: str, edition_id: str, race_id: Optional[str] = None) -> TargetKey:
    return TargetKey.of(event_id, edition_id, race_id)


# Import and register command modules
# These imports must come after CLI group definition
from .review import consolidate, order  # noqa: E402
from .apply import apply, replay  # noqa: E402
from .scheduler import scheduler  # noqa: E402

cli.add_command(consolidate)
cli.add_command(order)
cli.add_command(apply)
cli.add_command(replay)
cli.add_command(scheduler)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
