#!/usr/bin/env python3
"""
cli.py
------
Shared CLI helpers for the dataagents commands.

Functions:
    setup_logger: Initialize a DataAgentsLogger for a CLI component
    echo_json: Print a dict as indented JSON

Usage:
    from dataagents.core.cli import setup_logger

    logger = setup_logger(log_dir, "scheduler")
    logger.log_info("Scheduler started")
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import json
from pathlib import Path
from typing import Any, Dict

# --- Third party imports ---
import click

# --- Local imports ---
from dataagents.core.logging_manager import DataAgentsLogger


def setup_logger(log_dir: Path, component_name: str) -> DataAgentsLogger:
    """
    Create a component logger writing under ``log_dir/operations``.

    Args:
        log_dir: Base log directory (typically paths.LOG_DIR)
        component_name: Component identifier, e.g. 'engine' or 'scheduler'

    Returns:
        Configured DataAgentsLogger instance
    """
    operations_log_dir = Path(log_dir) / "operations"
    operations_log_dir.mkdir(parents=True, exist_ok=True)
    return DataAgentsLogger(operations_log_dir, component_name=component_name)


def echo_json(data: Dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=2, default=str, ensure_ascii=False))
