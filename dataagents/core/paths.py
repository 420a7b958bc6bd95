#!/usr/bin/env python3
"""
paths.py
-------------------
Path constants for the Data Agents project.

The project structure:
    ROOT/
    ├── dataagents/    # Package code (engine, scheduler, database, cli)
    ├── data/          # SQLite databases (proposals, downstream entities)
    ├── config/        # settings.yaml
    └── logs/          # Application logs

Paths can be redirected with environment variables:
    DATAAGENTS_HOME     Base directory replacing ROOT for data/config/logs
    DATAAGENTS_DB_PATH  Proposal database file
    DATAAGENTS_CONFIG   Settings file
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import os
from pathlib import Path


def _get_project_root() -> Path:
    """
    Determine project root directory.

    Assumes this file is at ROOT/dataagents/core/paths.py.

    Returns:
        Path object for project root
    """
    return Path(__file__).resolve().parent.parent.parent


# ----- Project directory -----
ROOT: Path = _get_project_root()
PACKAGE_DIR = ROOT / "dataagents"
HOME: Path = Path(os.environ.get("DATAAGENTS_HOME", str(ROOT)))

# --- Database ---
ALEMBIC_DIR = PACKAGE_DIR / "migrations"
ALEMBIC_INI = ROOT / "alembic.ini"
DATA_DIR = HOME / "data"
DB_PATH = Path(os.environ.get("DATAAGENTS_DB_PATH", str(DATA_DIR / "proposals.db")))
ENTITY_DB_PATH = DATA_DIR / "entities.db"

# --- Configuration ---
CONFIG_DIR = HOME / "config"
CONFIG_PATH = Path(os.environ.get("DATAAGENTS_CONFIG", str(CONFIG_DIR / "settings.yaml")))

# ---- Logs ----
LOG_DIR = HOME / "logs"
