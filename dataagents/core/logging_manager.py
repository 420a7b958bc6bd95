#!/usr/bin/env python3
"""
logging_manager.py
--------------------
Structured, rotating logs for the proposal engine and its scheduler.

Every component (engine, scheduler, database, cli) receives an optional
DataAgentsLogger. Detail dictionaries are serialized as JSON so that runs
can be grepped and replayed from the log files.

Files written per component:
    - <component>.log: all activity from DEBUG up
    - errors.log: errors with context and traceback
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import json
import logging
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

# --- Third party imports ---
import click


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s:%(lineno)d] - %(message)s"
CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _encode(details: Dict[str, Any]) -> str:
    return json.dumps(details, default=str, ensure_ascii=False)


class DataAgentsLogger:
    """
    Component logger with an operations stream and an error stream.

    Attributes:
        log_dir: Directory for log files
        component_name: Name of the component using this logger
        main_logger: Logger receiving every message of the component
        error_logger: Logger receiving errors only
    """

    def __init__(
        self,
        log_dir: Path,
        component_name: str = "dataagents",
        max_bytes: int = 5 * 1024 * 1024,
        backup_count: int = 3,
    ) -> None:
        """
        Args:
            log_dir: Directory for log files (created if missing)
            component_name: Component label (e.g. 'engine', 'scheduler')
            max_bytes: Size at which a log file is rotated
            backup_count: Number of rotated files kept
        """
        self.log_dir = Path(log_dir)
        self.component_name = component_name
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self._configure()

    def _configure(self) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.main_logger = logging.getLogger(f"dataagents.{self.component_name}")
        self.main_logger.setLevel(logging.DEBUG)
        self.main_logger.propagate = False
        self.main_logger.handlers = []

        self.error_logger = logging.getLogger(f"dataagents.{self.component_name}.errors")
        self.error_logger.setLevel(logging.ERROR)
        self.error_logger.propagate = False
        self.error_logger.handlers = []

        self.main_logger.addHandler(
            self._rotating_handler(self.log_dir / f"{self.component_name}.log", logging.DEBUG)
        )
        self.error_logger.addHandler(
            self._rotating_handler(self.log_dir / "errors.log", logging.ERROR)
        )

        console = logging.StreamHandler()
        console.setLevel(logging.WARNING)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        self.main_logger.addHandler(console)

    def _rotating_handler(self, file_path: Path, level: int) -> RotatingFileHandler:
        handler = RotatingFileHandler(
            file_path,
            maxBytes=self.max_bytes,
            backupCount=self.backup_count,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        return handler

    def log_operation(
        self, operation: str, details: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Record a completed operation (apply, replay, cycle, ...).

        Args:
            operation: Operation name, e.g. 'apply_completed'
            details: Structured details, serialized as JSON
        """
        self.main_logger.info(f"OPERATION - {operation}: {_encode(details or {})}")

    def log_error(
        self, error: Exception, context: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Record an exception with its context and the current traceback.

        Args:
            error: Exception that occurred
            context: Where it happened (operation, ids, ...)
        """
        self.error_logger.error(f"ERROR - {type(error).__name__}: {error}")
        if context:
            self.error_logger.error(
                "Context: " + ", ".join(f"{k}={v}" for k, v in context.items())
            )
        self.error_logger.error(f"Traceback:\n{traceback.format_exc()}")

    def _emit(self, level: int, label: str, message: str, details: Optional[Dict[str, Any]]) -> None:
        if details:
            self.main_logger.log(level, f"{label} - {message}: {_encode(details)}")
        else:
            self.main_logger.log(level, f"{label} - {message}")

    def log_debug(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.DEBUG, "DEBUG", message, details)

    def log_info(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.INFO, "INFO", message, details)

    def log_warning(
        self, message: str, details: Optional[Dict[str, Any]] = None
    ) -> None:
        self._emit(logging.WARNING, "WARNING", message, details)

    def log_cli_error(
        self,
        error: Exception,
        context: Optional[Dict[str, Any]] = None,
        show_traceback: bool = False,
    ) -> str:
        """
        Log an error raised by a CLI command and build the terminal message.

        Args:
            error: Exception to report
            context: Optional context (defaults to {"source": "cli"})
            show_traceback: Append the traceback to the returned message

        Returns:
            Message for the terminal, e.g. '❌ StoreError: Edition 42 not found'
        """
        self.log_error(error, context or {"source": "cli"})
        message = f"❌ {type(error).__name__}: {error}"
        if show_traceback:
            return f"{message}\n\n{traceback.format_exc()}"
        return message


def handle_cli_error(
    ctx: "click.Context",
    error: Exception,
    operation: str,
    additional_context: Optional[Dict[str, Any]] = None,
    exit_code: int = 1,
) -> None:
    """
    Report a CLI command failure and exit.

    Pulls the logger and verbosity from ``ctx.obj``, logs the error with
    its context, echoes a short message to stderr, then exits.

    Args:
        ctx: Click context holding 'logger' and 'verbose'
        error: Exception that occurred
        operation: Failing command, e.g. 'apply'
        additional_context: Extra context (event id, application id, ...)
        exit_code: Process exit code
    """
    logger: Optional[DataAgentsLogger] = ctx.obj.get("logger")
    verbose: bool = ctx.obj.get("verbose", False)

    context: Dict[str, Any] = {"operation": operation}
    if additional_context:
        context.update(additional_context)

    click.echo(
        safe_logger(logger).log_cli_error(error, context, show_traceback=verbose),
        err=True,
    )
    sys.exit(exit_code)


class NullLogger:
    """Logger with the DataAgentsLogger interface that discards everything."""

    def log_operation(self, operation: str, details: Optional[Dict[str, Any]] = None) -> None:
        pass

    def log_error(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        pass

    def log_debug(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        pass

    def log_info(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        pass

    def log_warning(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        pass

    def log_cli_error(
        self,
        error: Exception,
        context: Optional[Dict[str, Any]] = None,
        show_traceback: bool = False,
    ) -> str:
        return f"❌ {type(error).__name__}: {error}"


_null_logger = NullLogger()


def safe_logger(logger: Optional[DataAgentsLogger]) -> DataAgentsLogger:
    """
    Return ``logger`` or the shared NullLogger when it is None.

    Usage:
        safe_logger(self.logger).log_info("Cycle started")
    """
    return logger if logger is not None else _null_logger  # type: ignore[return-value]
