#!/usr/bin/env python3
"""
decorators.py
--------------------
Shared decorators and context managers for database operations.

    log_database_operation  timing + structured logs around a manager method
    handle_db_errors        SQLAlchemy errors -> DatabaseError
    DatabaseOperation       both of the above as a context manager
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from datetime import datetime
from functools import wraps
from types import TracebackType
from typing import Any, Callable, Dict, Optional, Type

# --- Third party imports ---
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

# --- Local imports ---
from dataagents.core.exceptions import DatabaseError
from dataagents.core.logging_manager import DataAgentsLogger, safe_logger


def _operation_id(name: str, start: datetime) -> str:
    return f"{name}_{start.strftime('%Y%m%d_%H%M%S_%f')}"


def _convert(error: Exception) -> Optional[DatabaseError]:
    if isinstance(error, IntegrityError):
        return DatabaseError(f"Data integrity violation: {error}")
    if isinstance(error, SQLAlchemyError):
        return DatabaseError(f"Database operation failed: {error}")
    return None


def log_database_operation(operation_name: str):
    """
    Decorator logging start, completion time and failure of a method.

    The decorated method's instance must expose a ``logger`` attribute
    (None is accepted).

    Args:
        operation_name: Name used in the log records
    """

    def decorator(function: Callable) -> Callable:
        @wraps(function)
        def wrapper(self, *args, **kwargs):
            logger = safe_logger(getattr(self, "logger", None))
            start_time = datetime.now()
            operation_id = _operation_id(operation_name, start_time)

            logger.log_debug(
                f"Starting {operation_name}",
                {
                    "operation_id": operation_id,
                    "args_count": len(args),
                    "kwargs_keys": list(kwargs.keys()),
                },
            )
            try:
                result = function(self, *args, **kwargs)
            except Exception as e:
                logger.log_error(
                    e,
                    {
                        "operation": operation_name,
                        "operation_id": operation_id,
                        "duration_seconds": (datetime.now() - start_time).total_seconds(),
                    },
                )
                raise

            logger.log_operation(
                f"{operation_name}_completed",
                {
                    "operation_id": operation_id,
                    "duration_seconds": (datetime.now() - start_time).total_seconds(),
                    "success": True,
                },
            )
            return result

        return wrapper

    return decorator


def handle_db_errors(function: Callable) -> Callable:
    """Decorator converting SQLAlchemy errors to DatabaseError."""

    @wraps(function)
    def wrapper(*args, **kwargs):
        try:
            return function(*args, **kwargs)
        except SQLAlchemyError as e:
            raise _convert(e) from e

    return wrapper


class DatabaseOperation:
    """
    Context manager wrapping a block of database work.

    On success logs ``<name>_completed`` with the duration. On failure logs
    the error once; IntegrityError and other SQLAlchemy errors are raised
    as DatabaseError, anything else propagates unchanged.

    Usage:
        with DatabaseOperation(self.logger, "create_proposal"):
            self.session.add(proposal)
            self.session.flush()
    """

    def __init__(
        self,
        logger: Optional[DataAgentsLogger],
        operation_name: str,
        log_start: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.logger = safe_logger(logger)
        self.operation_name = operation_name
        self.log_start = log_start
        self.details = details or {}
        self.start_time: Optional[datetime] = None

    def __enter__(self) -> "DatabaseOperation":
        self.start_time = datetime.now()
        if self.log_start:
            self.logger.log_debug(f"Starting {self.operation_name}", self.details or None)
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> bool:
        start = self.start_time or datetime.now()
        duration = (datetime.now() - start).total_seconds()

        if exc is None:
            self.logger.log_operation(
                f"{self.operation_name}_completed",
                {
                    "operation_id": _operation_id(self.operation_name, start),
                    "duration_seconds": duration,
                    "success": True,
                    **self.details,
                },
            )
            return False

        if not isinstance(exc, Exception):
            return False

        self.logger.log_error(
            exc,
            {"operation": self.operation_name, "duration_seconds": duration, **self.details},
        )
        converted = _convert(exc)
        if converted is not None:
            raise converted from exc
        return False
