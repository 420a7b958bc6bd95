#!/usr/bin/env python3
"""
exceptions.py
--------------------
Custom exception classes for the Data Agents proposal engine.

This module defines a hierarchy of exceptions used throughout the project
to handle specific error conditions in different subsystems.

Exception Hierarchy:
    Exception (built-in)
    ├── DatabaseError - Base for all persistence errors (proposal store)
    ├── ValidationError - Data validation failures
    │   └── RequiredBlocksError - Required blocks missing for a proposal type
    ├── ConflictError - Field without consensus or single best candidate
    ├── StoreError - Downstream entity store write failures
    └── SchedulerError - Cycle-level auto-apply failures

Usage:
    from dataagents.core.exceptions import StoreError, ValidationError

    try:
        executor.apply(group)
    except ValidationError as e:
        logger.log_error(e, {"operation": "apply"})
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from typing import Any, List, Optional, Sequence


class DatabaseError(Exception):
    """
    Base exception for proposal store errors.

    Raised when database operations fail due to connection issues,
    query errors, integrity violations, or other database problems.

    Examples:
        >>> raise DatabaseError("Connection to database failed")
        >>> raise DatabaseError("Proposal not found: p-123")
    """

    pass


class ValidationError(Exception):
    """
    Exception for data validation failures.

    Raised before any write when input data fails validation checks:
    - Malformed changes map
    - Confidence outside [0, 1]
    - Unknown block type supplied to a typed API
    - Invalid frequency configuration
    - Illegal proposal status transition

    Examples:
        >>> raise ValidationError("Confidence must be within [0, 1]: 1.4")
        >>> raise ValidationError("jitterMinutes (40) exceeds half of intervalMinutes (30.0)")
    """

    pass


class RequiredBlocksError(ValidationError):
    """
    Exception raised when a group lacks the blocks its proposal type requires.

    Attributes:
        proposal_type: Proposal type that was checked
        missing: Block type values that are absent
    """

    def __init__(self, proposal_type: Optional[str], missing: Sequence[Any]) -> None:
        self.proposal_type = proposal_type
        self.missing: List[str] = [getattr(b, "value", b) for b in missing]
        super().__init__(
            f"Missing required blocks for {proposal_type}: {', '.join(self.missing)}"
        )


class ConflictError(Exception):
    """
    Exception for fields that have no consensus and no single best value.

    The affected block is skipped (reported as blocked), never marked FAILED.

    Attributes:
        field: Field name in conflict
        block: Block value the field belongs to
    """

    def __init__(self, field: str, block: Optional[str] = None, message: str = "") -> None:
        self.field = field
        self.block = block
        super().__init__(
            message or f"Field '{field}' needs manual resolution: conflicting values"
        )


class StoreError(Exception):
    """
    Exception for downstream entity store failures.

    Carries a ``kind`` so callers can distinguish failures without parsing
    messages.

    Kinds:
        - constraint_violation: Write rejected by a constraint
        - not_found: Target record does not exist
        - timeout: Store call exceeded the configured timeout
        - unreachable: Store could not be contacted

    Examples:
        >>> raise StoreError("Edition 42 not found", kind=StoreError.NOT_FOUND)
    """

    CONSTRAINT_VIOLATION = "constraint_violation"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"

    KINDS = (CONSTRAINT_VIOLATION, NOT_FOUND, TIMEOUT, UNREACHABLE)

    def __init__(self, message: str, kind: str = UNREACHABLE) -> None:
        if kind not in self.KINDS:
            raise ValueError(f"Unknown StoreError kind: {kind}")
        self.kind = kind
        super().__init__(message)


class SchedulerError(Exception):
    """
    Exception for cycle-level auto-apply failures.

    Raised when selection or statistics persistence fails for a whole
    cycle. The scheduler logs and counts it, then waits for the next run.
    """

    pass
