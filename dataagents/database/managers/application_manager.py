#!/usr/bin/env python3
"""
application_manager.py
--------------------
Persistence of ProposalApplication rows (one per block write).

Every status change appends an audit line to the application's ``logs``.
Application ids are integers in the database; callers may pass them as
strings.

Usage:
    app_mgr = ApplicationManager(session, logger)
    app = app_mgr.create(proposal_id, BlockType.EDITION, {"startDate": "..."})
    app_mgr.update(app.id, ApplicationStatus.FAILED, error="[timeout] ...")
    app_mgr.reset(app.id, log="Replay requested")
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import copy
from typing import Any, Dict, List, Optional, Sequence, Union

# --- Local imports ---
from dataagents.core.enums import ApplicationStatus, BlockType
from dataagents.core.exceptions import ValidationError
from dataagents.database.decorators import DatabaseOperation, handle_db_errors
from dataagents.database.models import Proposal, ProposalApplication, utcnow

from .base_manager import BaseManager


def parse_application_id(application_id: Union[int, str]) -> Optional[int]:
    try:
        return int(application_id)
    except (TypeError, ValueError):
        return None


def _stamp(message: str) -> str:
    return f"{utcnow().isoformat(timespec='seconds')} {message}"


class ApplicationManager(BaseManager):
    """Creates, updates and resets proposal applications."""

    def _append_log(self, application: ProposalApplication, message: Optional[str]) -> None:
        if not message:
            return
        # Reassign so the JSON column is flagged dirty
        application.logs = list(application.logs or []) + [_stamp(message)]

    def _require(self, application_id: Union[int, str]) -> ProposalApplication:
        application = self.get(application_id)
        if application is None:
            raise ValidationError(f"Application not found: {application_id}")
        return application

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @handle_db_errors
    def get(self, application_id: Union[int, str]) -> Optional[ProposalApplication]:
        return self._get_by_id(ProposalApplication, parse_application_id(application_id))

    @handle_db_errors
    def find_for_proposals(
        self,
        proposal_ids: Sequence[str],
        block_type: Optional[BlockType] = None,
    ) -> List[ProposalApplication]:
        """Applications of ``proposal_ids`` (optionally one block), oldest first."""
        if not proposal_ids:
            return []
        query = self.session.query(ProposalApplication).filter(
            ProposalApplication.proposal_id.in_(list(proposal_ids))
        )
        if block_type is not None:
            query = query.filter(ProposalApplication.block_type == BlockType(block_type))
        return query.order_by(ProposalApplication.id).all()

    @handle_db_errors
    def list_failed(self, limit: int = 50) -> List[ProposalApplication]:
        return (
            self.session.query(ProposalApplication)
            .filter(ProposalApplication.status == ApplicationStatus.FAILED)
            .order_by(ProposalApplication.id.desc())
            .limit(limit)
            .all()
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(
        self,
        proposal_id: str,
        block_type: Optional[BlockType],
        applied_changes: Dict[str, Any],
    ) -> ProposalApplication:
        """
        Insert a PENDING application.

        Raises:
            ValidationError: If the proposal does not exist
        """
        if self._get_by_id(Proposal, proposal_id) is None:
            raise ValidationError(f"Proposal not found: {proposal_id}")

        block = BlockType(block_type) if block_type is not None else None
        with DatabaseOperation(
            self.logger,
            "create_application",
            details={"proposal_id": proposal_id, "block_type": getattr(block, "value", None)},
        ):
            application = ProposalApplication(
                proposal_id=proposal_id,
                block_type=block,
                status=ApplicationStatus.PENDING,
                applied_changes=copy.deepcopy(dict(applied_changes or {})),
                replay_count=0,
                logs=[],
            )
            self._append_log(application, "Created")
            self.session.add(application)
            self.session.flush()
            return application

    def update(
        self,
        application_id: Union[int, str],
        status: ApplicationStatus,
        error: Optional[str] = None,
        applied_changes: Optional[Dict[str, Any]] = None,
        log: Optional[str] = None,
    ) -> ProposalApplication:
        """
        Set the status of an application.

        APPLIED stamps ``applied_at`` and clears the error; FAILED records
        ``error``.
        """
        status = ApplicationStatus(status)
        application = self._require(application_id)

        with DatabaseOperation(
            self.logger,
            "update_application",
            details={"application_id": application.id, "status": status.value},
        ):
            application.status = status
            if status == ApplicationStatus.APPLIED:
                application.applied_at = utcnow()
                application.error_message = None
            elif status == ApplicationStatus.FAILED:
                application.error_message = error
            if applied_changes is not None:
                application.applied_changes = copy.deepcopy(dict(applied_changes))
            self._append_log(application, log or f"Status -> {status.value}")
            self.session.flush()
            return application

    def reset(
        self,
        application_id: Union[int, str],
        applied_changes: Optional[Dict[str, Any]] = None,
        log: Optional[str] = None,
    ) -> ProposalApplication:
        """Move an application back to PENDING for a replay (replay_count + 1)."""
        application = self._require(application_id)

        with DatabaseOperation(
            self.logger,
            "reset_application",
            details={"application_id": application.id},
        ):
            application.status = ApplicationStatus.PENDING
            application.replay_count = (application.replay_count or 0) + 1
            application.error_message = None
            application.applied_at = None
            if applied_changes is not None:
                application.applied_changes = copy.deepcopy(dict(applied_changes))
            self._append_log(
                application, f"{log or 'Reset'} (replay #{application.replay_count})"
            )
            self.session.flush()
            return application
