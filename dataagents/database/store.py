#!/usr/bin/env python3
"""
store.py
--------------------
SQLAlchemy implementation of the engine's ProposalStore.

Each call opens its own session through DataAgentsDB.session_scope(),
commits, and returns detached domain objects (dataagents.engine.models);
ORM rows never leave this module.

Usage:
    db = DataAgentsDB(DB_PATH)
    store = DatabaseProposalStore(db, logger)
    for key in store.list_pending_target_keys():
        group = engine.consolidate(store.find_by_target_key(key), key)
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar

# --- Local imports ---
from dataagents.core.enums import ApplicationStatus, BlockType, ProposalStatus, ProposalType
from dataagents.core.logging_manager import DataAgentsLogger
from dataagents.engine import models as domain
from dataagents.engine.models import TargetKey

from . import models as orm
from .manager import DataAgentsDB
from .models import as_utc


T = TypeVar("T")


# ----- ORM -> domain -----
def to_domain_proposal(row: orm.Proposal) -> domain.Proposal:
    return domain.Proposal.from_raw(
        id=row.id,
        agent_id=row.agent_id,
        target_key=TargetKey.of(row.event_id, row.edition_id, row.race_id),
        type=row.proposal_type,
        changes=row.changes or {},
        status=row.status,
        approved_blocks=row.approved_blocks or {},
        confidence=row.confidence,
        created_at=as_utc(row.created_at),
        internal=bool(row.internal),
    )


def to_domain_application(row: orm.ProposalApplication) -> domain.ProposalApplication:
    return domain.ProposalApplication(
        id=str(row.id),
        proposal_id=row.proposal_id,
        block_type=row.block_type,
        status=row.status,
        applied_changes=dict(row.applied_changes or {}),
        applied_at=as_utc(row.applied_at),
        error_message=row.error_message,
        replay_count=row.replay_count or 0,
        logs=list(row.logs or []),
        created_at=as_utc(row.created_at),
    )


class DatabaseProposalStore:
    """
    ProposalStore backed by the proposal database.

    Attributes:
        db: Database manager providing sessions and managers
        logger: Optional logger
    """

    def __init__(self, db: DataAgentsDB, logger: Optional[DataAgentsLogger] = None) -> None:
        self.db = db
        self.logger = logger or db.logger

    def _run(self, operation: Callable[[DataAgentsDB], T]) -> T:
        def attempt() -> T:
            with self.db.session_scope():
                return operation(self.db)

        return self.db.execute_with_retry(attempt)

    # -------------------------------------------------------------------------
    # Writes used by agents and tests
    # -------------------------------------------------------------------------

    def add_proposal(
        self,
        agent_id: str,
        proposal_type: ProposalType,
        target_key: TargetKey,
        changes: Mapping[str, Any],
        **kwargs: Any,
    ) -> domain.Proposal:
        """Insert a proposal (see ProposalManager.create for keyword arguments)."""
        return self._run(
            lambda db: to_domain_proposal(
                db.proposals.create(agent_id, proposal_type, target_key, changes, **kwargs)
            )
        )

    # -------------------------------------------------------------------------
    # Proposals
    # -------------------------------------------------------------------------

    def find_pending_by_target_key(self, key: TargetKey) -> List[domain.Proposal]:
        return self._run(
            lambda db: [to_domain_proposal(p) for p in db.proposals.find_open_by_target_key(key)]
        )

    def find_by_target_key(self, key: TargetKey) -> List[domain.Proposal]:
        return self._run(
            lambda db: [to_domain_proposal(p) for p in db.proposals.find_by_target_key(key)]
        )

    def list_pending_target_keys(self) -> List[TargetKey]:
        return self._run(lambda db: db.proposals.list_open_target_keys())

    def get_proposal(self, proposal_id: str) -> Optional[domain.Proposal]:
        def operation(db: DataAgentsDB) -> Optional[domain.Proposal]:
            row = db.proposals.get(proposal_id)
            return to_domain_proposal(row) if row is not None else None

        return self._run(operation)

    def update_status(
        self, proposal_id: str, status: ProposalStatus, reason: Optional[str] = None
    ) -> domain.Proposal:
        return self._run(
            lambda db: to_domain_proposal(db.proposals.update_status(proposal_id, status, reason))
        )

    def update_approved_blocks(
        self, proposal_id: str, blocks: Mapping[BlockType, bool]
    ) -> domain.Proposal:
        return self._run(
            lambda db: to_domain_proposal(db.proposals.update_approved_blocks(proposal_id, blocks))
        )

    # -------------------------------------------------------------------------
    # Applications
    # -------------------------------------------------------------------------

    def create_application(
        self,
        proposal_id: str,
        block_type: Optional[BlockType],
        applied_changes: Dict[str, Any],
    ) -> domain.ProposalApplication:
        return self._run(
            lambda db: to_domain_application(
                db.applications.create(proposal_id, block_type, applied_changes)
            )
        )

    def get_application(self, application_id: str) -> Optional[domain.ProposalApplication]:
        def operation(db: DataAgentsDB) -> Optional[domain.ProposalApplication]:
            row = db.applications.get(application_id)
            return to_domain_application(row) if row is not None else None

        return self._run(operation)

    def find_applications(
        self, proposal_ids: Sequence[str], block_type: Optional[BlockType] = None
    ) -> List[domain.ProposalApplication]:
        return self._run(
            lambda db: [
                to_domain_application(a)
                for a in db.applications.find_for_proposals(proposal_ids, block_type)
            ]
        )

    def update_application(
        self,
        application_id: str,
        status: ApplicationStatus,
        error: Optional[str] = None,
        applied_changes: Optional[Dict[str, Any]] = None,
        log: Optional[str] = None,
    ) -> domain.ProposalApplication:
        return self._run(
            lambda db: to_domain_application(
                db.applications.update(application_id, status, error, applied_changes, log)
            )
        )

    def reset_application(
        self,
        application_id: str,
        applied_changes: Optional[Dict[str, Any]] = None,
        log: Optional[str] = None,
    ) -> domain.ProposalApplication:
        return self._run(
            lambda db: to_domain_application(
                db.applications.reset(application_id, applied_changes, log)
            )
        )

    # -------------------------------------------------------------------------
    # Agent state (scheduler statistics)
    # -------------------------------------------------------------------------

    def get_state(self, agent_id: str, key: str, default: Any = None) -> Any:
        return self._run(lambda db: db.agent_states.get(agent_id, key, default))

    def set_state(self, agent_id: str, key: str, value: Any) -> None:
        self._run(lambda db: db.agent_states.set(agent_id, key, value))

    def agent_display_name(self, agent_id: str) -> str:
        return self._run(lambda db: db.agents.display_name(agent_id))
