"""
conftest.py
-----------
Shared pytest fixtures for Data Agents tests.

Provides fixtures for:
- Temporary directories and mock loggers
- Proposal factories (domain objects)
- In-memory ProposalStore / EntityStore implementations
- SQLite-backed proposal database and entity database
"""
import copy
import itertools
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import MagicMock

import pytest

from dataagents.core.enums import ApplicationStatus, BlockType, ProposalStatus, ProposalType
from dataagents.core.exceptions import StoreError, ValidationError
from dataagents.core.logging_manager import DataAgentsLogger
from dataagents.engine.models import (
    Proposal,
    ProposalApplication,
    TargetKey,
    WriteResult,
    normalize_approved_blocks,
)


BASE_TIME = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


# ----- Path & Logger Fixtures -----

@pytest.fixture
def tmp_dir():
    """Create a temporary directory for test file operations."""
    with TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_logger():
    """MagicMock standing in for a DataAgentsLogger."""
    return MagicMock(spec=DataAgentsLogger)


# ----- In-memory stores -----

class InMemoryProposalStore:
    """ProposalStore keeping domain objects in dicts; returns copies like a real store."""

    def __init__(self):
        self.proposals = {}
        self.applications = {}
        self.state = {}
        self._ids = itertools.count(1)

    def add(self, proposal):
        self.proposals[proposal.id] = copy.deepcopy(proposal)
        return proposal

    def _sorted(self, key, open_only=False):
        rows = [
            p for p in self.proposals.values()
            if p.target_key == key and (p.status.is_open or not open_only)
        ]
        return [copy.deepcopy(p) for p in sorted(rows, key=lambda p: p.sort_key)]

    def find_pending_by_target_key(self, key):
        return self._sorted(key, open_only=True)

    def find_by_target_key(self, key):
        return self._sorted(key)

    def list_pending_target_keys(self):
        oldest = {}
        for proposal in self.proposals.values():
            if not proposal.status.is_open:
                continue
            current = oldest.get(proposal.target_key)
            if current is None or proposal.created_at < current:
                oldest[proposal.target_key] = proposal.created_at
        return [key for key, _ in sorted(oldest.items(), key=lambda kv: (kv[1], kv[0].as_string()))]

    def get_proposal(self, proposal_id):
        proposal = self.proposals.get(proposal_id)
        return copy.deepcopy(proposal) if proposal is not None else None

    def update_status(self, proposal_id, status, reason=None):
        proposal = self.proposals[proposal_id]
        status = ProposalStatus(status)
        if not proposal.status.can_transition_to(status):
            raise ValidationError(
                f"Illegal status transition for {proposal_id}: "
                f"{proposal.status.value} -> {status.value}"
            )
        proposal.status = status
        return copy.deepcopy(proposal)

    def update_approved_blocks(self, proposal_id, blocks):
        proposal = self.proposals[proposal_id]
        proposal.approved_blocks.update(normalize_approved_blocks(blocks))
        return copy.deepcopy(proposal)

    def create_application(self, proposal_id, block_type, applied_changes):
        application = ProposalApplication(
            id=str(next(self._ids)),
            proposal_id=proposal_id,
            block_type=block_type,
            applied_changes=copy.deepcopy(dict(applied_changes)),
            logs=["Created"],
        )
        self.applications[application.id] = application
        return copy.deepcopy(application)

    def get_application(self, application_id):
        application = self.applications.get(str(application_id))
        return copy.deepcopy(application) if application is not None else None

    def find_applications(self, proposal_ids, block_type=None):
        rows = [
            a for a in self.applications.values()
            if a.proposal_id in proposal_ids and (block_type is None or a.block_type == block_type)
        ]
        return [copy.deepcopy(a) for a in sorted(rows, key=lambda a: int(a.id))]

    def update_application(self, application_id, status, error=None, applied_changes=None, log=None):
        application = self.applications[str(application_id)]
        application.status = ApplicationStatus(status)
        if application.status == ApplicationStatus.APPLIED:
            application.applied_at = datetime.now(timezone.utc)
            application.error_message = None
        elif application.status == ApplicationStatus.FAILED:
            application.error_message = error
        if applied_changes is not None:
            application.applied_changes = copy.deepcopy(dict(applied_changes))
        application.logs.append(log or f"Status -> {application.status.value}")
        return copy.deepcopy(application)

    def reset_application(self, application_id, applied_changes=None, log=None):
        application = self.applications[str(application_id)]
        application.status = ApplicationStatus.PENDING
        application.replay_count += 1
        application.error_message = None
        application.applied_at = None
        if applied_changes is not None:
            application.applied_changes = copy.deepcopy(dict(applied_changes))
        application.logs.append(log or "Reset")
        return copy.deepcopy(application)

    def get_state(self, agent_id, key, default=None):
        return copy.deepcopy(self.state.get((agent_id, key), default))

    def set_state(self, agent_id, key, value):
        self.state[(agent_id, key)] = copy.deepcopy(value)


class InMemoryEntityStore:
    """
    EntityStore recording writes.

    Attributes:
        writes: (block, target_key, fields) per successful upsert
        failures: Block -> StoreError raised on upsert
        delay: Seconds to sleep in upsert (timeout tests)
        event_flags / edition_flags: Id -> flags
    """

    def __init__(self):
        self.writes = []
        self.failures = {}
        self.delay = 0.0
        self.event_flags = {}
        self.edition_flags = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(100)

    def upsert_block(self, block_type, target_key, fields):
        if self.delay:
            time.sleep(self.delay)
        block_type = BlockType(block_type)
        if block_type in self.failures:
            raise self.failures[block_type]

        with self._lock:
            self.writes.append((block_type, target_key, copy.deepcopy(fields)))
            if block_type == BlockType.EVENT:
                record_id = target_key.event_id or str(next(self._ids))
                created = target_key.event_id is None
            elif block_type == BlockType.EDITION:
                if target_key.event_id is None:
                    raise StoreError("Event not found: None", kind=StoreError.NOT_FOUND)
                record_id = target_key.edition_id or str(next(self._ids))
                created = target_key.edition_id is None
            else:
                record_id = target_key.edition_id
                created = False
        return WriteResult(block_type, target_key, record_id, created, sorted(fields))

    def get_event_flags(self, event_id):
        return dict(self.event_flags.get(event_id, {}))

    def get_edition_flags(self, edition_id):
        return dict(self.edition_flags.get(edition_id, {}))

    def blocks_written(self):
        return [block for block, _, _ in self.writes]


@pytest.fixture
def proposal_store():
    return InMemoryProposalStore()


@pytest.fixture
def entity_store():
    return InMemoryEntityStore()


# ----- Proposal factory -----

@pytest.fixture
def make_proposal():
    """
    Factory building domain proposals.

    Each call is one minute later than the previous one unless
    ``created_at`` is given, so creation order is FIFO order.
    """
    counter = itertools.count(1)

    def factory(
        changes,
        agent_id="agent-a",
        key=TargetKey.of("1", "10"),
        ptype=ProposalType.EDITION_UPDATE,
        status=ProposalStatus.PENDING,
        confidence=0.9,
        approved=None,
        internal=False,
        created_at=None,
        proposal_id=None,
    ):
        n = next(counter)
        return Proposal.from_raw(
            id=proposal_id or f"p{n}",
            agent_id=agent_id,
            target_key=key,
            type=ptype,
            changes=changes,
            status=status,
            approved_blocks=approved or {},
            confidence=confidence,
            internal=internal,
            created_at=created_at or BASE_TIME + timedelta(minutes=n),
        )

    return factory


# ----- Database Fixtures -----

@pytest.fixture
def test_db_path(tmp_dir):
    """Create temporary test database path."""
    return tmp_dir / "proposals.db"


@pytest.fixture
def test_db(test_db_path):
    """
    Create test database instance with schema.

    Fresh file: tables come from the ORM models and Alembic is stamped.
    """
    from dataagents.database.manager import DataAgentsDB

    db = DataAgentsDB(db_path=test_db_path)
    yield db
    db.dispose()


@pytest.fixture
def db_session(test_db):
    """
    Create a database session for tests.

    Provides a session with automatic rollback after test.
    """
    with test_db.session_scope() as session:
        yield session
        session.rollback()


@pytest.fixture
def db_store(test_db):
    from dataagents.database.store import DatabaseProposalStore

    return DatabaseProposalStore(test_db)


@pytest.fixture
def entity_db(tmp_dir):
    from dataagents.database.entity_store import DatabaseEntityStore

    store = DatabaseEntityStore(tmp_dir / "entities.db")
    yield store
    store.engine.dispose()
