#!/usr/bin/env python3
"""
test_managers.py
----------------
Tests for DataAgentsDB and the proposal, application, agent and agent
state managers against a real SQLite database.

Usage:
    python -m pytest tests/unit/database/test_managers.py -v
"""
# --- Standard library imports ---
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# --- Third-party imports ---
import pytest
from sqlalchemy.exc import OperationalError

# --- Local imports ---
from dataagents.core.enums import ApplicationStatus, BlockType, ProposalStatus, ProposalType
from dataagents.core.exceptions import DatabaseError, ValidationError
from dataagents.engine.models import TargetKey


KEY = TargetKey.of("1", "10")
T0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


def create(db, changes=None, key=KEY, minutes=0, **kwargs):
    kwargs.setdefault("confidence", 0.9)
    return db.proposals.create(
        kwargs.pop("agent_id", "ffa-scraper"),
        kwargs.pop("proposal_type", ProposalType.EDITION_UPDATE),
        key,
        changes or {"year": 2025},
        created_at=T0 + timedelta(minutes=minutes),
        **kwargs,
    )


# =========================================================================
# DataAgentsDB
# =========================================================================


class TestDataAgentsDB:
    def test_fresh_database_is_stamped(self, test_db):
        history = test_db.get_migration_history()
        assert history["status"] == "up_to_date"
        assert history["current_revision"]

    def test_reopening_existing_database(self, test_db, test_db_path):
        from dataagents.database.manager import DataAgentsDB

        with test_db.session_scope():
            create(test_db)
        reopened = DataAgentsDB(test_db_path)
        try:
            with reopened.session_scope():
                assert len(reopened.proposals.find_by_target_key(KEY)) == 1
        finally:
            reopened.dispose()

    def test_managers_require_session(self, test_db):
        with pytest.raises(DatabaseError, match="requires an active session"):
            test_db.proposals

    def test_session_rolls_back_on_error(self, test_db):
        with pytest.raises(RuntimeError):
            with test_db.session_scope():
                create(test_db)
                raise RuntimeError("abort")

        with test_db.session_scope():
            assert test_db.proposals.find_by_target_key(KEY) == []

    def test_execute_with_retry_on_lock(self, test_db):
        operation = MagicMock(
            side_effect=[OperationalError("stmt", {}, Exception("database is locked")), "ok"]
        )
        assert test_db.execute_with_retry(operation, retry_delay=0) == "ok"
        assert operation.call_count == 2

    def test_execute_with_retry_other_error(self, test_db):
        operation = MagicMock(side_effect=OperationalError("stmt", {}, Exception("no such table")))
        with pytest.raises(OperationalError):
            test_db.execute_with_retry(operation, retry_delay=0)
        assert operation.call_count == 1


# =========================================================================
# ProposalManager
# =========================================================================


class TestProposalManager:
    def test_create_normalizes_changes(self, test_db):
        with test_db.session_scope():
            proposal = create(
                test_db,
                {"city": "Lyon", "year": {"old": 2024, "new": 2025, "confidence": 0.5}},
                approved_blocks={"edition": True},
            )
            assert proposal.changes["city"] == {"old": None, "new": "Lyon"}
            assert proposal.changes["year"]["confidence"] == 0.5
            assert proposal.approved_blocks == {"edition": True}
            assert proposal.target_key == "1:10:"
            assert test_db.agents.display_name("ffa-scraper") == "ffa-scraper"

    def test_create_rejects_bad_input(self, test_db):
        with test_db.session_scope():
            with pytest.raises(ValidationError):
                create(test_db, confidence=1.2)
            with pytest.raises(ValidationError):
                create(test_db, proposal_type="NOT_A_TYPE")
            with pytest.raises(ValidationError):
                create(test_db, approved_blocks={"banana": True})

    def test_open_target_keys_fifo(self, test_db):
        other = TargetKey.of("2", "20")
        with test_db.session_scope():
            create(test_db, key=KEY, minutes=5)
            create(test_db, key=other, minutes=1)
            create(test_db, key=KEY, minutes=0, status=ProposalStatus.REJECTED)
            assert test_db.proposals.list_open_target_keys() == [other, KEY]

    def test_find_by_target_key_oldest_first(self, test_db):
        with test_db.session_scope():
            late = create(test_db, minutes=10)
            early = create(test_db, minutes=1)
            closed = create(test_db, minutes=5, status=ProposalStatus.ARCHIVED)
            assert [p.id for p in test_db.proposals.find_by_target_key(KEY)] == [
                early.id,
                closed.id,
                late.id,
            ]
            assert [p.id for p in test_db.proposals.find_open_by_target_key(KEY)] == [
                early.id,
                late.id,
            ]

    def test_status_transitions(self, test_db):
        with test_db.session_scope():
            proposal = create(test_db)
            test_db.proposals.update_status(proposal.id, ProposalStatus.ARCHIVED, reason="superseded by x")
            assert proposal.status_reason == "superseded by x"
            with pytest.raises(ValidationError, match="Illegal status transition"):
                test_db.proposals.update_status(proposal.id, ProposalStatus.PENDING)

    def test_update_approved_blocks_merges(self, test_db):
        with test_db.session_scope():
            proposal = create(test_db, approved_blocks={"event": True})
            test_db.proposals.update_approved_blocks(proposal.id, {BlockType.EDITION: True})
            assert proposal.approved_blocks == {"event": True, "edition": True}

    def test_cannot_approve_closed_proposal(self, test_db):
        with test_db.session_scope():
            proposal = create(test_db, status=ProposalStatus.REJECTED)
            with pytest.raises(ValidationError, match="Cannot approve"):
                test_db.proposals.update_approved_blocks(proposal.id, {"edition": True})

    def test_unknown_proposal(self, test_db):
        with test_db.session_scope():
            with pytest.raises(ValidationError, match="not found"):
                test_db.proposals.update_status("missing", ProposalStatus.REJECTED)

    def test_count_by_status(self, test_db):
        with test_db.session_scope():
            create(test_db)
            create(test_db, status=ProposalStatus.REJECTED)
            assert test_db.proposals.count_by_status() == {"PENDING": 1, "REJECTED": 1}


# =========================================================================
# ApplicationManager
# =========================================================================


class TestApplicationManager:
    def test_lifecycle_with_audit_logs(self, test_db):
        with test_db.session_scope():
            proposal = create(test_db)
            app = test_db.applications.create(proposal.id, BlockType.EDITION, {"year": 2025})
            assert app.status == ApplicationStatus.PENDING

            test_db.applications.update(app.id, ApplicationStatus.FAILED, error="[timeout] slow")
            assert app.error_message == "[timeout] slow"

            test_db.applications.reset(str(app.id), applied_changes={"year": 2026}, log="Replay")
            assert app.replay_count == 1
            assert app.applied_changes == {"year": 2026}

            test_db.applications.update(app.id, ApplicationStatus.APPLIED)
            assert app.applied_at is not None
            assert app.error_message is None
            assert len(app.logs) == 4
            assert app.logs[2].endswith("Replay (replay #1)")

    def test_create_requires_proposal(self, test_db):
        with test_db.session_scope():
            with pytest.raises(ValidationError, match="Proposal not found"):
                test_db.applications.create("missing", BlockType.EVENT, {})

    def test_find_for_proposals(self, test_db):
        with test_db.session_scope():
            proposal = create(test_db)
            first = test_db.applications.create(proposal.id, BlockType.EVENT, {"city": "Lyon"})
            second = test_db.applications.create(proposal.id, BlockType.EDITION, {"year": 2025})
            legacy = test_db.applications.create(proposal.id, None, {"year": 2025})

            found = test_db.applications.find_for_proposals([proposal.id])
            assert [a.id for a in found] == [first.id, second.id, legacy.id]
            only_edition = test_db.applications.find_for_proposals([proposal.id], BlockType.EDITION)
            assert [a.id for a in only_edition] == [second.id]
            assert test_db.applications.find_for_proposals([]) == []

    def test_unknown_or_malformed_id(self, test_db):
        with test_db.session_scope():
            assert test_db.applications.get("abc") is None
            with pytest.raises(ValidationError, match="Application not found"):
                test_db.applications.reset("999")

    def test_list_failed(self, test_db):
        with test_db.session_scope():
            proposal = create(test_db)
            app = test_db.applications.create(proposal.id, BlockType.EDITION, {"year": 2025})
            test_db.applications.update(app.id, ApplicationStatus.FAILED, error="boom")
            assert [a.id for a in test_db.applications.list_failed()] == [app.id]


# =========================================================================
# Agents & state
# =========================================================================


class TestAgents:
    def test_get_or_create(self, test_db):
        with test_db.session_scope():
            agent = test_db.agents.get_or_create("ffa-scraper", name="FFA Scraper")
            again = test_db.agents.get_or_create("ffa-scraper", name="Other")
            assert again is agent
            assert test_db.agents.display_name("ffa-scraper") == "FFA Scraper"
            assert test_db.agents.display_name("unknown") == "unknown"

    def test_empty_id_rejected(self, test_db):
        with test_db.session_scope():
            with pytest.raises(ValidationError):
                test_db.agents.get_or_create("  ")

    def test_agent_state(self, test_db):
        with test_db.session_scope():
            assert test_db.agent_states.get("auto-apply", "run_stats", default={}) == {}
            test_db.agent_states.set("auto-apply", "run_stats", {"total_runs": 1})
            test_db.agent_states.set("auto-apply", "run_stats", {"total_runs": 2})

        with test_db.session_scope():
            assert test_db.agent_states.get("auto-apply", "run_stats") == {"total_runs": 2}
            assert test_db.agent_states.get_all("auto-apply") == {"run_stats": {"total_runs": 2}}
