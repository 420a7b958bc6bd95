#!/usr/bin/env python3
"""
test_executor.py
----------------
Tests for ApplicationExecutor: ordered block writes, failure isolation,
idempotency and replay.

Usage:
    python -m pytest tests/unit/engine/test_executor.py -v
"""
# --- Standard library imports ---
import time

# --- Third-party imports ---
import pytest

# --- Local imports ---
from dataagents.core.enums import ApplicationStatus, BlockType, ProposalStatus, ProposalType
from dataagents.core.exceptions import (
    ConflictError,
    RequiredBlocksError,
    StoreError,
    ValidationError,
)
from dataagents.engine.consolidate import ConsolidationEngine
from dataagents.engine.executor import ApplicationExecutor
from dataagents.engine.models import OutcomeStatus, TargetKey


KEY = TargetKey.of("1", "10")
ALL_BLOCKS = {"event": True, "edition": True, "organizer": True, "races": True}
FULL_CHANGES = {
    "city": "Lyon",
    "startDate": "2025-06-01T08:00:00Z",
    "organizer": {"name": "Run Club"},
    "races": [{"id": 7, "price": 12}],
}


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture
def executor(proposal_store, entity_store, mock_logger):
    executor = ApplicationExecutor(
        proposal_store, entity_store, store_timeout=2.0, logger=mock_logger
    )
    yield executor
    executor.close()


@pytest.fixture
def build_group(proposal_store):
    """Store proposals and consolidate their target."""

    def factory(*proposals, key=KEY):
        for proposal in proposals:
            proposal_store.add(proposal)
        return ConsolidationEngine().consolidate(proposal_store.find_by_target_key(key), key)

    return factory


def statuses(result):
    return [(o.block_type, o.status) for o in result.outcomes]


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not reached in time")
        time.sleep(0.01)


# =========================================================================
# Apply
# =========================================================================


class TestApply:
    """Tests for ApplicationExecutor.apply."""

    def test_blocks_written_in_dependency_order(
        self, executor, entity_store, proposal_store, build_group, make_proposal
    ):
        group = build_group(make_proposal(FULL_CHANGES, approved=ALL_BLOCKS))

        result = executor.apply(group)

        assert result.ok
        assert result.success == 4
        assert entity_store.blocks_written() == [
            BlockType.EVENT,
            BlockType.EDITION,
            BlockType.ORGANIZER,
            BlockType.RACES,
        ]
        assert entity_store.writes[1][2] == {"startDate": "2025-06-01T08:00:00+00:00"}
        for application_id in result.applied_ids:
            assert proposal_store.applications[application_id].status == ApplicationStatus.APPLIED

    def test_only_approved_blocks_are_applied(self, executor, entity_store, build_group, make_proposal):
        group = build_group(
            make_proposal({"city": "Lyon", "year": 2025}, approved={"edition": True})
        )

        result = executor.apply(group)

        assert result.success == 1
        assert entity_store.blocks_written() == [BlockType.EDITION]

    def test_apply_twice_writes_once(self, executor, entity_store, build_group, make_proposal):
        """Re-applying the same group reports unchanged blocks and writes nothing."""
        group = build_group(make_proposal({"year": 2025}, approved={"edition": True}))

        first = executor.apply(group)
        second = executor.apply(group)

        assert first.success == 1
        assert len(entity_store.writes) == 1
        assert statuses(second) == [(BlockType.EDITION, OutcomeStatus.UNCHANGED)]
        assert second.failed == 0

    def test_failed_block_skips_its_dependents(
        self, executor, entity_store, proposal_store, build_group, make_proposal
    ):
        """A failing edition leaves the event written and skips organizer and races."""
        entity_store.failures[BlockType.EDITION] = StoreError(
            "Edition 10 not found", kind=StoreError.NOT_FOUND
        )
        proposal = make_proposal(FULL_CHANGES, approved=ALL_BLOCKS)
        group = build_group(proposal)

        result = executor.apply(group)

        assert entity_store.blocks_written() == [BlockType.EVENT]
        assert (result.success, result.failed, result.skipped) == (1, 1, 2)
        assert statuses(result) == [
            (BlockType.EVENT, OutcomeStatus.APPLIED),
            (BlockType.EDITION, OutcomeStatus.FAILED),
            (BlockType.ORGANIZER, OutcomeStatus.SKIPPED),
            (BlockType.RACES, OutcomeStatus.SKIPPED),
        ]
        failed = proposal_store.applications[result.failed_ids[0]]
        assert failed.status == ApplicationStatus.FAILED
        assert failed.error_message.startswith("[not_found]")
        assert any("prerequisite edition" in e for e in result.errors)
        # Event written, edition missing: partially approved
        assert proposal_store.proposals[proposal.id].status == ProposalStatus.PARTIALLY_APPROVED

    def test_failed_organizer_leaves_races_applied(
        self, executor, entity_store, proposal_store, build_group, make_proposal
    ):
        """Organizer and races only depend on the edition, not on each other."""
        entity_store.failures[BlockType.ORGANIZER] = StoreError(
            "Organizer email rejected", kind=StoreError.CONSTRAINT_VIOLATION
        )
        group = build_group(make_proposal(FULL_CHANGES, approved=ALL_BLOCKS))

        result = executor.apply(group)

        assert statuses(result) == [
            (BlockType.EVENT, OutcomeStatus.APPLIED),
            (BlockType.EDITION, OutcomeStatus.APPLIED),
            (BlockType.ORGANIZER, OutcomeStatus.FAILED),
            (BlockType.RACES, OutcomeStatus.APPLIED),
        ]
        assert (result.success, result.failed, result.skipped) == (3, 1, 0)
        assert entity_store.blocks_written() == [BlockType.EVENT, BlockType.EDITION, BlockType.RACES]
        races = result.outcomes[3]
        assert proposal_store.applications[races.application_id].status == ApplicationStatus.APPLIED

    def test_conflicting_field_blocks_block(self, executor, entity_store, build_group, make_proposal):
        group = build_group(
            make_proposal({"city": "Lyon", "year": 2025}, agent_id="a", confidence=0.8,
                          approved={"event": True, "edition": True}),
            make_proposal({"year": 2026}, agent_id="b", confidence=0.8,
                          approved={"edition": True}),
        )

        result = executor.apply(group)

        assert result.blocked == 1
        assert statuses(result) == [
            (BlockType.EVENT, OutcomeStatus.APPLIED),
            (BlockType.EDITION, OutcomeStatus.BLOCKED),
        ]
        assert entity_store.blocks_written() == [BlockType.EVENT]
        assert "manual resolution" in result.errors[0]

    def test_store_timeout_fails_block(self, proposal_store, entity_store, build_group, make_proposal):
        entity_store.delay = 0.5
        group = build_group(make_proposal({"year": 2025}, approved={"edition": True}))

        with ApplicationExecutor(proposal_store, entity_store, store_timeout=0.05) as executor:
            result = executor.apply(group)

            assert result.failed == 1
            assert "[timeout]" in result.errors[0]
            wait_until(lambda: not executor.lock_table.is_locked(KEY.as_string()))

    def test_late_write_keeps_target_locked_and_records_outcome(
        self, proposal_store, entity_store, build_group, make_proposal
    ):
        """A write finishing after its timeout holds the target and ends APPLIED."""
        entity_store.delay = 0.5
        group = build_group(make_proposal({"year": 2025}, approved={"edition": True}))

        with ApplicationExecutor(proposal_store, entity_store, store_timeout=0.05) as executor:
            result = executor.apply(group)
            application_id = result.failed_ids[0]

            assert proposal_store.applications[application_id].status == ApplicationStatus.FAILED
            assert executor.lock_table.is_locked(KEY.as_string())
            with pytest.raises(ConflictError):
                executor.apply(group, blocking=False)

            wait_until(lambda: not executor.lock_table.is_locked(KEY.as_string()))

        application = proposal_store.applications[application_id]
        assert entity_store.blocks_written() == [BlockType.EDITION]
        assert application.status == ApplicationStatus.APPLIED
        assert "after the timeout" in application.logs[-1]

    def test_late_write_skips_remaining_blocks(
        self, proposal_store, entity_store, build_group, make_proposal
    ):
        entity_store.delay = 0.3
        group = build_group(
            make_proposal(
                {"organizer": {"name": "Run Club"}, "races": [{"id": 7, "price": 12}], "year": 2025},
                approved={"edition": True, "organizer": True, "races": True},
            )
        )

        with ApplicationExecutor(proposal_store, entity_store, store_timeout=0.05) as executor:
            result = executor.apply(group)
            wait_until(lambda: not executor.lock_table.is_locked(KEY.as_string()))

        assert statuses(result) == [
            (BlockType.EDITION, OutcomeStatus.FAILED),
            (BlockType.ORGANIZER, OutcomeStatus.SKIPPED),
            (BlockType.RACES, OutcomeStatus.SKIPPED),
        ]
        assert "still running" in result.errors[-1]
        assert entity_store.blocks_written() == [BlockType.EDITION]

    def test_missing_required_block_raises(self, executor, build_group, make_proposal):
        group = build_group(
            make_proposal({"city": "Lyon", "year": 2025}, approved={"event": True})
        )

        with pytest.raises(RequiredBlocksError) as exc_info:
            executor.apply(group)
        assert exc_info.value.missing == ["edition"]

    def test_dry_run_writes_nothing(self, executor, entity_store, proposal_store, build_group, make_proposal):
        group = build_group(make_proposal(FULL_CHANGES, approved=ALL_BLOCKS))

        result = executor.apply(group, dry_run=True)

        assert [o.status for o in result.outcomes] == [OutcomeStatus.DRY_RUN] * 4
        assert entity_store.writes == []
        assert proposal_store.applications == {}

    def test_empty_group(self, executor):
        result = executor.apply(ConsolidationEngine().consolidate([], KEY))
        assert result.outcomes == []

    def test_non_blocking_apply_on_busy_target(self, executor, build_group, make_proposal):
        group = build_group(make_proposal({"year": 2025}, approved={"edition": True}))

        with executor.lock_table.hold(KEY.as_string()):
            with pytest.raises(ConflictError):
                executor.apply(group, blocking=False)

    def test_all_blocks_applied_marks_proposal_approved(
        self, executor, proposal_store, build_group, make_proposal
    ):
        proposal = make_proposal({"year": 2025}, approved={"edition": True})
        executor.apply(build_group(proposal))
        assert proposal_store.proposals[proposal.id].status == ProposalStatus.APPROVED

    def test_new_event_ids_flow_to_later_blocks(self, executor, entity_store, build_group, make_proposal):
        """The edition of a new event is written under the event just created."""
        new_key = TargetKey()
        proposal = make_proposal(
            {"name": "Trail des Cimes", "year": 2025},
            key=new_key,
            ptype=ProposalType.NEW_EVENT,
            approved={"event": True, "edition": True},
        )

        result = executor.apply(build_group(proposal, key=new_key))

        assert result.ok
        (_, event_key, _), (_, edition_key, _) = entity_store.writes
        assert event_key.event_id is None
        assert edition_key.event_id == "100"
        assert edition_key.edition_id is None

    def test_execution_order_is_logged(self, executor, mock_logger, build_group, make_proposal):
        executor.apply(build_group(make_proposal(FULL_CHANGES, approved=ALL_BLOCKS)))
        messages = [c[0][0] for c in mock_logger.log_info.call_args_list]
        assert "Execution order: event → edition → organizer → races" in messages


# =========================================================================
# Approval & archiving
# =========================================================================


class TestApprovalAndArchive:
    def test_approve_blocks_persists(self, executor, proposal_store, build_group, make_proposal):
        proposal = make_proposal({"city": "Lyon", "year": 2025})
        group = build_group(proposal)

        updated = executor.approve_blocks(group, [BlockType.EDITION])

        assert updated == [proposal.id]
        stored = proposal_store.proposals[proposal.id]
        assert stored.approved_blocks == {BlockType.EDITION: True}
        assert group.pending_proposals[0].is_block_approved(BlockType.EDITION)

    def test_approve_blocks_dry_run_only_in_memory(self, executor, proposal_store, build_group, make_proposal):
        proposal = make_proposal({"year": 2025})
        group = build_group(proposal)

        executor.approve_blocks(group, [BlockType.EDITION], dry_run=True)

        assert proposal_store.proposals[proposal.id].approved_blocks == {}
        assert group.pending_proposals[0].is_block_approved(BlockType.EDITION)

    def test_archive_superseded(self, executor, proposal_store, build_group, make_proposal):
        small = make_proposal({"year": 2025}, agent_id="a")
        large = make_proposal({"year": 2025, "city": "Lyon"}, agent_id="b")
        group = build_group(small, large)

        archived = executor.archive_superseded(group)

        assert archived == [small.id]
        assert proposal_store.proposals[small.id].status == ProposalStatus.ARCHIVED
        assert proposal_store.proposals[large.id].status == ProposalStatus.PENDING

    def test_apply_approves_and_archives_under_one_call(
        self, executor, entity_store, proposal_store, build_group, make_proposal
    ):
        small = make_proposal({"year": 2025}, agent_id="a")
        large = make_proposal({"year": 2025, "city": "Lyon"}, agent_id="b")
        group = build_group(small, large)

        result = executor.apply(group, approve=[BlockType.EVENT, BlockType.EDITION], archive=True)

        assert result.ok
        assert result.archived_ids == [small.id]
        assert group.approved_block_list() == [BlockType.EVENT, BlockType.EDITION]
        assert proposal_store.proposals[small.id].status == ProposalStatus.ARCHIVED
        assert proposal_store.proposals[small.id].approved_blocks == {BlockType.EDITION: True}
        assert proposal_store.proposals[large.id].status == ProposalStatus.APPROVED
        assert entity_store.blocks_written() == [BlockType.EVENT, BlockType.EDITION]
        assert not executor.lock_table.is_locked(KEY.as_string())


# =========================================================================
# Replay
# =========================================================================


class TestReplay:
    """Tests for ApplicationExecutor.replay."""

    def _failed_edition(self, executor, entity_store, build_group, make_proposal):
        entity_store.failures[BlockType.EDITION] = StoreError("boom", kind=StoreError.UNREACHABLE)
        result = executor.apply(
            build_group(make_proposal({"year": 2025}, approved={"edition": True}))
        )
        del entity_store.failures[BlockType.EDITION]
        return result.failed_ids[0]

    def test_replay_failed_application(
        self, executor, entity_store, proposal_store, build_group, make_proposal
    ):
        application_id = self._failed_edition(executor, entity_store, build_group, make_proposal)

        result = executor.replay(application_id)

        assert result.success == 1
        application = proposal_store.applications[application_id]
        assert application.status == ApplicationStatus.APPLIED
        assert application.replay_count == 1
        assert application.error_message is None

    def test_replay_with_corrected_changes(
        self, executor, entity_store, proposal_store, build_group, make_proposal
    ):
        application_id = self._failed_edition(executor, entity_store, build_group, make_proposal)

        executor.replay(application_id, corrected_changes={"year": 2026})

        assert entity_store.writes[-1][2] == {"year": 2026}
        assert proposal_store.applications[application_id].applied_changes == {"year": 2026}

    def test_replay_identical_applied_payload_is_not_rewritten(
        self, executor, entity_store, proposal_store, build_group, make_proposal
    ):
        result = executor.apply(
            build_group(make_proposal({"year": 2025}, approved={"edition": True}))
        )
        application_id = result.applied_ids[0]

        replayed = executor.replay(application_id)

        assert len(entity_store.writes) == 1
        assert replayed.outcomes[0].status == OutcomeStatus.UNCHANGED
        assert proposal_store.applications[application_id].replay_count == 1

    def test_replay_legacy_application_writes_each_block(
        self, executor, entity_store, proposal_store, make_proposal
    ):
        proposal = proposal_store.add(make_proposal({"city": "Lyon", "year": 2025}))
        legacy = proposal_store.create_application(proposal.id, None, {"year": 2025, "city": "Lyon"})
        proposal_store.update_application(legacy.id, ApplicationStatus.FAILED, error="old failure")

        result = executor.replay(legacy.id)

        assert result.success == 1
        assert entity_store.writes == [
            (BlockType.EVENT, KEY, {"city": "Lyon"}),
            (BlockType.EDITION, KEY, {"year": 2025}),
        ]

    def test_replay_pending_rejected(self, executor, proposal_store, make_proposal):
        proposal = proposal_store.add(make_proposal({"year": 2025}))
        pending = proposal_store.create_application(proposal.id, BlockType.EDITION, {"year": 2025})

        with pytest.raises(ValidationError, match="FAILED or APPLIED"):
            executor.replay(pending.id)

    def test_replay_unknown_application(self, executor):
        with pytest.raises(ValidationError, match="not found"):
            executor.replay("999")

    def test_replay_rejects_non_mapping_changes(
        self, executor, entity_store, build_group, make_proposal
    ):
        application_id = self._failed_edition(executor, entity_store, build_group, make_proposal)
        with pytest.raises(ValidationError):
            executor.replay(application_id, corrected_changes=["year"])
