#!/usr/bin/env python3
"""
test_validate.py
----------------
Tests for required-block validation and the auto-validation rules.

Usage:
    python -m pytest tests/unit/engine/test_validate.py -v
"""
# --- Third-party imports ---
import pytest

# --- Local imports ---
from dataagents.core.config import AutoApplySettings
from dataagents.core.enums import BlockType, ProposalType
from dataagents.core.exceptions import RequiredBlocksError, StoreError
from dataagents.engine.consolidate import ConsolidationEngine
from dataagents.engine.models import TargetKey
from dataagents.engine.validate import (
    AutoValidationRules,
    ExclusionReason,
    RequiredBlockValidator,
    count_new_races,
)


def consolidate(*proposals):
    return ConsolidationEngine().consolidate(list(proposals))


@pytest.fixture
def rules(entity_store, mock_logger):
    def factory(**settings):
        return AutoValidationRules(AutoApplySettings(**settings), entity_store, logger=mock_logger)

    return factory


class TestRequiredBlockValidator:
    def test_required_blocks(self):
        assert RequiredBlockValidator.required_blocks(ProposalType.NEW_EVENT) == [
            BlockType.EVENT,
            BlockType.EDITION,
        ]
        assert RequiredBlockValidator.required_blocks(None) == []

    def test_check_reports_missing_in_graph_order(self, make_proposal):
        group = consolidate(
            make_proposal(
                {"name": "Trail", "year": 2025},
                key=TargetKey(),
                ptype=ProposalType.NEW_EVENT,
                approved={"event": True},
            )
        )

        result = RequiredBlockValidator().check(group)

        assert not result.valid
        assert result.missing == [BlockType.EDITION]

    def test_ensure_passes(self, make_proposal):
        group = consolidate(make_proposal({"year": 2025}, approved={"edition": True}))
        RequiredBlockValidator().ensure(group)

    def test_ensure_raises_with_missing_blocks(self, make_proposal):
        group = consolidate(make_proposal({"year": 2025}))
        with pytest.raises(RequiredBlocksError) as exc_info:
            RequiredBlockValidator().ensure(group)
        assert exc_info.value.proposal_type == "EDITION_UPDATE"
        assert "edition" in str(exc_info.value)


class TestAutoValidationRules:
    """Exclusion reasons in evaluation order."""

    def test_eligible_group(self, rules, make_proposal):
        verdict = rules().evaluate(consolidate(make_proposal({"year": 2025})))
        assert verdict.eligible
        assert verdict.reason is None

    def test_new_event_excluded(self, rules, make_proposal):
        group = consolidate(
            make_proposal({"name": "Trail"}, key=TargetKey(), ptype=ProposalType.NEW_EVENT)
        )
        assert rules().evaluate(group).reason == ExclusionReason.NEW_EVENT

    def test_other_agent_excluded(self, rules, make_proposal):
        group = consolidate(
            make_proposal({"year": 2025}, agent_id="ffa"),
            make_proposal({"city": "Lyon"}, agent_id="manual"),
        )
        verdict = rules(allowed_agent_ids=["ffa"]).evaluate(group)
        assert verdict.reason == ExclusionReason.OTHER_AGENT
        assert "manual" in verdict.message

    def test_low_confidence_excluded(self, rules, make_proposal):
        group = consolidate(make_proposal({"year": 2025}, confidence=0.5))
        assert rules(min_confidence=0.7).evaluate(group).reason == ExclusionReason.LOW_CONFIDENCE

    def test_confidence_is_group_maximum(self, rules, make_proposal):
        group = consolidate(
            make_proposal({"year": 2025}, agent_id="a", confidence=0.5),
            make_proposal({"city": "Lyon"}, agent_id="b", confidence=0.8),
        )
        assert rules(min_confidence=0.7).evaluate(group).eligible

    def test_featured_event_excluded(self, rules, entity_store, make_proposal):
        entity_store.event_flags["1"] = {"is_featured": True}
        verdict = rules().evaluate(consolidate(make_proposal({"year": 2025})))
        assert verdict.reason == ExclusionReason.FEATURED_EVENT

    def test_premium_customer_excluded(self, rules, entity_store, make_proposal):
        entity_store.edition_flags["10"] = {"customer_type": "PREMIUM", "registrants_number": None}
        verdict = rules().evaluate(consolidate(make_proposal({"year": 2025})))
        assert verdict.reason == ExclusionReason.PREMIUM_CUSTOMER

    def test_internal_registrants_fill_allowed_for_customer(self, rules, entity_store, make_proposal):
        entity_store.edition_flags["10"] = {"customer_type": "PREMIUM", "registrants_number": None}
        group = consolidate(make_proposal({"registrantsNumber": 350}, internal=True))
        assert rules().evaluate(group).eligible

    def test_registrants_fill_needs_empty_value(self, rules, entity_store, make_proposal):
        entity_store.edition_flags["10"] = {"customer_type": "PREMIUM", "registrants_number": 120}
        group = consolidate(make_proposal({"registrantsNumber": 350}, internal=True))
        assert rules().evaluate(group).reason == ExclusionReason.PREMIUM_CUSTOMER

    def test_new_races_excluded(self, rules, make_proposal):
        group = consolidate(make_proposal({"racesToAdd": [{"name": "10K"}]}))
        verdict = rules().evaluate(group)
        assert verdict.reason == ExclusionReason.NEW_RACES
        assert "1 new race" in verdict.message

    def test_first_reason_wins(self, rules, entity_store, make_proposal):
        entity_store.event_flags["1"] = {"is_featured": True}
        group = consolidate(make_proposal({"racesToAdd": [{"name": "10K"}]}, confidence=0.1))
        assert rules().evaluate(group).reason == ExclusionReason.LOW_CONFIDENCE

    def test_flag_lookup_failure_excludes(self, rules, entity_store, mock_logger, make_proposal):
        def broken(event_id):
            raise StoreError("connection refused", kind=StoreError.UNREACHABLE)

        entity_store.get_event_flags = broken
        verdict = rules().evaluate(consolidate(make_proposal({"year": 2025})))

        assert verdict.reason == ExclusionReason.FEATURED_EVENT
        assert "Flag lookup failed" in verdict.message
        mock_logger.log_error.assert_called_once()

    def test_enabled_and_approvable_blocks(self, rules, make_proposal):
        checker = rules(enable_races_block=False, enable_organizer_block=False)
        assert checker.enabled_blocks() == [BlockType.EVENT, BlockType.EDITION]

        group = consolidate(make_proposal({"city": "Lyon", "races": [{"id": 3}]}))
        assert checker.approvable_blocks(group) == [BlockType.EVENT]


def test_count_new_races(make_proposal):
    proposal = make_proposal({
        "racesToAdd": [{"name": "10K"}, {"name": "5K"}],
        "racesToUpdate": [{"raceId": 4, "price": 10}, {"price": 12}],
        "races": [{"id": 1}, {"name": "Kids"}],
    })
    assert count_new_races(proposal) == 4
