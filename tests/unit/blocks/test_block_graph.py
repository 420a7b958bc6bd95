"""Tests for block dependencies, ordering and required blocks."""
import itertools

import pytest

from dataagents.blocks.graph import (
    block_rank,
    coerce_block_type,
    depends_on,
    explain_execution_order,
    get_all_dependencies,
    get_all_dependents,
    sort_by_dependencies,
    validate_required_blocks,
)
from dataagents.core.enums import BlockType, ProposalType


class TestDependencies:
    """Tests for dependency traversal."""

    def test_organizer_depends_on_edition_and_event(self):
        """get_all_dependencies('organizer') lists prerequisites first."""
        assert get_all_dependencies("organizer") == [BlockType.EVENT, BlockType.EDITION]

    def test_races_dependencies(self):
        assert get_all_dependencies(BlockType.RACES) == [BlockType.EVENT, BlockType.EDITION]

    def test_event_has_no_dependencies(self):
        assert get_all_dependencies("event") == []

    def test_unknown_block_has_no_dependencies(self):
        assert get_all_dependencies("banana") == []
        assert get_all_dependencies(None) == []

    def test_dependents_of_edition(self):
        assert get_all_dependents("edition") == [BlockType.ORGANIZER, BlockType.RACES]

    def test_dependents_of_event(self):
        assert get_all_dependents("event") == [
            BlockType.EDITION,
            BlockType.ORGANIZER,
            BlockType.RACES,
        ]

    def test_depends_on_is_transitive(self):
        assert depends_on("races", "event") is True
        assert depends_on("event", "races") is False
        assert depends_on("organizer", "races") is False

    def test_block_does_not_depend_on_itself(self):
        assert depends_on("edition", "edition") is False


class TestOrdering:
    """Tests for sort_by_dependencies."""

    @pytest.mark.parametrize("permutation", list(itertools.permutations(list(BlockType))))
    def test_prerequisites_come_first(self, permutation):
        """Every item appears after the items it depends on, whatever the input order."""
        items = [{"block_type": block.value} for block in permutation]
        ordered = [i["block_type"] for i in sort_by_dependencies(items)]

        assert ordered[:2] == ["event", "edition"]
        assert set(ordered[2:]) == {"organizer", "races"}
        for position, block in enumerate(ordered):
            for dependency in get_all_dependencies(block):
                assert ordered.index(dependency.value) < position

    def test_equal_rank_keeps_input_order(self):
        """Organizer and races share a rank; their relative order is preserved."""
        first = [{"block_type": "races", "n": 1}, {"block_type": "organizer", "n": 2}]
        assert [i["n"] for i in sort_by_dependencies(first)] == [1, 2]

        second = [{"block_type": "organizer", "n": 1}, {"block_type": "races", "n": 2}]
        assert [i["n"] for i in sort_by_dependencies(second)] == [1, 2]

    def test_legacy_items_come_last(self):
        items = [{"block_type": None, "n": 1}, {"block_type": "event", "n": 2}]
        assert [i["n"] for i in sort_by_dependencies(items)] == [2, 1]

    def test_custom_key(self):
        assert sort_by_dependencies(["races", "event", "edition"], key=lambda b: b) == [
            "event",
            "edition",
            "races",
        ]

    def test_rank_values(self):
        assert block_rank("event") < block_rank("edition") < block_rank("races")
        assert block_rank("organizer") == block_rank("races")
        assert block_rank("legacy-thing") > block_rank("races")

    def test_coerce_block_type(self):
        assert coerce_block_type(" Edition ") == BlockType.EDITION
        assert coerce_block_type("unknown") is None
        assert coerce_block_type(3) is None


class TestRequiredBlocks:
    """Tests for validate_required_blocks."""

    def test_new_event_requires_event_and_edition(self):
        result = validate_required_blocks([{"block_type": "event"}], ProposalType.NEW_EVENT)
        assert result.valid is False
        assert result.missing == [BlockType.EDITION]

    def test_new_event_with_both_blocks_is_valid(self):
        result = validate_required_blocks(
            [{"block_type": "edition"}, {"block_type": "event"}], "NEW_EVENT"
        )
        assert result.valid is True
        assert result.missing == []

    def test_event_update_requires_event(self):
        result = validate_required_blocks([], ProposalType.EVENT_UPDATE)
        assert result.missing == [BlockType.EVENT]

    def test_edition_update_requires_edition(self):
        result = validate_required_blocks(["races"], ProposalType.EDITION_UPDATE, key=lambda b: b)
        assert result.missing == [BlockType.EDITION]
        assert "edition" in result.summary()

    @pytest.mark.parametrize("ptype", ["RACE_UPDATE", "EVENT_MERGE", "SOMETHING_ELSE"])
    def test_other_types_require_nothing(self, ptype):
        assert validate_required_blocks([], ptype).valid is True


class TestExplainExecutionOrder:
    """Tests for explain_execution_order."""

    def test_legacy_items_are_labelled(self):
        text = explain_execution_order([{"block_type": "event"}, {"block_type": None}])
        assert text == "Execution order: event → legacy"

    def test_empty_input(self):
        assert explain_execution_order([]) == "Execution order: "

    def test_full_chain(self):
        text = explain_execution_order(
            ["event", "edition", "organizer", "races"], key=lambda b: b
        )
        assert text == "Execution order: event → edition → organizer → races"
