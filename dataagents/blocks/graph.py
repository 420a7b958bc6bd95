#!/usr/bin/env python3
"""
graph.py
-------------------
Dependency graph between approval blocks.

Blocks must be applied to the entity store in dependency order: an edition
cannot be written before its event exists, organizers and races hang off an
edition.

    event ──► edition ──► organizer
                      └─► races

Key Features:
    - Transitive dependencies and dependents of a block
    - Stable dependency sort of arbitrary items carrying a block type
    - Required-block check per proposal type
    - Human-readable execution order for logs

All functions are pure. Items may be objects with a ``block_type``
attribute, mappings with a ``"block_type"`` key, or anything else with a
``key`` callable. Items without a known block type are "legacy" items:
they sort last and render as ``legacy``.

Usage:
    from dataagents.blocks.graph import sort_by_dependencies, explain_execution_order

    ordered = sort_by_dependencies(applications)
    logger.log_info(explain_execution_order(ordered))
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, TypeVar

# --- Local imports ---
from dataagents.core.enums import BlockType, ProposalType


T = TypeVar("T")

BLOCK_DEPENDENCIES: Dict[BlockType, List[BlockType]] = {
    BlockType.EVENT: [],
    BlockType.EDITION: [BlockType.EVENT],
    BlockType.ORGANIZER: [BlockType.EDITION],
    BlockType.RACES: [BlockType.EDITION],
}

BLOCK_RANK: Dict[BlockType, int] = {
    BlockType.EVENT: 0,
    BlockType.EDITION: 1,
    BlockType.ORGANIZER: 2,
    BlockType.RACES: 2,
}
LEGACY_RANK = len(BLOCK_RANK)
LEGACY_LABEL = "legacy"

REQUIRED_BLOCKS: Dict[ProposalType, List[BlockType]] = {
    ProposalType.NEW_EVENT: [BlockType.EVENT, BlockType.EDITION],
    ProposalType.EVENT_UPDATE: [BlockType.EVENT],
    ProposalType.EDITION_UPDATE: [BlockType.EDITION],
}


@dataclass
class RequiredBlocksResult:
    """
    Outcome of a required-block check.

    Attributes:
        valid: True when no required block is missing
        missing: Missing blocks, in graph order
    """

    valid: bool
    missing: List[BlockType] = field(default_factory=list)

    def summary(self) -> str:
        if self.valid:
            return "All required blocks present"
        return "Missing blocks: " + ", ".join(b.value for b in self.missing)


def coerce_block_type(value: Any) -> Optional[BlockType]:
    """
    Map a raw value to a BlockType.

    Unknown values and None map to None (legacy) instead of raising.
    """
    if isinstance(value, BlockType):
        return value
    if isinstance(value, str):
        try:
            return BlockType(value.strip().lower())
        except ValueError:
            return None
    return None


def _coerce_proposal_type(value: Any) -> Optional[ProposalType]:
    if isinstance(value, ProposalType):
        return value
    try:
        return ProposalType(value)
    except ValueError:
        return None


def block_type_of(item: Any) -> Any:
    """Default key: the ``block_type`` attribute or mapping entry of ``item``."""
    if isinstance(item, Mapping):
        return item.get("block_type")
    return getattr(item, "block_type", None)


# ═══════════════════════════════════════════════════════════════════════════
# GRAPH TRAVERSAL
# ═══════════════════════════════════════════════════════════════════════════

def get_all_dependencies(block: Any) -> List[BlockType]:
    """
    Transitive prerequisites of ``block``, prerequisites first.

    Examples:
        >>> get_all_dependencies("organizer")
        [<BlockType.EVENT: 'event'>, <BlockType.EDITION: 'edition'>]
        >>> get_all_dependencies("event")
        []
    """
    start = coerce_block_type(block)
    if start is None:
        return []

    ordered: List[BlockType] = []
    visited: Set[BlockType] = set()

    def visit(current: BlockType) -> None:
        if current in visited:
            return
        visited.add(current)
        for dependency in BLOCK_DEPENDENCIES[current]:
            visit(dependency)
        if current != start:
            ordered.append(current)

    visit(start)
    return ordered


def depends_on(block: Any, target: Any) -> bool:
    """True when ``target`` is reachable from ``block`` through dependencies."""
    source = coerce_block_type(block)
    wanted = coerce_block_type(target)
    if source is None or wanted is None or source == wanted:
        return False

    stack = list(BLOCK_DEPENDENCIES[source])
    seen: Set[BlockType] = set()
    while stack:
        current = stack.pop()
        if current == wanted:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(BLOCK_DEPENDENCIES[current])
    return False


def get_all_dependents(block: Any) -> List[BlockType]:
    """
    Every block whose dependency chain reaches ``block``, in declaration order.

    Examples:
        >>> get_all_dependents("edition")
        [<BlockType.ORGANIZER: 'organizer'>, <BlockType.RACES: 'races'>]
    """
    target = coerce_block_type(block)
    if target is None:
        return []
    return [candidate for candidate in BLOCK_DEPENDENCIES if depends_on(candidate, target)]


# ═══════════════════════════════════════════════════════════════════════════
# ORDERING & CHECKS
# ═══════════════════════════════════════════════════════════════════════════

def block_rank(value: Any) -> int:
    block = coerce_block_type(value)
    return LEGACY_RANK if block is None else BLOCK_RANK[block]


def sort_by_dependencies(
    items: Iterable[T], key: Callable[[T], Any] = block_type_of
) -> List[T]:
    """
    Stable sort of ``items`` so prerequisites come first.

    Rank: event < edition < organizer = races < legacy. Items of equal rank
    keep their input order.
    """
    return sorted(items, key=lambda item: block_rank(key(item)))


def validate_required_blocks(
    items: Iterable[Any],
    proposal_type: Any,
    key: Callable[[Any], Any] = block_type_of,
) -> RequiredBlocksResult:
    """
    Check that ``items`` cover every block required by ``proposal_type``.

    Required blocks:
        NEW_EVENT      -> event, edition
        EVENT_UPDATE   -> event
        EDITION_UPDATE -> edition
        other types    -> none

    Args:
        items: Items (or raw block values with ``key=lambda b: b``)
        proposal_type: ProposalType or its string value
        key: Extracts the block type of an item

    Returns:
        RequiredBlocksResult with missing blocks in graph order
    """
    ptype = _coerce_proposal_type(proposal_type)
    required = REQUIRED_BLOCKS.get(ptype, []) if ptype is not None else []
    present = {coerce_block_type(key(item)) for item in items}
    missing = [block for block in required if block not in present]
    return RequiredBlocksResult(valid=not missing, missing=missing)


def explain_execution_order(
    items: Sequence[Any], key: Callable[[Any], Any] = block_type_of
) -> str:
    """
    Render the order in which items will be executed.

    Examples:
        >>> explain_execution_order([{"block_type": "event"}, {"block_type": None}])
        'Execution order: event → legacy'
        >>> explain_execution_order([])
        'Execution order: '
    """
    labels = []
    for item in items:
        block = coerce_block_type(key(item))
        labels.append(block.value if block is not None else LEGACY_LABEL)
    return "Execution order: " + " → ".join(labels)
