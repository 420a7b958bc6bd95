#!/usr/bin/env python3
"""
fields.py
---------
Field to block mapping.

Each proposed field belongs to exactly one block. Fields outside every list
belong to no block: they are still consolidated and reported, but never
approved or written.
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

# --- Local imports ---
from dataagents.blocks.graph import coerce_block_type
from dataagents.core.enums import BlockType


EVENT_FIELDS: Tuple[str, ...] = (
    "name",
    "city",
    "country",
    "countrySubdivisionNameLevel1",
    "countrySubdivisionNameLevel2",
    "countrySubdivisionDisplayCodeLevel1",
    "countrySubdivisionDisplayCodeLevel2",
    "websiteUrl",
    "facebookUrl",
    "instagramUrl",
    "latitude",
    "longitude",
    "fullAddress",
    "dataSource",
)

EDITION_FIELDS: Tuple[str, ...] = (
    "year",
    "startDate",
    "endDate",
    "calendarStatus",
    "timeZone",
    "registrationOpeningDate",
    "registrationClosingDate",
    "registrantsNumber",
)

ORGANIZER_FIELDS: Tuple[str, ...] = ("organizer",)

RACE_FIELDS: Tuple[str, ...] = (
    "races",
    "racesToAdd",
    "racesToUpdate",
    "racesToDelete",
    "existingRaces",
)

BLOCK_FIELDS: Dict[BlockType, Tuple[str, ...]] = {
    BlockType.EVENT: EVENT_FIELDS,
    BlockType.EDITION: EDITION_FIELDS,
    BlockType.ORGANIZER: ORGANIZER_FIELDS,
    BlockType.RACES: RACE_FIELDS,
}

_FIELD_TO_BLOCK: Dict[str, BlockType] = {
    name: block for block, names in BLOCK_FIELDS.items() for name in names
}


def get_block_for_field(field_name: str) -> Optional[BlockType]:
    """Block owning ``field_name``, or None for unmapped fields."""
    return _FIELD_TO_BLOCK.get(field_name)


def is_field_in_block(field_name: str, block: Any) -> bool:
    block_type = coerce_block_type(block)
    return block_type is not None and get_block_for_field(field_name) == block_type


def blocks_for_fields(field_names: Iterable[str]) -> List[BlockType]:
    """Distinct blocks touched by ``field_names``, in block declaration order."""
    touched = {get_block_for_field(name) for name in field_names}
    return [block for block in BlockType if block in touched]


def filter_changes_by_block(changes: Mapping[str, Any], block: Any) -> Dict[str, Any]:
    """Subset of a changes mapping whose fields belong to ``block``."""
    return {name: value for name, value in changes.items() if is_field_in_block(name, block)}
