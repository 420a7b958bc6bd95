"""
Blocks
------

A proposal's fields are grouped into blocks (event, edition, organizer,
races) that are approved and written as units.

- graph: Dependencies between blocks, ordering and required blocks
- fields: Which block each proposed field belongs to
"""
from .fields import BLOCK_FIELDS, blocks_for_fields, filter_changes_by_block, get_block_for_field
from .graph import (
    BLOCK_DEPENDENCIES,
    REQUIRED_BLOCKS,
    RequiredBlocksResult,
    explain_execution_order,
    get_all_dependencies,
    get_all_dependents,
    sort_by_dependencies,
    validate_required_blocks,
)

__all__ = [
    "BLOCK_FIELDS",
    "BLOCK_DEPENDENCIES",
    "REQUIRED_BLOCKS",
    "RequiredBlocksResult",
    "blocks_for_fields",
    "explain_execution_order",
    "filter_changes_by_block",
    "get_all_dependencies",
    "get_all_dependents",
    "get_block_for_field",
    "sort_by_dependencies",
    "validate_required_blocks",
]
