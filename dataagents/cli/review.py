"""
Review Commands
------------------------

Read-only commands to inspect proposals before applying them.

Commands:
    - consolidate: Show the consolidated working group of a target
    - order: Show the execution order of blocks
"""
from typing import Any, Dict

import click

from dataagents.blocks.graph import (
    explain_execution_order,
    sort_by_dependencies,
    validate_required_blocks,
)
from dataagents.core.cli import echo_json
from dataagents.core.logging_manager import handle_cli_error
from dataagents.engine.models import WorkingGroup
from . import get_engine, get_store, target_key


def group_to_dict(group: WorkingGroup) -> Dict[str, Any]:
    """JSON view of a working group."""
    required = validate_required_blocks(
        group.approved_block_list(), group.proposal_type, key=lambda b: b
    )
    return {
        "target_key": group.target_key.as_string(),
        "proposal_type": group.proposal_type.value if group.proposal_type else None,
        "confidence": group.confidence,
        "pending": [
            {
                "id": p.id,
                "agent_id": p.agent_id,
                "status": p.status.value,
                "confidence": p.confidence,
                "created_at": p.created_at.isoformat(),
            }
            for p in group.pending_proposals
        ],
        "historical": [
            {"id": p.id, "status": p.status.value} for p in group.historical_proposals
        ],
        "superseded": dict(group.superseded),
        "fields": {
            name: {
                "block": f.block.value if f.block else None,
                "state": f.state.value,
                "candidates": [
                    {
                        "value": c.value.to_json(),
                        "agents": list(c.agent_ids),
                        "confidence": c.max_confidence,
                    }
                    for c in f.candidates
                ],
            }
            for name, f in group.consolidated_changes.items()
        },
        "blocks": [b.value for b in group.blocks()],
        "approved_blocks": [b.value for b in group.approved_block_list()],
        "required_blocks": required.summary(),
    }


@click.command()
@click.argument("event_id")
@click.argument("edition_id")
@click.option("--race-id", default=None, help="Race id for race-level proposals")
@click.option("--json", "as_json", is_flag=True, help="Print the full group as JSON")
@click.pass_context
def consolidate(ctx, event_id, edition_id, race_id, as_json):
    """Consolidate the open proposals of EVENT_ID / EDITION_ID."""
    key = target_key(event_id, edition_id, race_id)
    try:
        proposals = get_store(ctx).find_by_target_key(key)
        group = get_engine(ctx).consolidate(proposals, key)
    except Exception as e:
        handle_cli_error(ctx, e, "consolidate", {"target_key": key.as_string()})
        return

    data = group_to_dict(group)
    if as_json:
        echo_json(data)
        return

    if group.is_empty:
        click.echo(f"No open proposals for {key.as_string()}")
        return

    click.echo(f"\n🎯 Target {data['target_key']} ({data['proposal_type']})")
    click.echo(
        f"📊 {len(group.pending_proposals)} pending, "
        f"{len(group.historical_proposals)} historical, "
        f"{len(group.superseded)} superseded, confidence {group.confidence:.2f}"
    )
    for name, info in data["fields"].items():
        click.echo(f"  • {name} [{info['block'] or 'no block'}] {info['state']}")
        for candidate in info["candidates"]:
            agents = ", ".join(candidate["agents"])
            click.echo(f"      {candidate['value']!r} ({agents}; {candidate['confidence']:.2f})")
    approved = ", ".join(data["approved_blocks"]) or "none"
    click.echo(f"\n✅ Approved blocks: {approved}")
    click.echo(f"   {data['required_blocks']}")


@click.command()
@click.argument("blocks", nargs=-1)
def order(blocks):
    """Show the order in which BLOCKS would be executed."""
    ordered = sort_by_dependencies(list(blocks), key=lambda b: b)
    click.echo(explain_execution_order(ordered, key=lambda b: b))
