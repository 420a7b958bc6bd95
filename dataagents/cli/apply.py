"""
Application Commands
------------------------

Write approved blocks to the entity store.

Commands:
    - apply: Apply the approved blocks of a target
    - replay: Re-run one failed or applied block application
"""
import json

import click

from dataagents.core.cli import echo_json
from dataagents.core.enums import BlockType
from dataagents.core.logging_manager import handle_cli_error
from dataagents.engine.models import ApplyResult
from . import get_engine, get_executor, get_store, target_key


OUTCOME_ICONS = {
    "applied": "✅",
    "unchanged": "✔️ ",
    "failed": "❌",
    "blocked": "⛔",
    "skipped": "⏭️ ",
    "dry_run": "📝",
}


def echo_result(result: ApplyResult) -> None:
    for outcome in result.outcomes:
        block = outcome.block_type.value if outcome.block_type else "legacy"
        icon = OUTCOME_ICONS.get(outcome.status.value, "•")
        line = f"{icon} {block}: {outcome.status.value}"
        if outcome.application_id:
            line += f" (application {outcome.application_id})"
        if outcome.message:
            line += f" - {outcome.message}"
        click.echo(line)
    click.echo(f"\n📊 {result.summary()}")
    for error in result.errors:
        click.echo(f"  • {error}", err=True)


@click.command()
@click.argument("event_id")
@click.argument("edition_id")
@click.option("--race-id", default=None, help="Race id for race-level proposals")
@click.option(
    "--block",
    "blocks",
    multiple=True,
    type=click.Choice(BlockType.choices()),
    help="Approve this block before applying (repeatable)",
)
@click.option("--dry-run", is_flag=True, help="Show what would be written")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def apply(ctx, event_id, edition_id, race_id, blocks, dry_run, as_json):
    """Apply the approved blocks of EVENT_ID / EDITION_ID."""
    key = target_key(event_id, edition_id, race_id)
    try:
        engine = get_engine(ctx)
        executor = get_executor(ctx)
        proposals = get_store(ctx).find_by_target_key(key)
        group = engine.consolidate(proposals, key)
        if group.is_empty:
            click.echo(f"No open proposals for {key.as_string()}")
            return

        approve = [BlockType(b) for b in blocks] or None
        result = executor.apply(group, dry_run=dry_run, approve=approve, archive=not dry_run)
    except Exception as e:
        handle_cli_error(ctx, e, "apply", {"target_key": key.as_string()})
        return

    if as_json:
        echo_json(result.to_dict())
    else:
        echo_result(result)
    if not result.ok:
        ctx.exit(1)


@click.command()
@click.argument("application_id")
@click.option(
    "--changes",
    default=None,
    help='Corrected changes as a JSON object, e.g. \'{"startDate": "2025-06-01"}\'',
)
@click.pass_context
def replay(ctx, application_id, changes):
    """Replay APPLICATION_ID, optionally with corrected changes."""
    try:
        corrected = json.loads(changes) if changes is not None else None
        result = get_executor(ctx).replay(application_id, corrected_changes=corrected)
    except Exception as e:
        handle_cli_error(ctx, e, "replay", {"application_id": application_id})
        return

    echo_result(result)
    if not result.ok:
        ctx.exit(1)
