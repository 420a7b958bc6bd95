"""
Scheduler Commands
------------------------

Unattended auto-apply loop.

Commands:
    - run: Run cycles forever (or once with --once)
    - next-run: Show when the next cycle would start
    - stats: Show the persisted run statistics
"""
import dataclasses

import click

from dataagents.core.cli import echo_json
from dataagents.core.logging_manager import handle_cli_error
from dataagents.scheduler.auto_apply import STATS_KEY, AutoApplyScheduler, RunStats
from dataagents.scheduler.frequency import calculate_next_run
from . import get_engine, get_executor, get_settings, get_store


def build_scheduler(ctx, dry_run: bool = False) -> AutoApplyScheduler:
    settings = get_settings(ctx)
    auto_apply = settings.auto_apply
    if dry_run and not auto_apply.dry_run:
        auto_apply = dataclasses.replace(auto_apply, dry_run=True)

    store = get_store(ctx)
    return AutoApplyScheduler(
        store,
        get_executor(ctx),
        auto_apply,
        state_store=store,
        consolidation=get_engine(ctx),
        logger=ctx.obj["logger"],
        timezone_name=settings.timezone,
    )


@click.group()
@click.pass_context
def scheduler(ctx: click.Context) -> None:
    """Run and inspect the auto-apply scheduler."""
    pass


@scheduler.command("run")
@click.option("--once", is_flag=True, help="Run a single cycle and exit")
@click.option("--dry-run", is_flag=True, help="Report without writing")
@click.pass_context
def run(ctx, once, dry_run):
    """Start the auto-apply loop."""
    try:
        auto_apply = build_scheduler(ctx, dry_run)
        if not once:
            click.echo(f"⏰ Auto-apply started ({auto_apply.describe()}), Ctrl+C to stop")
            try:
                auto_apply.run_forever()
            except KeyboardInterrupt:
                auto_apply.stop()
            return

        result = auto_apply.run_cycle()
    except Exception as e:
        handle_cli_error(ctx, e, "scheduler_run")
        return

    click.echo(f"📊 {result.summary()}")
    for reason, count in sorted(result.exclusions.items()):
        click.echo(f"  • excluded ({reason}): {count}")
    for error in result.apply_result.errors:
        click.echo(f"  • {error}", err=True)
    if not result.ok:
        ctx.exit(1)


@scheduler.command("next-run")
@click.pass_context
def next_run(ctx):
    """Show when the next cycle would start."""
    try:
        settings = get_settings(ctx)
        frequency = settings.auto_apply.frequency
        upcoming = calculate_next_run(frequency, tz=settings.timezone)
    except Exception as e:
        handle_cli_error(ctx, e, "scheduler_next_run")
        return

    click.echo(f"⏰ {upcoming.description} ({upcoming.next_run_at.isoformat()})")
    click.echo(f"   in {int(upcoming.delay_seconds // 60)} min")


@scheduler.command("stats")
@click.option("--json", "as_json", is_flag=True, help="Print as JSON")
@click.pass_context
def stats(ctx, as_json):
    """Show cumulative run statistics."""
    try:
        settings = get_settings(ctx)
        data = RunStats.from_dict(
            get_store(ctx).get_state(settings.auto_apply.agent_id, STATS_KEY, default={})
        ).to_dict()
    except Exception as e:
        handle_cli_error(ctx, e, "scheduler_stats")
        return

    if as_json:
        echo_json(data)
        return

    click.echo(f"📊 Runs: {data['total_runs']} "
               f"({data['successful_runs']} ok, {data['failed_runs']} failed)")
    click.echo(f"   Proposals analyzed: {data['total_proposals_analyzed']}")
    click.echo(f"   Proposals validated: {data['total_proposals_validated']}")
    click.echo(f"   Proposals ignored: {data['total_proposals_ignored']}")
    click.echo(f"   Last run: {data['last_run_at'] or 'never'}")
    for reason, count in sorted(data["exclusion_breakdown"].items()):
        click.echo(f"  • {reason}: {count}")
