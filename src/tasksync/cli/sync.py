"""monday.com sync commands for the tasksync CLI."""
import json
from datetime import datetime

import click

from ..bootstrap import create_engine, resolve_path
from ..config import load_config
from ..errors import ConfigurationError, TaskSyncError
from ..sync.change_tracker import ConflictRecord
from ..sync.conflict_resolver import WINNER_LOCAL, WINNER_MONDAY
from ..sync.offline_queue import OfflineQueue
from .common import get_base_path, echo_verbose, echo_normal, echo_quiet, fail, run_async

DAY_MS = 24 * 60 * 60 * 1000


@click.group()
@click.pass_context
def sync_group(ctx):
    """Synchronization with a monday.com board."""
    pass


async def prompt_for_conflict(conflict: ConflictRecord) -> str:
    """Ask on the terminal which side of a conflict to keep."""
    click.echo(click.style(f"\nConflict on task {conflict.task_id}", fg="yellow", bold=True))
    click.echo(f"  local  (changed {_format_ms(conflict.local_timestamp)}): {json.dumps(conflict.local_data)}")
    click.echo(f"  monday (changed {_format_ms(conflict.remote_timestamp)}): {json.dumps(conflict.remote_data)}")
    return click.prompt(
        "Keep which version?",
        type=click.Choice([WINNER_LOCAL, WINNER_MONDAY]),
        default=WINNER_LOCAL,
    )


def _format_ms(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000).isoformat(timespec="seconds")


@sync_group.command('run')
@click.option('--direction', type=click.Choice(['bidirectional', 'push', 'pull']),
              default='bidirectional', help='Which halves of the cycle to run')
@click.option('--full', 'force_full_sync', is_flag=True, default=False,
              help='Re-record every remote task, even if unchanged')
@click.option('--interactive', is_flag=True, default=False,
              help='Ask on the terminal when the conflict policy is "prompt"')
@click.pass_context
def sync_run(ctx, direction: str, force_full_sync: bool, interactive: bool):
    """Run one sync cycle against the configured board."""
    verbosity = ctx.obj.get('verbosity', 1)
    base_path = get_base_path(ctx.obj.get('data_dir'))

    try:
        engine = create_engine(
            base_path,
            prompt=prompt_for_conflict if interactive else None,
            interactive=interactive,
        )
    except ConfigurationError as e:
        fail(str(e))

    async def _run():
        await engine.initialize()
        try:
            await engine.connectivity.check_connectivity()
            return await engine.sync_with_monday(force_full_sync=force_full_sync, direction=direction)
        finally:
            await engine.shutdown()

    echo_normal(f"Syncing with monday.com board {engine.config.board_id} ({direction})...", verbosity)
    try:
        result = run_async(_run())
    except TaskSyncError as e:
        fail(f"Sync failed: {e}")

    if result.get("status") == "already_syncing":
        echo_normal("A sync is already in progress.", verbosity)
        return

    if not result.get("online"):
        echo_normal(click.style("Offline: changes stay queued until the board is reachable.", fg="yellow"), verbosity)

    echo_normal(click.style(f"✓ Sync completed in {result['duration_ms']}ms", fg="green"), verbosity)
    echo_normal(f"  Conflicts resolved: {result['conflicts_resolved']}", verbosity)
    if result.get("queue"):
        echo_verbose(f"  Offline queue: {result['queue']['processed']} applied, "
                     f"{result['queue']['failed']} failed", verbosity)
    if result.get("pushed"):
        echo_normal(f"  Pushed: {result['pushed']['pushed']}", verbosity)
    if result.get("pulled"):
        echo_normal(f"  Pulled: {result['pulled']['task_count']} tasks "
                    f"({result['pulled']['applied']} applied locally)", verbosity)

    integrity = result.get("integrity")
    if integrity and integrity["mismatches"]:
        echo_quiet(click.style(
            f"Integrity: {integrity['mismatches']} tasks differ "
            f"({', '.join(integrity['mismatched_task_ids'])})", fg="yellow"), verbosity)


@sync_group.command('status')
@click.pass_context
def sync_status(ctx):
    """Show sync configuration and offline queue state."""
    verbosity = ctx.obj.get('verbosity', 1)
    base_path = get_base_path(ctx.obj.get('data_dir'))

    try:
        config = load_config(base_path)
    except ConfigurationError as e:
        fail(str(e))

    queue = OfflineQueue(resolve_path(base_path, config.queue_file))
    run_async(queue.load())
    stats = queue.get_stats()

    echo_normal("=== monday.com Sync Status ===\n", verbosity)
    echo_normal(f"Enabled: {'yes' if config.enabled else 'no'}", verbosity)
    echo_normal(f"Board: {config.board_id or 'not set'}", verbosity)
    echo_normal(f"Auto-sync: {'on' if config.auto_sync else 'off'} (every {config.sync_interval}s)", verbosity)
    echo_normal(f"Conflict resolution: {config.conflict_resolution}", verbosity)
    echo_normal(f"Offline queue: {stats['total']} items ({stats['ready']} ready)", verbosity)
    if stats["oldest_item"] is not None:
        echo_verbose(f"Oldest queued: {_format_ms(stats['oldest_item'])}", verbosity)
    for item in queue.items:
        echo_verbose(f"  {item.id[:8]} {item.type.value:<13} task {item.task_id} "
                     f"retries={item.retry_count}"
                     + (f" last_error={item.last_error}" if item.last_error else ""), verbosity)


@sync_group.command('queue-cleanup')
@click.option('--max-age-days', type=int, default=7, help='Drop exhausted items older than this')
@click.pass_context
def sync_queue_cleanup(ctx, max_age_days: int):
    """Drop offline queue items that exhausted their retries."""
    verbosity = ctx.obj.get('verbosity', 1)
    base_path = get_base_path(ctx.obj.get('data_dir'))

    try:
        config = load_config(base_path)
    except ConfigurationError as e:
        fail(str(e))

    queue = OfflineQueue(resolve_path(base_path, config.queue_file))

    async def _cleanup():
        await queue.load()
        return await queue.cleanup(max_age_ms=max_age_days * DAY_MS)

    removed = run_async(_cleanup())
    echo_normal(click.style(f"✓ Removed {removed} queue items", fg="green"), verbosity)
