"""tasksync CLI - Local task store <-> monday.com synchronization

Command modules:
- config.py: init, config set, get, show
- sync.py: sync run, status, queue-cleanup
- serve.py: serve
- common.py: shared utilities
"""
from pathlib import Path
import click

from .. import __version__
from .common import VERBOSITY_QUIET, VERBOSITY_NORMAL, VERBOSITY_VERBOSE, configure_logging
from .config import init, config_group
from .sync import sync_group
from .serve import serve


@click.group()
@click.version_option(version=__version__, prog_name="tasksync")
@click.option('--data-dir', type=click.Path(), default=None, envvar='TASKSYNC_BASE_PATH',
              help='Base directory for tasksync data (default: ~/.tasksync)')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose output')
@click.option('--quiet', '-q', is_flag=True, default=False,
              help='Suppress non-essential output')
@click.pass_context
def cli(ctx, data_dir, verbose, quiet):
    """tasksync - keep local tasks and a monday.com board in sync

    \b
    Key Commands:
        init              Create config.yaml and tasks.json
        config            Configuration management
        sync run          Run one sync cycle
        sync status       Show configuration and offline queue
        serve             Start the webhook receiver

    \b
    Examples:
        tasksync init --board-id 1234567890 --enable
        tasksync config set monday.conflict_resolution newest
        tasksync sync run --direction pull
        tasksync serve --port 8421
    """
    ctx.ensure_object(dict)

    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    if quiet:
        ctx.obj['verbosity'] = VERBOSITY_QUIET
    elif verbose:
        ctx.obj['verbosity'] = VERBOSITY_VERBOSE
    else:
        ctx.obj['verbosity'] = VERBOSITY_NORMAL

    ctx.obj['data_dir'] = Path(data_dir) if data_dir else None
    configure_logging(ctx.obj['verbosity'])


cli.add_command(init)
cli.add_command(config_group, name='config')
cli.add_command(sync_group, name='sync')
cli.add_command(serve)


def main():
    """Entry point for the tasksync console script."""
    cli(obj={})


__all__ = ["cli", "main"]
