"""Initialization and configuration commands for the tasksync CLI."""
import json
from typing import Optional

import click
import yaml

from ..config import SyncConfig, default_config_document
from ..errors import ConfigurationError
from .common import get_base_path, get_config_path, echo_quiet, echo_normal, echo_verbose, fail


@click.command('init')
@click.option('--board-id', default=None, help='monday.com board to synchronize')
@click.option('--enable', is_flag=True, default=False, help='Enable the integration right away')
@click.option('--force', is_flag=True, default=False, help='Overwrite an existing config.yaml')
@click.pass_context
def init(ctx, board_id: Optional[str], enable: bool, force: bool) -> None:
    """Create the data directory with a default config.yaml and tasks.json.

    \b
    Examples:
        tasksync init
        tasksync init --board-id 1234567890 --enable
    """
    verbosity = ctx.obj.get('verbosity', 1)
    base_path = get_base_path(ctx.obj.get('data_dir'))
    config_path = get_config_path(ctx.obj.get('data_dir'))

    if config_path.exists() and not force:
        echo_normal(click.style(f"Already initialized at {base_path} (use --force to reset)", fg="yellow"), verbosity)
        return

    document = default_config_document()
    if board_id:
        document['monday']['board_id'] = board_id
    if enable:
        document['monday']['enabled'] = True

    base_path.mkdir(parents=True, exist_ok=True)
    config_path.write_text(yaml.dump(document, default_flow_style=False, sort_keys=False))
    echo_verbose(f"Wrote {config_path}", verbosity)

    tasks_path = base_path / document['monday']['tasks_file']
    if not tasks_path.exists():
        tasks_path.write_text(json.dumps({"tasks": []}, indent=2))
        echo_verbose(f"Wrote {tasks_path}", verbosity)

    echo_normal(click.style(f"✓ Initialized tasksync at {base_path}", fg="green"), verbosity)
    echo_normal("Set MONDAY_API_KEY in your environment before syncing.", verbosity)


@click.group()
def config_group():
    """Configuration management commands."""
    pass


def _load_document(ctx) -> dict:
    config_path = get_config_path(ctx.obj.get('data_dir'))
    if not config_path.exists():
        fail("tasksync not initialized. Run 'tasksync init' first.")
    try:
        return yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        fail(f"Could not parse {config_path}: {e}")


@config_group.command('set')
@click.argument('key')
@click.argument('value')
@click.pass_context
def config_set(ctx, key: str, value: str) -> None:
    """Set a configuration value.

    Values are parsed as YAML scalars, so "true" and "300" become a boolean
    and an integer.

    \b
    Examples:
        tasksync config set monday.board_id 1234567890
        tasksync config set monday.conflict_resolution newest
        tasksync config set monday.auto_sync true
    """
    verbosity = ctx.obj.get('verbosity', 1)
    config_data = _load_document(ctx)

    keys = key.split('.')
    current = config_data
    for k in keys[:-1]:
        if not isinstance(current.get(k), dict):
            current[k] = {}
        current = current[k]
    current[keys[-1]] = yaml.safe_load(value)

    try:
        SyncConfig.from_dict(config_data.get('monday'))
    except (ConfigurationError, TypeError) as e:
        fail(f"Invalid value for {key}: {e}")

    get_config_path(ctx.obj.get('data_dir')).write_text(
        yaml.dump(config_data, default_flow_style=False, sort_keys=False)
    )
    echo_normal(click.style(f"✓ Set {key} = {current[keys[-1]]}", fg="green"), verbosity)


@config_group.command('get')
@click.argument('key')
@click.pass_context
def config_get(ctx, key: str) -> None:
    """Get a configuration value.

    \b
    Examples:
        tasksync config get monday.sync_interval
    """
    verbosity = ctx.obj.get('verbosity', 1)
    current = _load_document(ctx)

    for k in key.split('.'):
        if not isinstance(current, dict) or k not in current:
            fail(f"Key '{key}' not found")
        current = current[k]

    echo_quiet(current, verbosity)


@config_group.command('show')
@click.pass_context
def config_show(ctx) -> None:
    """Display full configuration."""
    verbosity = ctx.obj.get('verbosity', 1)
    config_path = get_config_path(ctx.obj.get('data_dir'))
    if not config_path.exists():
        fail("tasksync not initialized. Run 'tasksync init' first.")

    echo_normal(click.style("Current configuration:", fg="cyan", bold=True), verbosity)
    echo_quiet(config_path.read_text(), verbosity)
