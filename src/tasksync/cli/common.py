"""Shared utilities for tasksync CLI commands."""
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Any, Awaitable, TypeVar

import click

from ..config import CONFIG_FILENAME, get_base_path as _resolve_base_path

T = TypeVar("T")

# Verbosity levels
VERBOSITY_QUIET = 0
VERBOSITY_NORMAL = 1
VERBOSITY_VERBOSE = 2

_LOG_LEVELS = {
    VERBOSITY_QUIET: logging.ERROR,
    VERBOSITY_NORMAL: logging.WARNING,
    VERBOSITY_VERBOSE: logging.DEBUG,
}


def get_base_path(ctx_data_dir: Optional[Path] = None) -> Path:
    """Get the base path for tasksync data.

    Priority: --data-dir flag > TASKSYNC_BASE_PATH env var > default path.

    Args:
        ctx_data_dir: Value from --data-dir CLI option, if provided.
    """
    return _resolve_base_path(ctx_data_dir)


def get_config_path(ctx_data_dir: Optional[Path] = None) -> Path:
    return get_base_path(ctx_data_dir) / CONFIG_FILENAME


def configure_logging(verbosity: int) -> None:
    """Route library logging to stderr at a level matching the verbosity."""
    logging.basicConfig(
        level=_LOG_LEVELS.get(verbosity, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def run_async(coro: Awaitable[T]) -> T:
    """Run a coroutine to completion from a synchronous click command."""
    return asyncio.run(coro)


def should_print(verbosity: int, message_level: int) -> bool:
    """Determine if a message should be printed based on verbosity settings.

    Args:
        verbosity: Current verbosity level (0=quiet, 1=normal, 2=verbose).
        message_level: Minimum verbosity level required for this message.
    """
    return verbosity >= message_level


def echo_verbose(message: Any, verbosity: int) -> None:
    """Print a message only in verbose mode."""
    if should_print(verbosity, VERBOSITY_VERBOSE):
        click.echo(message, err=False)


def echo_normal(message: Any, verbosity: int) -> None:
    """Print a message in normal and verbose modes."""
    if should_print(verbosity, VERBOSITY_NORMAL):
        click.echo(message, err=False)


def echo_quiet(message: Any, verbosity: int) -> None:
    """Print a message that is shown even in quiet mode."""
    click.echo(message, err=False)


def fail(message: str) -> None:
    """Print an error to stderr and exit with status 1."""
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)
