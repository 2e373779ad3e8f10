"""
Composition root: builds a fully wired SyncEngine from configuration.

Relative ``queue_file`` and ``tasks_file`` settings resolve against the
tasksync base path.
"""

from pathlib import Path
from typing import Optional
import logging

from .config import SyncConfig, load_config
from .remote.monday_client import MondayClient
from .storage.local_store import JsonTaskStore
from .sync.conflict_resolver import PromptCallback
from .sync.engine import SyncEngine
from .sync.offline_queue import OfflineQueue
from .sync.protocol import RemoteBackend, LocalStore

logger = logging.getLogger(__name__)


def resolve_path(base_path: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else Path(base_path) / path


def create_engine(
    base_path: Path,
    config: Optional[SyncConfig] = None,
    remote: Optional[RemoteBackend] = None,
    local_store: Optional[LocalStore] = None,
    prompt: Optional[PromptCallback] = None,
    interactive: bool = False,
) -> SyncEngine:
    """
    Build a SyncEngine with its default collaborators.

    Args:
        base_path: tasksync data directory
        config: Settings (loaded from base_path/config.yaml if None)
        remote: Remote backend (MondayClient if None; credentials are then required)
        local_store: Local store (JsonTaskStore on config.tasks_file if None)
        prompt: Async callback for the "prompt" conflict policy
        interactive: Whether prompt may be used

    Raises:
        ConfigurationError: If the config is invalid, or credentials are
            missing for the default remote client
    """
    base_path = Path(base_path)
    if config is None:
        config = load_config(base_path)

    if remote is None:
        config.require_credentials()
        remote = MondayClient(config)

    if local_store is None:
        local_store = JsonTaskStore(resolve_path(base_path, config.tasks_file))

    queue = OfflineQueue(resolve_path(base_path, config.queue_file))

    logger.debug(f"Creating sync engine for board {config.board_id} at {base_path}")
    return SyncEngine(
        config,
        remote=remote,
        local_store=local_store,
        offline_queue=queue,
        prompt=prompt,
        interactive=interactive,
    )


__all__ = ["create_engine", "resolve_path"]
