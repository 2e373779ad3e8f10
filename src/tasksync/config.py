"""
Configuration for the monday.com synchronization engine.

Settings live under the ``monday`` key of ``config.yaml`` in the tasksync base
directory. The API key is never written to disk; it is read from the
``MONDAY_API_KEY`` environment variable.

Example config.yaml:

    monday:
      enabled: true
      board_id: "1234567890"
      auto_sync: true
      sync_interval: 300
      conflict_resolution: newest
"""

import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_BASE_PATH = Path.home() / ".tasksync"
CONFIG_FILENAME = "config.yaml"
API_KEY_ENV = "MONDAY_API_KEY"
BASE_PATH_ENV = "TASKSYNC_BASE_PATH"

MIN_SYNC_INTERVAL = 60
CONFLICT_POLICIES = ("local", "monday", "newest", "prompt")

DEFAULT_COLUMN_MAPPING = {
    "task_id": "task_id",
    "status": "status",
    "priority": "priority",
    "description": "description",
}


@dataclass
class SyncConfig:
    """Settings consumed by the sync engine. Read-only once constructed."""

    enabled: bool = False
    board_id: Optional[str] = None
    workspace_id: Optional[str] = None
    auto_sync: bool = False
    sync_interval: int = 300  # seconds
    conflict_resolution: str = "prompt"
    api_url: str = "https://api.monday.com/v2"
    api_key: Optional[str] = None
    timeout: float = 30.0
    retry_attempts: int = 3
    queue_file: str = ".sync-offline-queue.json"
    tasks_file: str = "tasks.json"
    webhook_secret: Optional[str] = None
    column_mapping: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_COLUMN_MAPPING))

    def __post_init__(self):
        if self.board_id is not None:
            self.board_id = str(self.board_id)
        if self.workspace_id is not None:
            self.workspace_id = str(self.workspace_id)

        self.conflict_resolution = str(self.conflict_resolution).lower()
        if self.conflict_resolution not in CONFLICT_POLICIES:
            raise ConfigurationError(
                f"Invalid conflict resolution: {self.conflict_resolution}. "
                f"Must be one of: {', '.join(CONFLICT_POLICIES)}"
            )

        try:
            self.sync_interval = int(self.sync_interval)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid sync interval: {self.sync_interval!r}")
        if self.sync_interval < MIN_SYNC_INTERVAL:
            logger.warning(
                f"Sync interval {self.sync_interval}s is below the {MIN_SYNC_INTERVAL}s minimum "
                f"(rate limiting); using {MIN_SYNC_INTERVAL}s"
            )
            self.sync_interval = MIN_SYNC_INTERVAL

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]], api_key: Optional[str] = None) -> "SyncConfig":
        """
        Build settings from the ``monday`` section of a config mapping.

        Unknown keys are ignored. ``api_key`` falls back to the
        MONDAY_API_KEY environment variable.
        """
        raw = dict(raw or {})
        known = {f for f in cls.__dataclass_fields__}
        values = {k: v for k, v in raw.items() if k in known and k != "api_key"}

        mapping = dict(DEFAULT_COLUMN_MAPPING)
        mapping.update(values.pop("column_mapping", None) or {})

        return cls(
            column_mapping=mapping,
            api_key=api_key or os.getenv(API_KEY_ENV),
            **values,
        )

    def require_credentials(self) -> None:
        """
        Validate settings needed to talk to the remote service.

        Raises:
            ConfigurationError: If the integration is disabled, or the API key
                or board id is missing
        """
        if not self.enabled:
            raise ConfigurationError("Monday.com integration is not enabled")
        if not self.api_key:
            raise ConfigurationError(f"Monday.com API key is required. Set {API_KEY_ENV}.")
        if not self.board_id:
            raise ConfigurationError("Monday.com board_id is not configured")

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view (API key omitted)."""
        data = asdict(self)
        data.pop("api_key", None)
        return data


def get_base_path(data_dir: Optional[Path] = None) -> Path:
    """Get the base path for tasksync data.

    Priority: explicit data_dir > TASKSYNC_BASE_PATH env var > default path.
    """
    if data_dir:
        return Path(data_dir)
    env_path = os.getenv(BASE_PATH_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_BASE_PATH


def load_config(base_path: Path) -> SyncConfig:
    """
    Load SyncConfig from ``<base_path>/config.yaml``.

    A missing file yields defaults (integration disabled).

    Raises:
        ConfigurationError: If the file cannot be parsed or holds invalid values
    """
    config_path = Path(base_path) / CONFIG_FILENAME
    if not config_path.exists():
        logger.debug(f"No config at {config_path}, using defaults")
        return SyncConfig.from_dict({})

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping")

    return SyncConfig.from_dict(data.get("monday"))


def default_config_document() -> Dict[str, Any]:
    """Document written by ``tasksync init``."""
    defaults = SyncConfig().to_dict()
    return {"monday": defaults}


__all__ = [
    "SyncConfig",
    "CONFLICT_POLICIES",
    "MIN_SYNC_INTERVAL",
    "get_base_path",
    "load_config",
    "default_config_document",
]
