"""
tasksync - Local task store <-> monday.com synchronization engine

Change tracking, conflict resolution, a durable offline queue with
retry/backoff, connectivity monitoring and webhook ingestion.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .config import SyncConfig, load_config, get_base_path
from .errors import (
    TaskSyncError,
    ConfigurationError,
    ValidationError,
    RemoteError,
)
from .event_bus import EventBus
from .sync import SyncEngine, ChangeTracker, OfflineQueue, ConnectivityMonitor, WebhookHandler
from .bootstrap import create_engine

__all__ = [
    "SyncConfig",
    "load_config",
    "get_base_path",
    "TaskSyncError",
    "ConfigurationError",
    "ValidationError",
    "RemoteError",
    "EventBus",
    "SyncEngine",
    "ChangeTracker",
    "OfflineQueue",
    "ConnectivityMonitor",
    "WebhookHandler",
    "create_engine",
]
