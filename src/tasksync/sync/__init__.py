"""
tasksync Sync Module - Local/Remote Task Synchronization

Keeps a local task store and a monday.com board in agreement under
intermittent connectivity, concurrent edits on both sides and a rate-limited
remote API.

Key Components:
    - ChangeTracker: Local/remote observations and conflict detection
    - OfflineQueue: Durable queue of remote operations with backoff
    - ConnectivityMonitor: Self-adjusting reachability polling
    - WebhookHandler: Inbound board events
    - ConflictResolver: local / monday / newest / prompt policies
    - SyncEngine: The six-step sync cycle

Usage:
    from tasksync.sync import SyncEngine

    engine = SyncEngine(config, remote=client, local_store=store)
    await engine.initialize()
    await engine.sync_with_monday()
"""

from .protocol import (
    TaskSnapshot,
    ChangeType,
    SyncDirection,
    RemoteBackend,
    LocalStore,
)
from .change_tracker import ChangeTracker, ChangeRecord, ConflictRecord, Observation
from .offline_queue import OfflineQueue, QueueItem
from .connectivity import (
    ConnectivityMonitor,
    ConnectivityStatus,
    HostConnectivity,
    NullHostConnectivity,
)
from .conflict_resolver import ConflictPolicy, ConflictResolver, ConflictResolution
from .webhooks import WebhookHandler
from .engine import SyncEngine, Telemetry

__all__ = [
    "TaskSnapshot",
    "ChangeType",
    "SyncDirection",
    "RemoteBackend",
    "LocalStore",
    "ChangeTracker",
    "ChangeRecord",
    "ConflictRecord",
    "Observation",
    "OfflineQueue",
    "QueueItem",
    "ConnectivityMonitor",
    "ConnectivityStatus",
    "HostConnectivity",
    "NullHostConnectivity",
    "ConflictPolicy",
    "ConflictResolver",
    "ConflictResolution",
    "WebhookHandler",
    "SyncEngine",
    "Telemetry",
]
