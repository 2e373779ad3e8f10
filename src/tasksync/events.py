"""
Event type definitions for tasksync event streaming.

This module defines typed events emitted by the synchronization engine:
- SyncCompletedEvent: When a sync cycle finishes
- SyncErrorEvent: When a sync cycle fails
- RemoteChangeEvent: When a webhook reports a remote change
- RemoteDataPulledEvent: When authoritative remote state was reloaded
- ConflictResolvedEvent: When a conflict was resolved by policy
- ConnectivityChangedEvent: When the remote service becomes (un)reachable
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any


@dataclass
class SyncCompletedEvent:
    """Event emitted when a sync cycle completes."""
    duration_ms: int
    conflicts: int
    direction: str
    integrity: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "sync.completed"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "duration_ms": self.duration_ms,
            "conflicts": self.conflicts,
            "direction": self.direction,
            "integrity": self.integrity,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class SyncErrorEvent:
    """Event emitted when a sync cycle fails."""
    error: str
    error_type: str
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "sync.error"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "error": self.error,
            "error_type": self.error_type,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class RemoteChangeEvent:
    """Event emitted when a webhook reports a change on the remote board."""
    task_id: str
    change_type: str
    monday_item_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "sync.remote_change"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "task_id": self.task_id,
            "change_type": self.change_type,
            "monday_item_id": self.monday_item_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class RemoteDataPulledEvent:
    """Event emitted after remote state was reloaded."""
    task_count: int
    applied: int = 0
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "sync.remote_data_pulled"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "task_count": self.task_count,
            "applied": self.applied,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class ConflictResolvedEvent:
    """Event emitted when a conflict is resolved."""
    task_id: str
    policy: str
    winner: str  # local | monday
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "sync.conflict_resolved"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "task_id": self.task_id,
            "policy": self.policy,
            "winner": self.winner,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class ConnectivityChangedEvent:
    """Event emitted when the observed online state flips."""
    is_online: bool
    last_successful_connection: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = ""

    def __post_init__(self):
        if not self.event_type:
            self.event_type = "connectivity.online" if self.is_online else "connectivity.offline"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "is_online": self.is_online,
            "last_successful_connection": self.last_successful_connection,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


__all__ = [
    "SyncCompletedEvent",
    "SyncErrorEvent",
    "RemoteChangeEvent",
    "RemoteDataPulledEvent",
    "ConflictResolvedEvent",
    "ConnectivityChangedEvent",
]
