"""
Sync Protocol Base Classes

Defines the narrow interfaces the synchronization engine calls on its
collaborators, plus the enums shared across the sync package.

RemoteBackend wraps the remote collaboration service (monday.com) and
LocalStore wraps local task persistence. Both are async: every call may
suspend on I/O without blocking the event loop.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)

# A task as exchanged with either store: a JSON-compatible dict keyed by "id"
TaskSnapshot = Dict[str, Any]


class ChangeType(Enum):
    """
    Kinds of local mutation the engine propagates to the remote side.

    CREATE: New task
    UPDATE: Task fields changed
    DELETE: Task removed
    STATUS_CHANGE: Only the status column changed
    """
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    STATUS_CHANGE = "status_change"

    @classmethod
    def from_string(cls, value: Any) -> "ChangeType":
        """
        Convert a string (or ChangeType) to a ChangeType.

        Raises:
            ValueError: If value does not name a change type
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(c.value for c in cls)
            raise ValueError(f"Unknown change type: {value}. Must be one of: {valid}")


class SyncDirection(Enum):
    """
    Which halves of a sync cycle run.

    BIDIRECTIONAL: Push local changes, then pull remote state
    PUSH: Local -> remote only
    PULL: Remote -> local only
    """
    BIDIRECTIONAL = "bidirectional"
    PUSH = "push"
    PULL = "pull"

    @property
    def includes_push(self) -> bool:
        return self in (SyncDirection.BIDIRECTIONAL, SyncDirection.PUSH)

    @property
    def includes_pull(self) -> bool:
        return self in (SyncDirection.BIDIRECTIONAL, SyncDirection.PULL)


class RemoteBackend(ABC):
    """
    Abstract interface to the remote collaboration service.

    All methods are fallible and raise subclasses of
    tasksync.errors.RemoteError so the engine can classify failures.
    """

    async def initialize(self) -> None:
        """Prepare connections. Default: nothing to do."""
        return None

    async def close(self) -> None:
        """Release connections. Default: nothing to do."""
        return None

    @abstractmethod
    async def create_or_update_task(self, task: TaskSnapshot) -> str:
        """
        Create the task remotely, or update it if it already exists.

        Returns:
            Remote item id
        """
        pass

    @abstractmethod
    async def delete_task(self, task_id: str) -> None:
        """Delete the remote item for a local task id."""
        pass

    @abstractmethod
    async def update_task_status(self, task_id: str, status: str) -> None:
        """Change only the status of the remote item for a local task id."""
        pass

    @abstractmethod
    async def load_all_tasks(self) -> List[TaskSnapshot]:
        """Load every task on the configured board."""
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """Inexpensive authenticated call; True if the service answered."""
        pass

    @abstractmethod
    async def get_item(self, remote_id: str) -> Dict[str, Any]:
        """
        Fetch a raw remote item.

        Returns:
            Dict with "id", "name" and "column_values" (list of
            {"id", "text", "value"})
        """
        pass


class LocalStore(ABC):
    """Abstract interface to local task persistence."""

    @abstractmethod
    async def save_task(self, task: TaskSnapshot) -> None:
        """Insert or replace a task (matched by "id")."""
        pass

    @abstractmethod
    async def delete_task(self, task_id: str) -> bool:
        """Remove a task. Returns True if it existed."""
        pass

    @abstractmethod
    async def load_tasks(self, force_refresh: bool = False) -> List[TaskSnapshot]:
        """
        Load all local tasks.

        Args:
            force_refresh: Bypass any in-memory cache and re-read the backing store
        """
        pass


__all__ = [
    "TaskSnapshot",
    "ChangeType",
    "SyncDirection",
    "RemoteBackend",
    "LocalStore",
]
