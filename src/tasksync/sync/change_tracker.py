"""
Change Tracking for Incremental Sync

Records every local mutation and every observed remote mutation, keyed by task
id, with content hashes and timestamps. A task is in conflict when both sides
changed (different hashes) strictly after the last sync point for that task.

Pattern: One observation per side per task, overwritten on each new
observation. ChangeRecords are append-only apart from mark_synced, and are
garbage-collected in bulk by cleanup().

Known limitation: a single sync point per task (not one per replica). Under
rapid alternating online/offline transitions this can over- or under-report
conflicts.

Usage:
    tracker = ChangeTracker()
    change_id = tracker.record_local_change("T1", ChangeType.UPDATE, {"title": "A"})
    tracker.record_remote_change("T1", {"title": "B"})

    for conflict in tracker.detect_conflicts():
        ...

    tracker.mark_synced(change_id)
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Callable
import logging
import uuid

from ..utils import content_hash, now_ms
from .protocol import ChangeType

logger = logging.getLogger(__name__)

DEFAULT_CHANGE_MAX_AGE_MS = 24 * 60 * 60 * 1000


@dataclass
class ChangeRecord:
    """
    A local mutation awaiting propagation to the remote side.

    Attributes:
        id: Unique change id (uuid4 hex string)
        task_id: Local task id
        type: Kind of mutation
        data: Task-shaped payload
        timestamp: When the change was recorded (epoch ms)
        synced: Whether the change reached the remote side
        retry_count: Failed push attempts so far
    """
    id: str
    task_id: str
    type: ChangeType
    data: Any
    timestamp: int
    synced: bool = False
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "taskId": self.task_id,
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp,
            "synced": self.synced,
            "retryCount": self.retry_count,
        }


@dataclass
class Observation:
    """Latest known content of a task on one side."""
    task_id: str
    content_hash: str
    timestamp: int
    data: Any = None


@dataclass
class ConflictRecord:
    """A task changed on both sides since its last sync point."""
    task_id: str
    local_data: Any
    remote_data: Any
    local_timestamp: int
    remote_timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taskId": self.task_id,
            "localData": self.local_data,
            "remoteData": self.remote_data,
            "localTimestamp": self.local_timestamp,
            "remoteTimestamp": self.remote_timestamp,
        }


class ChangeTracker:
    """
    In-memory change tracking for one sync engine.

    Never raises on bad input: absent or unserializable data is treated as
    "no observation" and skipped.
    """

    def __init__(self, clock: Callable[[], int] = now_ms):
        """
        Args:
            clock: Returns current time in epoch ms (injectable for tests)
        """
        self._clock = clock
        self._changes: Dict[str, ChangeRecord] = {}
        self._last_sync: Dict[str, int] = {}
        self._local: Dict[str, Observation] = {}
        self._remote: Dict[str, Observation] = {}

    def record_local_change(self, task_id: str, change_type: Any, data: Any) -> Optional[str]:
        """
        Record a local mutation.

        Args:
            task_id: Local task id
            change_type: ChangeType or its string value
            data: Task-shaped payload

        Returns:
            The new change id, or None if change_type is unknown (logged, not recorded)
        """
        try:
            parsed_type = ChangeType.from_string(change_type)
        except ValueError as e:
            logger.warning(f"Skipping local change for task {task_id}: {e}")
            return None

        change_id = uuid.uuid4().hex
        change = ChangeRecord(
            id=change_id,
            task_id=str(task_id),
            type=parsed_type,
            data=data,
            timestamp=self._clock(),
        )
        self._changes[change_id] = change
        self.update_local_hash(change.task_id, data, timestamp=change.timestamp)

        logger.debug(f"Recorded local change: {change.type.value} for task {task_id}")
        return change_id

    def record_remote_change(self, task_id: str, data: Any, timestamp: Optional[int] = None) -> None:
        """Record that the remote side now holds data for task_id."""
        observation = self._observe(str(task_id), data, timestamp)
        if observation is None:
            return
        self._remote[observation.task_id] = observation
        logger.debug(f"Recorded remote change for task {task_id}")

    def update_local_hash(self, task_id: str, data: Any, timestamp: Optional[int] = None) -> None:
        """Record that the local side now holds data for task_id."""
        observation = self._observe(str(task_id), data, timestamp)
        if observation is not None:
            self._local[observation.task_id] = observation

    def _observe(self, task_id: str, data: Any, timestamp: Optional[int]) -> Optional[Observation]:
        if data is None:
            logger.debug(f"No data for task {task_id}, skipping observation")
            return None
        try:
            digest = content_hash(data)
        except (TypeError, ValueError) as e:
            logger.debug(f"Unhashable data for task {task_id}, skipping observation: {e}")
            return None
        return Observation(
            task_id=task_id,
            content_hash=digest,
            timestamp=self._clock() if timestamp is None else timestamp,
            data=data,
        )

    def detect_conflicts(self) -> List[ConflictRecord]:
        """
        Find tasks changed on both sides since their last sync point.

        A side whose observation is not newer than the sync point is merely
        stale and never reported.
        """
        conflicts = []

        for task_id, remote in self._remote.items():
            local = self._local.get(task_id)
            if local is None or local.content_hash == remote.content_hash:
                continue

            last_sync = self.last_sync_time(task_id)
            if local.timestamp > last_sync and remote.timestamp > last_sync:
                conflicts.append(ConflictRecord(
                    task_id=task_id,
                    local_data=local.data,
                    remote_data=remote.data,
                    local_timestamp=local.timestamp,
                    remote_timestamp=remote.timestamp,
                ))

        return conflicts

    def get_pending_changes(self) -> List[ChangeRecord]:
        """Unsynced changes, in recording order."""
        return [change for change in self._changes.values() if not change.synced]

    def mark_synced(self, change_id: str) -> None:
        """Mark a change as synced and move its task's sync point to now."""
        change = self._changes.get(change_id)
        if change:
            change.synced = True
            self._last_sync[change.task_id] = self._clock()

    def mark_task_synced(self, task_id: str, at: Optional[int] = None) -> None:
        """Move a task's sync point without touching its change records."""
        self._last_sync[str(task_id)] = self._clock() if at is None else at

    def supersede_pending(self, task_id: str) -> int:
        """
        Mark every unsynced change for task_id as synced.

        Used when a conflict resolution kept the remote value, so that stale
        local changes are not pushed over it.

        Returns:
            Number of changes superseded
        """
        count = 0
        for change in self._changes.values():
            if change.task_id == task_id and not change.synced:
                change.synced = True
                count += 1
        if count:
            logger.debug(f"Superseded {count} pending changes for task {task_id}")
        return count

    def drop_change(self, change_id: str) -> bool:
        """Forget a change without moving its task's sync point."""
        return self._changes.pop(change_id, None) is not None

    def last_sync_time(self, task_id: str) -> int:
        """Last sync point for task_id, 0 if never synced."""
        return self._last_sync.get(task_id, 0)

    def get_change(self, change_id: str) -> Optional[ChangeRecord]:
        return self._changes.get(change_id)

    def local_observation(self, task_id: str) -> Optional[Observation]:
        return self._local.get(task_id)

    def remote_observation(self, task_id: str) -> Optional[Observation]:
        return self._remote.get(task_id)

    def cleanup(self, max_age_ms: int = DEFAULT_CHANGE_MAX_AGE_MS) -> int:
        """
        Drop synced change records older than max_age_ms.

        Unsynced records are kept regardless of age.

        Returns:
            Number of records removed
        """
        cutoff = self._clock() - max_age_ms
        stale = [
            change_id for change_id, change in self._changes.items()
            if change.synced and change.timestamp < cutoff
        ]
        for change_id in stale:
            del self._changes[change_id]

        if stale:
            logger.debug(f"Cleaned up {len(stale)} synced change records")
        return len(stale)

    def __len__(self) -> int:
        return len(self._changes)


__all__ = ["ChangeTracker", "ChangeRecord", "Observation", "ConflictRecord"]
