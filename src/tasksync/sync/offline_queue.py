"""
Persistent Offline Queue

Durable, disk-backed queue of remote operations that have not been applied
yet. The whole queue is rewritten on every mutation (write-through) as a single
JSON array, so a restarted process picks up exactly where the previous one
stopped.

Retry policy: exponential backoff of base_delay * 2^(retry_count - 1)
(1s, 2s, 4s, 8s, 16s with the defaults). An item is dropped for good once its
retry_count reaches max_retries.

Persistence failures are logged, never raised: the in-memory queue stays
authoritative for the lifetime of the process.

Usage:
    queue = OfflineQueue(Path("~/.tasksync/.sync-offline-queue.json"))
    await queue.load()
    await queue.add(change)

    for item in queue.get_ready_items():
        try:
            await apply(item)
            await queue.mark_processed(item.id)
        except RemoteError as e:
            await queue.mark_failed(item.id, e)
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Any, List, Callable, Union
import json
import logging
import os

import aiofiles

from ..utils import now_ms
from .change_tracker import ChangeRecord
from .protocol import ChangeType

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_QUEUE_MAX_AGE_MS = 7 * 24 * 60 * 60 * 1000


@dataclass
class QueueItem:
    """
    A ChangeRecord waiting in the offline queue.

    Attributes:
        queued_at: When the item entered the queue (epoch ms)
        last_attempt: When the last failed attempt happened, or None
        next_attempt: Earliest time the item may be retried
        last_error: Message of the last failure, or None
    """
    id: str
    task_id: str
    type: ChangeType
    data: Any
    timestamp: int
    queued_at: int
    next_attempt: int
    synced: bool = False
    retry_count: int = 0
    last_attempt: Optional[int] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the on-disk JSON shape."""
        return {
            "id": self.id,
            "taskId": self.task_id,
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp,
            "synced": self.synced,
            "retryCount": self.retry_count,
            "queuedAt": self.queued_at,
            "lastAttempt": self.last_attempt,
            "nextAttempt": self.next_attempt,
            "lastError": self.last_error,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "QueueItem":
        """
        Rebuild an item from its on-disk JSON shape.

        Raises:
            KeyError, TypeError, ValueError: If required fields are missing or invalid
        """
        queued_at = int(raw["queuedAt"])
        return cls(
            id=str(raw["id"]),
            task_id=str(raw["taskId"]),
            type=ChangeType.from_string(raw["type"]),
            data=raw.get("data"),
            timestamp=int(raw.get("timestamp", queued_at)),
            queued_at=queued_at,
            next_attempt=int(raw.get("nextAttempt", queued_at)),
            synced=bool(raw.get("synced", False)),
            retry_count=int(raw.get("retryCount", 0)),
            last_attempt=raw.get("lastAttempt"),
            last_error=raw.get("lastError"),
        )


class OfflineQueue:
    """
    Disk-backed FIFO of pending remote operations with retry/backoff.

    Single-writer: all mutations happen on the engine's event loop.
    """

    def __init__(
        self,
        queue_file: Union[str, Path] = ".sync-offline-queue.json",
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Args:
            queue_file: Path of the JSON file backing the queue
            max_retries: Failed attempts before an item is dropped
            base_delay_ms: First backoff delay
            clock: Returns current time in epoch ms (injectable for tests)
        """
        self.queue_file = Path(queue_file)
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self._clock = clock
        self._queue: List[QueueItem] = []

    @property
    def items(self) -> List[QueueItem]:
        """Snapshot of queued items in insertion order."""
        return list(self._queue)

    async def load(self) -> None:
        """
        Load the queue from disk.

        A missing file is an empty queue. Corrupt content is logged and the
        queue is emptied.
        """
        try:
            async with aiofiles.open(self.queue_file, "r", encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            self._queue = []
            return
        except OSError as e:
            logger.warning(f"Error loading offline queue from {self.queue_file}: {e}")
            self._queue = []
            return

        try:
            entries = json.loads(raw)
            if not isinstance(entries, list):
                raise ValueError("queue file must contain a JSON array")
            self._queue = [QueueItem.from_dict(entry) for entry in entries]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Corrupt offline queue at {self.queue_file}, starting empty: {e}")
            self._queue = []
            return

        logger.debug(f"Loaded {len(self._queue)} items from offline queue")

    async def save(self) -> None:
        """
        Write the full queue to disk atomically.

        Writes a sibling temp file, then replaces the queue file with it, so a
        concurrent or later load() never sees a partial document.
        """
        payload = json.dumps([item.to_dict() for item in self._queue], indent=2)
        tmp_path = self.queue_file.with_name(self.queue_file.name + ".tmp")

        try:
            self.queue_file.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
            os.replace(tmp_path, self.queue_file)
            logger.debug(f"Saved {len(self._queue)} items to offline queue")
        except OSError as e:
            logger.error(f"Error saving offline queue to {self.queue_file}: {e}")

    async def add(self, change: ChangeRecord) -> QueueItem:
        """Append a change and persist immediately."""
        now = self._clock()
        item = QueueItem(
            id=change.id,
            task_id=change.task_id,
            type=change.type,
            data=change.data,
            timestamp=change.timestamp,
            queued_at=now,
            next_attempt=now,
        )
        self._queue.append(item)
        await self.save()

        logger.debug(f"Queued {item.type.value} for task {item.task_id}")
        return item

    def get(self, item_id: str) -> Optional[QueueItem]:
        for item in self._queue:
            if item.id == item_id:
                return item
        return None

    def get_ready_items(self) -> List[QueueItem]:
        """
        Items eligible for an attempt now.

        Ordered by next_attempt (then queued_at), which is insertion order
        until backoff reorders eligibility.
        """
        now = self._clock()
        ready = [
            item for item in self._queue
            if item.retry_count < self.max_retries and item.next_attempt <= now
        ]
        return sorted(ready, key=lambda item: (item.next_attempt, item.queued_at))

    async def mark_processed(self, item_id: str) -> None:
        """Remove an item after it was applied; persists."""
        self._queue = [item for item in self._queue if item.id != item_id]
        await self.save()

    async def mark_failed(self, item_id: str, error: Union[BaseException, str]) -> None:
        """
        Record a failed attempt and schedule the next one.

        The item is dropped permanently once retry_count reaches max_retries.
        """
        item = self.get(item_id)
        if item is None:
            return

        now = self._clock()
        item.retry_count += 1
        item.last_attempt = now
        item.last_error = str(error)

        delay = self.base_delay_ms * (2 ** (item.retry_count - 1))
        item.next_attempt = now + delay

        if item.retry_count >= self.max_retries:
            logger.error(
                f"Offline queue item {item_id} for task {item.task_id} exceeded "
                f"{self.max_retries} retries, dropping: {item.last_error}"
            )
            await self.mark_processed(item_id)
        else:
            logger.warning(
                f"Offline queue item {item_id} failed, retry "
                f"{item.retry_count}/{self.max_retries} in {delay}ms: {item.last_error}"
            )
            await self.save()

    async def discard_task(self, task_id: str) -> int:
        """
        Drop every queued item for task_id.

        Returns:
            Number of items dropped
        """
        before = len(self._queue)
        self._queue = [item for item in self._queue if item.task_id != task_id]
        dropped = before - len(self._queue)
        if dropped:
            await self.save()
            logger.info(f"Discarded {dropped} queued operations for task {task_id}")
        return dropped

    def get_stats(self) -> Dict[str, Any]:
        """Counts of queued items and the oldest queued_at (None when empty)."""
        return {
            "total": len(self._queue),
            "ready": len(self.get_ready_items()),
            "pending": sum(1 for item in self._queue if item.retry_count < self.max_retries),
            "failed": sum(1 for item in self._queue if item.retry_count >= self.max_retries),
            "oldest_item": min((item.queued_at for item in self._queue), default=None),
        }

    async def cleanup(self, max_age_ms: int = DEFAULT_QUEUE_MAX_AGE_MS) -> int:
        """
        Drop items older than max_age_ms that have exhausted their retries.

        Items still eligible for retry are kept regardless of age.

        Returns:
            Number of items removed
        """
        cutoff = self._clock() - max_age_ms
        before = len(self._queue)
        self._queue = [
            item for item in self._queue
            if not (item.queued_at < cutoff and item.retry_count >= self.max_retries)
        ]
        removed = before - len(self._queue)

        if removed:
            await self.save()
            logger.info(f"Cleaned up {removed} old offline queue items")
        return removed

    def __len__(self) -> int:
        return len(self._queue)


__all__ = ["OfflineQueue", "QueueItem"]
