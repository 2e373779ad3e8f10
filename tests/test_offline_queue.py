"""Tests for the persistent OfflineQueue

Tests: write-through persistence, restart round-trip, backoff schedule,
eviction, cleanup and tolerance of missing or corrupt files
"""
import json
import logging

import pytest

from tasksync.sync.change_tracker import ChangeTracker
from tasksync.sync.offline_queue import OfflineQueue, QueueItem
from tasksync.sync.protocol import ChangeType


@pytest.fixture
def queue_file(tmp_path):
    return tmp_path / ".sync-offline-queue.json"


@pytest.fixture
def queue(queue_file, clock):
    return OfflineQueue(queue_file, clock=clock)


@pytest.fixture
def make_change(clock):
    tracker = ChangeTracker(clock=clock)

    def _make(task_id="T1", change_type="update", data=None):
        change_id = tracker.record_local_change(task_id, change_type, data or {"title": "A"})
        return tracker.get_change(change_id)

    return _make


class TestPersistence:
    """Tests for load/save."""

    @pytest.mark.asyncio
    async def test_missing_file_is_empty_queue(self, queue):
        await queue.load()

        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_add_writes_through(self, queue, queue_file, make_change):
        """add() persists immediately as a JSON array."""
        change = make_change()

        await queue.add(change)

        on_disk = json.loads(queue_file.read_text())
        assert isinstance(on_disk, list)
        assert on_disk[0]["id"] == change.id
        assert on_disk[0]["taskId"] == "T1"
        assert on_disk[0]["retryCount"] == 0

    @pytest.mark.asyncio
    async def test_restart_round_trip(self, queue, queue_file, clock, make_change):
        """A fresh queue loading the same file sees the same item."""
        change = make_change(data={"title": "A", "priority": "high"})
        await queue.add(change)

        restarted = OfflineQueue(queue_file, clock=clock)
        await restarted.load()

        assert len(restarted) == 1
        item = restarted.items[0]
        assert item.id == change.id
        assert item.task_id == change.task_id
        assert item.type == ChangeType.UPDATE
        assert item.data == change.data
        assert item.timestamp == change.timestamp
        assert item.retry_count == 0

    @pytest.mark.asyncio
    async def test_corrupt_file_is_logged_and_emptied(self, queue, queue_file, caplog):
        queue_file.write_text("{not json")

        with caplog.at_level(logging.WARNING):
            await queue.load()

        assert len(queue) == 0
        assert "Corrupt offline queue" in caplog.text

    @pytest.mark.asyncio
    async def test_non_array_document_is_corrupt(self, queue, queue_file):
        queue_file.write_text(json.dumps({"items": []}))

        await queue.load()

        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_save_failure_is_logged_not_raised(self, tmp_path, clock, make_change, caplog):
        """The in-memory queue stays authoritative when disk writes fail."""
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        queue = OfflineQueue(blocker / "queue.json", clock=clock)

        with caplog.at_level(logging.ERROR):
            await queue.add(make_change())

        assert len(queue) == 1
        assert "Error saving offline queue" in caplog.text


class TestRetryAndBackoff:
    """Tests for mark_failed, mark_processed and get_ready_items."""

    @pytest.mark.asyncio
    async def test_new_item_is_ready(self, queue, make_change):
        item = await queue.add(make_change())

        assert [i.id for i in queue.get_ready_items()] == [item.id]

    @pytest.mark.asyncio
    async def test_mark_processed_removes_and_persists(self, queue, queue_file, make_change):
        item = await queue.add(make_change())

        await queue.mark_processed(item.id)

        assert len(queue) == 0
        assert json.loads(queue_file.read_text()) == []

    @pytest.mark.asyncio
    async def test_backoff_doubles_until_eviction(self, queue, clock, make_change):
        """Delays follow 1s, 2s, 4s, 8s; the fifth failure evicts."""
        item = await queue.add(make_change())
        deltas = []

        for _ in range(4):
            await queue.mark_failed(item.id, RuntimeError("boom"))
            current = queue.get(item.id)
            deltas.append(current.next_attempt - current.last_attempt)
            clock.now = current.next_attempt

        assert deltas == [1000, 2000, 4000, 8000]
        assert queue.get(item.id).last_error == "boom"

        await queue.mark_failed(item.id, RuntimeError("boom"))

        assert queue.get(item.id) is None
        clock.advance(60_000)
        assert queue.get_ready_items() == []

    @pytest.mark.asyncio
    async def test_failed_item_not_ready_before_next_attempt(self, queue, clock, make_change):
        item = await queue.add(make_change())
        await queue.mark_failed(item.id, "timeout")

        assert queue.get_ready_items() == []
        clock.advance(999)
        assert queue.get_ready_items() == []
        clock.advance(1)
        assert [i.id for i in queue.get_ready_items()] == [item.id]

    @pytest.mark.asyncio
    async def test_ready_items_ordered_by_eligibility(self, queue, clock, make_change):
        """Once backoff applies, a later item can become ready first."""
        first = await queue.add(make_change("T1"))
        clock.advance(10)
        second = await queue.add(make_change("T2"))

        await queue.mark_failed(first.id, "timeout")
        clock.advance(2000)

        assert [i.id for i in queue.get_ready_items()] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_mark_failed_unknown_id_is_noop(self, queue):
        await queue.mark_failed("missing", "boom")

        assert len(queue) == 0


class TestStatsAndCleanup:
    """Tests for get_stats, discard_task and cleanup."""

    @pytest.mark.asyncio
    async def test_stats_empty(self, queue):
        assert queue.get_stats() == {
            "total": 0,
            "ready": 0,
            "pending": 0,
            "failed": 0,
            "oldest_item": None,
        }

    @pytest.mark.asyncio
    async def test_stats_counts(self, queue, clock, make_change):
        oldest = clock.now
        first = await queue.add(make_change("T1"))
        clock.advance(5)
        await queue.add(make_change("T2"))
        await queue.mark_failed(first.id, "timeout")

        stats = queue.get_stats()

        assert stats["total"] == 2
        assert stats["ready"] == 1
        assert stats["pending"] == 2
        assert stats["failed"] == 0
        assert stats["oldest_item"] == oldest

    @pytest.mark.asyncio
    async def test_discard_task(self, queue, make_change):
        await queue.add(make_change("T1"))
        await queue.add(make_change("T1"))
        keep = await queue.add(make_change("T2"))

        assert await queue.discard_task("T1") == 2
        assert [i.id for i in queue.items] == [keep.id]

    @pytest.mark.asyncio
    async def test_cleanup_drops_only_old_exhausted_items(self, queue, queue_file, clock):
        """Old retryable items survive; old exhausted items are removed."""
        eight_days = 8 * 24 * 60 * 60 * 1000
        old = clock.now - eight_days
        entries = [
            QueueItem(id="exhausted", task_id="T1", type=ChangeType.UPDATE, data={},
                      timestamp=old, queued_at=old, next_attempt=old, retry_count=5),
            QueueItem(id="retryable", task_id="T2", type=ChangeType.UPDATE, data={},
                      timestamp=old, queued_at=old, next_attempt=old, retry_count=2),
            QueueItem(id="recent", task_id="T3", type=ChangeType.UPDATE, data={},
                      timestamp=clock.now, queued_at=clock.now, next_attempt=clock.now, retry_count=5),
        ]
        queue_file.write_text(json.dumps([e.to_dict() for e in entries]))
        await queue.load()

        assert queue.get_stats()["failed"] == 2
        assert await queue.cleanup() == 1
        assert sorted(i.id for i in queue.items) == ["recent", "retryable"]
