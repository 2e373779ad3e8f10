"""Pytest fixtures for tasksync tests.

Provides a controllable clock, in-memory fakes for the remote backend and the
local store, and a factory for fully wired SyncEngines.
"""
import asyncio
from typing import Any, Dict, List, Optional

import pytest

from tasksync.config import SyncConfig
from tasksync.errors import RemoteConnectionError, RemoteNotFoundError
from tasksync.event_bus import EventBus
from tasksync.sync.change_tracker import ChangeTracker
from tasksync.sync.connectivity import ConnectivityMonitor
from tasksync.sync.engine import SyncEngine
from tasksync.sync.offline_queue import OfflineQueue
from tasksync.sync.protocol import RemoteBackend, LocalStore


class FakeClock:
    """Manually advanced epoch-ms clock."""

    def __init__(self, start: int = 1_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class FakeRemote(RemoteBackend):
    """In-memory monday.com board.

    Every call yields to the event loop once so concurrent coroutines can
    interleave, as they would around real network I/O.
    """

    def __init__(self):
        self.tasks: Dict[str, Dict[str, Any]] = {}
        self.items: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.reachable = True
        self.fail_writes = False
        self.write_failures = 0
        self.load_error: Optional[Exception] = None
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    async def _write(self, name: str, *args) -> None:
        await asyncio.sleep(0)
        self.calls.append((name,) + args)
        if self.fail_writes:
            raise RemoteConnectionError("board unreachable")
        if self.write_failures > 0:
            self.write_failures -= 1
            raise RemoteConnectionError("transient failure")

    async def create_or_update_task(self, task):
        await self._write("create_or_update_task", task["id"])
        stored = dict(task)
        stored.setdefault("mondayItemId", f"M-{task['id']}")
        self.tasks[str(task["id"])] = stored
        return stored["mondayItemId"]

    async def delete_task(self, task_id):
        await self._write("delete_task", task_id)
        self.tasks.pop(str(task_id), None)

    async def update_task_status(self, task_id, status):
        await self._write("update_task_status", task_id, status)
        self.tasks.setdefault(str(task_id), {"id": str(task_id)})["status"] = status

    async def load_all_tasks(self):
        await asyncio.sleep(0)
        self.calls.append(("load_all_tasks",))
        if self.load_error is not None:
            raise self.load_error
        return [dict(task) for task in self.tasks.values()]

    async def test_connection(self):
        await asyncio.sleep(0)
        return self.reachable

    async def get_item(self, remote_id):
        await asyncio.sleep(0)
        self.calls.append(("get_item", remote_id))
        if remote_id not in self.items:
            raise RemoteNotFoundError(f"Item {remote_id} not found")
        return self.items[remote_id]

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


class FakeLocalStore(LocalStore):
    """Dict-backed local task store."""

    def __init__(self, tasks: Optional[List[Dict[str, Any]]] = None):
        self.tasks: Dict[str, Dict[str, Any]] = {str(t["id"]): dict(t) for t in tasks or []}

    async def save_task(self, task):
        self.tasks[str(task["id"])] = dict(task)

    async def delete_task(self, task_id):
        return self.tasks.pop(str(task_id), None) is not None

    async def load_tasks(self, force_refresh=False):
        return [dict(task) for task in self.tasks.values()]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def local_store():
    return FakeLocalStore()


@pytest.fixture
def sync_config():
    """Enabled config for board 42 with the newest-wins policy."""
    return SyncConfig(
        enabled=True,
        board_id="42",
        conflict_resolution="newest",
        api_key="test-key",
    )


@pytest.fixture
def make_engine(tmp_path, clock, remote, local_store, sync_config):
    """Factory for SyncEngines wired to the fakes.

    Keyword arguments override SyncConfig fields.
    """

    def _make(**overrides) -> SyncEngine:
        values = sync_config.to_dict()
        values.update(overrides)
        config = SyncConfig(api_key="test-key", **values)
        bus = EventBus()
        monitor = ConnectivityMonitor(
            primary_probe=remote.test_connection,
            event_bus=bus,
            probe_urls=(),
            clock=clock,
        )
        return SyncEngine(
            config,
            remote=remote,
            local_store=local_store,
            offline_queue=OfflineQueue(tmp_path / "queue.json", clock=clock),
            change_tracker=ChangeTracker(clock=clock),
            connectivity=monitor,
            event_bus=bus,
            clock=clock,
        )

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()
