"""Tests for JsonTaskStore."""
import json

import pytest

from tasksync.errors import ValidationError
from tasksync.storage.local_store import JsonTaskStore


@pytest.fixture
def tasks_file(tmp_path):
    return tmp_path / "tasks.json"


@pytest.fixture
def store(tasks_file):
    return JsonTaskStore(tasks_file)


class TestJsonTaskStore:
    """Tests for load/save/delete against tasks.json."""

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, store):
        assert await store.load_tasks() == []

    @pytest.mark.asyncio
    async def test_save_creates_document(self, store, tasks_file):
        await store.save_task({"id": "1", "title": "Write docs"})

        document = json.loads(tasks_file.read_text())
        assert document == {"tasks": [{"id": "1", "title": "Write docs"}]}
        assert not tasks_file.with_name("tasks.json.tmp").exists()

    @pytest.mark.asyncio
    async def test_save_replaces_existing_task(self, store):
        await store.save_task({"id": "1", "title": "old"})
        await store.save_task({"id": "2", "title": "other"})
        await store.save_task({"id": 1, "title": "new"})

        tasks = await store.load_tasks(force_refresh=True)

        assert [t["title"] for t in tasks] == ["new", "other"]

    @pytest.mark.asyncio
    async def test_save_requires_id(self, store):
        with pytest.raises(ValidationError):
            await store.save_task({"title": "anonymous"})

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.save_task({"id": "1"})

        assert await store.delete_task("1") is True
        assert await store.delete_task("1") is False
        assert await store.load_tasks() == []

    @pytest.mark.asyncio
    async def test_returned_tasks_are_copies(self, store):
        await store.save_task({"id": "1", "title": "A"})

        tasks = await store.load_tasks()
        tasks[0]["title"] = "mutated"

        assert (await store.load_tasks())[0]["title"] == "A"

    @pytest.mark.asyncio
    async def test_force_refresh_sees_external_edits(self, store, tasks_file):
        await store.save_task({"id": "1", "title": "A"})
        tasks_file.write_text(json.dumps({"tasks": [{"id": "1", "title": "edited"}]}))

        assert (await store.load_tasks())[0]["title"] == "A"
        assert (await store.load_tasks(force_refresh=True))[0]["title"] == "edited"

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, store, tasks_file):
        tasks_file.write_text("{oops")

        with pytest.raises(ValidationError, match="Corrupt task file"):
            await store.load_tasks()
