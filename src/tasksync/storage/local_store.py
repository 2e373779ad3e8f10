"""
JSON file task store
Pattern: aiofiles read/write with an in-memory cache

The file holds a single document:

    {"tasks": [{"id": "1", "title": "...", ...}, ...]}

Writes go to a sibling temp file which then replaces the original.
"""

from pathlib import Path
from typing import Optional, List, Union
import json
import logging
import os

import aiofiles

from ..errors import ValidationError
from ..sync.protocol import LocalStore, TaskSnapshot

logger = logging.getLogger(__name__)


class JsonTaskStore(LocalStore):
    """LocalStore backed by a tasks.json file."""

    def __init__(self, tasks_file: Union[str, Path]):
        self.tasks_file = Path(tasks_file)
        self._cache: Optional[List[TaskSnapshot]] = None

    async def load_tasks(self, force_refresh: bool = False) -> List[TaskSnapshot]:
        if self._cache is not None and not force_refresh:
            return [dict(task) for task in self._cache]

        if not self.tasks_file.exists():
            self._cache = []
            return []

        async with aiofiles.open(self.tasks_file, "r", encoding="utf-8") as f:
            raw = await f.read()

        try:
            document = json.loads(raw) if raw.strip() else {}
        except ValueError as e:
            raise ValidationError(f"Corrupt task file {self.tasks_file}: {e}")

        tasks = document.get("tasks", []) if isinstance(document, dict) else document
        if not isinstance(tasks, list):
            raise ValidationError(f"Task file {self.tasks_file} has no task list")

        self._cache = [dict(task) for task in tasks if isinstance(task, dict)]
        return [dict(task) for task in self._cache]

    async def save_task(self, task: TaskSnapshot) -> None:
        if "id" not in task:
            raise ValidationError("Task has no id")

        tasks = await self.load_tasks()
        task_id = str(task["id"])
        for index, existing in enumerate(tasks):
            if str(existing.get("id")) == task_id:
                tasks[index] = dict(task)
                break
        else:
            tasks.append(dict(task))

        await self._write(tasks)

    async def delete_task(self, task_id: str) -> bool:
        tasks = await self.load_tasks()
        remaining = [t for t in tasks if str(t.get("id")) != str(task_id)]
        if len(remaining) == len(tasks):
            return False
        await self._write(remaining)
        return True

    async def _write(self, tasks: List[TaskSnapshot]) -> None:
        self.tasks_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.tasks_file.with_name(self.tasks_file.name + ".tmp")

        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps({"tasks": tasks}, indent=2, ensure_ascii=False))
        os.replace(tmp_path, self.tasks_file)

        self._cache = [dict(task) for task in tasks]
        logger.debug(f"Wrote {len(tasks)} tasks to {self.tasks_file}")


__all__ = ["JsonTaskStore"]
