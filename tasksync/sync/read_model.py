"""Read model construction: task snapshot plus status counters."""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from tasksync.models import ReadModel, ReadModelMetadata, Task
from tasksync.observability import record_rebuild
from tasksync.repositories.base import TaskRepository

logger = logging.getLogger("tasksync.read_model")


def empty_read_model() -> ReadModel:
    return ReadModel(tasks=[], metadata=ReadModelMetadata())


def summarize(tasks: list[Task]) -> ReadModel:
    pending = completed = in_progress = 0
    for task in tasks:
        if task.status == "pending":
            pending += 1
        elif task.status == "done":
            completed += 1
        elif task.status == "in-progress":
            in_progress += 1

    return ReadModel(
        tasks=tasks,
        metadata=ReadModelMetadata(
            totalTasks=len(tasks),
            pendingTasks=pending,
            completedTasks=completed,
            inProgressTasks=in_progress,
            lastUpdated=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        ),
    )


def filter_tasks(tasks: list[Task], status: Optional[str]) -> list[Task]:
    """Keep tasks whose own status, or any subtask's status, matches."""
    if not status:
        return tasks
    return [
        task
        for task in tasks
        if task.status == status or any(sub.status == status for sub in task.subtasks)
    ]


class ReadModelBuilder:
    """Loads the full task list (always with subtasks) into a ReadModel."""

    def __init__(self, repository: TaskRepository):
        self.repository = repository

    async def build(self) -> ReadModel:
        try:
            if not self.repository.tasks_path.exists():
                return empty_read_model()
        except OSError:
            return empty_read_model()

        started = time.perf_counter()
        try:
            tasks = await self.repository.list_tasks(None, with_subtasks=True)
        except Exception as e:
            logger.warning(f"Failed to load tasks from {self.repository.tasks_path}: {e}")
            record_rebuild("error", (time.perf_counter() - started) * 1000)
            return empty_read_model()

        model = summarize(tasks)
        record_rebuild("ok", (time.perf_counter() - started) * 1000, task_count=len(tasks))
        return model
