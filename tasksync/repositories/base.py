"""Task repository contract.

The sync service never touches task content itself. Every read and write
goes through an object satisfying :class:`TaskRepository`, resolved once at
construction. AI-backed operations are further delegated to a
:class:`TaskGenerator` supplied by the host application.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Protocol, Union, runtime_checkable

from tasksync.models import ComplexityReport, Subtask, Task, ValidationReport

TaskId = Union[int, str]


class TaskRepositoryError(Exception):
    """Base error raised by repository implementations."""

    kind = "error"


class TaskNotFoundError(TaskRepositoryError):
    kind = "not_found"


class TaskValidationError(TaskRepositoryError):
    kind = "validation"


class TaskStoreCorruptError(TaskRepositoryError):
    """Raised when the task store exists but is not a valid document."""

    kind = "corrupt"


class UnsupportedOperationError(TaskRepositoryError):
    kind = "unsupported"


@runtime_checkable
class TaskGenerator(Protocol):
    """Content generation used by expansion, PRD parsing and complexity scoring."""

    async def generate_subtasks(
        self, task: Task, num_subtasks: Optional[int], prompt: str, research: bool
    ) -> list[dict[str, Any]]: ...

    async def generate_tasks_from_prd(
        self, prd_text: str, num_tasks: int, research: bool
    ) -> list[dict[str, Any]]: ...

    async def update_task(self, task: Task, prompt: str, research: bool) -> dict[str, Any]: ...

    async def score_complexity(self, task: Task, research: bool) -> dict[str, Any]: ...


@runtime_checkable
class TaskRepository(Protocol):
    tasks_path: Path

    async def list_tasks(self, status: Optional[str] = None, with_subtasks: bool = True) -> list[Task]: ...

    async def find_task(self, task_id: TaskId) -> Task | Subtask | None: ...

    async def find_next_task(self) -> Optional[Task]: ...

    async def set_task_status(self, task_id: TaskId, status: str) -> None: ...

    async def add_task(self, task_data: dict[str, Any]) -> int: ...

    async def remove_task(self, task_id: TaskId) -> None: ...

    async def update_task(self, task_id: TaskId, task_data: dict[str, Any]) -> Task | Subtask: ...

    async def update_tasks_from(self, from_id: int, prompt: str, research: bool = False) -> int: ...

    async def add_subtask(self, parent_id: TaskId, subtask_data: dict[str, Any]) -> str: ...

    async def update_subtask(self, subtask_id: str, prompt: str) -> Subtask: ...

    async def remove_subtask(self, parent_id: TaskId, subtask_id: TaskId, convert: bool = False) -> Optional[int]: ...

    async def clear_subtasks(self, task_ids: str) -> int: ...

    async def add_dependency(self, task_id: TaskId, depends_on: TaskId) -> None: ...

    async def remove_dependency(self, task_id: TaskId, depends_on: TaskId) -> None: ...

    async def validate_dependencies(self) -> ValidationReport: ...

    async def fix_dependencies(self) -> int: ...

    async def expand_task(
        self, task_id: TaskId, num_subtasks: Optional[int] = None, options: Optional[dict[str, Any]] = None
    ) -> int: ...

    async def expand_all(self, options: Optional[dict[str, Any]] = None) -> int: ...

    async def analyze_complexity(self, options: Optional[dict[str, Any]] = None) -> ComplexityReport: ...

    async def parse_prd(self, options: Optional[dict[str, Any]] = None) -> int: ...

    async def generate_task_files(self) -> list[Path]: ...

    async def sync_readme(self, options: Optional[dict[str, Any]] = None) -> Path: ...

    async def read_complexity_report(self) -> Optional[ComplexityReport]: ...
