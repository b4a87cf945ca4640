"""JSON file implementation of TaskRepository."""
from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from pydantic import ValidationError

from tasksync import config
from tasksync.models import (
    TASK_PRIORITIES,
    TASK_STATUSES,
    ComplexityAnalysis,
    ComplexityReport,
    ComplexityReportMeta,
    Subtask,
    Task,
    TaskStore,
    ValidationReport,
)
from tasksync.repositories import dependencies as deps
from tasksync.repositories import exports
from tasksync.repositories.base import (
    TaskGenerator,
    TaskId,
    TaskNotFoundError,
    TaskStoreCorruptError,
    TaskValidationError,
    UnsupportedOperationError,
)

logger = logging.getLogger("tasksync.repository")

T = TypeVar("T")

_PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}
_PROTECTED_FIELDS = {"id", "subtasks", "parentTaskId"}
_EXPANDABLE_STATUSES = {"pending", "in-progress"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_task_id(value: TaskId) -> tuple[int, Optional[int]]:
    token = str(value).strip()
    head, sep, tail = token.partition(".")
    try:
        parent = int(head)
        sub = int(tail) if sep else None
    except ValueError as exc:
        raise TaskValidationError(f"Invalid task id: {value!r}") from exc
    return parent, sub


def _write_atomic(path: Path, text: str) -> None:
    """Write via a sibling temp file + rename so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _get_task(store: TaskStore, task_id: int) -> Task:
    for task in store.tasks:
        if task.id == task_id:
            return task
    raise TaskNotFoundError(f"Task {task_id} not found")


def _get_subtask(task: Task, subtask_id: int) -> Subtask:
    for subtask in task.subtasks:
        if subtask.id == subtask_id:
            return subtask
    raise TaskNotFoundError(f"Subtask {task.id}.{subtask_id} not found")


def _get_node(store: TaskStore, task_id: TaskId) -> tuple[Task | Subtask, Optional[Task]]:
    parent_id, sub_id = _parse_task_id(task_id)
    task = _get_task(store, parent_id)
    if sub_id is None:
        return task, None
    return _get_subtask(task, sub_id), task


def _apply_changes(node: Task | Subtask, changes: dict[str, Any]) -> None:
    """Validate the merged node before assigning, so a bad update never reaches disk."""
    try:
        updated = type(node).model_validate({**node.model_dump(), **changes})
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in err["loc"]) or "?" for err in exc.errors())
        raise TaskValidationError(f"Invalid value for {fields} on task {node.id}") from exc
    for key in changes:
        setattr(node, key, getattr(updated, key))


def _check_choice(field: str, value: Any, choices: tuple[str, ...]) -> None:
    if value not in choices:
        raise TaskValidationError(f"Invalid {field} {value!r}; expected one of {', '.join(choices)}")


def _as_dependency_list(raw: Any) -> list[int | str]:
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        raw = [token for token in raw.split(",") if token.strip()]
    result: list[int | str] = []
    for dep in raw:
        token = str(dep).strip()
        result.append(int(token) if token.isdigit() else token)
    return result


def _subtask_from_generated(raw: dict[str, Any], subtask_id: int, parent_id: int, id_offset: int) -> Subtask:
    status = raw.get("status") if raw.get("status") in TASK_STATUSES else "pending"
    return Subtask(
        id=subtask_id,
        title=str(raw.get("title") or f"Subtask {subtask_id}"),
        description=str(raw.get("description") or ""),
        details=str(raw.get("details") or ""),
        testStrategy=str(raw.get("testStrategy") or ""),
        status=status,
        # generated sibling ids count from 1 within the batch
        dependencies=[
            dep + id_offset if isinstance(dep, int) else dep
            for dep in raw.get("dependencies") or []
            if isinstance(dep, (int, str))
        ],
        parentTaskId=parent_id,
    )


def _task_from_generated(raw: dict[str, Any], task_id: int, id_offset: int) -> Task:
    priority = raw.get("priority") if raw.get("priority") in TASK_PRIORITIES else "medium"
    return Task(
        id=task_id,
        title=str(raw.get("title") or f"Task {task_id}"),
        description=str(raw.get("description") or ""),
        details=str(raw.get("details") or ""),
        testStrategy=str(raw.get("testStrategy") or ""),
        status="pending",
        priority=priority,
        dependencies=[dep + id_offset for dep in raw.get("dependencies") or [] if isinstance(dep, int)],
    )


class JsonFileTaskRepository:
    """Task repository backed by the project's ``tasks.json``.

    Every call re-reads the document, so external edits are always honoured.
    Writes replace the file atomically. Blocking file I/O runs in a worker
    thread and is awaited by the caller.
    """

    def __init__(
        self,
        project_root: Path,
        tasks_file: str | None = None,
        report_file: str | None = None,
        generator: TaskGenerator | None = None,
    ):
        self.project_root = Path(project_root)
        self.tasks_path = self.project_root / (tasks_file or config.TASKS_FILE)
        self.report_path = self.project_root / (report_file or config.COMPLEXITY_REPORT_FILE)
        self.task_files_dir = self.project_root / config.TASK_FILES_DIR
        self.generator = generator

    # ── document I/O ───────────────────────────────────────────────

    def _load(self) -> TaskStore:
        if not self.tasks_path.exists():
            return TaskStore()
        try:
            raw = json.loads(self.tasks_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise TaskStoreCorruptError(f"Unreadable task store {self.tasks_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise TaskStoreCorruptError(f"Expected an object with a 'tasks' list in {self.tasks_path}")
        try:
            return TaskStore.model_validate(raw)
        except ValidationError as exc:
            raise TaskStoreCorruptError(
                f"Malformed task store {self.tasks_path}: {exc.error_count()} validation error(s)"
            ) from exc

    def _save(self, store: TaskStore) -> None:
        payload = store.model_dump(mode="json", exclude_none=True)
        _write_atomic(self.tasks_path, json.dumps(payload, indent=2) + "\n")

    def _load_report(self) -> Optional[ComplexityReport]:
        if not self.report_path.exists():
            return None
        try:
            raw = json.loads(self.report_path.read_text(encoding="utf-8"))
            return ComplexityReport.model_validate(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as exc:
            raise TaskStoreCorruptError(f"Unreadable complexity report {self.report_path}") from exc

    async def _read(self, fn: Callable[[TaskStore], T]) -> T:
        return await asyncio.to_thread(lambda: fn(self._load()))

    async def _write(self, fn: Callable[[TaskStore], T]) -> T:
        def run() -> T:
            store = self._load()
            result = fn(store)
            self._save(store)
            return result

        return await asyncio.to_thread(run)

    def _require_generator(self, operation: str) -> TaskGenerator:
        if self.generator is None:
            raise UnsupportedOperationError(f"{operation} requires a configured task generator")
        return self.generator

    def _resolve_path(self, value: str | Path) -> Path:
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.project_root / path

    # ── queries ────────────────────────────────────────────────────

    async def list_tasks(self, status: Optional[str] = None, with_subtasks: bool = True) -> list[Task]:
        wanted = {token.strip() for token in status.split(",") if token.strip()} if status else None

        def select(store: TaskStore) -> list[Task]:
            tasks = [task for task in store.tasks if wanted is None or task.status in wanted]
            if not with_subtasks:
                tasks = [task.model_copy(update={"subtasks": []}) for task in tasks]
            return tasks

        return await self._read(select)

    async def find_task(self, task_id: TaskId) -> Task | Subtask | None:
        def lookup(store: TaskStore) -> Task | Subtask | None:
            try:
                node, parent = _get_node(store, task_id)
            except TaskNotFoundError:
                return None
            if parent is not None:
                return node.model_copy(update={"parentTaskId": parent.id})
            return node

        return await self._read(lookup)

    async def find_next_task(self) -> Optional[Task]:
        def pick(store: TaskStore) -> Optional[Task]:
            done = {key for key, node, _ in deps.iter_nodes(store) if node.status == "done"}
            candidates = [
                task
                for task in store.tasks
                if task.status in _EXPANDABLE_STATUSES
                and all(deps.resolve_dependency(dep) in done for dep in task.dependencies)
            ]
            if not candidates:
                return None
            return min(
                candidates,
                key=lambda task: (_PRIORITY_RANK.get(task.priority, 1), len(task.dependencies), task.id),
            )

        return await self._read(pick)

    async def read_complexity_report(self) -> Optional[ComplexityReport]:
        return await asyncio.to_thread(self._load_report)

    async def validate_dependencies(self) -> ValidationReport:
        return await self._read(deps.validate)

    # ── task mutations ─────────────────────────────────────────────

    async def set_task_status(self, task_id: TaskId, status: str) -> None:
        _check_choice("status", status, TASK_STATUSES)
        ids = [token for token in str(task_id).split(",") if token.strip()]

        def apply(store: TaskStore) -> None:
            nodes = [_get_node(store, token)[0] for token in ids]
            for node in nodes:
                node.status = status
                # Completing a parent completes its subtasks.
                if status == "done" and isinstance(node, Task):
                    for subtask in node.subtasks:
                        subtask.status = "done"

        await self._write(apply)

    async def add_task(self, task_data: dict[str, Any]) -> int:
        title = str(task_data.get("title") or "").strip()
        if not title:
            raise TaskValidationError("Task title is required")
        priority = task_data.get("priority") or "medium"
        _check_choice("priority", priority, TASK_PRIORITIES)
        dependencies = _as_dependency_list(task_data.get("dependencies"))

        def apply(store: TaskStore) -> int:
            existing = {key for key, _, _ in deps.iter_nodes(store)}
            for dep in dependencies:
                if deps.resolve_dependency(dep) not in existing:
                    raise TaskValidationError(f"Dependency {dep} does not exist")
            new_id = max((task.id for task in store.tasks), default=0) + 1
            store.tasks.append(Task(
                id=new_id,
                title=title,
                description=str(task_data.get("description") or ""),
                details=str(task_data.get("details") or ""),
                testStrategy=str(task_data.get("testStrategy") or ""),
                status="pending",
                priority=priority,
                dependencies=dependencies,
            ))
            return new_id

        new_id = await self._write(apply)
        logger.info("Added task %s", new_id)
        return new_id

    async def remove_task(self, task_id: TaskId) -> None:
        def apply(store: TaskStore) -> None:
            node, parent = _get_node(store, task_id)
            if parent is not None:
                parent.subtasks = [sub for sub in parent.subtasks if sub.id != node.id]
                deps.strip_references(store, deps.node_key(node, parent))
                return
            store.tasks = [task for task in store.tasks if task.id != node.id]
            deps.strip_references(store, str(node.id))
            for subtask in node.subtasks:
                deps.strip_references(store, f"{node.id}.{subtask.id}")

        await self._write(apply)

    async def update_task(self, task_id: TaskId, task_data: dict[str, Any]) -> Task | Subtask:
        changes = {key: value for key, value in task_data.items() if key not in _PROTECTED_FIELDS}
        if "status" in changes:
            _check_choice("status", changes["status"], TASK_STATUSES)
        if "priority" in changes:
            _check_choice("priority", changes["priority"], TASK_PRIORITIES)
        if "dependencies" in changes:
            changes["dependencies"] = _as_dependency_list(changes["dependencies"])

        def apply(store: TaskStore) -> Task | Subtask:
            node, _ = _get_node(store, task_id)
            _apply_changes(node, changes)
            return node.model_copy(deep=True)

        return await self._write(apply)

    async def update_tasks_from(self, from_id: int, prompt: str, research: bool = False) -> int:
        generator = self._require_generator("Batch update")
        store = await asyncio.to_thread(self._load)
        updates: dict[int, dict[str, Any]] = {}
        for task in store.tasks:
            if task.id >= int(from_id) and task.status != "done":
                updates[task.id] = await generator.update_task(task, prompt, research)

        def apply(current: TaskStore) -> int:
            for task in current.tasks:
                changes = {
                    key: value for key, value in updates.get(task.id, {}).items() if key not in _PROTECTED_FIELDS
                }
                if changes:
                    _apply_changes(task, changes)
            return len(updates)

        return await self._write(apply)

    # ── subtask mutations ──────────────────────────────────────────

    async def add_subtask(self, parent_id: TaskId, subtask_data: dict[str, Any]) -> str:
        title = str(subtask_data.get("title") or "").strip()
        if not title:
            raise TaskValidationError("Subtask title is required")
        parent_key, nested = _parse_task_id(parent_id)
        if nested is not None:
            raise TaskValidationError("Subtasks cannot own subtasks")
        status = subtask_data.get("status") or "pending"
        _check_choice("status", status, TASK_STATUSES)

        def apply(store: TaskStore) -> str:
            parent = _get_task(store, parent_key)
            new_id = max((sub.id for sub in parent.subtasks), default=0) + 1
            parent.subtasks.append(Subtask(
                id=new_id,
                title=title,
                description=str(subtask_data.get("description") or ""),
                details=str(subtask_data.get("details") or ""),
                testStrategy=str(subtask_data.get("testStrategy") or ""),
                status=status,
                dependencies=_as_dependency_list(subtask_data.get("dependencies")),
                parentTaskId=parent.id,
            ))
            return f"{parent.id}.{new_id}"

        return await self._write(apply)

    async def update_subtask(self, subtask_id: str, prompt: str) -> Subtask:
        if _parse_task_id(subtask_id)[1] is None:
            raise TaskValidationError(f"Expected a subtask id like '5.2', got {subtask_id!r}")
        text = str(prompt or "").strip()
        if not text:
            raise TaskValidationError("Update prompt is empty")
        stamp = _now_iso()

        def apply(store: TaskStore) -> Subtask:
            subtask, _ = _get_node(store, subtask_id)
            block = f"<info added on {stamp}>\n{text}\n</info added on {stamp}>"
            subtask.details = f"{subtask.details}\n\n{block}" if subtask.details else block
            return subtask.model_copy(deep=True)

        return await self._write(apply)

    async def remove_subtask(self, parent_id: TaskId, subtask_id: TaskId, convert: bool = False) -> Optional[int]:
        if "." in str(subtask_id):
            parent_key, sub_key = _parse_task_id(subtask_id)
        else:
            parent_key, sub_key = _parse_task_id(parent_id)[0], _parse_task_id(subtask_id)[0]

        def apply(store: TaskStore) -> Optional[int]:
            parent = _get_task(store, parent_key)
            subtask = _get_subtask(parent, sub_key)
            parent.subtasks = [sub for sub in parent.subtasks if sub.id != sub_key]
            old_key = f"{parent.id}.{sub_key}"
            if not convert:
                deps.strip_references(store, old_key)
                return None

            new_id = max(task.id for task in store.tasks) + 1
            carried = [
                deps.resolve_dependency(dep, parent) for dep in subtask.dependencies
            ]
            store.tasks.append(Task(
                id=new_id,
                title=subtask.title,
                description=subtask.description,
                details=subtask.details,
                testStrategy=subtask.testStrategy,
                status=subtask.status,
                priority=subtask.priority or parent.priority,
                dependencies=[int(dep) if dep.isdigit() else dep for dep in carried],
            ))
            deps.repoint_references(store, old_key, new_id)
            return new_id

        return await self._write(apply)

    async def clear_subtasks(self, task_ids: str) -> int:
        ids = [_parse_task_id(token)[0] for token in str(task_ids).split(",") if token.strip()]
        if not ids:
            raise TaskValidationError("No task ids given")

        def apply(store: TaskStore) -> int:
            targets = [_get_task(store, task_id) for task_id in ids]
            for task in targets:
                for subtask in task.subtasks:
                    deps.strip_references(store, f"{task.id}.{subtask.id}")
                task.subtasks = []
            return len(targets)

        return await self._write(apply)

    # ── dependency mutations ───────────────────────────────────────

    async def add_dependency(self, task_id: TaskId, depends_on: TaskId) -> None:
        def apply(store: TaskStore) -> None:
            node, parent = _get_node(store, task_id)
            dep_node, dep_parent = _get_node(store, depends_on)
            key = deps.node_key(node, parent)
            dep_key = deps.node_key(dep_node, dep_parent)
            if key == dep_key:
                raise TaskValidationError(f"Task {key} cannot depend on itself")
            if any(deps.resolve_dependency(dep, parent) == dep_key for dep in node.dependencies):
                return
            if deps.reaches(store, dep_key, key):
                raise TaskValidationError(f"Adding {dep_key} to {key} would create a circular dependency")

            if dep_parent is None:
                value: int | str = dep_node.id if parent is None else str(dep_node.id)
            elif parent is not None and dep_parent.id == parent.id:
                value = dep_node.id
            else:
                value = dep_key
            node.dependencies.append(value)

        await self._write(apply)

    async def remove_dependency(self, task_id: TaskId, depends_on: TaskId) -> None:
        dep_parent, dep_sub = _parse_task_id(depends_on)
        dep_key = f"{dep_parent}.{dep_sub}" if dep_sub is not None else str(dep_parent)

        def apply(store: TaskStore) -> None:
            node, parent = _get_node(store, task_id)
            kept = [dep for dep in node.dependencies if deps.resolve_dependency(dep, parent) != dep_key]
            if len(kept) == len(node.dependencies):
                raise TaskValidationError(f"Task {deps.node_key(node, parent)} does not depend on {dep_key}")
            node.dependencies = kept

        await self._write(apply)

    async def fix_dependencies(self) -> int:
        def run() -> int:
            store = self._load()
            removed = deps.fix(store)
            if removed:
                self._save(store)
            return removed

        removed = await asyncio.to_thread(run)
        logger.info("Removed %d invalid dependencies", removed)
        return removed

    # ── generated content ──────────────────────────────────────────

    async def expand_task(
        self, task_id: TaskId, num_subtasks: Optional[int] = None, options: Optional[dict[str, Any]] = None
    ) -> int:
        generator = self._require_generator("Task expansion")
        opts = options or {}
        parent_key, nested = _parse_task_id(task_id)
        if nested is not None:
            raise TaskValidationError("Subtasks cannot be expanded")
        store = await asyncio.to_thread(self._load)
        task = _get_task(store, parent_key)
        generated = await generator.generate_subtasks(
            task, num_subtasks, str(opts.get("prompt") or ""), bool(opts.get("research"))
        )

        def apply(current: TaskStore) -> int:
            target = _get_task(current, parent_key)
            if opts.get("force"):
                for subtask in target.subtasks:
                    deps.strip_references(current, f"{target.id}.{subtask.id}")
                target.subtasks = []
            next_id = max((sub.id for sub in target.subtasks), default=0) + 1
            for offset, raw in enumerate(generated):
                target.subtasks.append(_subtask_from_generated(raw, next_id + offset, target.id, next_id - 1))
            return len(generated)

        return await self._write(apply)

    async def expand_all(self, options: Optional[dict[str, Any]] = None) -> int:
        self._require_generator("Task expansion")
        opts = options or {}
        force = bool(opts.get("force"))
        threshold = opts.get("threshold")
        store = await asyncio.to_thread(self._load)
        report = await asyncio.to_thread(self._load_report)
        scores = {entry.taskId: entry for entry in report.complexityAnalysis} if report else {}

        expanded = 0
        for task in store.tasks:
            if task.status not in _EXPANDABLE_STATUSES or (task.subtasks and not force):
                continue
            entry = scores.get(task.id)
            if threshold is not None and entry is not None and entry.complexityScore < float(threshold):
                continue
            num = opts.get("num") or (entry.recommendedSubtasks if entry and entry.recommendedSubtasks else None)
            await self.expand_task(task.id, num, {**opts, "force": force})
            expanded += 1
        return expanded

    async def analyze_complexity(self, options: Optional[dict[str, Any]] = None) -> ComplexityReport:
        generator = self._require_generator("Complexity analysis")
        opts = options or {}
        research = bool(opts.get("research"))
        threshold = int(opts.get("threshold") or 5)
        wanted = {int(token) for token in str(opts.get("ids") or "").split(",") if token.strip()}
        store = await asyncio.to_thread(self._load)

        entries: list[ComplexityAnalysis] = []
        for task in store.tasks:
            if task.status in ("done", "cancelled") or (wanted and task.id not in wanted):
                continue
            raw = await generator.score_complexity(task, research)
            entries.append(ComplexityAnalysis(
                taskId=task.id,
                taskTitle=task.title,
                complexityScore=min(10.0, max(0.0, float(raw.get("complexityScore") or 0))),
                recommendedSubtasks=int(raw.get("recommendedSubtasks") or 0),
                reasoning=str(raw.get("reasoning") or ""),
                expansionPrompt=str(raw.get("expansionPrompt") or ""),
            ))

        report = ComplexityReport(
            meta=ComplexityReportMeta(
                generatedAt=_now_iso(),
                projectName=self.project_root.resolve().name,
                tasksAnalyzed=len(entries),
                totalTasks=len(store.tasks),
                thresholdScore=threshold,
                usedResearch=research,
            ),
            complexityAnalysis=entries,
        )
        output = self._resolve_path(opts.get("output") or self.report_path)
        await asyncio.to_thread(
            _write_atomic, output, json.dumps(report.model_dump(mode="json"), indent=2) + "\n"
        )
        return report

    async def parse_prd(self, options: Optional[dict[str, Any]] = None) -> int:
        generator = self._require_generator("PRD parsing")
        opts = options or {}
        append = bool(opts.get("append"))
        source = self._resolve_path(opts.get("input") or config.PRD_FILE)
        prd_text = await asyncio.to_thread(source.read_text, encoding="utf-8")

        current = await asyncio.to_thread(self._load)
        if current.tasks and not (append or opts.get("force")):
            raise TaskValidationError("Task store already has tasks; pass append or force to parse a PRD")

        generated = await generator.generate_tasks_from_prd(
            prd_text, int(opts.get("num_tasks") or 10), bool(opts.get("research"))
        )

        def apply(store: TaskStore) -> int:
            if not append:
                store.tasks = []
            offset = max((task.id for task in store.tasks), default=0)
            for index, raw in enumerate(generated, start=1):
                store.tasks.append(_task_from_generated(raw, offset + index, offset))
            return len(generated)

        count = await self._write(apply)
        logger.info("Parsed %d tasks from %s", count, source)
        return count

    # ── exports ────────────────────────────────────────────────────

    async def generate_task_files(self) -> list[Path]:
        def run() -> list[Path]:
            store = self._load()
            self.task_files_dir.mkdir(parents=True, exist_ok=True)
            paths = []
            for task in store.tasks:
                path = self.task_files_dir / exports.task_file_name(task)
                path.write_text(exports.render_task_file(task), encoding="utf-8")
                paths.append(path)
            return paths

        return await asyncio.to_thread(run)

    async def sync_readme(self, options: Optional[dict[str, Any]] = None) -> Path:
        opts = options or {}
        status = opts.get("status")
        with_subtasks = bool(opts.get("with_subtasks"))

        def run() -> Path:
            store = self._load()
            tasks = [task for task in store.tasks if not status or task.status == status]
            readme = self.project_root / "README.md"
            existing = readme.read_text(encoding="utf-8") if readme.exists() else ""
            section = exports.render_readme_section(tasks, with_subtasks)
            _write_atomic(readme, exports.merge_readme(existing, section))
            return readme

        return await asyncio.to_thread(run)
