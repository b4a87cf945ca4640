"""Task sync service: mutation façade plus live read model for one project.

The service owns the detector, suppressor and poller for a single task
store. Every mutation is serialized through one writer lock and bracketed
by self-change suppression, so the poller never reports the service's own
writes as external edits.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from tasksync.models import ComplexityReport, OpResult, ReadModel, Subtask, Task
from tasksync.observability import record_mutation, start_span
from tasksync.repositories.base import TaskId, TaskRepository, TaskRepositoryError
from tasksync.sync.fingerprint import ChangeDetector
from tasksync.sync.poller import DebouncedPoller, ReadModelCallback
from tasksync.sync.read_model import ReadModelBuilder, filter_tasks
from tasksync.sync.settings import SyncSettings
from tasksync.sync.suppressor import SelfChangeSuppressor

logger = logging.getLogger("tasksync.service")


def make_detector(
    repository: TaskRepository,
    settings: SyncSettings,
    suppressor: SelfChangeSuppressor,
    clock: Callable[[], float] = time.monotonic,
) -> ChangeDetector:
    kwargs = dict(
        suppressor=suppressor,
        check_interval=settings.check_interval,
        min_mtime_delta=settings.min_mtime_delta,
        clock=clock,
    )
    if settings.watch_backend == "watchfiles":
        from tasksync.sync.file_watcher import WatchfilesChangeDetector

        return WatchfilesChangeDetector(repository.tasks_path, **kwargs)
    if settings.watch_backend != "poll":
        logger.warning(f"Unknown watch backend '{settings.watch_backend}', using polling")
    return ChangeDetector(repository.tasks_path, **kwargs)


def _failure_from(exc: Exception) -> OpResult:
    if isinstance(exc, TaskRepositoryError):
        kind = exc.kind
    elif isinstance(exc, OSError):
        kind = "io"
    else:
        kind = "error"
    return OpResult.failure(kind, str(exc) or exc.__class__.__name__)


class TaskSyncService:
    """Façade over a task repository that keeps change detection consistent.

    Mutations never raise; they return an :class:`OpResult`. Read-only
    queries never raise either and fall back to empty values.
    """

    def __init__(
        self,
        repository: TaskRepository,
        settings: SyncSettings | None = None,
        detector: ChangeDetector | None = None,
        clock: Callable[[], float] = time.monotonic,
        refresh_after_mutation: bool = True,
    ):
        self.repository = repository
        self.settings = settings or SyncSettings.from_config()
        self.suppressor = SelfChangeSuppressor(self.settings.suppression_grace)
        if detector is None:
            detector = make_detector(repository, self.settings, self.suppressor, clock)
        else:
            detector.suppressor = self.suppressor
        self.detector = detector
        self.builder = ReadModelBuilder(repository)
        self.refresh_after_mutation = refresh_after_mutation
        self._clock = clock
        self._write_lock = asyncio.Lock()
        self._poller: Optional[DebouncedPoller] = None
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def is_watching(self) -> bool:
        return self._poller is not None and self._poller.is_running

    @property
    def poller(self) -> Optional[DebouncedPoller]:
        return self._poller

    # ── lifecycle ──────────────────────────────────────────────────

    async def watch(self, callback: ReadModelCallback) -> Callable[[], None]:
        """Start polling and deliver every rebuilt read model to ``callback``.

        The first model is delivered right away. Returns a synchronous
        disposer that stops the poller.
        """
        if self._disposed:
            raise RuntimeError("TaskSyncService has been disposed")
        if self._poller is not None:
            self._poller.dispose()
        await self.detector.start()
        self._poller = DebouncedPoller(
            self.detector,
            self.builder,
            callback,
            self.settings,
            clock=self._clock,
        )
        self._poller.start()
        return self._poller.dispose

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self._poller is not None:
            self._poller.dispose()
        self.detector.close()
        self.suppressor.dispose()
        logger.info(f"Task sync service for {self.repository.tasks_path} disposed")

    async def aclose(self) -> None:
        poller = self._poller
        self.dispose()
        if poller is not None:
            await poller.stop()
        stop = getattr(self.detector, "stop", None)
        if stop is not None:
            await stop()

    def status_snapshot(self) -> dict[str, Any]:
        poller = self._poller
        fingerprint = self.detector.fingerprint
        return {
            "tasksPath": str(self.repository.tasks_path),
            "watching": self.is_watching,
            "disposed": self._disposed,
            "backend": self.settings.watch_backend,
            "state": poller.state.value if poller else "stopped",
            "isUpdating": poller.is_updating if poller else False,
            "dispatchCount": poller.dispatch_count if poller else 0,
            "suppressed": self.suppressor.active,
            "pendingSuppressions": self.suppressor.pending,
            "fingerprint": {"mtime": fingerprint.mtime, "size": fingerprint.size} if fingerprint else None,
        }

    # ── mutation bracket ───────────────────────────────────────────

    async def _mutate(
        self, operation: str, call: Callable[[], Awaitable[Any]], read_only: bool = False
    ) -> OpResult:
        if self._disposed:
            return OpResult.failure("disposed", f"{operation}: service has been disposed")

        started = time.perf_counter()
        async with self._write_lock:
            self.suppressor.begin()
            try:
                with start_span(f"tasksync.{operation}", {"tasksync.operation": operation}):
                    value = await call()
                result = OpResult.success(value)
            except Exception as e:
                result = _failure_from(e)
                logger.warning(f"{operation} failed ({result.kind}): {result.message}")
            finally:
                seen = self.detector.fingerprint
                self.detector.mark_seen()
                moved = self.detector.fingerprint != seen
                self.suppressor.end()

        record_mutation(operation, result.kind or "ok", (time.perf_counter() - started) * 1000)
        if result.ok and not read_only:
            refresh = self.refresh_after_mutation
        else:
            # a fingerprint adopted here belongs to a write this call did not make
            refresh = moved
        if refresh and self._poller is not None:
            self._poller.trigger()
        return result

    # ── mutations ──────────────────────────────────────────────────

    async def update_task_status(self, task_id: TaskId, status: str) -> OpResult:
        return await self._mutate(
            "update_task_status", lambda: self.repository.set_task_status(task_id, status)
        )

    async def add_task(self, task_data: dict[str, Any]) -> OpResult:
        return await self._mutate("add_task", lambda: self.repository.add_task(task_data))

    async def remove_task(self, task_id: TaskId) -> OpResult:
        return await self._mutate("remove_task", lambda: self.repository.remove_task(task_id))

    async def update_task(self, task_id: TaskId, task_data: dict[str, Any]) -> OpResult:
        return await self._mutate("update_task", lambda: self.repository.update_task(task_id, task_data))

    async def batch_update(self, from_id: int, prompt: str, research: bool = False) -> OpResult:
        return await self._mutate(
            "batch_update", lambda: self.repository.update_tasks_from(from_id, prompt, research)
        )

    async def add_subtask(self, parent_id: TaskId, subtask_data: dict[str, Any]) -> OpResult:
        return await self._mutate(
            "add_subtask", lambda: self.repository.add_subtask(parent_id, subtask_data)
        )

    async def update_subtask(self, subtask_id: str, prompt: str) -> OpResult:
        return await self._mutate(
            "update_subtask", lambda: self.repository.update_subtask(subtask_id, prompt)
        )

    async def remove_subtask(self, parent_id: TaskId, subtask_id: TaskId, convert: bool = False) -> OpResult:
        return await self._mutate(
            "remove_subtask", lambda: self.repository.remove_subtask(parent_id, subtask_id, convert)
        )

    async def clear_subtasks(self, all_tasks: bool = True) -> OpResult:
        """Remove the subtasks of every task that has any."""
        if not all_tasks:
            return OpResult.failure("not_implemented", "Clearing subtasks of selected tasks is not supported")

        async def run() -> int:
            tasks = await self.repository.list_tasks(None, with_subtasks=True)
            ids = [str(task.id) for task in tasks if task.subtasks]
            if not ids:
                return 0
            return await self.repository.clear_subtasks(",".join(ids))

        return await self._mutate("clear_subtasks", run)

    async def add_dependency(self, task_id: TaskId, depends_on: TaskId) -> OpResult:
        return await self._mutate(
            "add_dependency", lambda: self.repository.add_dependency(task_id, depends_on)
        )

    async def remove_dependency(self, task_id: TaskId, depends_on: TaskId) -> OpResult:
        return await self._mutate(
            "remove_dependency", lambda: self.repository.remove_dependency(task_id, depends_on)
        )

    async def validate_dependencies(self) -> OpResult:
        return await self._mutate(
            "validate_dependencies", self.repository.validate_dependencies, read_only=True
        )

    async def fix_dependencies(self) -> OpResult:
        return await self._mutate("fix_dependencies", self.repository.fix_dependencies)

    async def expand_task(
        self, task_id: TaskId, num_subtasks: Optional[int] = None, options: Optional[dict[str, Any]] = None
    ) -> OpResult:
        return await self._mutate(
            "expand_task", lambda: self.repository.expand_task(task_id, num_subtasks, options)
        )

    async def expand_all(self, options: Optional[dict[str, Any]] = None) -> OpResult:
        return await self._mutate("expand_all", lambda: self.repository.expand_all(options))

    async def analyze_complexity(self, options: Optional[dict[str, Any]] = None) -> OpResult:
        return await self._mutate("analyze_complexity", lambda: self.repository.analyze_complexity(options))

    async def parse_prd(self, options: Optional[dict[str, Any]] = None) -> OpResult:
        return await self._mutate("parse_prd", lambda: self.repository.parse_prd(options))

    async def generate_task_files(self) -> OpResult:
        return await self._mutate("generate_task_files", self.repository.generate_task_files)

    async def sync_readme(self, options: Optional[dict[str, Any]] = None) -> OpResult:
        return await self._mutate("sync_readme", lambda: self.repository.sync_readme(options))

    # ── read-only queries ──────────────────────────────────────────

    async def fetch_tasks(self, status: Optional[str] = None) -> list[Task]:
        try:
            tasks = await self.repository.list_tasks(None, with_subtasks=True)
        except Exception as e:
            logger.warning(f"Failed to fetch tasks: {e}")
            return []
        return filter_tasks(tasks, status)

    async def get_task_by_id(self, task_id: TaskId) -> Task | Subtask | None:
        try:
            return await self.repository.find_task(task_id)
        except Exception as e:
            logger.warning(f"Failed to look up task {task_id}: {e}")
            return None

    async def get_next_task(self) -> Optional[Task]:
        try:
            return await self.repository.find_next_task()
        except Exception as e:
            logger.warning(f"Failed to determine next task: {e}")
            return None

    async def get_tasks_data(self) -> ReadModel:
        return await self.builder.build()

    async def get_complexity_report(self) -> Optional[ComplexityReport]:
        try:
            return await self.repository.read_complexity_report()
        except Exception as e:
            logger.warning(f"Failed to read complexity report: {e}")
            return None

    @staticmethod
    def filter_tasks(tasks: list[Task], status: Optional[str]) -> list[Task]:
        return filter_tasks(tasks, status)

    async def refresh(self) -> ReadModel:
        """Build a fresh read model now; while watching, subscribers receive the same model."""
        if self._poller is not None and not self._poller.disposed:
            return await self._poller.refresh()
        return await self.builder.build()
