import json
import tempfile
import unittest
from pathlib import Path

from tasksync.models import Subtask, Task
from tasksync.repositories import JsonFileTaskRepository, TaskStoreCorruptError
from tasksync.sync.read_model import ReadModelBuilder, filter_tasks, summarize


class _RecordingRepository:
    def __init__(self, tasks_path: Path, tasks=None, error: Exception | None = None) -> None:
        self.tasks_path = tasks_path
        self.tasks = tasks or []
        self.error = error
        self.calls: list[dict] = []

    async def list_tasks(self, status=None, with_subtasks=True):
        self.calls.append({"status": status, "with_subtasks": with_subtasks})
        if self.error is not None:
            raise self.error
        return self.tasks


class SummarizeTests(unittest.TestCase):
    def test_counts_top_level_statuses(self) -> None:
        tasks = [
            Task(id=1, title="One", status="pending"),
            Task(id=2, title="Two", status="in-progress"),
            Task(id=3, title="Three", status="done"),
        ]

        model = summarize(tasks)

        self.assertEqual(model.metadata.totalTasks, 3)
        self.assertEqual(model.metadata.pendingTasks, 1)
        self.assertEqual(model.metadata.inProgressTasks, 1)
        self.assertEqual(model.metadata.completedTasks, 1)
        self.assertTrue(model.metadata.lastUpdated.endswith("Z"))

    def test_subtask_statuses_do_not_count(self) -> None:
        tasks = [
            Task(
                id=1,
                title="Parent",
                status="review",
                subtasks=[Subtask(id=1, title="a", status="done"), Subtask(id=2, title="b", status="pending")],
            ),
            Task(id=2, title="Deferred", status="deferred"),
        ]

        model = summarize(tasks)

        self.assertEqual(model.metadata.totalTasks, 2)
        self.assertEqual(
            (model.metadata.pendingTasks, model.metadata.inProgressTasks, model.metadata.completedTasks),
            (0, 0, 0),
        )

    def test_filter_matches_own_or_subtask_status(self) -> None:
        tasks = [
            Task(id=1, title="Pending parent", status="pending"),
            Task(id=2, title="Done parent", status="done", subtasks=[Subtask(id=1, title="x", status="pending")]),
            Task(id=3, title="Done", status="done"),
        ]

        self.assertEqual([task.id for task in filter_tasks(tasks, "pending")], [1, 2])
        self.assertEqual([task.id for task in filter_tasks(tasks, None)], [1, 2, 3])


class ReadModelBuilderTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.tasks_path = self.root / ".taskmaster" / "tasks" / "tasks.json"

    async def asyncTearDown(self) -> None:
        self._tmp.cleanup()

    async def test_missing_file_yields_zero_model_without_repository_call(self) -> None:
        repo = _RecordingRepository(self.tasks_path)

        model = await ReadModelBuilder(repo).build()

        self.assertEqual(model.tasks, [])
        self.assertEqual(model.metadata.totalTasks, 0)
        self.assertIsNone(model.metadata.lastUpdated)
        self.assertEqual(repo.calls, [])

    async def test_always_requests_subtasks(self) -> None:
        self.tasks_path.parent.mkdir(parents=True)
        self.tasks_path.write_text("{}", encoding="utf-8")
        repo = _RecordingRepository(self.tasks_path, tasks=[Task(id=1, title="One")])

        model = await ReadModelBuilder(repo).build()

        self.assertEqual(repo.calls, [{"status": None, "with_subtasks": True}])
        self.assertEqual(model.metadata.totalTasks, 1)

    async def test_repository_failure_yields_zero_model(self) -> None:
        self.tasks_path.parent.mkdir(parents=True)
        self.tasks_path.write_text("{}", encoding="utf-8")
        repo = _RecordingRepository(self.tasks_path, error=TaskStoreCorruptError("bad"))

        with self.assertLogs("tasksync.read_model", level="WARNING"):
            model = await ReadModelBuilder(repo).build()

        self.assertEqual(model.metadata.totalTasks, 0)
        self.assertEqual(model.tasks, [])

    async def test_builds_from_json_store(self) -> None:
        self.tasks_path.parent.mkdir(parents=True)
        self.tasks_path.write_text(
            json.dumps({
                "tasks": [
                    {"id": 1, "title": "One", "status": "pending"},
                    {"id": 2, "title": "Two", "status": "in-progress"},
                    {
                        "id": 3,
                        "title": "Three",
                        "status": "done",
                        "subtasks": [{"id": 1, "title": "Sub", "status": "done"}],
                    },
                ]
            }),
            encoding="utf-8",
        )

        model = await ReadModelBuilder(JsonFileTaskRepository(self.root)).build()

        self.assertEqual(model.metadata.totalTasks, 3)
        self.assertEqual(model.metadata.pendingTasks, 1)
        self.assertEqual(model.metadata.inProgressTasks, 1)
        self.assertEqual(model.metadata.completedTasks, 1)
        self.assertEqual(len(model.tasks[2].subtasks), 1)

    async def test_corrupt_json_store_yields_zero_model(self) -> None:
        self.tasks_path.parent.mkdir(parents=True)
        self.tasks_path.write_text("{not json", encoding="utf-8")

        with self.assertLogs("tasksync.read_model", level="WARNING"):
            model = await ReadModelBuilder(JsonFileTaskRepository(self.root)).build()

        self.assertEqual(model.metadata.totalTasks, 0)


if __name__ == "__main__":
    unittest.main()
