import json
import tempfile
import unittest
from pathlib import Path

from tasksync.project_manager import (
    ProjectNotFoundError,
    check_project_status,
    create_task_sync_service,
    find_project_root,
)
from tasksync.sync.fingerprint import ChangeDetector
from tasksync.sync.settings import SyncSettings


class ProjectManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name).resolve()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _init_project(self) -> None:
        tasks_dir = self.root / ".taskmaster" / "tasks"
        tasks_dir.mkdir(parents=True)
        (tasks_dir / "tasks.json").write_text(json.dumps({"tasks": []}), encoding="utf-8")

    def test_find_project_root_walks_up(self) -> None:
        self._init_project()
        nested = self.root / "src" / "pkg"
        nested.mkdir(parents=True)

        self.assertEqual(find_project_root(nested), self.root)
        self.assertIsNone(find_project_root(Path(tempfile.gettempdir()) / "surely-not-a-project-dir-xyz"))

    def test_status_of_empty_directory(self) -> None:
        status = check_project_status(self.root)

        self.assertFalse(status.isInitialized)
        self.assertFalse(status.hasTaskmaster)
        self.assertEqual(len(status.errors), 1)

    def test_status_of_initialized_project(self) -> None:
        self._init_project()
        docs = self.root / ".taskmaster" / "docs"
        docs.mkdir()
        (docs / "prd.md").write_text("# PRD", encoding="utf-8")
        (self.root / ".taskmaster" / "config.json").write_text(
            json.dumps({"models": {"main": "some-model"}}), encoding="utf-8"
        )

        status = check_project_status(self.root)

        self.assertTrue(status.isInitialized)
        self.assertTrue(status.hasPRD)
        self.assertTrue(status.hasConfig)
        self.assertTrue(status.hasModels)
        self.assertEqual(status.errors, [])
        self.assertEqual(status.warnings, [])

    def test_unparseable_config_is_a_warning(self) -> None:
        self._init_project()
        (self.root / ".taskmaster" / "config.json").write_text("{oops", encoding="utf-8")

        status = check_project_status(self.root)

        self.assertTrue(status.hasConfig)
        self.assertFalse(status.hasModels)
        self.assertTrue(any(w.startswith("Failed to parse config") for w in status.warnings))

    def test_create_service_requires_project(self) -> None:
        with self.assertRaises(ProjectNotFoundError):
            create_task_sync_service(self.root / "missing", settings=SyncSettings())

    def test_create_service_for_project(self) -> None:
        self._init_project()

        service = create_task_sync_service(self.root, settings=SyncSettings(watch_backend="poll"))

        self.assertEqual(service.repository.tasks_path, self.root / ".taskmaster" / "tasks" / "tasks.json")
        self.assertIsInstance(service.detector, ChangeDetector)
        self.assertFalse(service.is_watching)


if __name__ == "__main__":
    unittest.main()
