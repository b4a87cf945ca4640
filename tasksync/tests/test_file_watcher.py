import asyncio
import os
import tempfile
import unittest
from pathlib import Path

from watchfiles import Change

from tasksync.sync.file_watcher import WatchfilesChangeDetector
from tasksync.sync.service import make_detector
from tasksync.sync.settings import SyncSettings
from tasksync.sync.suppressor import SelfChangeSuppressor


class WatchfilesChangeDetectorTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "tasks.json"
        self.path.write_text('{"tasks": []}', encoding="utf-8")

    async def asyncTearDown(self) -> None:
        self._tmp.cleanup()

    async def test_compares_fingerprints_only_after_events(self) -> None:
        detector = WatchfilesChangeDetector(self.path, check_interval=0, min_mtime_delta=0)
        self.assertTrue(detector.has_changed())

        self.path.write_text('{"tasks": [{"id": 1, "title": "One"}]}', encoding="utf-8")
        self.assertFalse(detector.has_changed())

        detector.notify()
        self.assertTrue(detector.has_changed())
        self.assertFalse(detector.has_changed())

    async def test_deferred_mtime_flutter_keeps_the_event_pending(self) -> None:
        now = [100.0]
        detector = WatchfilesChangeDetector(self.path, check_interval=0, min_mtime_delta=0.1, clock=lambda: now[0])
        self.assertTrue(detector.has_changed())

        self.path.write_text('{"tasks": [{"id": 1, "title": "One"}]}', encoding="utf-8")
        detector.notify()
        self.assertTrue(detector.has_changed())

        bumped = self.path.stat().st_mtime_ns + 1_000_000_000
        os.utime(self.path, ns=(bumped, bumped))
        detector.notify()
        now[0] += 0.05
        self.assertFalse(detector.has_changed())

        # no further OS event arrives; the pending check still resolves once the guard expires
        now[0] += 0.5
        self.assertTrue(detector.has_changed())
        self.assertEqual(detector.fingerprint.mtime, bumped)

    async def test_only_events_for_the_store_file_are_relevant(self) -> None:
        detector = WatchfilesChangeDetector(self.path)

        self.assertTrue(detector._is_relevant({(Change.modified, str(self.path))}))
        self.assertFalse(detector._is_relevant({(Change.added, str(self.path.parent / ".tasks.json.abc.tmp"))}))

    async def test_missing_directory_degrades_to_polling(self) -> None:
        missing = Path(self._tmp.name) / "nope" / "tasks.json"
        detector = WatchfilesChangeDetector(missing, check_interval=0)

        await detector.start()
        await asyncio.sleep(0.05)

        self.assertTrue(detector.degraded)
        self.assertFalse(detector.is_running)
        await detector.stop()

    async def test_factory_picks_backend_from_settings(self) -> None:
        repository = type("Repo", (), {"tasks_path": self.path})()
        suppressor = SelfChangeSuppressor()

        watcher = make_detector(repository, SyncSettings(watch_backend="watchfiles"), suppressor)
        poller = make_detector(repository, SyncSettings(watch_backend="poll"), suppressor)

        self.assertIsInstance(watcher, WatchfilesChangeDetector)
        self.assertNotIsInstance(poller, WatchfilesChangeDetector)
        self.assertIs(poller.suppressor, suppressor)


if __name__ == "__main__":
    unittest.main()
