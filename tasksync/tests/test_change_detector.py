import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock

from tasksync.sync.fingerprint import ChangeDetector, Fingerprint
from tasksync.sync.suppressor import SelfChangeSuppressor


class _Clock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _write_tasks(path: Path, count: int) -> None:
    tasks = [{"id": i, "title": f"Task {i}", "status": "pending"} for i in range(1, count + 1)]
    path.write_text(json.dumps({"tasks": tasks}), encoding="utf-8")


class ChangeDetectorTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "tasks.json"
        self.clock = _Clock()
        self.detector = ChangeDetector(self.path, check_interval=1.0, min_mtime_delta=0.1, clock=self.clock)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_missing_file_reports_no_change(self) -> None:
        self.assertFalse(self.detector.has_changed())
        self.assertIsNone(self.detector.fingerprint)

    def test_first_observation_reports_change_and_stores_fingerprint(self) -> None:
        _write_tasks(self.path, 2)

        self.assertTrue(self.detector.has_changed())
        stat = self.path.stat()
        self.assertEqual(self.detector.fingerprint, Fingerprint(mtime=stat.st_mtime_ns, size=stat.st_size))

        self.clock.advance(1.5)
        self.assertFalse(self.detector.has_changed())

    def test_checks_inside_interval_are_rate_limited(self) -> None:
        _write_tasks(self.path, 1)
        self.assertTrue(self.detector.has_changed())

        _write_tasks(self.path, 3)
        self.clock.advance(0.5)
        self.assertFalse(self.detector.has_changed())

        self.clock.advance(0.6)
        self.assertTrue(self.detector.has_changed())

    def test_size_change_is_reported_even_with_same_mtime(self) -> None:
        _write_tasks(self.path, 1)
        self.assertTrue(self.detector.has_changed())
        mtime_ns = self.path.stat().st_mtime_ns

        _write_tasks(self.path, 4)
        os.utime(self.path, ns=(mtime_ns, mtime_ns))
        self.clock.advance(0.05)
        self.detector.check_interval = 0
        self.assertTrue(self.detector.has_changed())

    def test_mtime_only_flutter_right_after_change_is_ignored(self) -> None:
        self.detector.check_interval = 0
        _write_tasks(self.path, 2)
        self.assertTrue(self.detector.has_changed())
        stat = self.path.stat()

        bumped = stat.st_mtime_ns + 1_000_000_000
        os.utime(self.path, ns=(bumped, bumped))
        self.clock.advance(0.05)
        self.assertFalse(self.detector.has_changed())

        self.clock.advance(0.5)
        self.assertTrue(self.detector.has_changed())
        self.assertEqual(self.detector.fingerprint.mtime, bumped)

    def test_zero_delta_disables_flutter_guard(self) -> None:
        detector = ChangeDetector(self.path, check_interval=0, min_mtime_delta=0, clock=self.clock)
        _write_tasks(self.path, 2)
        self.assertTrue(detector.has_changed())
        stat = self.path.stat()

        bumped = stat.st_mtime_ns + 1_000
        os.utime(self.path, ns=(bumped, bumped))
        self.assertTrue(detector.has_changed())

    def test_suppression_skips_check_without_consuming_rate_limit(self) -> None:
        suppressor = SelfChangeSuppressor()
        detector = ChangeDetector(self.path, suppressor=suppressor, check_interval=1.0, clock=self.clock)
        _write_tasks(self.path, 1)

        suppressor.begin()
        self.assertFalse(detector.has_changed())
        self.assertIsNone(detector.fingerprint)

        suppressor.dispose()
        self.assertTrue(detector.has_changed())

    def test_stat_failure_returns_false_and_keeps_state(self) -> None:
        self.detector.check_interval = 0
        _write_tasks(self.path, 1)
        self.assertTrue(self.detector.has_changed())
        before = self.detector.fingerprint

        broken = Mock(spec=Path)
        broken.exists.return_value = True
        broken.stat.side_effect = PermissionError("denied")
        self.detector.path = broken

        self.assertFalse(self.detector.has_changed())
        self.assertEqual(self.detector.fingerprint, before)

    def test_mark_seen_adopts_current_file_without_reporting(self) -> None:
        self.detector.check_interval = 0
        _write_tasks(self.path, 1)
        self.assertTrue(self.detector.has_changed())

        _write_tasks(self.path, 5)
        self.detector.mark_seen()
        self.assertEqual(self.detector.fingerprint.size, self.path.stat().st_size)
        self.assertFalse(self.detector.has_changed())

    def test_mark_seen_on_missing_file_clears_fingerprint(self) -> None:
        _write_tasks(self.path, 1)
        self.assertTrue(self.detector.has_changed())

        self.path.unlink()
        self.detector.mark_seen()
        self.assertIsNone(self.detector.fingerprint)

    def test_reset_forgets_fingerprint(self) -> None:
        _write_tasks(self.path, 1)
        self.assertTrue(self.detector.has_changed())

        self.detector.reset()
        self.assertIsNone(self.detector.fingerprint)
        self.assertTrue(self.detector.has_changed())


if __name__ == "__main__":
    unittest.main()
