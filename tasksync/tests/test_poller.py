import asyncio
import json
import tempfile
import unittest
from pathlib import Path

from tasksync.models import ReadModel
from tasksync.repositories import JsonFileTaskRepository
from tasksync.sync.fingerprint import ChangeDetector
from tasksync.sync.poller import DebouncedPoller, PollerState
from tasksync.sync.read_model import ReadModelBuilder
from tasksync.sync.settings import SyncSettings


def _write_tasks(path: Path, count: int) -> None:
    tasks = [{"id": i, "title": f"Task {i}", "status": "pending"} for i in range(1, count + 1)]
    path.write_text(json.dumps({"tasks": tasks}), encoding="utf-8")


def _settings(**overrides) -> SyncSettings:
    values = dict(
        poll_interval_ms=20,
        poll_floor_ms=0,
        check_interval_ms=0,
        min_mtime_delta_ms=0,
        batch_window_ms=150,
        min_update_interval_ms=0,
        cooldown_ms=0,
        suppression_grace_ms=50,
    )
    values.update(overrides)
    return SyncSettings(**values)


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class DebouncedPollerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.repo = JsonFileTaskRepository(self.root)
        self.path = self.repo.tasks_path
        self.path.parent.mkdir(parents=True)
        _write_tasks(self.path, 1)
        self.models: list[ReadModel] = []
        self.poller = None

    async def asyncTearDown(self) -> None:
        if self.poller is not None:
            await self.poller.stop()
        self._tmp.cleanup()

    def _start(self, settings: SyncSettings, callback=None) -> DebouncedPoller:
        detector = ChangeDetector(
            self.path,
            check_interval=settings.check_interval,
            min_mtime_delta=settings.min_mtime_delta,
        )
        self.poller = DebouncedPoller(
            detector,
            ReadModelBuilder(self.repo),
            callback or self.models.append,
            settings,
        )
        self.poller.start()
        return self.poller

    async def test_initial_load_dispatches_once(self) -> None:
        poller = self._start(_settings(batch_window_ms=10))

        await _wait_for(lambda: poller.dispatch_count == 1)
        await asyncio.sleep(0.2)

        self.assertEqual(len(self.models), 1)
        self.assertEqual(self.models[0].metadata.totalTasks, 1)
        self.assertEqual(poller.state, PollerState.IDLE)

    async def test_missing_store_still_delivers_an_initial_model(self) -> None:
        self.path.unlink()
        poller = self._start(_settings(batch_window_ms=10))

        await _wait_for(lambda: poller.dispatch_count == 1)
        self.assertEqual(self.models[0].metadata.totalTasks, 0)

        _write_tasks(self.path, 2)
        await _wait_for(lambda: poller.dispatch_count == 2)
        self.assertEqual(self.models[-1].metadata.totalTasks, 2)

    async def test_refresh_dispatches_once_outside_the_batch_window(self) -> None:
        poller = self._start(_settings(batch_window_ms=20, min_update_interval_ms=5000))
        await _wait_for(lambda: poller.dispatch_count == 1)

        _write_tasks(self.path, 3)
        model = await poller.refresh()
        await asyncio.sleep(0.15)

        self.assertEqual(model.metadata.totalTasks, 3)
        self.assertEqual(poller.dispatch_count, 2)
        self.assertIs(self.models[-1], model)

    async def test_burst_of_writes_collapses_into_one_update(self) -> None:
        poller = self._start(_settings(batch_window_ms=200))
        await _wait_for(lambda: poller.dispatch_count == 1)

        for count in range(2, 7):
            _write_tasks(self.path, count)
            await asyncio.sleep(0.02)

        await asyncio.sleep(0.6)

        self.assertEqual(poller.dispatch_count, 2)
        self.assertEqual(len(self.models), 2)
        self.assertEqual(self.models[-1].metadata.totalTasks, 6)

    async def test_updates_respect_minimum_spacing(self) -> None:
        poller = self._start(_settings(batch_window_ms=20, min_update_interval_ms=500))
        await _wait_for(lambda: poller.dispatch_count == 1)
        first_update = poller.last_update_time

        _write_tasks(self.path, 3)
        await asyncio.sleep(0.15)
        self.assertEqual(poller.dispatch_count, 1)

        # the skipped rebuild is retried once the spacing has elapsed
        await _wait_for(lambda: poller.dispatch_count == 2)
        self.assertGreaterEqual(poller.last_update_time - first_update, 0.5)
        self.assertEqual(self.models[-1].metadata.totalTasks, 3)

    async def test_dispose_stops_dispatching(self) -> None:
        poller = self._start(_settings(batch_window_ms=20))
        await _wait_for(lambda: poller.dispatch_count == 1)

        poller.dispose()
        poller.dispose()
        _write_tasks(self.path, 4)
        await asyncio.sleep(0.2)

        self.assertEqual(poller.dispatch_count, 1)
        self.assertFalse(poller.is_running)
        self.assertTrue(poller.disposed)

    async def test_trigger_rebuilds_without_file_change(self) -> None:
        poller = self._start(_settings(batch_window_ms=20))
        await _wait_for(lambda: poller.dispatch_count == 1)

        poller.trigger()
        await _wait_for(lambda: poller.dispatch_count == 2)
        self.assertEqual(self.models[-1].metadata.totalTasks, 1)

    async def test_callback_errors_are_logged_not_raised(self) -> None:
        calls: list[ReadModel] = []

        def explode(model: ReadModel) -> None:
            calls.append(model)
            raise RuntimeError("render failed")

        with self.assertLogs("tasksync.poller", level="ERROR"):
            poller = self._start(_settings(batch_window_ms=10), callback=explode)
            await _wait_for(lambda: poller.dispatch_count == 1)
            await asyncio.sleep(0.05)

        _write_tasks(self.path, 2)
        await _wait_for(lambda: len(calls) == 2)
        self.assertTrue(poller.is_running)

    async def test_async_callback_is_awaited(self) -> None:
        received: list[int] = []

        async def on_model(model: ReadModel) -> None:
            await asyncio.sleep(0)
            received.append(model.metadata.totalTasks)

        poller = self._start(_settings(batch_window_ms=10), callback=on_model)
        await _wait_for(lambda: received == [1])
        self.assertEqual(poller.dispatch_count, 1)


if __name__ == "__main__":
    unittest.main()
