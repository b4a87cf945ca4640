"""Change detection, batching and the mutation façade for the task store."""

from .fingerprint import ChangeDetector, Fingerprint, FingerprintStore
from .poller import DebouncedPoller, PollerState
from .read_model import ReadModelBuilder, empty_read_model, filter_tasks, summarize
from .service import TaskSyncService, make_detector
from .settings import SyncSettings
from .suppressor import SelfChangeSuppressor

__all__ = [
    "ChangeDetector",
    "DebouncedPoller",
    "Fingerprint",
    "FingerprintStore",
    "PollerState",
    "ReadModelBuilder",
    "SelfChangeSuppressor",
    "SyncSettings",
    "TaskSyncService",
    "empty_read_model",
    "filter_tasks",
    "make_detector",
    "summarize",
]
