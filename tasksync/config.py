"""tasksync configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default

# Project layout (relative to the project root)
PROJECT_ROOT = Path(os.getenv("TASKSYNC_PROJECT_ROOT", ".")).expanduser()
TASKMASTER_DIR = ".taskmaster"
TASKS_FILE = os.getenv("TASKSYNC_TASKS_FILE", ".taskmaster/tasks/tasks.json")
COMPLEXITY_REPORT_FILE = os.getenv(
    "TASKSYNC_COMPLEXITY_REPORT", ".taskmaster/reports/task-complexity-report.json"
)
TASK_FILES_DIR = os.getenv("TASKSYNC_TASK_FILES_DIR", ".taskmaster/tasks")
PRD_FILE = os.getenv("TASKSYNC_PRD_FILE", ".taskmaster/docs/prd.txt")
CONFIG_FILE = os.getenv("TASKSYNC_CONFIG_FILE", ".taskmaster/config.json")

# Change detection / polling (milliseconds)
POLL_INTERVAL_MS = _env_int("TASKSYNC_POLL_INTERVAL_MS", 2000)
POLL_FLOOR_MS = _env_int("TASKSYNC_POLL_FLOOR_MS", 2000)
CHECK_INTERVAL_MS = _env_int("TASKSYNC_CHECK_INTERVAL_MS", 1000)
MIN_MTIME_DELTA_MS = _env_int("TASKSYNC_MIN_MTIME_DELTA_MS", 100)
BATCH_WINDOW_MS = _env_int("TASKSYNC_BATCH_WINDOW_MS", 300)
MIN_UPDATE_INTERVAL_MS = _env_int("TASKSYNC_MIN_UPDATE_INTERVAL_MS", 1500)
COOLDOWN_MS = _env_int("TASKSYNC_COOLDOWN_MS", 500)
SUPPRESSION_GRACE_MS = _env_int("TASKSYNC_SUPPRESSION_GRACE_MS", 1000)
WATCH_BACKEND = os.getenv("TASKSYNC_WATCH_BACKEND", "poll")  # "poll" | "watchfiles"

# Observability
OTEL_ENABLED = _env_bool("TASKSYNC_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("TASKSYNC_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("TASKSYNC_OTEL_SERVICE_NAME", "tasksync")
PROM_PORT = _env_int("TASKSYNC_PROM_PORT", 0)

# Server settings
HOST = os.getenv("TASKSYNC_HOST", "127.0.0.1")
PORT = int(os.getenv("TASKSYNC_PORT", "8000"))

# CORS
FRONTEND_ORIGIN = os.getenv("TASKSYNC_FRONTEND_ORIGIN", "http://localhost:3000")
