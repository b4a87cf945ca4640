"""Project discovery and service construction."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from tasksync import config
from tasksync.models import ProjectStatus
from tasksync.repositories import JsonFileTaskRepository, TaskGenerator
from tasksync.sync.service import TaskSyncService
from tasksync.sync.settings import SyncSettings

logger = logging.getLogger("tasksync.project")

_PRD_CANDIDATES = ("prd.txt", "prd.md", "PRD.txt", "PRD.md")


class ProjectNotFoundError(Exception):
    """No directory containing a task store was found."""


def find_project_root(start: Path | str | None = None) -> Optional[Path]:
    """Walk up from ``start`` to the first directory holding ``.taskmaster``."""
    current = Path(start or Path.cwd()).expanduser().resolve()
    if current.is_file():
        current = current.parent
    for candidate in (current, *current.parents):
        if (candidate / config.TASKMASTER_DIR).is_dir():
            return candidate
    return None


def _find_prd(root: Path) -> Optional[Path]:
    configured = root / config.PRD_FILE
    if configured.exists():
        return configured
    docs_dir = root / config.TASKMASTER_DIR / "docs"
    for name in _PRD_CANDIDATES:
        candidate = docs_dir / name
        if candidate.exists():
            return candidate
    return None


def check_project_status(project_root: Path | str) -> ProjectStatus:
    root = Path(project_root)
    status = ProjectStatus()

    try:
        status.hasTaskmaster = (root / config.TASKMASTER_DIR).is_dir()
        status.hasTasksFile = (root / config.TASKS_FILE).is_file()
        status.hasPRD = _find_prd(root) is not None

        config_path = root / config.CONFIG_FILE
        status.hasConfig = config_path.is_file()
        if status.hasConfig:
            try:
                data = json.loads(config_path.read_text(encoding="utf-8"))
                models = data.get("models") if isinstance(data, dict) else None
                if isinstance(models, dict):
                    status.hasModels = any(models.get(role) for role in ("main", "research", "fallback"))
            except (json.JSONDecodeError, OSError) as e:
                status.warnings.append(f"Failed to parse config: {e}")

        status.isInitialized = status.hasTaskmaster and status.hasTasksFile

        if not status.hasTaskmaster:
            status.errors.append("Task store directory not initialized.")
        if status.hasTaskmaster and not status.hasTasksFile:
            status.warnings.append("No tasks.json file found. Create tasks or parse a PRD.")
        if status.hasTaskmaster and not status.hasPRD:
            status.warnings.append(f"No PRD document found in {config.TASKMASTER_DIR}/docs/")
        if status.hasTaskmaster and not status.hasConfig:
            status.warnings.append("No configuration file found. Models may not be set up.")
        if status.hasConfig and not status.hasModels:
            status.warnings.append("No AI models configured.")
    except OSError as e:
        status.errors.append(f"Failed to check project status: {e}")

    return status


def create_task_sync_service(
    root: Path | str | None = None,
    generator: TaskGenerator | None = None,
    settings: SyncSettings | None = None,
) -> TaskSyncService:
    """Build a sync service for the project at (or above) ``root``."""
    project_root = find_project_root(root or config.PROJECT_ROOT)
    if project_root is None:
        raise ProjectNotFoundError(
            f"No {config.TASKMASTER_DIR} directory found at or above {root or config.PROJECT_ROOT}"
        )

    repository = JsonFileTaskRepository(project_root, generator=generator)
    service = TaskSyncService(repository, settings=settings or SyncSettings.from_config())
    logger.info(f"Task sync service ready for {repository.tasks_path}")
    return service
