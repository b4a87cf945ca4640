"""Sync observability API."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from tasksync import config
from tasksync.models import ProjectStatus
from tasksync.project_manager import check_project_status

sync_router = APIRouter(prefix="/api/sync", tags=["sync"])


def _get_service(request: Request):
    service = getattr(request.app.state, "task_service", None)
    if not service:
        raise HTTPException(status_code=503, detail="Task sync service not initialized")
    return service


@sync_router.get("/status")
async def sync_status(request: Request):
    """Poller state, suppression flag and the timestamp of the last read model."""
    service = _get_service(request)
    snapshot = service.status_snapshot()
    model = getattr(request.app.state, "read_model", None)
    snapshot["lastUpdated"] = model.metadata.lastUpdated if model is not None else None
    return snapshot


@sync_router.get("/project", response_model=ProjectStatus)
async def project_status(request: Request):
    service = _get_service(request)
    root = getattr(service.repository, "project_root", None) or config.PROJECT_ROOT
    return check_project_status(root)
