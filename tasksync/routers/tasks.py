"""Task read model and mutation API."""
from __future__ import annotations

import logging
from typing import Any, Optional, Union

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from tasksync.models import OpResult, ReadModel, Subtask, Task
from tasksync.sync.read_model import filter_tasks

logger = logging.getLogger("tasksync.api")

tasks_router = APIRouter(prefix="/api/tasks", tags=["tasks"])


class StatusUpdate(BaseModel):
    status: str


class PromptRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    research: bool = False


class BatchUpdateRequest(PromptRequest):
    fromId: int


class DependencyRequest(BaseModel):
    dependsOn: Union[int, str]


class ExpandRequest(BaseModel):
    numSubtasks: Optional[int] = Field(default=None, ge=1)
    prompt: str = ""
    research: bool = False
    force: bool = False


class OptionsRequest(BaseModel):
    options: dict[str, Any] = Field(default_factory=dict)


def _get_service(request: Request):
    service = getattr(request.app.state, "task_service", None)
    if not service:
        raise HTTPException(status_code=503, detail="Task sync service not initialized")
    return service


async def _latest_read_model(request: Request) -> ReadModel:
    model = getattr(request.app.state, "read_model", None)
    if model is None:
        model = await _get_service(request).get_tasks_data()
    return model


# ── queries ────────────────────────────────────────────────────────

@tasks_router.get("", response_model=ReadModel)
async def list_tasks(request: Request, status: Optional[str] = Query(default=None)):
    """Latest read model, optionally narrowed to one status."""
    model = await _latest_read_model(request)
    if not status:
        return model
    return ReadModel(tasks=filter_tasks(model.tasks, status), metadata=model.metadata)


@tasks_router.get("/next", response_model=Optional[Task])
async def next_task(request: Request):
    return await _get_service(request).get_next_task()


@tasks_router.post("/refresh", response_model=ReadModel)
async def refresh_tasks(request: Request):
    model = await _get_service(request).refresh()
    request.app.state.read_model = model
    return model


@tasks_router.get("/{task_id}", response_model=Union[Task, Subtask])
async def get_task(task_id: str, request: Request):
    task = await _get_service(request).get_task_by_id(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return task


# ── mutations ──────────────────────────────────────────────────────

@tasks_router.post("", response_model=OpResult)
async def add_task(request: Request, payload: dict[str, Any]):
    return await _get_service(request).add_task(payload)


@tasks_router.post("/batch-update", response_model=OpResult)
async def batch_update(request: Request, payload: BatchUpdateRequest):
    return await _get_service(request).batch_update(payload.fromId, payload.prompt, payload.research)


@tasks_router.post("/subtasks/clear", response_model=OpResult)
async def clear_subtasks(request: Request, all_tasks: bool = Query(default=True, alias="all")):
    return await _get_service(request).clear_subtasks(all_tasks=all_tasks)


@tasks_router.post("/expand-all", response_model=OpResult)
async def expand_all(request: Request, payload: OptionsRequest):
    return await _get_service(request).expand_all(payload.options)


@tasks_router.post("/parse-prd", response_model=OpResult)
async def parse_prd(request: Request, payload: OptionsRequest):
    return await _get_service(request).parse_prd(payload.options)


@tasks_router.post("/generate-files", response_model=OpResult)
async def generate_task_files(request: Request):
    result = await _get_service(request).generate_task_files()
    if result.ok:
        result = OpResult.success([str(path) for path in result.value])
    return result


@tasks_router.post("/sync-readme", response_model=OpResult)
async def sync_readme(request: Request, payload: OptionsRequest):
    result = await _get_service(request).sync_readme(payload.options)
    if result.ok:
        result = OpResult.success(str(result.value))
    return result


@tasks_router.post("/dependencies/validate", response_model=OpResult)
async def validate_dependencies(request: Request):
    return await _get_service(request).validate_dependencies()


@tasks_router.post("/dependencies/fix", response_model=OpResult)
async def fix_dependencies(request: Request):
    return await _get_service(request).fix_dependencies()


@tasks_router.post("/{task_id}/status", response_model=OpResult)
async def update_task_status(task_id: str, request: Request, payload: StatusUpdate):
    return await _get_service(request).update_task_status(task_id, payload.status)


@tasks_router.patch("/{task_id}", response_model=OpResult)
async def update_task(task_id: str, request: Request, payload: dict[str, Any]):
    return await _get_service(request).update_task(task_id, payload)


@tasks_router.delete("/{task_id}", response_model=OpResult)
async def remove_task(task_id: str, request: Request):
    return await _get_service(request).remove_task(task_id)


@tasks_router.post("/{task_id}/subtasks", response_model=OpResult)
async def add_subtask(task_id: str, request: Request, payload: dict[str, Any]):
    return await _get_service(request).add_subtask(task_id, payload)


@tasks_router.post("/{task_id}/subtasks/{subtask_id}/prompt", response_model=OpResult)
async def update_subtask(task_id: str, subtask_id: str, request: Request, payload: PromptRequest):
    return await _get_service(request).update_subtask(f"{task_id}.{subtask_id}", payload.prompt)


@tasks_router.delete("/{task_id}/subtasks/{subtask_id}", response_model=OpResult)
async def remove_subtask(
    task_id: str,
    subtask_id: str,
    request: Request,
    convert: bool = Query(default=False),
):
    return await _get_service(request).remove_subtask(task_id, subtask_id, convert=convert)


@tasks_router.post("/{task_id}/dependencies", response_model=OpResult)
async def add_dependency(task_id: str, request: Request, payload: DependencyRequest):
    return await _get_service(request).add_dependency(task_id, payload.dependsOn)


@tasks_router.delete("/{task_id}/dependencies/{depends_on}", response_model=OpResult)
async def remove_dependency(task_id: str, depends_on: str, request: Request):
    return await _get_service(request).remove_dependency(task_id, depends_on)


@tasks_router.post("/{task_id}/expand", response_model=OpResult)
async def expand_task(task_id: str, request: Request, payload: ExpandRequest):
    options = {"prompt": payload.prompt, "research": payload.research, "force": payload.force}
    return await _get_service(request).expand_task(task_id, payload.numSubtasks, options)
