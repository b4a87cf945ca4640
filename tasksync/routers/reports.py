"""Complexity report API."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from tasksync.models import ComplexityReport, OpResult

reports_router = APIRouter(prefix="/api/reports", tags=["reports"])


class AnalyzeRequest(BaseModel):
    options: dict[str, Any] = Field(default_factory=dict)


def _get_service(request: Request):
    service = getattr(request.app.state, "task_service", None)
    if not service:
        raise HTTPException(status_code=503, detail="Task sync service not initialized")
    return service


@reports_router.get("/complexity", response_model=ComplexityReport)
async def get_complexity_report(request: Request):
    report = await _get_service(request).get_complexity_report()
    if report is None:
        raise HTTPException(status_code=404, detail="No complexity report found")
    return report


@reports_router.post("/complexity", response_model=OpResult)
async def analyze_complexity(request: Request, payload: AnalyzeRequest):
    """Score pending tasks and write a fresh report."""
    return await _get_service(request).analyze_complexity(payload.options)
