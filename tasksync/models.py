"""Pydantic models matching the task store JSON documents."""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

TASK_STATUSES = ("pending", "in-progress", "done", "deferred", "cancelled", "review")
TASK_PRIORITIES = ("high", "medium", "low")

# ── Task store models ──────────────────────────────────────────────

class Subtask(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    title: str
    description: str = ""
    details: str = ""
    testStrategy: str = ""
    status: str = "pending"  # see TASK_STATUSES
    priority: Optional[str] = None
    dependencies: list[int | str] = Field(default_factory=list)  # sibling ids or "parent.sub"
    parentTaskId: Optional[int] = None


class Task(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    title: str
    description: str = ""
    details: str = ""
    testStrategy: str = ""
    status: str = "pending"  # see TASK_STATUSES
    priority: str = "medium"  # high | medium | low
    dependencies: list[int | str] = Field(default_factory=list)
    subtasks: list[Subtask] = Field(default_factory=list)


class TaskStore(BaseModel):
    model_config = ConfigDict(extra="allow")

    tasks: list[Task] = Field(default_factory=list)


# ── Read model ─────────────────────────────────────────────────────

class ReadModelMetadata(BaseModel):
    totalTasks: int = 0
    pendingTasks: int = 0
    completedTasks: int = 0
    inProgressTasks: int = 0
    lastUpdated: Optional[str] = None  # build time, not file mtime


class ReadModel(BaseModel):
    tasks: list[Task] = Field(default_factory=list)
    metadata: ReadModelMetadata = Field(default_factory=ReadModelMetadata)


# ── Dependency validation ──────────────────────────────────────────

class ValidationIssue(BaseModel):
    type: str  # "missing" | "self" | "circular"
    taskId: str
    dependencyId: str = ""
    message: str = ""


class ValidationReport(BaseModel):
    valid: bool = True
    issues: list[ValidationIssue] = Field(default_factory=list)


# ── Complexity report ──────────────────────────────────────────────

class ComplexityReportMeta(BaseModel):
    generatedAt: str = ""
    projectName: str = ""
    tasksAnalyzed: int = 0
    totalTasks: int = 0
    thresholdScore: int = 5
    usedResearch: bool = False


class ComplexityAnalysis(BaseModel):
    taskId: int
    taskTitle: str = ""
    complexityScore: float = 0  # 0-10
    recommendedSubtasks: int = 0
    reasoning: str = ""
    expansionPrompt: str = ""


class ComplexityReport(BaseModel):
    meta: ComplexityReportMeta = Field(default_factory=ComplexityReportMeta)
    complexityAnalysis: list[ComplexityAnalysis] = Field(default_factory=list)


# ── Project status ─────────────────────────────────────────────────

class ProjectStatus(BaseModel):
    isInitialized: bool = False
    hasTaskmaster: bool = False
    hasTasksFile: bool = False
    hasPRD: bool = False
    hasConfig: bool = False
    hasModels: bool = False
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ── Operation results ──────────────────────────────────────────────

class OpResult(BaseModel):
    """Tagged outcome of a façade operation.

    Truthiness mirrors ``ok`` so callers can keep treating results as a
    boolean success indicator.
    """

    ok: bool
    value: Any = None
    kind: str = ""  # "" | not_found | validation | corrupt | io | unsupported | not_implemented | disposed | error
    message: str = ""

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, value: Any = None) -> "OpResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, kind: str, message: str = "") -> "OpResult":
        return cls(ok=False, kind=kind, message=message)
