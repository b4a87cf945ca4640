"""Repository package for task store access."""

from .base import (
    TaskGenerator,
    TaskNotFoundError,
    TaskRepository,
    TaskRepositoryError,
    TaskStoreCorruptError,
    TaskValidationError,
    UnsupportedOperationError,
)
from .json_file import JsonFileTaskRepository

__all__ = [
    "JsonFileTaskRepository",
    "TaskGenerator",
    "TaskNotFoundError",
    "TaskRepository",
    "TaskRepositoryError",
    "TaskStoreCorruptError",
    "TaskValidationError",
    "UnsupportedOperationError",
]
