"""Provide the public `task_graph` package exports."""

from __future__ import annotations

from loguru import logger

from .task_engine.engine import TaskEngine
from .task_engine.errors import (
    CorruptStoreError,
    CycleError,
    DependencyValidationError,
    DuplicateEdgeError,
    InvalidPriorityError,
    InvalidStatusError,
    MalformedIdError,
    NotFoundError,
    SubtaskNotFoundError,
    TagError,
    TaskGraphError,
)
from .task_engine.model import Snapshot, Subtask, Task, TaskPriority, TaskStatus

# Library code stays quiet unless the host opts in via configure_logging().
logger.disable("task_graph")

__all__ = [
    "CorruptStoreError",
    "CycleError",
    "DependencyValidationError",
    "DuplicateEdgeError",
    "InvalidPriorityError",
    "InvalidStatusError",
    "MalformedIdError",
    "NotFoundError",
    "Snapshot",
    "Subtask",
    "SubtaskNotFoundError",
    "TagError",
    "Task",
    "TaskEngine",
    "TaskGraphError",
    "TaskPriority",
    "TaskStatus",
]
