"""Task model for the dependency graph engine.

Tasks carry integer ids, an ordered dependency list and an ordered list of
subtasks. Subtasks are addressed as ``<parent>.<subtask>`` and share every
field with tasks except nesting. A :class:`Snapshot` is one tag's complete
task list and is the unit every engine operation works on.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from ..utils import _now_iso
from .errors import InvalidPriorityError, InvalidStatusError


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """The six recognized statuses. ``completed`` is accepted as an alias of DONE."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    REVIEW = "review"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: Union[str, "TaskStatus"]) -> "TaskStatus":
        """Normalize raw input into a status, raising :class:`InvalidStatusError`."""
        if isinstance(value, TaskStatus):
            return value
        if not isinstance(value, str):
            raise InvalidStatusError(value, cls.values())
        raw = value.strip().lower()
        raw = _STATUS_ALIASES.get(raw, raw)
        try:
            return cls(raw)
        except ValueError:
            raise InvalidStatusError(value, cls.values()) from None

    @classmethod
    def values(cls) -> list[str]:
        return [s.value for s in cls]

    @property
    def is_terminal(self) -> bool:
        return self is TaskStatus.DONE


_STATUS_ALIASES = {"completed": TaskStatus.DONE.value}


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Higher is more urgent."""
        return {"low": 1, "medium": 2, "high": 3}[self.value]

    @classmethod
    def parse(cls, value: Union[str, "TaskPriority", None], default: "TaskPriority" = None) -> "TaskPriority":  # type: ignore[assignment]
        if isinstance(value, TaskPriority):
            return value
        if value is None:
            return default or cls.MEDIUM
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidPriorityError(value, [p.value for p in cls]) from None


# Keys every node knows about; anything else read from disk lands in ``extra``.
_NODE_KEYS = ("id", "title", "description", "details", "testStrategy", "status", "priority", "dependencies")


# ---------------------------------------------------------------------------
# Subtask
# ---------------------------------------------------------------------------

@dataclass
class Subtask:
    """A unit of work nested under a parent task.

    ``id`` is only unique within the parent. ``priority`` may be None, in
    which case the parent's priority applies when ranking.
    """

    id: int
    title: str = ""
    description: str = ""
    details: str = ""
    test_strategy: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: Optional[TaskPriority] = None
    dependencies: list[Union[int, str]] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "details": self.details,
            "testStrategy": self.test_strategy,
            "status": self.status.value,
            "dependencies": list(self.dependencies),
        }
        if self.priority is not None:
            data["priority"] = self.priority.value
        data.update(copy.deepcopy(self.extra))
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subtask":
        priority_raw = data.get("priority")
        return cls(
            id=int(data["id"]),
            title=str(data.get("title", "") or ""),
            description=str(data.get("description", "") or ""),
            details=str(data.get("details", "") or ""),
            test_strategy=str(data.get("testStrategy", "") or ""),
            status=TaskStatus.parse(data.get("status") or TaskStatus.PENDING),
            priority=TaskPriority.parse(priority_raw) if priority_raw is not None else None,
            dependencies=list(data.get("dependencies", []) or []),
            extra={k: copy.deepcopy(v) for k, v in data.items() if k not in _NODE_KEYS},
        )


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A top-level work item within a tag."""

    id: int
    title: str = ""
    description: str = ""
    details: str = ""
    test_strategy: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    dependencies: list[Union[int, str]] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "details": self.details,
            "testStrategy": self.test_strategy,
            "status": self.status.value,
            "priority": self.priority.value,
            "dependencies": list(self.dependencies),
            "subtasks": [s.to_dict() for s in self.subtasks],
        }
        data.update(copy.deepcopy(self.extra))
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        known = set(_NODE_KEYS) | {"subtasks"}
        return cls(
            id=int(data["id"]),
            title=str(data.get("title", "") or ""),
            description=str(data.get("description", "") or ""),
            details=str(data.get("details", "") or ""),
            test_strategy=str(data.get("testStrategy", "") or ""),
            status=TaskStatus.parse(data.get("status") or TaskStatus.PENDING),
            priority=TaskPriority.parse(data.get("priority")),
            dependencies=list(data.get("dependencies", []) or []),
            subtasks=[Subtask.from_dict(s) for s in data.get("subtasks", []) or []],
            extra={k: copy.deepcopy(v) for k, v in data.items() if k not in known},
        )

    def get_subtask(self, subtask_id: int) -> Optional[Subtask]:
        for sub in self.subtasks:
            if sub.id == subtask_id:
                return sub
        return None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

@dataclass
class Snapshot:
    """One tag's full task list plus its metadata block."""

    tag: str
    tasks: list[Task] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls, tag: str, description: str = "") -> "Snapshot":
        now = _now_iso()
        return cls(
            tag=tag,
            tasks=[],
            metadata={"created": now, "updated": now, "description": description},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [t.to_dict() for t in self.tasks],
            "metadata": copy.deepcopy(self.metadata),
        }

    @classmethod
    def from_dict(cls, tag: str, data: dict[str, Any]) -> "Snapshot":
        return cls(
            tag=tag,
            tasks=[Task.from_dict(t) for t in data.get("tasks", []) or []],
            metadata=dict(data.get("metadata", {}) or {}),
        )

    def clone(self, tag: Optional[str] = None) -> "Snapshot":
        dup = copy.deepcopy(self)
        if tag is not None:
            dup.tag = tag
        return dup

    @property
    def last_task_id(self) -> int:
        """The highest id ever assigned in this tag (ids are never reused)."""
        stored = self.metadata.get("last_task_id")
        highest = max((t.id for t in self.tasks), default=0)
        if isinstance(stored, int) and not isinstance(stored, bool):
            return max(stored, highest)
        return highest
