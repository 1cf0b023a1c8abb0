"""Structured error taxonomy for the task graph engine.

Every error carries a machine-readable ``kind`` plus the offending address or
value so callers can branch on it without parsing messages.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class TaskGraphError(Exception):
    """Base class for all engine errors."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind, "message": self.message}
        data.update(self.details())
        return data


class MalformedIdError(TaskGraphError):
    kind = "malformed_id"

    def __init__(self, value: Any, reason: str = "") -> None:
        self.value = value
        suffix = f": {reason}" if reason else ""
        super().__init__(f"Malformed task address {value!r}{suffix}")

    def details(self) -> dict[str, Any]:
        return {"value": str(self.value)}


class NotFoundError(TaskGraphError):
    kind = "not_found"

    def __init__(self, address: str, message: Optional[str] = None) -> None:
        self.address = address
        super().__init__(message or f"Task {address} not found")

    def details(self) -> dict[str, Any]:
        return {"address": self.address}


class SubtaskNotFoundError(NotFoundError):
    """The parent task exists but has no subtask with the requested id."""

    kind = "subtask_not_found"

    def __init__(self, address: str, parent_id: int) -> None:
        self.parent_id = parent_id
        super().__init__(address, f"Subtask {address} not found in task {parent_id}")

    def details(self) -> dict[str, Any]:
        return {"address": self.address, "parent_id": self.parent_id}


class InvalidStatusError(TaskGraphError):
    kind = "invalid_status"

    def __init__(self, value: Any, allowed: Sequence[str] = ()) -> None:
        self.value = value
        self.allowed = list(allowed)
        hint = f"; valid statuses: {', '.join(self.allowed)}" if self.allowed else ""
        super().__init__(f"Invalid status {value!r}{hint}")

    def details(self) -> dict[str, Any]:
        return {"value": str(self.value), "allowed": self.allowed}


class InvalidPriorityError(TaskGraphError):
    kind = "invalid_priority"

    def __init__(self, value: Any, allowed: Sequence[str] = ()) -> None:
        self.value = value
        self.allowed = list(allowed)
        hint = f"; valid priorities: {', '.join(self.allowed)}" if self.allowed else ""
        super().__init__(f"Invalid priority {value!r}{hint}")

    def details(self) -> dict[str, Any]:
        return {"value": str(self.value), "allowed": self.allowed}


class CycleError(TaskGraphError):
    kind = "cycle"

    def __init__(self, from_address: str, to_address: str, path: Sequence[str] = ()) -> None:
        self.from_address = from_address
        self.to_address = to_address
        self.path = list(path)
        shown = " -> ".join(self.path) if self.path else f"{from_address} -> {to_address}"
        super().__init__(
            f"Adding dependency {from_address} -> {to_address} would create a cycle ({shown})"
        )

    def details(self) -> dict[str, Any]:
        return {"from": self.from_address, "to": self.to_address, "path": self.path}


class DuplicateEdgeError(TaskGraphError):
    kind = "duplicate_edge"

    def __init__(self, from_address: str, to_address: str) -> None:
        self.from_address = from_address
        self.to_address = to_address
        super().__init__(f"Task {from_address} already depends on {to_address}")

    def details(self) -> dict[str, Any]:
        return {"from": self.from_address, "to": self.to_address}


class CorruptStoreError(TaskGraphError):
    kind = "corrupt_store"

    def __init__(self, path: str, tag: Optional[str], problems: Sequence[str]) -> None:
        self.path = path
        self.tag = tag
        self.problems = list(problems)
        where = f"{path} (tag {tag!r})" if tag else path
        first = self.problems[0] if self.problems else "unreadable"
        super().__init__(f"Corrupt task store {where}: {first}")

    def details(self) -> dict[str, Any]:
        return {"path": self.path, "tag": self.tag, "problems": self.problems}


class DependencyValidationError(TaskGraphError):
    """A structural mutation introduced dangling edges or cycles and was rolled back."""

    kind = "validation"

    def __init__(self, findings: Sequence[Any], cycles: Sequence[Sequence[str]]) -> None:
        self.findings = list(findings)
        self.cycles = [list(c) for c in cycles]
        super().__init__(
            f"Mutation rejected: {len(self.findings)} integrity problem(s), "
            f"{len(self.cycles)} cycle(s)"
        )

    def details(self) -> dict[str, Any]:
        return {
            "findings": [f.to_dict() if hasattr(f, "to_dict") else str(f) for f in self.findings],
            "cycles": self.cycles,
        }


class TagError(TaskGraphError):
    kind = "tag"

    def __init__(self, tag: str, reason: str) -> None:
        self.tag = tag
        self.reason = reason
        super().__init__(f"Tag {tag!r}: {reason}")

    def details(self) -> dict[str, Any]:
        return {"tag": self.tag, "reason": self.reason}
