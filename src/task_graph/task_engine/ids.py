"""Task and subtask addressing.

A task is addressed by a bare positive integer (``"7"``), a subtask by
``"<parent>.<subtask>"`` (``"7.2"``). This textual form is what gets persisted
in dependency lists, so every component goes through :func:`parse_address`
instead of coercing strings and numbers ad hoc.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional, Union

from .errors import MalformedIdError

Address = Union[int, str]

_ADDRESS_RE = re.compile(r"^([0-9]+)(?:\.([0-9]+))?$")


@dataclass(frozen=True)
class TaskAddress:
    parent_id: int
    subtask_id: Optional[int] = None

    @property
    def is_subtask(self) -> bool:
        return self.subtask_id is not None

    @property
    def task_id(self) -> int:
        return self.parent_id

    def sort_key(self) -> tuple[int, int]:
        return (self.parent_id, self.subtask_id or 0)

    def __str__(self) -> str:
        return format_address(self.parent_id, self.subtask_id)


def parse_address(value: Any) -> TaskAddress:
    """Parse ``7``, ``"7"`` or ``"7.2"`` into a :class:`TaskAddress`.

    Raises :class:`MalformedIdError` for anything else, including zero or
    negative components and booleans.
    """
    if isinstance(value, TaskAddress):
        return value
    if isinstance(value, bool):
        raise MalformedIdError(value, "booleans are not task ids")
    if isinstance(value, int):
        if value <= 0:
            raise MalformedIdError(value, "ids must be positive")
        return TaskAddress(value)
    if not isinstance(value, str):
        raise MalformedIdError(value, f"unsupported type {type(value).__name__}")

    match = _ADDRESS_RE.match(value.strip())
    if not match:
        raise MalformedIdError(value, "expected <id> or <parent>.<subtask>")
    parent_id = int(match.group(1))
    if parent_id <= 0:
        raise MalformedIdError(value, "ids must be positive")
    if match.group(2) is None:
        return TaskAddress(parent_id)
    subtask_id = int(match.group(2))
    if subtask_id <= 0:
        raise MalformedIdError(value, "ids must be positive")
    return TaskAddress(parent_id, subtask_id)


def format_address(parent_id: int, subtask_id: Optional[int] = None) -> str:
    if subtask_id is None:
        return str(parent_id)
    return f"{parent_id}.{subtask_id}"


def parse_address_list(value: Any) -> list[TaskAddress]:
    """Parse a comma-separated address list such as ``"1, 2.1,3"``."""
    if isinstance(value, (list, tuple)):
        return [parse_address(v) for v in value]
    if isinstance(value, int) and not isinstance(value, bool):
        return [parse_address(value)]
    if not isinstance(value, str) or not value.strip():
        raise MalformedIdError(value, "empty address list")
    return [parse_address(part) for part in value.split(",") if part.strip()]


def resolve_dependency(owner: TaskAddress, dep: Address) -> TaskAddress:
    """Resolve a stored dependency id relative to the node that owns it.

    On a subtask, a bare integer names a sibling subtask of the same parent;
    a string is always fully qualified (``"3"`` is task 3). On a task, both
    ``3`` and ``"3"`` name task 3.
    """
    if owner.is_subtask and isinstance(dep, int) and not isinstance(dep, bool):
        if dep <= 0:
            raise MalformedIdError(dep, "ids must be positive")
        return TaskAddress(owner.parent_id, dep)
    return parse_address(dep)


def encode_dependency(owner: TaskAddress, target: TaskAddress) -> Address:
    """Return the canonical stored form of ``owner -> target``."""
    if owner.is_subtask:
        if target.is_subtask and target.parent_id == owner.parent_id:
            return target.subtask_id  # type: ignore[return-value]
        return str(target)
    if target.is_subtask:
        return str(target)
    return target.parent_id
