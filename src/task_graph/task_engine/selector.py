"""Pick the next task or subtask to work on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from .errors import MalformedIdError
from .ids import TaskAddress, resolve_dependency
from .model import Subtask, Task, TaskPriority, TaskStatus
from .store import TaskStore

_CLOSED_PARENT_STATUSES = {TaskStatus.DONE, TaskStatus.CANCELLED}


@dataclass(frozen=True)
class Candidate:
    address: TaskAddress
    node: Union[Task, Subtask]
    parent: Optional[Task]
    priority: TaskPriority
    dependency_count: int

    def sort_key(self) -> tuple[int, int, tuple[int, int]]:
        return (-self.priority.rank, self.dependency_count, self.address.sort_key())

    def to_dict(self) -> dict[str, Any]:
        data = self.node.to_dict()
        data["address"] = str(self.address)
        data["effective_priority"] = self.priority.value
        if self.parent is not None:
            data["parent"] = {"id": self.parent.id, "title": self.parent.title, "status": self.parent.status.value}
        return data


@dataclass(frozen=True)
class NextTaskResult:
    """Either the chosen candidate or, when nothing qualifies, the reason why."""

    candidate: Optional[Candidate] = None
    reason: str = ""

    @property
    def found(self) -> bool:
        return self.candidate is not None

    @property
    def address(self) -> Optional[str]:
        return str(self.candidate.address) if self.candidate else None

    def to_dict(self) -> dict[str, Any]:
        if self.candidate is None:
            return {"found": False, "reason": self.reason}
        return {"found": True, "task": self.candidate.to_dict()}


def _dependencies_done(store: TaskStore, owner: TaskAddress, node: Union[Task, Subtask]) -> bool:
    for dep in node.dependencies:
        try:
            target = store.get_node(resolve_dependency(owner, dep))
        except MalformedIdError:
            return False
        if target is None or not target.status.is_terminal:
            return False
    return True


def eligible_tasks(store: TaskStore) -> list[Candidate]:
    """Return every pending node whose dependencies are all done, best first.

    Subtasks of a parent that is already done or cancelled are skipped; a
    subtask without its own priority ranks with its parent's.
    """
    out: list[Candidate] = []
    for addr, node, parent in store.iter_nodes():
        if node.status is not TaskStatus.PENDING:
            continue
        if parent is not None and parent.status in _CLOSED_PARENT_STATUSES:
            continue
        if not _dependencies_done(store, addr, node):
            continue
        if isinstance(node, Subtask):
            priority = node.priority or parent.priority  # type: ignore[union-attr]
        else:
            priority = node.priority
        out.append(
            Candidate(
                address=addr,
                node=node,
                parent=parent,
                priority=priority,
                dependency_count=len(node.dependencies),
            )
        )
    out.sort(key=Candidate.sort_key)
    return out


def find_next_task(store: TaskStore) -> NextTaskResult:
    """Return the single most eligible task; never mutates the store."""
    ranked = eligible_tasks(store)
    if ranked:
        return NextTaskResult(candidate=ranked[0])
    pending = any(node.status is TaskStatus.PENDING for _, node, _ in store.iter_nodes())
    if pending:
        return NextTaskResult(reason="all pending tasks are waiting on unfinished dependencies")
    return NextTaskResult(reason="no pending tasks")
