"""Status lifecycle: validated status changes with parent/child side effects.

Any recognized status may move to any other. Two transitions carry side
effects:

* a parent task set to ``done`` forces its unfinished subtasks to ``done``
  (each recorded as a ``cascade`` change attributed to the parent);
* a subtask set to ``done`` that leaves every sibling done produces a
  :class:`ParentCompletionHint`. The parent itself is never touched.

This module only computes and applies state. Presenting the resulting
changes and hints is up to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Union

from loguru import logger

from .errors import TaskGraphError
from .ids import TaskAddress, format_address
from .model import Task, TaskStatus
from .store import TaskStore


class ChangeCause(str, Enum):
    DIRECT = "direct"
    CASCADE = "cascade"


@dataclass(frozen=True)
class StatusChange:
    """Audit record for one applied status change."""

    address: str
    old_status: TaskStatus
    new_status: TaskStatus
    cause: ChangeCause = ChangeCause.DIRECT
    caused_by: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "old_status": self.old_status.value,
            "new_status": self.new_status.value,
            "cause": self.cause.value,
            "caused_by": self.caused_by,
        }


@dataclass(frozen=True)
class ParentCompletionHint:
    """Advisory: every subtask of ``parent_id`` is done, so the parent may be completed."""

    parent_id: int
    subtask_address: str

    def to_dict(self) -> dict[str, Any]:
        return {"parent_id": self.parent_id, "subtask_address": self.subtask_address}


@dataclass
class StatusUpdateResult:
    address: str
    old_status: TaskStatus
    new_status: TaskStatus
    changes: list[StatusChange] = field(default_factory=list)
    hints: list[ParentCompletionHint] = field(default_factory=list)

    @property
    def cascaded(self) -> list[StatusChange]:
        return [c for c in self.changes if c.cause is ChangeCause.CASCADE]

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "old_status": self.old_status.value,
            "new_status": self.new_status.value,
            "changes": [c.to_dict() for c in self.changes],
            "hints": [h.to_dict() for h in self.hints],
        }


@dataclass
class BulkFailure:
    address: str
    status: str
    error: TaskGraphError

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "status": self.status, "error": self.error.to_dict()}


@dataclass
class BulkStatusReport:
    """Outcome of a bulk update: items are applied independently, never rolled back together."""

    successes: list[StatusUpdateResult] = field(default_factory=list)
    failures: list[BulkFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def changes(self) -> list[StatusChange]:
        return [c for r in self.successes for c in r.changes]

    @property
    def hints(self) -> list[ParentCompletionHint]:
        return [h for r in self.successes for h in r.hints]

    def to_dict(self) -> dict[str, Any]:
        return {
            "successes": [r.to_dict() for r in self.successes],
            "failures": [f.to_dict() for f in self.failures],
        }


class StatusLifecycleEngine:
    """Apply status changes to a :class:`TaskStore`."""

    def __init__(self, store: TaskStore) -> None:
        self.store = store

    def set_status(self, address: Any, status: Union[str, TaskStatus]) -> StatusUpdateResult:
        """Set the status of one task or subtask.

        Raises :class:`InvalidStatusError`, :class:`MalformedIdError`,
        :class:`NotFoundError` or :class:`SubtaskNotFoundError`. The direct
        change and any cascade land together or not at all.
        """
        new_status = TaskStatus.parse(status)
        addr, node, parent = self.store.resolve(address)

        with self.store.transaction():
            old_status = node.status
            node.status = new_status
            result = StatusUpdateResult(
                address=str(addr),
                old_status=old_status,
                new_status=new_status,
                changes=[StatusChange(str(addr), old_status, new_status)],
            )

            if new_status.is_terminal and isinstance(node, Task):
                result.changes.extend(self._cascade_down(node, new_status))
            if new_status.is_terminal and parent is not None:
                hint = self._completion_hint(parent, addr)
                if hint is not None:
                    result.hints.append(hint)
            self.store.dirty = True

        logger.debug(
            "Task {} status {} -> {} ({} cascaded)",
            result.address,
            old_status.value,
            new_status.value,
            len(result.cascaded),
        )
        return result

    def bulk_set_status(self, items: Iterable[tuple[Any, Union[str, TaskStatus]]]) -> BulkStatusReport:
        """Apply each ``(address, status)`` pair independently, collecting failures."""
        report = BulkStatusReport()
        for address, status in items:
            try:
                report.successes.append(self.set_status(address, status))
            except TaskGraphError as exc:
                report.failures.append(
                    BulkFailure(
                        address=str(address),
                        status=status.value if isinstance(status, TaskStatus) else str(status),
                        error=exc,
                    )
                )
        if report.failures:
            logger.debug("Bulk status update: {} applied, {} failed", len(report.successes), len(report.failures))
        return report

    # -- side effects -------------------------------------------------------

    @staticmethod
    def _cascade_down(task: Task, new_status: TaskStatus) -> list[StatusChange]:
        changes: list[StatusChange] = []
        cause = format_address(task.id)
        for sub in task.subtasks:
            if sub.status.is_terminal:
                continue
            old = sub.status
            sub.status = new_status
            changes.append(
                StatusChange(
                    address=format_address(task.id, sub.id),
                    old_status=old,
                    new_status=new_status,
                    cause=ChangeCause.CASCADE,
                    caused_by=cause,
                )
            )
        return changes

    @staticmethod
    def _completion_hint(parent: Task, addr: TaskAddress) -> Optional[ParentCompletionHint]:
        if parent.status.is_terminal:
            return None
        if all(s.status.is_terminal for s in parent.subtasks):
            return ParentCompletionHint(parent_id=parent.id, subtask_address=str(addr))
        return None
