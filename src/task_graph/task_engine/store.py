"""In-memory task store for a single tag.

The store wraps a :class:`Snapshot` and exposes lookups plus the structural
mutations (create, dependency add/remove, delete). It never touches disk;
persistence is an explicit step owned by the caller. Every mutation runs
inside :meth:`TaskStore.transaction`, which restores the pre-mutation state
if anything raises, and structural mutations are additionally re-validated
by :func:`~.graph.guarded` before they are allowed to stand.
"""

from __future__ import annotations

import copy
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional, Union

from loguru import logger

from .errors import CycleError, DuplicateEdgeError, MalformedIdError, NotFoundError, SubtaskNotFoundError
from .graph import GraphValidator, guarded
from .ids import Address, TaskAddress, encode_dependency, parse_address, resolve_dependency
from .model import Snapshot, Subtask, Task, TaskPriority, TaskStatus

Node = Union[Task, Subtask]


class TaskStore:
    """Query and mutation primitives over one tag's snapshot."""

    def __init__(self, snapshot: Snapshot) -> None:
        self.snapshot = snapshot
        self.dirty = False

    @property
    def tag(self) -> str:
        return self.snapshot.tag

    @property
    def tasks(self) -> list[Task]:
        return self.snapshot.tasks

    # -- transactions -------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["TaskStore"]:
        """Yield the store; restore the prior tasks and metadata if the body raises."""
        saved_tasks = copy.deepcopy(self.snapshot.tasks)
        saved_metadata = copy.deepcopy(self.snapshot.metadata)
        saved_dirty = self.dirty
        try:
            yield self
        except BaseException:
            self.snapshot.tasks = saved_tasks
            self.snapshot.metadata = saved_metadata
            self.dirty = saved_dirty
            raise

    # -- lookups ------------------------------------------------------------

    def find_task(self, task_id: int) -> Optional[Task]:
        for task in self.snapshot.tasks:
            if task.id == task_id:
                return task
        return None

    def find_subtask(self, address: Any) -> Optional[tuple[Task, Subtask]]:
        addr = parse_address(address)
        if not addr.is_subtask:
            return None
        parent = self.find_task(addr.parent_id)
        if parent is None:
            return None
        sub = parent.get_subtask(addr.subtask_id)  # type: ignore[arg-type]
        if sub is None:
            return None
        return parent, sub

    def get_node(self, address: Any) -> Optional[Node]:
        """Like :meth:`resolve` but returns None instead of raising."""
        addr = parse_address(address)
        if addr.is_subtask:
            found = self.find_subtask(addr)
            return found[1] if found else None
        return self.find_task(addr.parent_id)

    def exists(self, address: Any) -> bool:
        return self.get_node(address) is not None

    def resolve(self, address: Any) -> tuple[TaskAddress, Node, Optional[Task]]:
        """Resolve *address* to ``(address, node, parent)``.

        ``parent`` is None for top-level tasks. Raises :class:`NotFoundError`
        when the task (or a subtask's parent) is missing and
        :class:`SubtaskNotFoundError` when only the subtask is.
        """
        addr = parse_address(address)
        task = self.find_task(addr.parent_id)
        if task is None:
            raise NotFoundError(str(addr))
        if not addr.is_subtask:
            return addr, task, None
        sub = task.get_subtask(addr.subtask_id)  # type: ignore[arg-type]
        if sub is None:
            raise SubtaskNotFoundError(str(addr), task.id)
        return addr, sub, task

    def iter_nodes(self) -> Iterator[tuple[TaskAddress, Node, Optional[Task]]]:
        """Yield every task followed by its subtasks, in stored order."""
        for task in self.snapshot.tasks:
            yield TaskAddress(task.id), task, None
            for sub in task.subtasks:
                yield TaskAddress(task.id, sub.id), sub, task

    def dependency_addresses(self, address: Any) -> list[TaskAddress]:
        """Return the canonical targets of *address*'s dependency list."""
        addr, node, _ = self.resolve(address)
        out: list[TaskAddress] = []
        for dep in node.dependencies:
            try:
                out.append(resolve_dependency(addr, dep))
            except MalformedIdError:
                continue
        return out

    def list_tasks(self, status: Optional[Union[str, TaskStatus]] = None) -> list[Task]:
        if status is None:
            return list(self.snapshot.tasks)
        wanted = TaskStatus.parse(status)
        return [t for t in self.snapshot.tasks if t.status == wanted]

    # -- creation -----------------------------------------------------------

    def _encode_new_dependencies(self, owner: TaskAddress, dependencies: Iterable[Any]) -> list[Address]:
        encoded: list[Address] = []
        for raw in dependencies:
            target = parse_address(raw)
            self.resolve(target)
            value = encode_dependency(owner, target)
            if value not in encoded:
                encoded.append(value)
        return encoded

    def add_task(
        self,
        title: str,
        description: str = "",
        details: str = "",
        test_strategy: str = "",
        priority: Union[str, TaskPriority, None] = None,
        dependencies: Iterable[Any] = (),
        status: Union[str, TaskStatus] = TaskStatus.PENDING,
    ) -> Task:
        """Create a task with the next id in this tag.

        *dependencies* are fully-qualified addresses and must already exist.
        """
        task_id = self.snapshot.last_task_id + 1
        with guarded(self):
            task = Task(
                id=task_id,
                title=title,
                description=description,
                details=details,
                test_strategy=test_strategy,
                status=TaskStatus.parse(status),
                priority=TaskPriority.parse(priority),
                dependencies=self._encode_new_dependencies(TaskAddress(task_id), dependencies),
            )
            self.snapshot.tasks.append(task)
            self.snapshot.metadata["last_task_id"] = task_id
            self.dirty = True
        logger.debug("Added task {} to tag {}", task_id, self.tag)
        return task

    def add_subtask(
        self,
        parent_id: Any,
        title: str,
        description: str = "",
        details: str = "",
        test_strategy: str = "",
        priority: Union[str, TaskPriority, None] = None,
        dependencies: Iterable[Any] = (),
        status: Union[str, TaskStatus] = TaskStatus.PENDING,
    ) -> Subtask:
        """Append a subtask to *parent_id* with the next sibling id."""
        parent_addr = parse_address(parent_id)
        if parent_addr.is_subtask:
            raise MalformedIdError(parent_id, "subtasks cannot own subtasks")
        _, parent, _ = self.resolve(parent_addr)
        assert isinstance(parent, Task)
        sub_id = max((s.id for s in parent.subtasks), default=0) + 1
        owner = TaskAddress(parent.id, sub_id)
        with guarded(self):
            sub = Subtask(
                id=sub_id,
                title=title,
                description=description,
                details=details,
                test_strategy=test_strategy,
                status=TaskStatus.parse(status),
                priority=TaskPriority.parse(priority) if priority is not None else None,
                dependencies=self._encode_new_dependencies(owner, dependencies),
            )
            parent.subtasks.append(sub)
            self.dirty = True
        logger.debug("Added subtask {} to tag {}", owner, self.tag)
        return sub

    # -- dependency edges ---------------------------------------------------

    def add_dependency(self, from_address: Any, to_address: Any) -> Address:
        """Record that *from_address* requires *to_address* to be done first.

        Returns the stored dependency value. Raises :class:`NotFoundError`,
        :class:`DuplicateEdgeError` or :class:`CycleError`; the store is left
        unchanged on any failure.
        """
        src = parse_address(from_address)
        dst = parse_address(to_address)
        _, node, _ = self.resolve(src)
        self.resolve(dst)

        if dst in self.dependency_addresses(src):
            raise DuplicateEdgeError(str(src), str(dst))

        if src == dst:
            raise CycleError(str(src), str(dst), [str(src), str(src)])
        back_path = GraphValidator(self).find_path(dst, src)
        if back_path:
            raise CycleError(str(src), str(dst), [str(src)] + back_path)

        value = encode_dependency(src, dst)
        with guarded(self):
            node.dependencies.append(value)
            self.dirty = True
        return value

    def remove_dependency(self, from_address: Any, to_address: Any) -> bool:
        """Drop the ``from -> to`` edge. Returns False if it was not there."""
        src = parse_address(from_address)
        dst = parse_address(to_address)
        _, node, _ = self.resolve(src)

        for idx, dep in enumerate(node.dependencies):
            try:
                resolved = resolve_dependency(src, dep)
            except MalformedIdError:
                continue
            if resolved == dst:
                with guarded(self):
                    del node.dependencies[idx]
                    self.dirty = True
                return True
        return False

    # -- deletion -----------------------------------------------------------

    def delete_node(self, address: Any) -> int:
        """Remove a task (with its subtasks) or a subtask.

        Every dependency on a removed address is stripped from the remaining
        nodes. Returns the number of edges scrubbed.
        """
        addr, node, parent = self.resolve(address)
        removed: set[TaskAddress] = {addr}
        if isinstance(node, Task):
            removed.update(TaskAddress(node.id, s.id) for s in node.subtasks)

        scrubbed = 0
        with guarded(self):
            # Pin the counter so a deleted highest id is never handed out again.
            self.snapshot.metadata["last_task_id"] = self.snapshot.last_task_id
            if parent is not None:
                parent.subtasks.remove(node)  # type: ignore[arg-type]
            else:
                self.snapshot.tasks.remove(node)  # type: ignore[arg-type]

            for owner, other, _ in self.iter_nodes():
                keep: list[Address] = []
                for dep in other.dependencies:
                    try:
                        target = resolve_dependency(owner, dep)
                    except MalformedIdError:
                        keep.append(dep)
                        continue
                    if target in removed:
                        scrubbed += 1
                    else:
                        keep.append(dep)
                other.dependencies = keep
            self.dirty = True

        logger.debug("Deleted {} from tag {}; scrubbed {} edge(s)", addr, self.tag, scrubbed)
        return scrubbed
