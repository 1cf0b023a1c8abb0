"""Task engine: the entry point external collaborators call.

Each operation loads one tag from the tasks file, applies the change to an
in-memory :class:`TaskStore`, saves only if something changed, and then
hands status changes and hints to the audit sink. Mutations on the same tag
are serialized in-process by a per-tag lock and across processes by the
repository's file lock, which is held from the load through the save.
"""

from __future__ import annotations

import re
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Union

from loguru import logger

from ..config import (
    get_default_priority,
    get_default_tag,
    get_events_file,
    get_tasks_file,
    is_audit_log_enabled,
    load_config,
)
from ..constants import ARTIFACTS_DIR, EVENTS_FILE, STATE_DIR_NAME, TAG_NAME_PATTERN, TASKS_FILE
from ..utils import _now_iso
from .errors import TagError
from .events import AuditSink, JsonlAuditSink, NullAuditSink
from .graph import GraphValidator, RepairMode, RepairReport
from .ids import Address
from .lifecycle import BulkStatusReport, StatusLifecycleEngine, StatusUpdateResult
from .model import Snapshot, Subtask, Task, TaskPriority, TaskStatus
from .persistence import TaskFileRepository
from .selector import NextTaskResult, find_next_task
from .store import TaskStore


class TaskEngine:
    """Manage tasks, dependencies and statuses across the tags of one project.

    Parameters
    ----------
    project_dir:
        Project root; state lives under ``<project_dir>/.task_graph/``.
    config:
        Pre-loaded configuration. When omitted, ``config.yaml`` is read.
    sink:
        Where status changes and hints go. Defaults to the JSONL audit log
        (or nowhere, if ``audit.enabled`` is false).
    """

    def __init__(
        self,
        project_dir: Path,
        config: Optional[dict[str, Any]] = None,
        sink: Optional[AuditSink] = None,
    ) -> None:
        self.project_dir = project_dir.resolve()
        if config is None:
            config, err = load_config(self.project_dir)
            if err:
                logger.warning("Ignoring unreadable config: {}", err)
        self.config = config
        self.state_dir = self.project_dir / STATE_DIR_NAME

        tasks_file = get_tasks_file(config)
        tasks_path = self.project_dir / tasks_file if tasks_file else self.state_dir / TASKS_FILE
        self.repository = TaskFileRepository(tasks_path)

        self.default_tag = get_default_tag(config)
        self.default_priority = TaskPriority(get_default_priority(config))

        if sink is None:
            if is_audit_log_enabled(config):
                events_file = get_events_file(config)
                events_path = (
                    self.project_dir / events_file
                    if events_file
                    else self.state_dir / ARTIFACTS_DIR / EVENTS_FILE
                )
                sink = JsonlAuditSink(events_path)
            else:
                sink = NullAuditSink()
        self.sink = sink

        self._tag_locks: dict[str, threading.RLock] = {}
        self._tag_locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _tag_lock(self, tag: str) -> threading.RLock:
        with self._tag_locks_guard:
            lock = self._tag_locks.get(tag)
            if lock is None:
                lock = threading.RLock()
                self._tag_locks[tag] = lock
            return lock

    def _load(self, tag: str) -> Snapshot:
        snapshot = self.repository.load(tag)
        validator = GraphValidator(TaskStore(snapshot))
        for finding in validator.check_integrity():
            logger.warning(
                "Tag {}: dependency {} -> {} is invalid ({})",
                tag, finding.source, finding.target, finding.reason,
            )
        for cycle in validator.check_cycles():
            logger.warning("Tag {}: dependency cycle {}", tag, " -> ".join(cycle))
        return snapshot

    @contextmanager
    def transaction(self, tag: Optional[str] = None) -> Iterator[TaskStore]:
        """Load *tag*, yield its store, and save on exit if it changed.

        Usage::

            with engine.transaction("master") as store:
                store.add_dependency("3", "1")
                # saved on exit; nothing is saved if the block raises
        """
        tag = tag or self.default_tag
        with self._tag_lock(tag), self.repository.locked():
            store = TaskStore(self._load(tag))
            yield store
            if store.dirty:
                store.snapshot.metadata["updated"] = _now_iso()
                self.repository.save(tag, store.snapshot)

    def read_snapshot(self, tag: Optional[str] = None) -> Snapshot:
        """Return a detached copy of *tag*; changes to it are not saved."""
        return self.repository.load(tag or self.default_tag)

    def _emit(self, tag: str, results: Iterable[StatusUpdateResult]) -> None:
        for result in results:
            for change in result.changes:
                self.sink.record_change(tag, change)
            for hint in result.hints:
                logger.info("All subtasks of task {} are done; it may be completed", hint.parent_id)
                self.sink.record_hint(tag, hint)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task(self, address: Address, tag: Optional[str] = None) -> Optional[Union[Task, Subtask]]:
        return TaskStore(self.read_snapshot(tag)).get_node(address)

    def list_tasks(self, status: Optional[str] = None, tag: Optional[str] = None) -> list[Task]:
        return TaskStore(self.read_snapshot(tag)).list_tasks(status)

    def next_task(self, tag: Optional[str] = None) -> NextTaskResult:
        return find_next_task(TaskStore(self.read_snapshot(tag)))

    def execution_order(self, tag: Optional[str] = None) -> list[list[str]]:
        return GraphValidator(TaskStore(self.read_snapshot(tag))).topological_batches()

    # ------------------------------------------------------------------
    # Creation / deletion
    # ------------------------------------------------------------------

    def add_task(
        self,
        title: str,
        description: str = "",
        details: str = "",
        test_strategy: str = "",
        priority: Optional[str] = None,
        dependencies: Iterable[Address] = (),
        tag: Optional[str] = None,
    ) -> Task:
        """Create a task; its id is the next one in the tag."""
        with self.transaction(tag) as store:
            task = store.add_task(
                title,
                description=description,
                details=details,
                test_strategy=test_strategy,
                priority=priority or self.default_priority,
                dependencies=dependencies,
            )
        logger.info("Created task {}: {}", task.id, title)
        return task

    def add_subtask(
        self,
        parent_id: Address,
        title: str,
        description: str = "",
        details: str = "",
        test_strategy: str = "",
        priority: Optional[str] = None,
        dependencies: Iterable[Address] = (),
        tag: Optional[str] = None,
    ) -> Subtask:
        with self.transaction(tag) as store:
            sub = store.add_subtask(
                parent_id,
                title,
                description=description,
                details=details,
                test_strategy=test_strategy,
                priority=priority,
                dependencies=dependencies,
            )
        logger.info("Created subtask {}.{}: {}", parent_id, sub.id, title)
        return sub

    def delete_node(self, address: Address, tag: Optional[str] = None) -> int:
        """Delete a task or subtask; returns how many dependency edges were scrubbed."""
        with self.transaction(tag) as store:
            scrubbed = store.delete_node(address)
        logger.info("Deleted {} ({} dependency reference(s) removed)", address, scrubbed)
        return scrubbed

    # ------------------------------------------------------------------
    # Dependency management
    # ------------------------------------------------------------------

    def add_dependency(self, from_address: Address, to_address: Address, tag: Optional[str] = None) -> None:
        with self.transaction(tag) as store:
            store.add_dependency(from_address, to_address)
        logger.info("Task {} now depends on {}", from_address, to_address)

    def remove_dependency(self, from_address: Address, to_address: Address, tag: Optional[str] = None) -> bool:
        with self.transaction(tag) as store:
            removed = store.remove_dependency(from_address, to_address)
        if removed:
            logger.info("Task {} no longer depends on {}", from_address, to_address)
        return removed

    def validate_dependencies(self, tag: Optional[str] = None) -> RepairReport:
        with self.transaction(tag) as store:
            return GraphValidator(store).repair(RepairMode.REPORT_ONLY)

    def fix_dependencies(self, tag: Optional[str] = None) -> RepairReport:
        """Prune dangling, duplicate and self dependencies. Cycles are only reported."""
        with self.transaction(tag) as store:
            return GraphValidator(store).repair(RepairMode.PRUNE)

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def set_status(
        self,
        address: Address,
        status: Union[str, TaskStatus],
        tag: Optional[str] = None,
    ) -> StatusUpdateResult:
        tag = tag or self.default_tag
        with self.transaction(tag) as store:
            result = StatusLifecycleEngine(store).set_status(address, status)
        self._emit(tag, [result])
        return result

    def bulk_set_status(
        self,
        items: Iterable[tuple[Address, Union[str, TaskStatus]]],
        tag: Optional[str] = None,
    ) -> BulkStatusReport:
        """Apply several status changes; failures are reported, not raised."""
        tag = tag or self.default_tag
        with self.transaction(tag) as store:
            report = StatusLifecycleEngine(store).bulk_set_status(items)
        self._emit(tag, report.successes)
        return report

    def set_status_list(
        self,
        addresses: str,
        status: Union[str, TaskStatus],
        tag: Optional[str] = None,
    ) -> BulkStatusReport:
        """Set one status on a comma-separated address list such as ``"1,2.1,4"``."""
        parts = [part.strip() for part in str(addresses).split(",") if part.strip()]
        return self.bulk_set_status([(part, status) for part in parts], tag=tag)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    @staticmethod
    def _check_tag_name(name: str) -> None:
        if not isinstance(name, str) or not re.match(TAG_NAME_PATTERN, name):
            raise TagError(str(name), "tag names may only contain letters, digits, '-' and '_'")

    def list_tags(self) -> list[dict[str, Any]]:
        tags = self.repository.list_tags()
        if self.default_tag not in tags:
            tags.insert(0, self.default_tag)
        out: list[dict[str, Any]] = []
        for name in tags:
            snapshot = self.repository.load(name)
            out.append(
                {
                    "name": name,
                    "is_default": name == self.default_tag,
                    "task_count": len(snapshot.tasks),
                    "done_count": sum(1 for t in snapshot.tasks if t.status.is_terminal),
                    "description": snapshot.metadata.get("description", ""),
                }
            )
        return out

    def create_tag(self, name: str, copy_from: Optional[str] = None, description: str = "") -> Snapshot:
        """Create an empty tag, or a full copy of *copy_from*."""
        self._check_tag_name(name)
        with self._tag_lock(name), self.repository.locked():
            if self.repository.has_tag(name):
                raise TagError(name, "tag already exists")
            if copy_from is not None:
                if not self.repository.has_tag(copy_from):
                    raise TagError(copy_from, "source tag does not exist")
                source = self.repository.load(copy_from)
                snapshot = Snapshot.empty(name, description or f"Copy of {copy_from}")
                snapshot.tasks = source.clone().tasks
                snapshot.metadata["last_task_id"] = source.last_task_id
            else:
                snapshot = Snapshot.empty(name, description)
            self.repository.save(name, snapshot)
        logger.info("Created tag {} with {} task(s)", name, len(snapshot.tasks))
        return snapshot

    def delete_tag(self, name: str) -> None:
        if name == self.default_tag:
            raise TagError(name, "the default tag cannot be deleted")
        with self._tag_lock(name), self.repository.locked():
            if not self.repository.delete_tag(name):
                raise TagError(name, "tag does not exist")
        logger.info("Deleted tag {}", name)

    def rename_tag(self, old: str, new: str) -> None:
        if old == self.default_tag:
            raise TagError(old, "the default tag cannot be renamed")
        self._check_tag_name(new)
        # Fixed order so opposite renames cannot deadlock.
        first, second = sorted((old, new))
        with self._tag_lock(first), self._tag_lock(second), self.repository.locked():
            if not self.repository.has_tag(old):
                raise TagError(old, "tag does not exist")
            if self.repository.has_tag(new):
                raise TagError(new, "tag already exists")
            self.repository.rename_tag(old, new)
        logger.info("Renamed tag {} to {}", old, new)
