"""Tests for next-task selection (task_engine/selector.py)."""

from __future__ import annotations

import copy

from task_graph.task_engine.lifecycle import StatusLifecycleEngine
from task_graph.task_engine.model import Snapshot, Subtask, Task, TaskPriority, TaskStatus
from task_graph.task_engine.selector import eligible_tasks, find_next_task
from task_graph.task_engine.store import TaskStore


def _store(*tasks: Task) -> TaskStore:
    return TaskStore(Snapshot(tag="master", tasks=list(tasks)))


class TestFindNextTask:
    def test_priority_then_id(self) -> None:
        store = _store(
            Task(id=1, priority=TaskPriority.HIGH),
            Task(id=2, priority=TaskPriority.MEDIUM, dependencies=[1]),
            Task(id=3, priority=TaskPriority.HIGH),
        )
        assert find_next_task(store).address == "1"
        assert [str(c.address) for c in eligible_tasks(store)] == ["1", "3"]

        StatusLifecycleEngine(store).set_status(1, "done")
        assert find_next_task(store).address == "3"
        assert [str(c.address) for c in eligible_tasks(store)] == ["3", "2"]

    def test_fewer_dependencies_preferred(self) -> None:
        store = _store(
            Task(id=1, status=TaskStatus.DONE),
            Task(id=2, status=TaskStatus.DONE),
            Task(id=3, dependencies=[1, 2]),
            Task(id=4, dependencies=[1]),
        )
        assert find_next_task(store).address == "4"

    def test_only_pending_is_eligible(self) -> None:
        store = _store(
            Task(id=1, status=TaskStatus.IN_PROGRESS),
            Task(id=2, status=TaskStatus.DEFERRED),
            Task(id=3, status=TaskStatus.CANCELLED),
            Task(id=4, status=TaskStatus.REVIEW),
            Task(id=5, status=TaskStatus.DONE),
        )
        result = find_next_task(store)
        assert not result.found
        assert result.reason == "no pending tasks"
        assert result.to_dict() == {"found": False, "reason": "no pending tasks"}

    def test_blocked_reason(self) -> None:
        store = _store(Task(id=1, status=TaskStatus.IN_PROGRESS), Task(id=2, dependencies=[1]))
        result = find_next_task(store)
        assert not result.found
        assert "unfinished dependencies" in result.reason

    def test_cancelled_dependency_does_not_satisfy(self) -> None:
        store = _store(Task(id=1, status=TaskStatus.CANCELLED), Task(id=2, dependencies=[1]))
        assert not find_next_task(store).found

    def test_dangling_dependency_blocks(self) -> None:
        store = _store(Task(id=2, dependencies=[9]))
        assert not find_next_task(store).found

    def test_subtasks_offered_under_pending_parent(self) -> None:
        store = _store(
            Task(
                id=1,
                status=TaskStatus.IN_PROGRESS,
                priority=TaskPriority.HIGH,
                subtasks=[Subtask(id=1, status=TaskStatus.DONE), Subtask(id=2, dependencies=[1]), Subtask(id=3, dependencies=[2])],
            ),
            Task(id=2, priority=TaskPriority.MEDIUM),
        )
        result = find_next_task(store)
        assert result.address == "1.2"
        assert result.candidate is not None
        assert result.candidate.priority is TaskPriority.HIGH
        assert result.to_dict()["task"]["parent"]["id"] == 1

    def test_subtask_own_priority_wins(self) -> None:
        store = _store(
            Task(id=1, priority=TaskPriority.HIGH, status=TaskStatus.IN_PROGRESS,
                 subtasks=[Subtask(id=1, priority=TaskPriority.LOW)]),
            Task(id=2, priority=TaskPriority.MEDIUM),
        )
        assert find_next_task(store).address == "2"

    def test_subtasks_of_finished_parent_excluded(self) -> None:
        store = _store(
            Task(id=1, status=TaskStatus.DONE, subtasks=[Subtask(id=1)]),
            Task(id=2, status=TaskStatus.CANCELLED, subtasks=[Subtask(id=1)]),
        )
        assert not find_next_task(store).found

    def test_read_only(self) -> None:
        store = _store(Task(id=1), Task(id=2, dependencies=[1]))
        before = copy.deepcopy(store.snapshot)
        find_next_task(store)
        eligible_tasks(store)
        assert store.snapshot == before
        assert not store.dirty
