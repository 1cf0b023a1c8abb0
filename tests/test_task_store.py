"""Tests for the in-memory task store (task_engine/store.py)."""

from __future__ import annotations

import copy

import pytest

from task_graph.task_engine.errors import (
    CycleError,
    DependencyValidationError,
    DuplicateEdgeError,
    MalformedIdError,
    NotFoundError,
    SubtaskNotFoundError,
)
from task_graph.task_engine.model import Snapshot, Subtask, Task, TaskPriority, TaskStatus
from task_graph.task_engine.store import TaskStore


@pytest.fixture
def store() -> TaskStore:
    snapshot = Snapshot(
        tag="master",
        tasks=[
            Task(id=1, title="Setup"),
            Task(id=2, title="Models", dependencies=[1]),
            Task(
                id=3,
                title="API",
                dependencies=[2],
                subtasks=[
                    Subtask(id=1, title="Routes"),
                    Subtask(id=2, title="Handlers", dependencies=[1]),
                ],
            ),
        ],
    )
    return TaskStore(snapshot)


def _graph(store: TaskStore) -> dict[str, list[str]]:
    return {str(addr): sorted(str(d) for d in store.dependency_addresses(addr)) for addr, _, _ in store.iter_nodes()}


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

class TestLookups:
    def test_find_task(self, store: TaskStore) -> None:
        task = store.find_task(2)
        assert task is not None
        assert task.title == "Models"
        assert store.find_task(99) is None

    def test_find_subtask(self, store: TaskStore) -> None:
        found = store.find_subtask("3.2")
        assert found is not None
        parent, sub = found
        assert parent.id == 3
        assert sub.title == "Handlers"
        assert store.find_subtask("3.9") is None
        assert store.find_subtask("8.1") is None
        assert store.find_subtask("3") is None

    def test_resolve_errors(self, store: TaskStore) -> None:
        with pytest.raises(NotFoundError) as missing:
            store.resolve("9")
        assert missing.value.kind == "not_found"
        with pytest.raises(NotFoundError) as missing_parent:
            store.resolve("9.1")
        assert not isinstance(missing_parent.value, SubtaskNotFoundError)
        with pytest.raises(SubtaskNotFoundError) as missing_sub:
            store.resolve("3.7")
        assert missing_sub.value.parent_id == 3
        with pytest.raises(MalformedIdError):
            store.resolve("x.1")

    def test_dependency_addresses_resolve_siblings(self, store: TaskStore) -> None:
        assert [str(a) for a in store.dependency_addresses("3.2")] == ["3.1"]

    def test_list_tasks_by_status(self, store: TaskStore) -> None:
        store.find_task(1).status = TaskStatus.DONE  # type: ignore[union-attr]
        assert [t.id for t in store.list_tasks("completed")] == [1]
        assert [t.id for t in store.list_tasks()] == [1, 2, 3]


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

class TestCreation:
    def test_add_task_assigns_next_id(self, store: TaskStore) -> None:
        task = store.add_task("Docs", priority="high", dependencies=["3", "3.1"])
        assert task.id == 4
        assert task.priority is TaskPriority.HIGH
        assert task.dependencies == [3, "3.1"]
        assert store.snapshot.metadata["last_task_id"] == 4
        assert store.dirty

    def test_ids_are_not_reused_after_delete(self, store: TaskStore) -> None:
        store.delete_node("3")
        assert store.add_task("Next").id == 4

    def test_add_task_unknown_dependency_leaves_store_unchanged(self, store: TaskStore) -> None:
        before = copy.deepcopy(store.snapshot)
        with pytest.raises(NotFoundError):
            store.add_task("Bad", dependencies=[42])
        assert store.snapshot == before
        assert not store.dirty

    def test_add_subtask(self, store: TaskStore) -> None:
        sub = store.add_subtask(3, "Tests", dependencies=["3.2", "1"])
        assert sub.id == 3
        # Siblings are stored as bare ints, top-level tasks as strings.
        assert sub.dependencies == [2, "1"]
        assert [str(a) for a in store.dependency_addresses("3.3")] == ["3.2", "1"]

    def test_add_subtask_to_missing_parent(self, store: TaskStore) -> None:
        with pytest.raises(NotFoundError):
            store.add_subtask(12, "Orphan")
        with pytest.raises(MalformedIdError):
            store.add_subtask("3.1", "Nested")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

class TestDependencies:
    def test_add_and_remove_restores_graph(self, store: TaskStore) -> None:
        before = _graph(store)
        store.add_dependency("3.1", "1")
        assert "1" in _graph(store)["3.1"]
        assert store.remove_dependency("3.1", "1")
        assert _graph(store) == before

    def test_add_dependency_missing_endpoints(self, store: TaskStore) -> None:
        with pytest.raises(NotFoundError):
            store.add_dependency("1", "77")
        with pytest.raises(SubtaskNotFoundError):
            store.add_dependency("3.8", "1")

    def test_duplicate_edge(self, store: TaskStore) -> None:
        with pytest.raises(DuplicateEdgeError) as exc_info:
            store.add_dependency(2, "1")
        assert exc_info.value.to_dict() == {
            "kind": "duplicate_edge",
            "message": exc_info.value.message,
            "from": "2",
            "to": "1",
        }

    def test_self_loop_is_cycle(self, store: TaskStore) -> None:
        before = _graph(store)
        with pytest.raises(CycleError) as exc_info:
            store.add_dependency("2", "2")
        assert exc_info.value.path == ["2", "2"]
        assert _graph(store) == before

    def test_long_cycle_rejected_with_path(self, store: TaskStore) -> None:
        before = _graph(store)
        with pytest.raises(CycleError) as exc_info:
            store.add_dependency("1", "3")
        assert exc_info.value.path == ["1", "3", "2", "1"]
        assert _graph(store) == before
        assert not store.dirty

    def test_cycle_through_subtasks(self, store: TaskStore) -> None:
        store.add_dependency("1", "3.1")
        with pytest.raises(CycleError):
            store.add_dependency("3.1", "2")

    def test_remove_missing_edge_is_noop(self, store: TaskStore) -> None:
        assert store.remove_dependency("1", "2") is False
        assert not store.dirty


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------

class TestDeleteNode:
    def test_delete_task_scrubs_references(self, store: TaskStore) -> None:
        scrubbed = store.delete_node("1")
        assert scrubbed == 1
        assert store.find_task(1) is None
        assert store.find_task(2).dependencies == []  # type: ignore[union-attr]

    def test_delete_task_scrubs_references_to_its_subtasks(self, store: TaskStore) -> None:
        extra = store.add_task("Consumer", dependencies=["3.1", "3"])
        scrubbed = store.delete_node(3)
        assert scrubbed == 2
        assert store.find_task(extra.id).dependencies == []  # type: ignore[union-attr]

    def test_delete_subtask_scrubs_sibling_reference(self, store: TaskStore) -> None:
        assert store.delete_node("3.1") == 1
        parent = store.find_task(3)
        assert parent is not None
        assert [s.id for s in parent.subtasks] == [2]
        assert parent.subtasks[0].dependencies == []

    def test_delete_missing(self, store: TaskStore) -> None:
        with pytest.raises(NotFoundError):
            store.delete_node("40")


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

class TestTransactions:
    def test_rollback_on_error(self, store: TaskStore) -> None:
        before = copy.deepcopy(store.snapshot)
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.find_task(1).title = "Changed"  # type: ignore[union-attr]
                store.dirty = True
                raise RuntimeError("boom")
        assert store.snapshot == before
        assert not store.dirty

    def test_guard_rejects_mutation_that_adds_dangling_edge(self, store: TaskStore) -> None:
        from task_graph.task_engine.graph import guarded

        before = copy.deepcopy(store.snapshot)
        with pytest.raises(DependencyValidationError) as exc_info:
            with guarded(store):
                store.find_task(1).dependencies.append(55)  # type: ignore[union-attr]
        assert store.snapshot == before
        assert exc_info.value.findings[0].reason == "missing-target"

    def test_guard_tolerates_preexisting_problems(self, store: TaskStore) -> None:
        store.find_task(1).dependencies.append(55)  # type: ignore[union-attr]
        # Unrelated mutation still goes through.
        store.add_dependency("3.1", "1")
        assert "1" in _graph(store)["3.1"]
