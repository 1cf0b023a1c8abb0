"""Dependency graph validation: integrity, cycles, repair and ordering.

Nodes are canonical textual addresses (``"3"``, ``"3.1"``); an edge
``A -> B`` means A requires B to be done first. Cycles are only ever
reported. Choosing which edge to drop is left to the caller.
"""

from __future__ import annotations

from collections import defaultdict, deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterator, Optional

from loguru import logger

from .errors import DependencyValidationError, MalformedIdError
from .ids import TaskAddress, parse_address, resolve_dependency

if TYPE_CHECKING:
    from .store import TaskStore


class RepairMode(str, Enum):
    PRUNE = "prune"
    REPORT_ONLY = "report-only"


@dataclass(frozen=True)
class IntegrityFinding:
    """One invalid dependency entry.

    ``index`` is the position in the owner's dependency list, ``target`` the
    raw stored value rendered as text.
    """

    source: str
    target: str
    reason: str  # missing-target, self-dependency, duplicate, malformed-id
    index: int

    @property
    def edge(self) -> tuple[str, str]:
        return (self.source, self.target)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.source, self.target, self.reason)

    def to_dict(self) -> dict[str, Any]:
        return {"edge": [self.source, self.target], "reason": self.reason}


@dataclass
class RepairReport:
    mode: RepairMode
    findings: list[IntegrityFinding] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)
    removed: int = 0

    @property
    def clean(self) -> bool:
        return not self.findings and not self.cycles

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "findings": [f.to_dict() for f in self.findings],
            "cycles": self.cycles,
            "removed": self.removed,
        }


def _cycle_key(path: list[str]) -> tuple[str, ...]:
    """Rotation-independent identity of a cycle path like ``[a, b, a]``."""
    nodes = path[:-1] if len(path) > 1 and path[0] == path[-1] else list(path)
    if not nodes:
        return ()
    pivot = nodes.index(min(nodes, key=lambda n: parse_address(n).sort_key()))
    return tuple(nodes[pivot:] + nodes[:pivot])


class GraphValidator:
    """Read-only analysis over a :class:`TaskStore`, plus prune repair."""

    def __init__(self, store: "TaskStore") -> None:
        self.store = store

    # -- graph construction -------------------------------------------------

    def adjacency(self) -> dict[str, list[str]]:
        """Return ``{address: [dependency addresses]}`` over resolvable edges only."""
        nodes = {str(addr) for addr, _, _ in self.store.iter_nodes()}
        graph: dict[str, list[str]] = {}
        for addr, node, _ in self.store.iter_nodes():
            targets: list[str] = []
            for dep in node.dependencies:
                try:
                    target = str(resolve_dependency(addr, dep))
                except MalformedIdError:
                    continue
                if target in nodes and target not in targets:
                    targets.append(target)
            graph[str(addr)] = targets
        return graph

    # -- checks -------------------------------------------------------------

    def check_integrity(self) -> list[IntegrityFinding]:
        """Report dependency entries that do not resolve to a valid, distinct node."""
        findings: list[IntegrityFinding] = []
        for addr, node, _ in self.store.iter_nodes():
            seen: set[TaskAddress] = set()
            for idx, dep in enumerate(node.dependencies):
                try:
                    target = resolve_dependency(addr, dep)
                except MalformedIdError:
                    findings.append(IntegrityFinding(str(addr), str(dep), "malformed-id", idx))
                    continue
                if target == addr:
                    findings.append(IntegrityFinding(str(addr), str(target), "self-dependency", idx))
                elif target in seen:
                    findings.append(IntegrityFinding(str(addr), str(target), "duplicate", idx))
                elif not self.store.exists(target):
                    findings.append(IntegrityFinding(str(addr), str(target), "missing-target", idx))
                seen.add(target)
        return findings

    def check_cycles(self) -> list[list[str]]:
        """Find cycles with a depth-first walk that tracks the current path.

        Each cycle is returned as the full path, closing on its first node
        (a self-loop on ``"4"`` is ``["4", "4"]``).
        """
        graph = self.adjacency()
        order = sorted(graph, key=lambda n: parse_address(n).sort_key())
        on_stack: set[str] = set()
        finished: set[str] = set()
        cycles: list[list[str]] = []
        seen_keys: set[tuple[str, ...]] = set()

        for root in order:
            if root in finished:
                continue
            path: list[str] = [root]
            on_stack.add(root)
            iters: list[Iterator[str]] = [iter(graph.get(root, []))]
            while iters:
                nxt = next(iters[-1], None)
                if nxt is None:
                    iters.pop()
                    done_node = path.pop()
                    on_stack.discard(done_node)
                    finished.add(done_node)
                    continue
                if nxt in on_stack:
                    cycle = path[path.index(nxt):] + [nxt]
                    key = _cycle_key(cycle)
                    if key not in seen_keys:
                        seen_keys.add(key)
                        cycles.append(cycle)
                elif nxt not in finished:
                    path.append(nxt)
                    on_stack.add(nxt)
                    iters.append(iter(graph.get(nxt, [])))
        return cycles

    def find_path(self, start: Any, goal: Any) -> list[str]:
        """Return the dependency path ``start -> ... -> goal``, or ``[]``."""
        graph = self.adjacency()
        start_s, goal_s = str(parse_address(start)), str(parse_address(goal))
        if start_s not in graph:
            return []
        previous: dict[str, Optional[str]] = {start_s: None}
        queue: deque[str] = deque([start_s])
        while queue:
            current = queue.popleft()
            if current == goal_s:
                path: list[str] = []
                node: Optional[str] = current
                while node is not None:
                    path.append(node)
                    node = previous[node]
                return list(reversed(path))
            for dep in graph.get(current, []):
                if dep not in previous:
                    previous[dep] = current
                    queue.append(dep)
        return []

    def reaches(self, start: Any, goal: Any) -> bool:
        return bool(self.find_path(start, goal))

    # -- repair -------------------------------------------------------------

    def repair(self, mode: RepairMode = RepairMode.REPORT_ONLY) -> RepairReport:
        """Report integrity problems and, in PRUNE mode, drop the offending edges.

        Cycles are included in the report but never broken here.
        """
        mode = RepairMode(mode)
        findings = self.check_integrity()
        report = RepairReport(mode=mode, findings=findings, cycles=self.check_cycles())
        if mode is RepairMode.REPORT_ONLY or not findings:
            return report

        by_owner: dict[str, set[int]] = defaultdict(set)
        for finding in findings:
            by_owner[finding.source].add(finding.index)

        with self.store.transaction():
            for addr, node, _ in self.store.iter_nodes():
                drop = by_owner.get(str(addr))
                if not drop:
                    continue
                node.dependencies = [d for i, d in enumerate(node.dependencies) if i not in drop]
                report.removed += len(drop)
            self.store.dirty = True

        # Self-dependencies were cycles too; refresh now that they are gone.
        report.cycles = self.check_cycles()
        logger.info("Pruned {} invalid dependency edge(s) in tag {}", report.removed, self.store.tag)
        return report

    # -- ordering -----------------------------------------------------------

    def topological_batches(self) -> list[list[str]]:
        """Group unfinished nodes into batches whose members are mutually independent (Kahn)."""
        active: set[str] = set()
        for addr, node, _ in self.store.iter_nodes():
            if not node.status.is_terminal:
                active.add(str(addr))
        graph = self.adjacency()
        in_degree: dict[str, int] = {n: 0 for n in active}
        dependents: dict[str, list[str]] = defaultdict(list)
        for node_id in active:
            for dep in graph.get(node_id, []):
                if dep in active:
                    dependents[dep].append(node_id)
                    in_degree[node_id] += 1

        def _ordered(ids: list[str]) -> list[str]:
            return sorted(ids, key=lambda n: parse_address(n).sort_key())

        batches: list[list[str]] = []
        queue = _ordered([n for n, deg in in_degree.items() if deg == 0])
        while queue:
            batches.append(queue)
            next_queue: list[str] = []
            for node_id in queue:
                for dependent in dependents.get(node_id, []):
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        next_queue.append(dependent)
            queue = _ordered(next_queue)

        remaining = [n for n, deg in in_degree.items() if deg > 0]
        if remaining:
            logger.warning("Dependency cycle detected among tasks: {}", _ordered(remaining))
        return batches


@contextmanager
def guarded(store: "TaskStore") -> Iterator["TaskStore"]:
    """Run a structural mutation that must not introduce integrity problems or cycles.

    Problems already present before the mutation are tolerated; anything new
    rolls the store back and raises :class:`DependencyValidationError`.
    """
    validator = GraphValidator(store)
    before_findings = {f.key for f in validator.check_integrity()}
    before_cycles = {_cycle_key(c) for c in validator.check_cycles()}
    with store.transaction():
        yield store
        new_findings = [f for f in validator.check_integrity() if f.key not in before_findings]
        new_cycles = [c for c in validator.check_cycles() if _cycle_key(c) not in before_cycles]
        if new_findings or new_cycles:
            raise DependencyValidationError(new_findings, new_cycles)
