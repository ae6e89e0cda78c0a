"""Dependency edge index for workflow steps."""

from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Optional

from .errors import ValidationError
from .models import WorkflowStep


class DependencyGraph:
    """Directed edges ``dependency -> dependent`` keyed by node id.

    Each node has at most one incoming edge, matching the one-dependency
    rule for tasks.
    """

    def __init__(self, nodes: Iterable[str]) -> None:
        self._nodes: List[str] = list(nodes)
        self._depends_on: Dict[str, Optional[str]] = {n: None for n in self._nodes}

    def add_edge(self, dependency: str, dependent: str) -> None:
        if dependency not in self._depends_on or dependent not in self._depends_on:
            raise ValidationError(
                f"Dependency edge {dependency!r} -> {dependent!r} references an unknown node"
            )
        if dependency == dependent:
            raise ValidationError(f"Step {dependent!r} cannot depend on itself")
        self._depends_on[dependent] = dependency

    def dependency_of(self, node: str) -> Optional[str]:
        return self._depends_on[node]

    def topological_order(self) -> List[str]:
        """Return nodes with every dependency before its dependents.

        Raises:
            ValidationError: If the edges form a cycle.
        """
        children: Dict[str, List[str]] = {n: [] for n in self._nodes}
        indegree: Dict[str, int] = {n: 0 for n in self._nodes}
        for node, dependency in self._depends_on.items():
            if dependency is not None:
                children[dependency].append(node)
                indegree[node] += 1

        queue = deque(n for n in self._nodes if indegree[n] == 0)
        order: List[str] = []
        while queue:
            current = queue.popleft()
            order.append(current)
            for child in children[current]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    queue.append(child)

        if len(order) != len(self._nodes):
            cyclic = sorted(n for n in self._nodes if indegree[n] > 0)
            raise ValidationError(
                f"Workflow dependency graph contains a cycle through: {', '.join(cyclic)}"
            )
        return order


def build_step_graph(steps: List[WorkflowStep]) -> DependencyGraph:
    """Validate step names and ``depends_on`` references, returning the edge index.

    Nodes are step positions rendered as strings so unnamed steps take part
    too; the returned graph has already been checked for cycles.
    """
    if not steps:
        raise ValidationError("Workflow definition must declare at least one step")

    positions: Dict[str, int] = {}
    for index, step in enumerate(steps):
        if step.name is None:
            continue
        if step.name in positions:
            raise ValidationError(f"Step name {step.name!r} is defined more than once")
        positions[step.name] = index

    graph = DependencyGraph(str(i) for i in range(len(steps)))
    for index, step in enumerate(steps):
        if step.depends_on is None:
            continue
        if step.depends_on not in positions:
            raise ValidationError(
                f"Step {step.name or step.step_number!r} depends on unknown step "
                f"{step.depends_on!r}"
            )
        graph.add_edge(str(positions[step.depends_on]), str(index))

    graph.topological_order()
    return graph
