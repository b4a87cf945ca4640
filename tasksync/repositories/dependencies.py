"""Dependency graph checks over a task store document.

Nodes are keyed as ``"5"`` for a task and ``"5.2"`` for a subtask. A
subtask's integer dependency refers to a sibling; a dotted string refers to
any subtask and a bare numeric string to a top-level task.
"""
from __future__ import annotations

from typing import Iterator, Union

from tasksync.models import Subtask, Task, TaskStore, ValidationIssue, ValidationReport

Node = Union[Task, Subtask]


def node_key(node: Node, parent: Task | None = None) -> str:
    if parent is None:
        return str(node.id)
    return f"{parent.id}.{node.id}"


def resolve_dependency(dep: int | str, parent: Task | None = None) -> str:
    if isinstance(dep, int):
        return f"{parent.id}.{dep}" if parent is not None else str(dep)
    token = str(dep).strip()
    return token


def iter_nodes(store: TaskStore) -> Iterator[tuple[str, Node, Task | None]]:
    for task in store.tasks:
        yield node_key(task), task, None
        for subtask in task.subtasks:
            yield node_key(subtask, task), subtask, task


def _edges(store: TaskStore) -> dict[str, list[str]]:
    graph: dict[str, list[str]] = {}
    for key, node, parent in iter_nodes(store):
        graph[key] = [resolve_dependency(dep, parent) for dep in node.dependencies]
    return graph


def reaches(store: TaskStore, start: str, target: str) -> bool:
    """True when ``target`` is reachable from ``start`` along dependency edges."""
    graph = _edges(store)
    stack = [start]
    seen: set[str] = set()
    while stack:
        current = stack.pop()
        if current == target:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(graph.get(current, []))
    return False


def _find_back_edges(graph: dict[str, list[str]]) -> list[tuple[str, str]]:
    white, grey, black = 0, 1, 2
    color = {key: white for key in graph}
    back_edges: list[tuple[str, str]] = []

    for root in graph:
        if color[root] != white:
            continue
        color[root] = grey
        stack: list[tuple[str, Iterator[str]]] = [(root, iter(graph[root]))]
        while stack:
            key, children = stack[-1]
            child = next(children, None)
            if child is None:
                color[key] = black
                stack.pop()
                continue
            if child not in color:
                continue
            if color[child] == grey:
                back_edges.append((key, child))
            elif color[child] == white:
                color[child] = grey
                stack.append((child, iter(graph[child])))
    return back_edges


def validate(store: TaskStore) -> ValidationReport:
    graph = _edges(store)
    issues: list[ValidationIssue] = []

    for key, deps in graph.items():
        for dep in deps:
            if dep == key:
                issues.append(ValidationIssue(
                    type="self", taskId=key, dependencyId=dep,
                    message=f"Task {key} depends on itself",
                ))
            elif dep not in graph:
                issues.append(ValidationIssue(
                    type="missing", taskId=key, dependencyId=dep,
                    message=f"Task {key} depends on missing task {dep}",
                ))

    acyclic = {key: [dep for dep in deps if dep != key] for key, deps in graph.items()}
    for key, dep in _find_back_edges(acyclic):
        issues.append(ValidationIssue(
            type="circular", taskId=key, dependencyId=dep,
            message=f"Circular dependency between {key} and {dep}",
        ))

    return ValidationReport(valid=not issues, issues=issues)


def fix(store: TaskStore) -> int:
    """Drop self, missing, duplicate and cycle-closing dependencies in place.

    Returns the number of dependency entries removed.
    """
    existing = {key for key, _, _ in iter_nodes(store)}
    removed = 0

    for key, node, parent in iter_nodes(store):
        kept: list[int | str] = []
        seen: set[str] = set()
        for dep in node.dependencies:
            resolved = resolve_dependency(dep, parent)
            if resolved == key or resolved not in existing or resolved in seen:
                removed += 1
                continue
            seen.add(resolved)
            kept.append(dep)
        node.dependencies = kept

    nodes = {key: (node, parent) for key, node, parent in iter_nodes(store)}
    while True:
        back_edges = _find_back_edges(_edges(store))
        if not back_edges:
            break
        key, target = back_edges[0]
        node, parent = nodes[key]
        node.dependencies = [
            dep for dep in node.dependencies if resolve_dependency(dep, parent) != target
        ]
        removed += 1

    return removed


def repoint_references(store: TaskStore, old_key: str, new_task_id: int) -> None:
    """Rewrite dependencies on ``old_key`` to point at top-level task ``new_task_id``."""
    for _, node, parent in iter_nodes(store):
        node.dependencies = [
            (new_task_id if parent is None else str(new_task_id))
            if resolve_dependency(dep, parent) == old_key
            else dep
            for dep in node.dependencies
        ]


def strip_references(store: TaskStore, removed_key: str) -> None:
    """Remove every dependency pointing at ``removed_key``."""
    for _, node, parent in iter_nodes(store):
        node.dependencies = [
            dep for dep in node.dependencies if resolve_dependency(dep, parent) != removed_key
        ]
