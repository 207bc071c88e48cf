"""Dependency graph between the tasks of one sprint.

Edges point from a task to the tasks it depends on. Edges only ever connect
tasks of the same sprint, and no edge may close a cycle.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from sprintify.data import Task, TaskStatus
from sprintify.errors import DependencyError


def _index(tasks: Iterable[Task]) -> Dict[str, Task]:
    return {task.id: task for task in tasks}


def would_create_cycle(tasks: Iterable[Task], task_id: str, dependency_id: str) -> bool:
    """True if making ``task_id`` depend on ``dependency_id`` closes a loop."""
    by_id = _index(tasks)
    visited = set()
    stack = [dependency_id]
    while stack:
        current = stack.pop()
        if current == task_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        node = by_id.get(current)
        if node is not None:
            stack.extend(node.dependencies)
    return False


def find_cycle(tasks: Iterable[Task]) -> Optional[List[str]]:
    """Return the ids along the first cycle found, or None for an acyclic graph."""
    by_id = _index(tasks)
    visiting, done = set(), set()
    path: List[str] = []

    def visit(task_id: str) -> Optional[List[str]]:
        if task_id in done or task_id not in by_id:
            return None
        if task_id in visiting:
            return path[path.index(task_id):] + [task_id]
        visiting.add(task_id)
        path.append(task_id)
        for dep in by_id[task_id].dependencies:
            cycle = visit(dep)
            if cycle:
                return cycle
        path.pop()
        visiting.discard(task_id)
        done.add(task_id)
        return None

    for task_id in by_id:
        cycle = visit(task_id)
        if cycle:
            return cycle
    return None


def add_dependency(tasks: List[Task], task_id: str, dependency_id: str) -> List[str]:
    """Validate a new edge and return the task's new dependency list."""
    by_id = _index(tasks)
    if task_id not in by_id:
        raise DependencyError(f"Unknown task {task_id}")
    if dependency_id not in by_id:
        raise DependencyError("A task can only depend on tasks in the same sprint")
    if task_id == dependency_id:
        raise DependencyError("A task cannot depend on itself")
    task = by_id[task_id]
    if dependency_id in task.dependencies:
        raise DependencyError("That dependency already exists")
    if would_create_cycle(tasks, task_id, dependency_id):
        raise DependencyError("Cannot add dependency: it would create a circular dependency")
    return task.dependencies + [dependency_id]


def remove_dependency(tasks: List[Task], task_id: str, dependency_id: str) -> List[str]:
    task = _index(tasks).get(task_id)
    if task is None:
        raise DependencyError(f"Unknown task {task_id}")
    return [dep for dep in task.dependencies if dep != dependency_id]


def task_dependencies(tasks: Iterable[Task], task: Task) -> List[Task]:
    by_id = _index(tasks)
    return [by_id[dep] for dep in task.dependencies if dep in by_id]


def task_dependents(tasks: Iterable[Task], task_id: str) -> List[Task]:
    return [task for task in tasks if task_id in task.dependencies]


def can_start_task(tasks: Iterable[Task], task: Task) -> bool:
    return all(dep.status == TaskStatus.COMPLETED for dep in task_dependencies(tasks, task))


def blocked_tasks(tasks: List[Task]) -> List[Task]:
    return [
        task for task in tasks
        if task.status != TaskStatus.COMPLETED and task.dependencies and not can_start_task(tasks, task)
    ]


def available_dependencies(tasks: List[Task], task_id: str) -> List[Task]:
    """Tasks that could be added as a new dependency of ``task_id``."""
    owner = _index(tasks).get(task_id)
    current = set(owner.dependencies) if owner else set()
    return [
        task for task in tasks
        if task.id != task_id
        and task.id not in current
        and task_id not in task.dependencies
        and not would_create_cycle(tasks, task_id, task.id)
    ]


def topological_order(tasks: List[Task]) -> List[Task]:
    """Tasks ordered so every dependency comes before its dependents."""
    cycle = find_cycle(tasks)
    if cycle:
        raise DependencyError("Circular dependency: " + " -> ".join(cycle))
    by_id = _index(tasks)
    ordered, seen = [], set()

    def visit(task: Task):
        if task.id in seen:
            return
        seen.add(task.id)
        for dep in task.dependencies:
            if dep in by_id:
                visit(by_id[dep])
        ordered.append(task)

    for task in tasks:
        visit(task)
    return ordered
