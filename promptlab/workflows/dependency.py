"""
Dependency Resolution

Topological ordering of workflow tasks (Kahn's algorithm) with detection of
dangling dependency references and cycles.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from .definition import Task

logger = logging.getLogger(__name__)


@dataclass
class SortResult:
    """Execution order plus human-readable structural errors."""

    order: List[Task] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def has_cycle(self) -> bool:
        return any(error.startswith("Cycle detected") for error in self.errors)

    @property
    def ok(self) -> bool:
        return not self.errors


def sort_tasks(tasks: Sequence[Task]) -> SortResult:
    """
    Order tasks so every task comes after all of its dependencies.

    Ties between ready tasks are broken by input order (FIFO), which makes
    the order deterministic for a given task list. A dependency on an id
    that is not in the list is reported and the edge ignored, so the rest
    of the graph still sorts. If a cycle exists the order is empty.

    Args:
        tasks: Tasks of one workflow

    Returns:
        SortResult with the order and any errors
    """
    result = SortResult()
    task_ids = {task.id for task in tasks}

    in_degree: Dict[str, int] = {task.id: 0 for task in tasks}
    dependents: Dict[str, List[Task]] = {task.id: [] for task in tasks}

    for task in tasks:
        for dep_id in task.dependencies:
            if dep_id not in task_ids:
                result.errors.append(
                    f'Task "{task.name}" ({task.id}) depends on unknown task "{dep_id}"'
                )
                continue
            in_degree[task.id] += 1
            dependents[dep_id].append(task)

    ready = deque(task for task in tasks if in_degree[task.id] == 0)
    while ready:
        task = ready.popleft()
        result.order.append(task)
        for dependent in dependents[task.id]:
            in_degree[dependent.id] -= 1
            if in_degree[dependent.id] == 0:
                ready.append(dependent)

    if len(result.order) < len(tasks):
        sorted_ids = {task.id for task in result.order}
        stuck = [task.id for task in tasks if task.id not in sorted_ids]
        result.errors.append(f"Cycle detected among tasks: {', '.join(stuck)}")
        result.order = []
        logger.warning(f"Dependency cycle detected among tasks: {stuck}")

    return result
