"""
In-process task store with the same contract as DynamoTaskStore.

Used for local runs and tests. Items are stored as plain dicts and copied on
every read and write, so callers never share state with the store.
"""
import copy
import threading
from typing import Dict, Iterable, List, Optional

from .errors import Conflict
from .models import Assignment, Task


class InMemoryTaskStore:

    def __init__(self):
        self._lock = threading.Lock()
        self._tasks: Dict[str, dict] = {}
        self._assignments: Dict[str, Dict[str, dict]] = {}

    def load_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            item = self._tasks.get(task_id)
            return Task.from_item(copy.deepcopy(item)) if item else None

    def load_assignments(self, task_id: str) -> List[Assignment]:
        with self._lock:
            items = self._assignments.get(task_id, {})
            return [Assignment.from_item(copy.deepcopy(item)) for item in items.values()]

    def create_task(self, task: Task) -> Task:
        with self._lock:
            if task.task_id in self._tasks:
                raise Conflict(f"Task {task.task_id} already exists")
            task.version = 1
            self._tasks[task.task_id] = copy.deepcopy(task.to_item())
            self._assignments.setdefault(task.task_id, {})
        return task

    def save_task(
        self,
        task: Task,
        expected_version: int,
        assignments: Iterable[Assignment] = (),
        deleted_assignment_ids: Iterable[str] = ()
    ) -> int:
        """Compare-and-swap on the task version; all-or-nothing."""
        with self._lock:
            current = self._tasks.get(task.task_id)
            current_version = current['version'] if current else 0
            if current_version != expected_version:
                raise Conflict(
                    f"Task {task.task_id} was modified concurrently",
                    {'expectedVersion': expected_version, 'currentVersion': current_version}
                )

            new_version = expected_version + 1
            item = copy.deepcopy(task.to_item())
            item['version'] = new_version
            self._tasks[task.task_id] = item

            task_assignments = self._assignments.setdefault(task.task_id, {})
            for assignment in assignments:
                task_assignments[assignment.assignment_id] = copy.deepcopy(assignment.to_item())
            for assignment_id in deleted_assignment_ids:
                task_assignments.pop(assignment_id, None)

        task.version = new_version
        return new_version
