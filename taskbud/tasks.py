from __future__ import annotations

import logging
from typing import Any, Callable, List, Mapping, Optional

from .backends import BackendMode, BackendSelector
from .storage import Task, new_task, new_task_id

logger = logging.getLogger("taskbud.tasks")


class ValidationError(ValueError):
    """Raised when a caller supplies missing or malformed task input."""


class TaskService:
    """
    CRUD operations on the task list, routed through the backend selector.

    Updates and deletes of unknown ids succeed without changing anything.
    """

    def __init__(
        self,
        selector: BackendSelector,
        id_factory: Callable[[], str] = new_task_id,
    ) -> None:
        self.selector = selector
        self.id_factory = id_factory

    @property
    def backend_mode(self) -> BackendMode:
        return self.selector.mode

    def initialize(self, context: Optional[Mapping[str, Any]] = None) -> BackendMode:
        return self.selector.initialize(context)

    def list_tasks(self) -> List[Task]:
        return self.selector.execute(lambda store: store.read_all())

    def create_task(self, title: Any) -> Task:
        if not isinstance(title, str) or not title:
            raise ValidationError("please provide title")
        task = new_task(title, self.id_factory)
        created = self.selector.execute(lambda store: store.append(task))
        logger.info("Created task %s on %s backend", created.get("id"), self.backend_mode.value)
        return created

    def set_done(self, task_id: Any, is_done: Any) -> bool:
        _require_task_id(task_id)
        if not isinstance(is_done, bool):
            raise ValidationError("please provide isDone boolean")
        result = self.selector.execute(lambda store: store.update(task_id, is_done))
        logger.debug("Set task %s isDone=%s", task_id, is_done)
        return result

    def remove_task(self, task_id: Any) -> bool:
        _require_task_id(task_id)
        result = self.selector.execute(lambda store: store.delete(task_id))
        logger.debug("Removed task %s", task_id)
        return result


def _require_task_id(task_id: Any) -> None:
    if not isinstance(task_id, str) or not task_id.strip():
        raise ValidationError("task id required")
