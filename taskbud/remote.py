from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from .storage import BackendUnavailable, Task, TaskStore

logger = logging.getLogger("taskbud.remote")


class RemoteTaskError(BackendUnavailable):
    """Raised when the upstream task API fails or returns a malformed response."""


class RemoteTaskClient:
    """
    Minimal HTTP client for an upstream service exposing the same task API.
    """

    def __init__(self, base_url: str, timeout: float = 10) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _url(self, task_id: Optional[str] = None) -> str:
        if task_id is None:
            return self.base_url
        return f"{self.base_url}/{quote(task_id, safe='')}"

    def _request(
        self,
        method: str,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        try:
            response = requests.request(
                method,
                url,
                headers=headers,
                data=json.dumps(payload) if payload is not None else None,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise RemoteTaskError(f"{method} {url} failed: {exc}") from exc
        if response.status_code >= 400:
            raise RemoteTaskError(
                f"Upstream returned {response.status_code} for {method} {url}: {response.text}"
            )
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteTaskError(f"Upstream response to {method} {url} is not JSON.") from exc
        if not isinstance(body, dict):
            raise RemoteTaskError(f"Upstream response to {method} {url} is not an object.")
        return body

    def list_tasks(self) -> List[Task]:
        body = self._request("GET", self._url())
        task_list = body.get("taskList")
        if not isinstance(task_list, list):
            raise RemoteTaskError("Upstream response is missing 'taskList'.")
        return task_list

    def create_task(self, title: str) -> Optional[Task]:
        body = self._request("POST", self._url(), {"title": title})
        task = body.get("task")
        return task if isinstance(task, dict) else None

    def update_task(self, task_id: str, is_done: bool) -> None:
        self._request("PATCH", self._url(task_id), {"isDone": is_done})

    def delete_task(self, task_id: str) -> None:
        self._request("DELETE", self._url(task_id))


class RemoteTaskStore(TaskStore):
    """
    Task store that forwards each operation to an upstream task API.
    """

    def __init__(self, client: RemoteTaskClient) -> None:
        self.client = client

    def read_all(self) -> List[Task]:
        return self.client.list_tasks()

    def append(self, task: Task) -> Task:
        created = self.client.create_task(task["title"])
        if created is None:
            logger.debug("Upstream returned no task body, keeping local record %s", task["id"])
            return task
        return created

    def update(self, task_id: str, is_done: bool) -> bool:
        self.client.update_task(task_id, is_done)
        return True

    def delete(self, task_id: str) -> bool:
        self.client.delete_task(task_id)
        return True
