import json

import pytest
import requests

from fakes import FakeResponse
from taskbud import remote
from taskbud.remote import RemoteTaskClient, RemoteTaskError, RemoteTaskStore


@pytest.fixture
def recorded(monkeypatch):
    calls = []
    responses = []

    def fake_request(method, url, headers=None, data=None, timeout=None):
        calls.append(
            {
                "method": method,
                "url": url,
                "body": json.loads(data) if data else None,
                "timeout": timeout,
            }
        )
        response = responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(remote.requests, "request", fake_request)
    return calls, responses


def test_list_tasks_reads_task_list(recorded) -> None:
    calls, responses = recorded
    responses.append(FakeResponse(200, {"taskList": [{"id": "a", "title": "t", "isDone": False}]}))
    client = RemoteTaskClient("http://upstream.test/api/tasks/", timeout=4)

    assert client.list_tasks() == [{"id": "a", "title": "t", "isDone": False}]
    assert calls == [
        {"method": "GET", "url": "http://upstream.test/api/tasks", "body": None, "timeout": 4}
    ]


def test_mutations_target_task_urls(recorded) -> None:
    calls, responses = recorded
    responses.extend([FakeResponse(200, {"msg": "task updated"}), FakeResponse(200, {"msg": "task removed"})])
    client = RemoteTaskClient("http://upstream.test/tasks")

    client.update_task("a b", True)
    client.delete_task("a b")

    assert [(call["method"], call["url"], call["body"]) for call in calls] == [
        ("PATCH", "http://upstream.test/tasks/a%20b", {"isDone": True}),
        ("DELETE", "http://upstream.test/tasks/a%20b", None),
    ]


def test_append_returns_server_body_verbatim(recorded) -> None:
    calls, responses = recorded
    server_task = {"id": "server-id", "title": "walk", "isDone": False, "createdAt": "now"}
    responses.append(FakeResponse(200, {"task": server_task}))
    store = RemoteTaskStore(RemoteTaskClient("http://upstream.test/tasks"))

    created = store.append({"id": "local-id", "title": "walk", "isDone": False})

    assert created == server_task
    assert calls[0]["body"] == {"title": "walk"}


def test_append_keeps_local_record_without_server_body(recorded) -> None:
    _, responses = recorded
    responses.append(FakeResponse(200, text=""))
    store = RemoteTaskStore(RemoteTaskClient("http://upstream.test/tasks"))
    local = {"id": "local-id", "title": "walk", "isDone": False}

    assert store.append(local) == local


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(500, {"msg": "something went wrong"}),
        FakeResponse(200, text="<html>not json</html>"),
        FakeResponse(200, ["not", "an", "object"]),
        FakeResponse(200, {"tasks": []}),
        requests.ConnectionError("refused"),
    ],
)
def test_failures_raise_remote_task_error(recorded, response) -> None:
    _, responses = recorded
    responses.append(response)
    with pytest.raises(RemoteTaskError):
        RemoteTaskClient("http://upstream.test/tasks").list_tasks()
