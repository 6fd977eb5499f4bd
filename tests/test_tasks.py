import pytest

from fakes import FakeBlobStore
from taskbud.backends import BackendMode, BackendPlan, BackendSelector
from taskbud.storage import MemoryContainer
from taskbud.tasks import TaskService, ValidationError


@pytest.fixture
def service() -> TaskService:
    return TaskService(BackendSelector(BackendPlan(memory=MemoryContainer(tasks=[]))))


def test_create_then_list_contains_new_task(service: TaskService) -> None:
    before = service.list_tasks()
    task = service.create_task("buy milk")
    after = service.list_tasks()

    assert task["title"] == "buy milk"
    assert task["isDone"] is False
    assert after == [*before, task]
    assert [item for item in after if item["title"] == "buy milk"] == [task]


def test_created_ids_are_unique(service: TaskService) -> None:
    ids = [service.create_task(f"task {index}")["id"] for index in range(50)]
    assert len(set(ids)) == len(ids)


def test_custom_id_factory_is_used(sequential_ids) -> None:
    service = TaskService(
        BackendSelector(BackendPlan(memory=MemoryContainer(tasks=[]))),
        id_factory=sequential_ids,
    )
    assert service.create_task("first")["id"] == "task-1"
    assert service.create_task("second")["id"] == "task-2"


@pytest.mark.parametrize("title", ["", None, 42, ["list"]])
def test_create_rejects_missing_or_invalid_title(service: TaskService, title) -> None:
    with pytest.raises(ValidationError):
        service.create_task(title)
    assert service.list_tasks() == []


def test_set_done_is_idempotent(service: TaskService) -> None:
    task = service.create_task("walk")

    assert service.set_done(task["id"], True) is True
    once = service.list_tasks()
    assert service.set_done(task["id"], True) is True

    assert service.list_tasks() == once
    assert once[0]["isDone"] is True


def test_set_done_can_reopen_task(service: TaskService) -> None:
    task = service.create_task("walk")
    service.set_done(task["id"], True)
    service.set_done(task["id"], False)
    assert service.list_tasks()[0]["isDone"] is False


@pytest.mark.parametrize("value", ["yes", 1, None, "true"])
def test_set_done_rejects_non_boolean(service: TaskService, value) -> None:
    task = service.create_task("walk")
    with pytest.raises(ValidationError):
        service.set_done(task["id"], value)
    assert service.list_tasks()[0]["isDone"] is False


def test_missing_ids_are_no_ops(service: TaskService) -> None:
    service.create_task("walk")
    before = service.list_tasks()

    assert service.set_done("nonexistent", True) is True
    assert service.remove_task("nonexistent") is True
    assert service.list_tasks() == before


def test_remove_then_list_drops_task(service: TaskService) -> None:
    keep = service.create_task("keep")
    drop = service.create_task("drop")

    assert service.remove_task(drop["id"]) is True

    assert service.list_tasks() == [keep]


@pytest.mark.parametrize("task_id", ["", "  ", None])
def test_empty_task_id_is_rejected(service: TaskService, task_id) -> None:
    with pytest.raises(ValidationError):
        service.set_done(task_id, True)
    with pytest.raises(ValidationError):
        service.remove_task(task_id)


def test_create_after_durable_write_failure_uses_next_tier() -> None:
    blob = FakeBlobStore({"task-list": []}, fail_writes=1)
    container = MemoryContainer(tasks=[])
    service = TaskService(BackendSelector(BackendPlan(durable=blob, memory=container)))
    assert service.initialize() is BackendMode.DURABLE

    task = service.create_task("survives")
    calls = blob.calls
    service.create_task("also memory")
    service.list_tasks()

    assert service.backend_mode is BackendMode.MEMORY
    assert container.tasks[0] == task
    assert blob.calls == calls


def test_first_list_on_empty_durable_store_returns_seed(blob_store) -> None:
    service = TaskService(BackendSelector(BackendPlan(durable=blob_store)))

    tasks = service.list_tasks()

    assert [task["title"] for task in tasks] == ["walk the dog", "wash dishes", "drink coffee"]
    assert [task["isDone"] for task in tasks] == [False, False, True]


def test_whitespace_title_is_accepted_as_given(service: TaskService) -> None:
    task = service.create_task("   ")
    assert task["title"] == "   "
    assert service.list_tasks() == [task]
