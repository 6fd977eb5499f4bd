from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol
from uuid import uuid4

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger("taskbud.storage")

Task = Dict[str, Any]

SEED_TASKS = (
    ("walk the dog", False),
    ("wash dishes", False),
    ("drink coffee", True),
)


class BackendUnavailable(RuntimeError):
    """Raised when a storage tier cannot serve a read or write."""


class BlobStoreError(BackendUnavailable):
    """Raised when a blob store fails to read, decode or write a document."""


def new_task_id() -> str:
    return uuid4().hex


def new_task(title: str, id_factory: Callable[[], str] = new_task_id) -> Task:
    return {"id": id_factory(), "title": title, "isDone": False}


def build_default_tasks(id_factory: Callable[[], str] = new_task_id) -> List[Task]:
    return [
        {"id": id_factory(), "title": title, "isDone": is_done}
        for title, is_done in SEED_TASKS
    ]


class BlobStore(Protocol):
    """Key-value store of JSON documents used by the durable tier."""

    def connect(self, context: Optional[Mapping[str, Any]] = None) -> None:
        ...

    def get_json(self, key: str) -> Any:
        """Return the decoded document, or ``None`` when the key is absent."""
        ...

    def set_json(self, key: str, payload: Any) -> None:
        ...


class FileBlobStore:
    """
    Blob store backed by one JSON file per key under ``root/store_name``.
    """

    def __init__(self, root: Path, store_name: str) -> None:
        self.root = root / store_name

    def connect(self, context: Optional[Mapping[str, Any]] = None) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BlobStoreError(f"Cannot create blob directory {self.root}: {exc}") from exc

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def get_json(self, key: str) -> Any:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, ValueError) as exc:
            raise BlobStoreError(f"Cannot read blob {path}: {exc}") from exc

    def set_json(self, key: str, payload: Any) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
                handle.write("\n")
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as exc:
            tmp_path.unlink(missing_ok=True)
            raise BlobStoreError(f"Cannot write blob {path}: {exc}") from exc


@dataclass
class S3BlobStore:
    """
    S3-compatible blob store. Documents live under ``<prefix>/<key>.json``.

    The boto3 client is created on ``connect``; credentials in the connect
    context take precedence over the configured ones.
    """

    bucket: str
    prefix: str
    region: str = ""
    endpoint: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    client: Any = field(default=None, repr=False)

    def connect(self, context: Optional[Mapping[str, Any]] = None) -> None:
        if self.client is not None:
            return
        context = context or {}
        options: Dict[str, Any] = {
            "config": Config(signature_version="s3v4"),
        }
        if self.endpoint:
            options["endpoint_url"] = self.endpoint
        if self.region:
            options["region_name"] = self.region
        access_key = context.get("aws_access_key_id") or self.access_key_id
        secret_key = context.get("aws_secret_access_key") or self.secret_access_key
        if access_key and secret_key:
            options["aws_access_key_id"] = access_key
            options["aws_secret_access_key"] = secret_key
            if context.get("aws_session_token"):
                options["aws_session_token"] = context["aws_session_token"]
        try:
            self.client = boto3.client("s3", **options)
        except BotoCoreError as exc:
            raise BlobStoreError(f"Cannot create S3 client: {exc}") from exc

    def _object_key(self, key: str) -> str:
        return f"{self.prefix}/{key}.json"

    def get_json(self, key: str) -> Any:
        self.connect()
        object_key = self._object_key(key)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=object_key)
            body = response["Body"].read()
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in {"NoSuchKey", "404"}:
                return None
            raise BlobStoreError(f"Cannot read s3://{self.bucket}/{object_key}: {exc}") from exc
        except BotoCoreError as exc:
            raise BlobStoreError(f"Cannot read s3://{self.bucket}/{object_key}: {exc}") from exc
        try:
            return json.loads(body)
        except ValueError as exc:
            raise BlobStoreError(f"Malformed JSON in s3://{self.bucket}/{object_key}") from exc

    def set_json(self, key: str, payload: Any) -> None:
        self.connect()
        object_key = self._object_key(key)
        body = json.dumps(payload).encode("utf-8")
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=object_key,
                Body=body,
                ContentType="application/json",
            )
        except (BotoCoreError, ClientError) as exc:
            raise BlobStoreError(f"Cannot write s3://{self.bucket}/{object_key}: {exc}") from exc


class TaskStore:
    """
    Storage contract shared by every backend tier.

    Implementations raise ``BackendUnavailable`` when the underlying storage
    fails; they never decide on fallback themselves.
    """

    def read_all(self) -> List[Task]:
        raise NotImplementedError

    def append(self, task: Task) -> Task:
        raise NotImplementedError

    def update(self, task_id: str, is_done: bool) -> bool:
        raise NotImplementedError

    def delete(self, task_id: str) -> bool:
        raise NotImplementedError


class FullDocumentStore(TaskStore):
    """
    Store whose whole task list is a single document.

    Every mutation is a read-modify-write of the full list with no version
    check: two concurrent writers that read the same snapshot will each write
    their own copy and the later ``write_all`` drops the other's change.
    """

    def write_all(self, tasks: List[Task]) -> None:
        raise NotImplementedError

    def append(self, task: Task) -> Task:
        tasks = self.read_all()
        self.write_all([*tasks, task])
        return task

    def update(self, task_id: str, is_done: bool) -> bool:
        tasks = self.read_all()
        updated = [
            {**task, "isDone": is_done} if task.get("id") == task_id else task
            for task in tasks
        ]
        self.write_all(updated)
        return True

    def delete(self, task_id: str) -> bool:
        tasks = self.read_all()
        self.write_all([task for task in tasks if task.get("id") != task_id])
        return True


class DurableTaskStore(FullDocumentStore):
    """
    Task list persisted as one JSON array under a single blob key.
    """

    def __init__(
        self,
        blob: BlobStore,
        key: str,
        seed_factory: Callable[[], List[Task]] = build_default_tasks,
    ) -> None:
        self.blob = blob
        self.key = key
        self.seed_factory = seed_factory

    def connect(self, context: Optional[Mapping[str, Any]] = None) -> None:
        self.blob.connect(context)

    def seed_if_missing(self) -> bool:
        """
        Write the seed tasks when no task document exists yet.

        This is a plain check-then-write, not a conditional put: two cold
        starts racing here can both seed.
        """
        existing = self.blob.get_json(self.key)
        if isinstance(existing, list):
            _check_tasks(existing, self.key)
            return False
        seeded = self.seed_factory()
        self.blob.set_json(self.key, seeded)
        logger.info("Seeded durable task store %s with %d tasks", self.key, len(seeded))
        return True

    def read_all(self) -> List[Task]:
        stored = self.blob.get_json(self.key)
        if isinstance(stored, list):
            return _check_tasks(stored, self.key)
        seeded = self.seed_factory()
        self.blob.set_json(self.key, seeded)
        return seeded

    def write_all(self, tasks: List[Task]) -> None:
        self.blob.set_json(self.key, list(tasks))


def _check_tasks(document: List[Any], key: str) -> List[Task]:
    for index, task in enumerate(document):
        if not isinstance(task, dict) or not isinstance(task.get("id"), str):
            raise BlobStoreError(f"Malformed task document {key}: entry {index} is not a task")
    return document


@dataclass
class MemoryContainer:
    """
    Process-local task list shared by every request served by this process.
    """

    tasks: Optional[List[Task]] = None

    def ensure_seeded(self, seed_factory: Callable[[], List[Task]] = build_default_tasks) -> None:
        if self.tasks is None:
            self.tasks = seed_factory()


class MemoryTaskStore(FullDocumentStore):
    def __init__(
        self,
        container: MemoryContainer,
        seed_factory: Callable[[], List[Task]] = build_default_tasks,
    ) -> None:
        self.container = container
        self.seed_factory = seed_factory

    def read_all(self) -> List[Task]:
        self.container.ensure_seeded(self.seed_factory)
        return list(self.container.tasks or [])

    def write_all(self, tasks: List[Task]) -> None:
        self.container.tasks = list(tasks)
