from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

from .remote import RemoteTaskClient, RemoteTaskStore
from .storage import (
    BackendUnavailable,
    BlobStore,
    DurableTaskStore,
    FileBlobStore,
    MemoryContainer,
    MemoryTaskStore,
    S3BlobStore,
    Task,
    TaskStore,
    build_default_tasks,
)

logger = logging.getLogger("taskbud.backends")

T = TypeVar("T")


class BackendMode(str, Enum):
    UNINITIALIZED = "uninitialized"
    DURABLE = "durable"
    REMOTE = "remote"
    MEMORY = "memory"


# Tiers in demotion order.
TIER_ORDER = (BackendMode.DURABLE, BackendMode.REMOTE, BackendMode.MEMORY)


@dataclass
class BackendPlan:
    """
    The tiers configured for this process.

    ``durable`` is only set when running on a managed platform with a blob
    store, ``remote`` only when an upstream endpoint is configured. The memory
    tier is always available as the last resort.
    """

    durable: Optional[BlobStore] = None
    remote: Optional[RemoteTaskClient] = None
    memory: MemoryContainer = field(default_factory=MemoryContainer)
    store_key: str = "task-list"

    def configured(self) -> List[BackendMode]:
        tiers: List[BackendMode] = []
        if self.durable is not None:
            tiers.append(BackendMode.DURABLE)
        if self.remote is not None:
            tiers.append(BackendMode.REMOTE)
        tiers.append(BackendMode.MEMORY)
        return tiers


class BackendSelector:
    """
    Picks one task store per process and demotes it permanently on failure.

    Selection happens lazily on the first call to ``initialize``. A failing
    tier is never retried for the rest of the process lifetime, so a durable
    store that comes back later is only picked up after a restart.
    """

    def __init__(
        self,
        plan: BackendPlan,
        seed_factory: Callable[[], List[Task]] = build_default_tasks,
    ) -> None:
        self.plan = plan
        self.seed_factory = seed_factory
        self._mode = BackendMode.UNINITIALIZED
        self._store: Optional[TaskStore] = None
        self._lock = threading.Lock()

    @property
    def mode(self) -> BackendMode:
        return self._mode

    @property
    def store(self) -> Optional[TaskStore]:
        return self._store

    def initialize(self, context: Optional[Mapping[str, Any]] = None) -> BackendMode:
        with self._lock:
            if self._store is None:
                self._select(self.plan.configured(), context)
            return self._mode

    def execute(self, operation: Callable[[TaskStore], T]) -> T:
        """
        Run ``operation`` against the active store.

        On ``BackendUnavailable`` the active tier is demoted and the operation
        is retried against the next one; the error only propagates when the
        memory tier fails.
        """
        self.initialize()
        while True:
            with self._lock:
                mode = self._mode
                store = self._store
            assert store is not None
            try:
                return operation(store)
            except BackendUnavailable as exc:
                if mode is BackendMode.MEMORY:
                    raise
                logger.warning("Task backend %s failed: %s", mode.value, exc)
                self.demote(from_mode=mode)

    def demote(self, from_mode: Optional[BackendMode] = None) -> BackendMode:
        """
        Switch permanently to the next configured tier below ``from_mode``.

        When another thread has already moved past ``from_mode`` the current
        mode is returned unchanged, so concurrent failures of one tier demote
        it only once.
        """
        with self._lock:
            current = self._mode
            if from_mode is not None and from_mode is not current:
                return current
            configured = self.plan.configured()
            if current is BackendMode.UNINITIALIZED:
                remaining = configured
            else:
                position = TIER_ORDER.index(current)
                remaining = [mode for mode in configured if TIER_ORDER.index(mode) > position]
            if not remaining:
                raise BackendUnavailable(f"No tier below {current.value} is configured.")
            self._store = None
            self._select(remaining, None)
            logger.warning("Demoted task backend from %s to %s", current.value, self._mode.value)
            return self._mode

    def _select(
        self,
        candidates: List[BackendMode],
        context: Optional[Mapping[str, Any]],
    ) -> None:
        for mode in candidates:
            if mode is BackendMode.DURABLE:
                durable = self._open_durable(context)
                if durable is None:
                    continue
                self._activate(mode, durable)
                return
            if mode is BackendMode.REMOTE:
                assert self.plan.remote is not None
                self._activate(mode, RemoteTaskStore(self.plan.remote))
                return
            self.plan.memory.ensure_seeded(self.seed_factory)
            self._activate(mode, MemoryTaskStore(self.plan.memory, self.seed_factory))
            return

    def _open_durable(self, context: Optional[Mapping[str, Any]]) -> Optional[DurableTaskStore]:
        assert self.plan.durable is not None
        store = DurableTaskStore(self.plan.durable, self.plan.store_key, self.seed_factory)
        try:
            store.connect(context)
            store.seed_if_missing()
        except BackendUnavailable as exc:
            logger.warning("Durable task store unavailable, falling back: %s", exc)
            return None
        return store

    def _activate(self, mode: BackendMode, store: TaskStore) -> None:
        self._mode = mode
        self._store = store
        logger.info("Task backend set to %s", mode.value)


def build_blob_store(settings: Dict[str, Any]) -> BlobStore:
    storage = settings["storage"]
    backend = storage.get("blob_backend", "file")
    if backend == "s3":
        s3 = storage.get("s3") or {}
        return S3BlobStore(
            bucket=s3.get("bucket", ""),
            prefix=storage["store_name"],
            region=s3.get("region", ""),
            endpoint=s3.get("endpoint", ""),
            access_key_id=s3.get("aws_access_key_id", ""),
            secret_access_key=s3.get("aws_secret_access_key", ""),
        )
    if backend != "file":
        raise ValueError(f"Unknown blob backend '{backend}'.")
    return FileBlobStore(Path(settings["data_dir"]) / "blobs", storage["store_name"])


def build_selector(
    settings: Dict[str, Any],
    memory: Optional[MemoryContainer] = None,
) -> BackendSelector:
    """
    Build a selector from resolved settings (see ``settings.resolve_settings``).
    """
    plan = BackendPlan(
        memory=memory if memory is not None else MemoryContainer(),
        store_key=settings["storage"]["store_key"],
    )
    if settings.get("managed"):
        plan.durable = build_blob_store(settings)
    remote = settings.get("remote") or {}
    if remote.get("base_url"):
        plan.remote = RemoteTaskClient(remote["base_url"], timeout=remote.get("timeout", 10))
    logger.debug("Configured task backend tiers: %s", [mode.value for mode in plan.configured()])
    return BackendSelector(plan)
