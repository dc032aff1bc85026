"""s3store In-Memory Object Storage backend.

Reference implementation of the ObjectStore contract backed by a
per-instance dictionary. Used for development, as the backing bucket of the
fake S3 server, and as the correctness oracle for protocol-level tests.

Concurrency:
    get/head/list hold a shared read lock; put/delete hold an exclusive
    write lock. Each lock is held for exactly one operation and only covers
    in-memory copy work.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import BinaryIO

from s3store.storage.context import OperationContext, resolve_context
from s3store.storage.errors import ObjectNotFoundError
from s3store.storage.models import DeleteFailure, ListResult, ObjectHead
from s3store.storage.object_store import (
    ObjectBody,
    ObjectStore,
    build_list_result,
    fold_key,
    normalize_metadata,
    read_body,
    validate_delete_batch,
    validate_key,
)
from s3store.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

# Upper bound on a single lock wait, so cancellation from another thread is
# noticed promptly.
_LOCK_POLL_SECONDS = 0.05


@dataclass(frozen=True)
class _Entry:
    body: bytes
    metadata: dict[str, str]


class _ReadWriteLock:
    """Writer-preferring reader/writer lock that honours OperationContext."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def _wait(self, ctx: OperationContext, operation: str) -> None:
        ctx.raise_if_done(operation=operation)
        remaining = ctx.remaining()
        timeout = _LOCK_POLL_SECONDS if remaining is None else min(remaining, _LOCK_POLL_SECONDS)
        self._cond.wait(timeout)
        ctx.raise_if_done(operation=operation)

    @contextmanager
    def read_locked(self, ctx: OperationContext, operation: str) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._wait(ctx, operation)
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self, ctx: OperationContext, operation: str) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._wait(ctx, operation)
            finally:
                self._waiting_writers -= 1
                if not self._waiting_writers:
                    self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class InMemoryObjectStore(ObjectStore):
    """Dictionary-backed object storage implementation.

    Each instance owns its own bucket; instances never share state.
    Bodies and metadata are copied on the way in and out so callers can
    never mutate stored objects.
    """

    def __init__(self) -> None:
        self._objects: dict[str, _Entry] = {}
        self._lock = _ReadWriteLock()

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "memory"

    def __len__(self) -> int:
        return len(self._objects)

    @traced_storage_operation("get_object")
    def get_object(
        self,
        key: str,
        dst: BinaryIO,
        *,
        ctx: OperationContext | None = None,
    ) -> dict[str, str]:
        """Write the stored body into dst and return its metadata."""
        ctx = resolve_context(ctx)
        ctx.raise_if_done(operation="get_object", key=key)
        validate_key(key, operation="get_object")

        with self._lock.read_locked(ctx, "get_object"):
            entry = self._objects.get(key)
        if entry is None:
            raise ObjectNotFoundError(key=key, operation="get_object")

        dst.write(entry.body)
        return dict(entry.metadata)

    @traced_storage_operation("head_object")
    def head_object(
        self,
        key: str,
        *,
        ctx: OperationContext | None = None,
    ) -> ObjectHead:
        """Return size and metadata of the stored object."""
        ctx = resolve_context(ctx)
        ctx.raise_if_done(operation="head_object", key=key)
        validate_key(key, operation="head_object")

        with self._lock.read_locked(ctx, "head_object"):
            entry = self._objects.get(key)
        if entry is None:
            raise ObjectNotFoundError(key=key, operation="head_object")

        return ObjectHead(size=len(entry.body), metadata=dict(entry.metadata))

    @traced_storage_operation("list_objects")
    def list_objects(
        self,
        prefix: str = "",
        delimiter: str = "",
        *,
        ctx: OperationContext | None = None,
    ) -> ListResult:
        """List stored keys under prefix, folding on delimiter."""
        ctx = resolve_context(ctx)
        ctx.raise_if_done(operation="list_objects")

        entries: list[tuple[str, int]] = []
        common_prefixes: set[str] = set()

        with self._lock.read_locked(ctx, "list_objects"):
            for key, entry in self._objects.items():
                if not key.startswith(prefix):
                    continue
                folded = fold_key(key, prefix, delimiter)
                if folded is not None:
                    common_prefixes.add(folded)
                else:
                    entries.append((key, len(entry.body)))

        return build_list_result(entries, common_prefixes)

    @traced_storage_operation("put_object")
    def put_object(
        self,
        key: str,
        metadata: Mapping[str, str] | None,
        body: ObjectBody,
        *,
        ctx: OperationContext | None = None,
    ) -> None:
        """Store an object, replacing any existing one."""
        ctx = resolve_context(ctx)
        ctx.raise_if_done(operation="put_object", key=key)
        validate_key(key, operation="put_object")
        entry = _Entry(
            body=read_body(body, key=key),
            metadata=normalize_metadata(metadata, key=key),
        )

        with self._lock.write_locked(ctx, "put_object"):
            self._objects[key] = entry

        logger.debug("Stored object: key=%s size=%d", key, len(entry.body))

    @traced_storage_operation("delete_objects")
    def delete_objects(
        self,
        keys: Iterable[str],
        *,
        ctx: OperationContext | None = None,
    ) -> list[DeleteFailure]:
        """Delete keys. Absent keys are not failures, so the result is always empty."""
        ctx = resolve_context(ctx)
        ctx.raise_if_done(operation="delete_objects")
        key_list = validate_delete_batch(keys)
        if not key_list:
            return []

        with self._lock.write_locked(ctx, "delete_objects"):
            for key in key_list:
                self._objects.pop(key, None)

        logger.debug("Deleted objects: count=%d", len(key_list))
        return []
