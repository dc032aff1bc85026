"""s3store Object Storage interface definition.

Provides the ObjectStore abstract base class that every backend implements,
plus the argument validation and listing helpers shared by all backends so
that the contract rules are applied uniformly:

- Keys are non-empty strings.
- Metadata keys are lowercased on write; reads never return None metadata.
- Common prefixes always include the trailing delimiter.
- Deleting an absent key is a success.
- Batch deletes are limited to MAX_DELETE_BATCH keys per call.
- Keys in a batch delete must be representable in an XML 1.0 document.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import BinaryIO

from s3store.storage.context import OperationContext
from s3store.storage.errors import (
    BatchTooLargeError,
    InvalidKeyError,
    InvalidMetadataError,
    StorageBackendError,
)
from s3store.storage.models import DeleteFailure, ListResult, ObjectHead

MAX_DELETE_BATCH = 999

# Characters outside the XML 1.0 Char production cannot appear in a
# DeleteObjects request body, even escaped.
_XML_FORBIDDEN_CHARS = re.compile("[^\t\n\r\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")

ObjectBody = bytes | bytearray | memoryview | BinaryIO


class ObjectStore(ABC):
    """Abstract base class for object storage backends.

    Implementations:
    - InMemoryObjectStore: lock-guarded in-process store (dev/test, oracle)
    - S3ObjectStore: S3-compatible REST API over httpx
    - EncryptedObjectStore: AES-GCM client-side encryption around any store

    Call sites should hold an ObjectStore, never a concrete type, so that
    stores can be wrapped and swapped freely.
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier for observability.

        Returns:
            Backend name string (e.g., "memory", "s3").
        """
        ...

    @abstractmethod
    def get_object(
        self,
        key: str,
        dst: BinaryIO,
        *,
        ctx: OperationContext | None = None,
    ) -> dict[str, str]:
        """Stream an object's body into dst and return its metadata.

        Args:
            key: Object key.
            dst: Writable binary sink. The full body has been written when
                this returns.
            ctx: Optional operation context.

        Returns:
            Object metadata (lowercased keys, possibly empty).

        Raises:
            ObjectNotFoundError: If the key does not exist.
            ObjectIntegrityError: If the body fails verification.
            StorageBackendError: If the backend cannot complete the read.
        """
        ...

    @abstractmethod
    def head_object(
        self,
        key: str,
        *,
        ctx: OperationContext | None = None,
    ) -> ObjectHead:
        """Get an object's size and metadata without transferring the body.

        Raises:
            ObjectNotFoundError: If the key does not exist.
            StorageBackendError: If the backend cannot complete the request.
        """
        ...

    @abstractmethod
    def list_objects(
        self,
        prefix: str = "",
        delimiter: str = "",
        *,
        ctx: OperationContext | None = None,
    ) -> ListResult:
        """List keys under prefix, folding on delimiter.

        An empty prefix matches every key; an empty delimiter disables
        folding. Pagination, when the backend needs it, is handled
        internally and the complete result is returned.

        Args:
            prefix: Keys must start with this string.
            delimiter: Keys whose remainder after prefix contains this string
                are folded into a common prefix ending with it.
            ctx: Optional operation context.

        Returns:
            ListResult with keys, sizes and common prefixes, each ascending.

        Raises:
            StorageBackendError: If the backend cannot complete the listing.
            ResponseDecodeError: If a listing page cannot be decoded.
        """
        ...

    @abstractmethod
    def put_object(
        self,
        key: str,
        metadata: Mapping[str, str] | None,
        body: ObjectBody,
        *,
        ctx: OperationContext | None = None,
    ) -> None:
        """Store an object, fully replacing any existing object at key.

        Args:
            key: Object key.
            metadata: String metadata. None is equivalent to {}.
            body: Bytes or a readable binary stream.
            ctx: Optional operation context.

        Raises:
            InvalidKeyError: If key is empty.
            InvalidMetadataError: If metadata is not str -> str.
            StorageBackendError: If the backend cannot complete the write.
        """
        ...

    @abstractmethod
    def delete_objects(
        self,
        keys: Iterable[str],
        *,
        ctx: OperationContext | None = None,
    ) -> list[DeleteFailure]:
        """Delete a batch of objects.

        Absent keys count as deleted. Every key not returned is deleted or
        was already absent.

        Args:
            keys: Zero to MAX_DELETE_BATCH keys.
            ctx: Optional operation context.

        Returns:
            Keys the backend reported as not deleted, with error codes.

        Raises:
            BatchTooLargeError: If more than MAX_DELETE_BATCH keys are given.
            StorageBackendError: If the whole batch failed.
        """
        ...


def validate_key(key: str, *, operation: str) -> None:
    """Raise InvalidKeyError unless key is a non-empty string."""
    if not isinstance(key, str) or not key:
        raise InvalidKeyError(operation=operation, key=key if isinstance(key, str) else None)


def normalize_metadata(
    metadata: Mapping[str, str] | None,
    *,
    key: str | None = None,
    operation: str = "put_object",
) -> dict[str, str]:
    """Return a fresh metadata dict with lowercased keys.

    Raises:
        InvalidMetadataError: If any entry is not a pair of strings.
    """
    if metadata is None:
        return {}
    normalized: dict[str, str] = {}
    for meta_key, meta_value in metadata.items():
        if not isinstance(meta_key, str) or not isinstance(meta_value, str):
            raise InvalidMetadataError(
                "Metadata keys and values must be strings",
                key=key,
                operation=operation,
            )
        if not meta_key:
            raise InvalidMetadataError(
                "Metadata keys must be non-empty", key=key, operation=operation
            )
        normalized[meta_key.lower()] = meta_value
    return normalized


def validate_delete_batch(keys: Iterable[str]) -> list[str]:
    """Materialize and validate a batch delete request.

    Raises:
        BatchTooLargeError: If there are more than MAX_DELETE_BATCH keys.
        InvalidKeyError: If any key is empty or contains a character
            XML 1.0 cannot carry.
    """
    key_list = list(keys)
    if len(key_list) > MAX_DELETE_BATCH:
        raise BatchTooLargeError(
            f"Cannot delete {len(key_list)} keys in one call (limit {MAX_DELETE_BATCH})",
            key_count=len(key_list),
            limit=MAX_DELETE_BATCH,
        )
    for key in key_list:
        validate_key(key, operation="delete_objects")
        if _XML_FORBIDDEN_CHARS.search(key):
            raise InvalidKeyError(
                "Invalid key: batch delete keys must not contain XML control characters",
                key=key,
                operation="delete_objects",
            )
    return key_list


def read_body(body: ObjectBody, *, key: str, operation: str = "put_object") -> bytes:
    """Fully buffer a put body into bytes.

    Raises:
        StorageBackendError: If reading the stream fails.
    """
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    try:
        data = body.read()
    except OSError as e:
        raise StorageBackendError(
            message=f"Failed to read body: {e}",
            key=key,
            operation=operation,
            cause=e,
        ) from e
    if isinstance(data, str):
        raise TypeError("body stream must be opened in binary mode")
    return bytes(data)


def fold_key(key: str, prefix: str, delimiter: str) -> str | None:
    """Return the common prefix key folds into, or None if it stays flat.

    key must already start with prefix.
    """
    if not delimiter:
        return None
    index = key.find(delimiter, len(prefix))
    if index < 0:
        return None
    return key[: index + len(delimiter)]


def build_list_result(
    entries: Iterable[tuple[str, int]],
    common_prefixes: Iterable[str],
) -> ListResult:
    """Sort (key, size) entries by key and deduplicate/sort common prefixes.

    Python string order is code point order, which equals UTF-8 byte order.
    """
    ordered = sorted(entries, key=lambda entry: entry[0])
    return ListResult(
        keys=[entry[0] for entry in ordered],
        sizes=[entry[1] for entry in ordered],
        common_prefixes=sorted(set(common_prefixes)),
    )
