"""s3store Object Storage error types.

Provides typed exceptions for storage operations. All errors are fail-closed:
operations that cannot complete safely raise errors instead of returning
partial or unverified data.

Taxonomy:
    - ObjectNotFoundError: expected, callers branch on it
    - StorageBackendError: transport failures and non-success statuses
    - ObjectIntegrityError: checksum or authentication failures on read
    - ResponseDecodeError: malformed response documents
    - StorageConfigError / InvalidKeyError / InvalidMetadataError /
      BatchTooLargeError: precondition failures, raised before any I/O
    - OperationCancelledError / DeadlineExceededError: context termination
"""

from __future__ import annotations


class ObjectStorageError(Exception):
    """Base exception for object storage operations.

    Attributes:
        message: Human-readable error message.
        key: Object key associated with the operation (if applicable).
        operation: Contract operation that failed (if applicable).
    """

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.key = key
        self.operation = operation

    def __str__(self) -> str:
        parts = [self.message]
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.key:
            parts.append(f"key={self.key}")
        return " ".join(parts)


class ObjectNotFoundError(ObjectStorageError):
    """Raised when an object does not exist in the bucket.

    Every backend raises this for a missing key on get and head, so callers
    can branch on existence without inspecting status codes.
    """

    def __init__(
        self,
        message: str = "Object not found",
        *,
        key: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message, key=key, operation=operation)


class InvalidKeyError(ObjectStorageError):
    """Raised when an object key is empty or not a string."""

    def __init__(
        self,
        message: str = "Invalid key: keys must be non-empty strings",
        *,
        key: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message, key=key, operation=operation)


class InvalidMetadataError(ObjectStorageError):
    """Raised when object metadata is not a mapping of strings to strings."""


class BatchTooLargeError(ObjectStorageError):
    """Raised when a batch delete names more keys than a single call allows.

    Chunking is the caller's job; nothing is deleted when this is raised.
    """

    def __init__(
        self,
        message: str,
        *,
        key_count: int,
        limit: int,
        operation: str | None = "delete_objects",
    ) -> None:
        super().__init__(message, operation=operation)
        self.key_count = key_count
        self.limit = limit


class StorageConfigError(ObjectStorageError):
    """Raised when a store is constructed with invalid arguments or settings."""


class StorageBackendError(ObjectStorageError):
    """Raised when the storage backend cannot complete an operation.

    Covers transport failures and any non-success response that is not
    explained by a missing object.

    Attributes:
        status_code: HTTP status code, when the backend answered.
        response_body: Response body text kept for diagnosis.
        cause: Underlying exception, when there was one.
    """

    def __init__(
        self,
        message: str = "Storage backend error",
        *,
        key: str | None = None,
        operation: str | None = None,
        status_code: int | None = None,
        response_body: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, key=key, operation=operation)
        self.status_code = status_code
        self.response_body = response_body
        self.cause = cause

    def __str__(self) -> str:
        text = super().__str__()
        if self.status_code is not None:
            text = f"{text} status={self.status_code}"
        if self.response_body:
            text = f"{text}: {self.response_body}"
        return text


class ObjectIntegrityError(ObjectStorageError):
    """Raised when object content fails verification on read.

    Checksum mismatches, authentication tag failures and missing or
    unexpected encryption markers all raise this. It is never retried or
    downgraded.
    """


class ResponseDecodeError(ObjectStorageError):
    """Raised when a backend response document cannot be decoded."""


class OperationCancelledError(ObjectStorageError):
    """Raised when the operation context was cancelled."""

    def __init__(
        self,
        message: str = "Operation cancelled",
        *,
        key: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message, key=key, operation=operation)


class DeadlineExceededError(OperationCancelledError):
    """Raised when the operation context deadline has passed."""

    def __init__(
        self,
        message: str = "Operation deadline exceeded",
        *,
        key: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message, key=key, operation=operation)
