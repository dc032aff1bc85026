"""s3store Object Storage Abstraction.

One ObjectStore contract (get/head/list/put/batch-delete by string key, with
string metadata) over interchangeable backends:

- InMemoryObjectStore: lock-guarded in-process store (dev/test)
- S3ObjectStore: S3-compatible REST API client over httpx
- EncryptedObjectStore: AES-GCM client-side encryption around any store

Environment Variables:
    S3STORE_OBJECT_STORE_BACKEND: "memory" or "s3" (default: "memory")
    See s3store.storage.factory for the full list.
"""

from s3store.storage.context import OperationContext
from s3store.storage.encrypted_store import EncryptedObjectStore
from s3store.storage.errors import (
    BatchTooLargeError,
    DeadlineExceededError,
    InvalidKeyError,
    InvalidMetadataError,
    ObjectIntegrityError,
    ObjectNotFoundError,
    ObjectStorageError,
    OperationCancelledError,
    ResponseDecodeError,
    StorageBackendError,
    StorageConfigError,
)
from s3store.storage.factory import ObjectStoreSettings, create_object_store
from s3store.storage.memory_store import InMemoryObjectStore
from s3store.storage.models import DeleteFailure, ListResult, ObjectHead
from s3store.storage.object_store import MAX_DELETE_BATCH, ObjectStore
from s3store.storage.s3_store import S3ObjectStore
from s3store.storage.sigv4 import SigV4Transport

__all__ = [
    "MAX_DELETE_BATCH",
    "ObjectStore",
    "InMemoryObjectStore",
    "S3ObjectStore",
    "EncryptedObjectStore",
    "SigV4Transport",
    "OperationContext",
    "ObjectStoreSettings",
    "create_object_store",
    "ObjectHead",
    "ListResult",
    "DeleteFailure",
    "ObjectStorageError",
    "ObjectNotFoundError",
    "InvalidKeyError",
    "InvalidMetadataError",
    "BatchTooLargeError",
    "StorageConfigError",
    "StorageBackendError",
    "ObjectIntegrityError",
    "ResponseDecodeError",
    "OperationCancelledError",
    "DeadlineExceededError",
]
