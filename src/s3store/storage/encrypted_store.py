"""Client-side encrypted object storage wrapper for s3store.

Wraps any ObjectStore implementation with AES-GCM authenticated encryption:

- put seals the body as nonce || ciphertext || tag and marks the object with
  the "cipher-mode: GCM" metadata entry
- get verifies the marker, authenticates and decrypts before writing any
  plaintext to the caller's sink, and returns the metadata without the marker
- head, list and delete pass through unchanged, so sizes reported by them
  are ciphertext sizes (plaintext length + 28 bytes) and head metadata
  still carries the marker

All checks are fail-closed: unmarked objects, truncated envelopes and
authentication failures raise ObjectIntegrityError.
"""

from __future__ import annotations

import io
import logging
import os
from collections.abc import Iterable, Mapping
from typing import BinaryIO

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from s3store.storage.context import OperationContext, resolve_context
from s3store.storage.errors import ObjectIntegrityError, StorageConfigError
from s3store.storage.models import DeleteFailure, ListResult, ObjectHead
from s3store.storage.object_store import (
    ObjectBody,
    ObjectStore,
    normalize_metadata,
    read_body,
    validate_key,
)
from s3store.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

CIPHER_MODE_METADATA_KEY = "cipher-mode"
CIPHER_MODE_GCM = "GCM"
NONCE_SIZE = 12
TAG_SIZE = 16
ENVELOPE_OVERHEAD = NONCE_SIZE + TAG_SIZE
VALID_KEY_SIZES = frozenset({16, 24, 32})


class EncryptedObjectStore(ObjectStore):
    """Object store wrapper that encrypts bodies on the client.

    Holds the inner store and the cipher built from the key material given
    at construction. Key material is never stored in objects or metadata.
    Adds no locking: concurrency guarantees are those of the inner store.
    """

    def __init__(self, inner_store: ObjectStore, key: bytes) -> None:
        """Initialize the encrypted store.

        Args:
            inner_store: The underlying object store implementation.
            key: AES key, 16, 24 or 32 bytes.

        Raises:
            StorageConfigError: If inner_store is missing or key has an
                invalid length.
        """
        if inner_store is None:
            raise StorageConfigError("inner_store cannot be None")
        if not isinstance(key, (bytes, bytearray)) or len(key) not in VALID_KEY_SIZES:
            raise StorageConfigError("AES key must be 16, 24 or 32 bytes")
        self._inner = inner_store
        self._aead = AESGCM(bytes(key))

    @property
    def backend_name(self) -> str:
        """Return the backend identifier with encryption prefix."""
        return f"encrypted:{self._inner.backend_name}"

    @property
    def inner(self) -> ObjectStore:
        """Return the wrapped store."""
        return self._inner

    @traced_storage_operation("get_object")
    def get_object(
        self,
        key: str,
        dst: BinaryIO,
        *,
        ctx: OperationContext | None = None,
    ) -> dict[str, str]:
        """Read, verify and decrypt the object, then write plaintext to dst.

        Raises:
            ObjectNotFoundError: If the key does not exist.
            ObjectIntegrityError: If the object is not marked as GCM, is too
                short to hold an envelope, or fails authentication.
        """
        ctx = resolve_context(ctx)
        ctx.raise_if_done(operation="get_object", key=key)

        buffer = io.BytesIO()
        metadata = self._inner.get_object(key, buffer, ctx=ctx)

        cipher_mode = metadata.get(CIPHER_MODE_METADATA_KEY, "")
        if cipher_mode != CIPHER_MODE_GCM:
            raise ObjectIntegrityError(
                f"Object metadata cipher-mode {cipher_mode!r} != {CIPHER_MODE_GCM!r}",
                key=key,
                operation="get_object",
            )

        envelope = buffer.getvalue()
        if len(envelope) < ENVELOPE_OVERHEAD:
            raise ObjectIntegrityError(
                "Stored data is too small to hold a GCM nonce and tag",
                key=key,
                operation="get_object",
            )

        nonce, sealed = envelope[:NONCE_SIZE], envelope[NONCE_SIZE:]
        try:
            plaintext = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise ObjectIntegrityError(
                "Failed to decrypt: authentication failed",
                key=key,
                operation="get_object",
            ) from e

        ctx.raise_if_done(operation="get_object", key=key)
        dst.write(plaintext)
        metadata.pop(CIPHER_MODE_METADATA_KEY)
        return metadata

    @traced_storage_operation("head_object")
    def head_object(
        self,
        key: str,
        *,
        ctx: OperationContext | None = None,
    ) -> ObjectHead:
        """Delegate to the inner store (ciphertext size)."""
        return self._inner.head_object(key, ctx=ctx)

    @traced_storage_operation("list_objects")
    def list_objects(
        self,
        prefix: str = "",
        delimiter: str = "",
        *,
        ctx: OperationContext | None = None,
    ) -> ListResult:
        """Delegate to the inner store (ciphertext sizes)."""
        return self._inner.list_objects(prefix, delimiter, ctx=ctx)

    @traced_storage_operation("put_object")
    def put_object(
        self,
        key: str,
        metadata: Mapping[str, str] | None,
        body: ObjectBody,
        *,
        ctx: OperationContext | None = None,
    ) -> None:
        """Seal the body under a fresh nonce and store nonce || sealed."""
        ctx = resolve_context(ctx)
        ctx.raise_if_done(operation="put_object", key=key)
        validate_key(key, operation="put_object")

        plaintext = read_body(body, key=key)
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext, None)

        sealed_metadata = normalize_metadata(metadata, key=key)
        sealed_metadata[CIPHER_MODE_METADATA_KEY] = CIPHER_MODE_GCM

        self._inner.put_object(key, sealed_metadata, nonce + sealed, ctx=ctx)
        logger.debug("Stored encrypted object: key=%s size=%d", key, len(plaintext))

    @traced_storage_operation("delete_objects")
    def delete_objects(
        self,
        keys: Iterable[str],
        *,
        ctx: OperationContext | None = None,
    ) -> list[DeleteFailure]:
        """Delegate to the inner store."""
        return self._inner.delete_objects(keys, ctx=ctx)
