"""Environment-driven object store construction.

Environment Variables:
    S3STORE_OBJECT_STORE_BACKEND: "memory" or "s3" (default: "memory")
    S3STORE_BUCKET_URL: Bucket root URL (required for "s3")
    S3STORE_REGION: Signing region (default: "us-east-1")
    S3STORE_ACCESS_KEY_ID: Access key id; requests are signed when set
        together with S3STORE_SECRET_ACCESS_KEY
    S3STORE_SECRET_ACCESS_KEY: Secret access key
    S3STORE_SESSION_TOKEN: Optional temporary-credential session token
    S3STORE_HTTP_TIMEOUT_SECONDS: Default HTTP timeout (default: 30)
    S3STORE_ENCRYPTION_KEY: Base64 AES key (16, 24 or 32 bytes); when set the
        backend is wrapped in EncryptedObjectStore

Tracing is configured from S3STORE_OTEL_* variables on every call to
create_object_store; see s3store.observability.tracing.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from collections.abc import Mapping
from enum import StrEnum

import httpx
from pydantic import BaseModel, Field, SecretStr, ValidationError, model_validator

from s3store.observability.tracing import configure_tracing
from s3store.storage.encrypted_store import VALID_KEY_SIZES, EncryptedObjectStore
from s3store.storage.errors import StorageConfigError
from s3store.storage.memory_store import InMemoryObjectStore
from s3store.storage.object_store import ObjectStore
from s3store.storage.s3_store import S3ObjectStore
from s3store.storage.sigv4 import SigV4Transport

logger = logging.getLogger(__name__)

ENV_PREFIX = "S3STORE_"


class ObjectStoreBackend(StrEnum):
    """Supported storage backends."""

    MEMORY = "memory"
    S3 = "s3"


class ObjectStoreSettings(BaseModel):
    """Validated object store configuration.

    Attributes:
        backend: Which backend to build.
        bucket_url: Bucket root URL for the S3 backend.
        region: SigV4 signing region.
        access_key_id: Access key id; signing is enabled when set.
        secret_access_key: Secret access key.
        session_token: Optional session token for temporary credentials.
        http_timeout_seconds: Default timeout for S3 requests.
        encryption_key: Base64-encoded AES key for client-side encryption.
    """

    backend: ObjectStoreBackend = ObjectStoreBackend.MEMORY
    bucket_url: str | None = None
    region: str = "us-east-1"
    access_key_id: str | None = None
    secret_access_key: SecretStr | None = None
    session_token: SecretStr | None = None
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    encryption_key: SecretStr | None = None

    @model_validator(mode="after")
    def check_backend_requirements(self) -> ObjectStoreSettings:
        if self.backend == ObjectStoreBackend.S3 and not self.bucket_url:
            raise ValueError("bucket_url is required for the s3 backend")
        if bool(self.access_key_id) != bool(self.secret_access_key):
            raise ValueError("access_key_id and secret_access_key must be set together")
        return self

    @property
    def signs_requests(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ObjectStoreSettings:
        """Build settings from S3STORE_* environment variables.

        Raises:
            StorageConfigError: If the environment holds invalid settings.
        """
        env = os.environ if environ is None else environ
        fields = {
            "backend": "OBJECT_STORE_BACKEND",
            "bucket_url": "BUCKET_URL",
            "region": "REGION",
            "access_key_id": "ACCESS_KEY_ID",
            "secret_access_key": "SECRET_ACCESS_KEY",
            "session_token": "SESSION_TOKEN",
            "http_timeout_seconds": "HTTP_TIMEOUT_SECONDS",
            "encryption_key": "ENCRYPTION_KEY",
        }
        values: dict[str, str] = {}
        for field_name, suffix in fields.items():
            raw = env.get(ENV_PREFIX + suffix, "").strip()
            if raw:
                values[field_name] = raw.lower() if field_name == "backend" else raw
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise StorageConfigError(f"Invalid object store settings: {e}") from e

    def decoded_encryption_key(self) -> bytes | None:
        """Decode the base64 encryption key.

        Raises:
            StorageConfigError: If the key is not valid base64 or has a bad length.
        """
        if self.encryption_key is None:
            return None
        try:
            key = base64.b64decode(self.encryption_key.get_secret_value(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise StorageConfigError("S3STORE_ENCRYPTION_KEY is not valid base64") from e
        if len(key) not in VALID_KEY_SIZES:
            raise StorageConfigError("S3STORE_ENCRYPTION_KEY must decode to 16, 24 or 32 bytes")
        return key


def build_http_client(settings: ObjectStoreSettings) -> httpx.Client:
    """Build the httpx client for the S3 backend, signing when credentials exist."""
    transport: httpx.BaseTransport = httpx.HTTPTransport()
    if settings.signs_requests:
        assert settings.access_key_id is not None
        assert settings.secret_access_key is not None
        transport = SigV4Transport(
            transport,
            region=settings.region,
            access_key_id=settings.access_key_id,
            secret_access_key=settings.secret_access_key.get_secret_value(),
            session_token=(
                settings.session_token.get_secret_value() if settings.session_token else None
            ),
        )
    return httpx.Client(transport=transport, timeout=settings.http_timeout_seconds)


def create_object_store(
    settings: ObjectStoreSettings | None = None,
    *,
    http_client: httpx.Client | None = None,
) -> ObjectStore:
    """Create the configured object store stack.

    Args:
        settings: Settings to use; read from the environment if None.
        http_client: Optional client for the S3 backend (dependency injection
            for tests). Built from settings if None.

    Returns:
        The backend, wrapped in EncryptedObjectStore when an encryption key
        is configured.

    Raises:
        StorageConfigError: If the settings are invalid.
        TracingConfigError: If S3STORE_REQUIRE_OTEL=1 and tracing cannot be set up.
    """
    if settings is None:
        settings = ObjectStoreSettings.from_env()
    configure_tracing()

    store: ObjectStore
    if settings.backend == ObjectStoreBackend.S3:
        assert settings.bucket_url is not None
        store = S3ObjectStore(http_client or build_http_client(settings), settings.bucket_url)
    else:
        store = InMemoryObjectStore()

    key = settings.decoded_encryption_key()
    if key is not None:
        store = EncryptedObjectStore(store, key)

    logger.info(
        "Object store created: backend=%s signed=%s",
        store.backend_name,
        settings.signs_requests,
    )
    return store
