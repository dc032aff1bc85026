"""AWS Signature Version 4 request signing transport.

SigV4Transport wraps another httpx transport and signs every request with
botocore's S3 signer before delegating, so S3ObjectStore can talk to
authenticated endpoints without knowing about credentials:

    transport = SigV4Transport(
        httpx.HTTPTransport(),
        region="us-east-1",
        access_key_id=...,
        secret_access_key=...,
    )
    store = S3ObjectStore(httpx.Client(transport=transport), bucket_url)

Security:
    - Credentials are handed to botocore only; never logged
    - The payload hash covers the whole buffered body
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

import httpx
from botocore.auth import SIGV4_TIMESTAMP, UNSIGNED_PAYLOAD, S3SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.config import Config
from botocore.credentials import Credentials

from s3store.storage.errors import StorageConfigError

logger = logging.getLogger(__name__)

# Headers covered by the signature in addition to every x-amz-* header.
_SIGNED_HEADER_NAMES = frozenset({"host", "content-md5", "content-type", "range"})

# Headers the signer owns; stale copies are dropped before re-signing.
_SIGNER_HEADER_NAMES = ("authorization", "x-amz-date", "x-amz-content-sha256")

_STREAMING_CONFIG = Config(s3={"payload_signing_enabled": False})


class _ClockedS3SigV4Auth(S3SigV4Auth):
    """S3SigV4Auth that takes the signing time from an injected clock."""

    def __init__(
        self,
        credentials: Credentials,
        region: str,
        service: str,
        clock: Callable[[], datetime],
    ) -> None:
        super().__init__(credentials, service, region)
        self._clock = clock

    def add_auth(self, request: AWSRequest) -> None:
        request.context["timestamp"] = self._clock().astimezone(UTC).strftime(SIGV4_TIMESTAMP)
        self._modify_request_before_signing(request)
        canonical_request = self.canonical_request(request)
        string_to_sign = self.string_to_sign(request, canonical_request)
        self._inject_signature_to_request(request, self.signature(string_to_sign, request))


class SigV4Transport(httpx.BaseTransport):
    """httpx transport that adds AWS SigV4 headers, then delegates."""

    def __init__(
        self,
        inner: httpx.BaseTransport,
        *,
        region: str,
        access_key_id: str,
        secret_access_key: str,
        session_token: str | None = None,
        service: str = "s3",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the signing transport.

        Args:
            inner: Transport that actually sends the signed request.
            region: Signing region (e.g., "us-east-1").
            access_key_id: Credential access key id.
            secret_access_key: Credential secret.
            session_token: Optional temporary-credential session token.
            service: Signing service name.
            clock: Returns the signing time; defaults to the current UTC time.

        Raises:
            StorageConfigError: If any required argument is missing.
        """
        if inner is None:
            raise StorageConfigError("inner transport cannot be None")
        if not region or not access_key_id or not secret_access_key:
            raise StorageConfigError("region, access_key_id and secret_access_key are required")
        self._inner = inner
        self._region = region
        self._auth = _ClockedS3SigV4Auth(
            Credentials(access_key_id, secret_access_key, token=session_token or None),
            region,
            service,
            clock or (lambda: datetime.now(UTC)),
        )

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        self.sign(request)
        return self._inner.handle_request(request)

    def close(self) -> None:
        self._inner.close()

    def sign(self, request: httpx.Request) -> None:
        """Add X-Amz-Date, X-Amz-Content-SHA256 and Authorization headers.

        Streaming bodies that have not been read are signed as
        UNSIGNED-PAYLOAD.
        """
        for name in (*_SIGNER_HEADER_NAMES, "x-amz-security-token"):
            request.headers.pop(name, None)

        try:
            body: bytes | None = request.content
        except httpx.RequestNotRead:
            body = None

        aws_request = AWSRequest(
            method=request.method,
            url=str(request.url),
            headers={
                name: value
                for name, value in request.headers.items()
                if name in _SIGNED_HEADER_NAMES or name.startswith("x-amz-")
            },
            data=body,
        )
        if body is None:
            aws_request.context["client_config"] = _STREAMING_CONFIG

        self._auth.add_auth(aws_request)

        for name, value in aws_request.headers.items():
            lowered = name.lower()
            if lowered in _SIGNER_HEADER_NAMES or lowered == "x-amz-security-token":
                request.headers[lowered] = value

        logger.debug(
            "Signed request: method=%s region=%s unsigned_payload=%s",
            request.method,
            self._region,
            aws_request.headers.get("X-Amz-Content-SHA256") == UNSIGNED_PAYLOAD,
        )
