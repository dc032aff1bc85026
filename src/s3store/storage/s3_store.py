"""s3store S3 Object Storage backend.

Translates the ObjectStore contract into requests against an S3-compatible
REST endpoint (AWS S3, MinIO, LocalStack, GCS interoperability mode):

- get/head: GET/HEAD <bucket-root>/<key>, metadata from x-amz-meta-* headers
- list: ListObjectsV2 (list-type=2), paginated with continuation tokens
- put: PUT <bucket-root>/<key> with Content-MD5 and x-amz-meta-* headers
- delete: DELETE for one key, POST ?delete (quiet) for 2..999 keys

Requests are sent through an injected httpx.Client. Request signing is the
client transport's concern (see s3store.storage.sigv4.SigV4Transport); this
module never signs requests itself. No retries are performed.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from collections.abc import Iterable, Mapping
from typing import BinaryIO, NoReturn
from urllib.parse import quote, urlencode

import httpx

from s3store.storage.context import OperationContext, resolve_context
from s3store.storage.errors import (
    DeadlineExceededError,
    InvalidMetadataError,
    ObjectIntegrityError,
    ObjectNotFoundError,
    ResponseDecodeError,
    StorageBackendError,
    StorageConfigError,
)
from s3store.storage.models import DeleteFailure, ListResult, ObjectHead
from s3store.storage.object_store import (
    ObjectBody,
    ObjectStore,
    build_list_result,
    normalize_metadata,
    read_body,
    validate_delete_batch,
    validate_key,
)
from s3store.storage.s3_xml import (
    ListBucketPage,
    build_delete_request,
    is_error_document,
    parse_delete_result,
    parse_error_document,
    parse_list_bucket_result,
)
from s3store.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

METADATA_HEADER_PREFIX = "x-amz-meta-"
CONTENT_MD5_HEADER = "Content-MD5"

# RFC 3986 unreserved characters; everything else in a key segment is
# percent-encoded.
_KEY_SEGMENT_SAFE_CHARS = "-_.~"
_QUERY_SAFE_CHARS = "-_.~"


def content_md5(data: bytes) -> str:
    """Return the base64-encoded MD5 digest used by the Content-MD5 header."""
    return base64.b64encode(hashlib.md5(data, usedforsecurity=False).digest()).decode("ascii")


def encode_key_path(key: str) -> str:
    """Percent-encode an object key for use as a URL path under the bucket root.

    Slashes are kept. Segments made only of dots ("." and "..") are encoded
    as %2E so URL normalization cannot remove them or climb out of the
    bucket.
    """
    segments = []
    for segment in key.split("/"):
        if segment in (".", ".."):
            segments.append("%2E" * len(segment))
        else:
            segments.append(quote(segment, safe=_KEY_SEGMENT_SAFE_CHARS))
    return "/".join(segments)


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def _extract_metadata(headers: httpx.Headers) -> dict[str, str]:
    """Collect x-amz-meta-* headers with the prefix stripped, lowercased.

    When a metadata header repeats, the first value wins.
    """
    metadata: dict[str, str] = {}
    for name, value in headers.multi_items():
        name = name.lower()
        if name.startswith(METADATA_HEADER_PREFIX):
            metadata.setdefault(name[len(METADATA_HEADER_PREFIX) :], value)
    return metadata


class S3ObjectStore(ObjectStore):
    """S3 REST API object storage implementation.

    Objects live at <bucket_url>/<key>. The bucket URL may be path-style
    (http://host:port/bucket/) or virtual-hosted (https://bucket.s3.amazonaws.com/).
    """

    def __init__(self, http_client: httpx.Client, bucket_url: str | httpx.URL) -> None:
        """Initialize the S3 client.

        Args:
            http_client: Client used to send every request. Signing, proxies
                and default timeouts are configured on it by the caller.
            bucket_url: Absolute http(s) URL of the bucket root.

        Raises:
            StorageConfigError: If the client or URL is missing or invalid.
        """
        if http_client is None:
            raise StorageConfigError("http_client cannot be None")
        if bucket_url is None or not str(bucket_url).strip():
            raise StorageConfigError("bucket_url cannot be empty")

        url = httpx.URL(str(bucket_url))
        if url.scheme not in ("http", "https") or not url.host:
            raise StorageConfigError(f"bucket_url must be an absolute http(s) URL: {bucket_url}")
        if url.query or url.fragment:
            raise StorageConfigError("bucket_url must not carry a query or fragment")

        path = url.raw_path.decode("ascii")
        if not path.endswith("/"):
            path += "/"
        self._client = http_client
        self._bucket_root = str(url.copy_with(raw_path=path.encode("ascii")))
        logger.debug("S3ObjectStore initialized with bucket_url=%s", self._bucket_root)

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "s3"

    @property
    def bucket_url(self) -> str:
        """Return the normalized bucket root URL (always ends with /)."""
        return self._bucket_root

    def _object_url(self, key: str) -> str:
        return self._bucket_root + encode_key_path(key)

    def _bucket_query_url(self, params: Mapping[str, str]) -> str:
        return f"{self._bucket_root}?{urlencode(params, quote_via=quote, safe=_QUERY_SAFE_CHARS)}"

    def _request(
        self,
        method: str,
        url: str,
        *,
        ctx: OperationContext,
        operation: str,
        key: str | None = None,
        headers: Mapping[str, str] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        """Send one buffered request, mapping transport failures to storage errors."""
        ctx.raise_if_done(operation=operation, key=key)
        try:
            return self._client.request(
                method,
                url,
                headers=headers,
                content=content,
                timeout=self._timeout_for(ctx),
            )
        except httpx.HTTPError as exc:
            self._raise_transport_error(exc, ctx=ctx, operation=operation, key=key)

    def _timeout_for(self, ctx: OperationContext) -> httpx.Timeout:
        """Bound each request by the context deadline, else the client default."""
        remaining = ctx.remaining()
        if remaining is None:
            return self._client.timeout
        return httpx.Timeout(remaining)

    def _raise_transport_error(
        self,
        exc: httpx.HTTPError,
        *,
        ctx: OperationContext,
        operation: str,
        key: str | None,
    ) -> NoReturn:
        if isinstance(exc, httpx.TimeoutException) and ctx.deadline_exceeded:
            raise DeadlineExceededError(operation=operation, key=key) from exc
        ctx.raise_if_done(operation=operation, key=key)
        raise StorageBackendError(
            message=f"Failed to make {operation} request: {exc}",
            key=key,
            operation=operation,
            cause=exc,
        ) from exc

    def _status_error(
        self,
        response: httpx.Response,
        *,
        operation: str,
        key: str | None = None,
    ) -> StorageBackendError:
        return StorageBackendError(
            message=f"{operation} failed due to status {response.status_code} "
            f"{response.reason_phrase}",
            key=key,
            operation=operation,
            status_code=response.status_code,
            response_body=response.text,
        )

    @traced_storage_operation("get_object")
    def get_object(
        self,
        key: str,
        dst: BinaryIO,
        *,
        ctx: OperationContext | None = None,
    ) -> dict[str, str]:
        """Stream the object into dst, verifying Content-MD5 when present."""
        ctx = resolve_context(ctx)
        ctx.raise_if_done(operation="get_object", key=key)
        validate_key(key, operation="get_object")

        try:
            with self._client.stream(
                "GET", self._object_url(key), timeout=self._timeout_for(ctx)
            ) as response:
                if response.status_code == 404:
                    raise ObjectNotFoundError(key=key, operation="get_object")
                if not _is_success(response.status_code):
                    response.read()
                    raise self._status_error(response, operation="get_object", key=key)

                expected_md5 = response.headers.get(CONTENT_MD5_HEADER)
                digest = hashlib.md5(usedforsecurity=False)
                for chunk in response.iter_bytes():
                    ctx.raise_if_done(operation="get_object", key=key)
                    digest.update(chunk)
                    dst.write(chunk)
                metadata = _extract_metadata(response.headers)
        except httpx.HTTPError as exc:
            self._raise_transport_error(exc, ctx=ctx, operation="get_object", key=key)

        if expected_md5:
            actual_md5 = base64.b64encode(digest.digest()).decode("ascii")
            if actual_md5 != expected_md5.strip():
                raise ObjectIntegrityError(
                    f"Integrity check failed: {expected_md5} != {actual_md5}",
                    key=key,
                    operation="get_object",
                )
        return metadata

    @traced_storage_operation("head_object")
    def head_object(
        self,
        key: str,
        *,
        ctx: OperationContext | None = None,
    ) -> ObjectHead:
        """Return size and metadata from a HEAD request."""
        ctx = resolve_context(ctx)
        ctx.raise_if_done(operation="head_object", key=key)
        validate_key(key, operation="head_object")

        response = self._request(
            "HEAD", self._object_url(key), ctx=ctx, operation="head_object", key=key
        )
        if response.status_code == 404:
            raise ObjectNotFoundError(key=key, operation="head_object")
        if not _is_success(response.status_code):
            raise self._status_error(response, operation="head_object", key=key)

        try:
            size = int(response.headers.get("content-length", "0"))
        except ValueError as exc:
            raise ResponseDecodeError(
                f"Invalid Content-Length: {response.headers.get('content-length')!r}",
                key=key,
                operation="head_object",
            ) from exc
        return ObjectHead(size=size, metadata=_extract_metadata(response.headers))

    def _list_page(
        self,
        prefix: str,
        delimiter: str,
        continuation_token: str,
        ctx: OperationContext,
    ) -> ListBucketPage:
        """Fetch one ListObjectsV2 page."""
        params = {"list-type": "2"}
        if prefix:
            params["prefix"] = prefix
        if delimiter:
            params["delimiter"] = delimiter
        if continuation_token:
            params["continuation-token"] = continuation_token

        response = self._request(
            "GET", self._bucket_query_url(params), ctx=ctx, operation="list_objects"
        )
        if not _is_success(response.status_code):
            raise self._status_error(response, operation="list_objects")
        return parse_list_bucket_result(response.content)

    @traced_storage_operation("list_objects")
    def list_objects(
        self,
        prefix: str = "",
        delimiter: str = "",
        *,
        ctx: OperationContext | None = None,
    ) -> ListResult:
        """List all pages, then sort the aggregate result client-side."""
        ctx = resolve_context(ctx)
        ctx.raise_if_done(operation="list_objects")

        entries: list[tuple[str, int]] = []
        common_prefixes: list[str] = []
        continuation_token = ""
        pages = 0

        while True:
            page = self._list_page(prefix, delimiter, continuation_token, ctx)
            pages += 1
            entries.extend((obj.key, obj.size) for obj in page.contents)
            common_prefixes.extend(page.common_prefixes)
            if not page.is_truncated:
                break
            if page.next_continuation_token == continuation_token:
                raise ResponseDecodeError(
                    "ListBucketResult repeated its continuation token",
                    operation="list_objects",
                )
            continuation_token = page.next_continuation_token

        logger.debug(
            "Listed objects: pages=%d keys=%d common_prefixes=%d",
            pages,
            len(entries),
            len(common_prefixes),
        )
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
        """Buffer the body, declare its Content-MD5 and PUT it."""
        ctx = resolve_context(ctx)
        ctx.raise_if_done(operation="put_object", key=key)
        validate_key(key, operation="put_object")
        normalized = normalize_metadata(metadata, key=key)
        data = read_body(body, key=key)

        headers = {CONTENT_MD5_HEADER: content_md5(data)}
        for meta_key, meta_value in normalized.items():
            if not (meta_key + meta_value).isascii():
                raise InvalidMetadataError(
                    "S3 metadata must be US-ASCII", key=key, operation="put_object"
                )
            headers[METADATA_HEADER_PREFIX + meta_key] = meta_value

        response = self._request(
            "PUT",
            self._object_url(key),
            ctx=ctx,
            operation="put_object",
            key=key,
            headers=headers,
            content=data,
        )
        if not _is_success(response.status_code):
            raise self._status_error(response, operation="put_object", key=key)

        logger.debug("Stored object: key=%s size=%d", key, len(data))

    @traced_storage_operation("delete_objects")
    def delete_objects(
        self,
        keys: Iterable[str],
        *,
        ctx: OperationContext | None = None,
    ) -> list[DeleteFailure]:
        """Delete by size regime: no-op, single DELETE, or quiet batch POST."""
        ctx = resolve_context(ctx)
        ctx.raise_if_done(operation="delete_objects")
        key_list = validate_delete_batch(keys)

        if not key_list:
            return []
        if len(key_list) == 1:
            self._delete_one(key_list[0], ctx)
            return []
        return self._delete_batch(key_list, ctx)

    def _delete_one(self, key: str, ctx: OperationContext) -> None:
        response = self._request(
            "DELETE", self._object_url(key), ctx=ctx, operation="delete_objects", key=key
        )
        # Providers disagree on deleting absent objects (GCS answers 404);
        # absence is success under the contract.
        if not _is_success(response.status_code) and response.status_code != 404:
            raise self._status_error(response, operation="delete_objects", key=key)
        logger.debug("Deleted object: key=%s status=%d", key, response.status_code)

    def _delete_batch(self, keys: list[str], ctx: OperationContext) -> list[DeleteFailure]:
        body = build_delete_request(keys, quiet=True)
        response = self._request(
            "POST",
            f"{self._bucket_root}?delete",
            ctx=ctx,
            operation="delete_objects",
            headers={
                CONTENT_MD5_HEADER: content_md5(body),
                "Content-Type": "application/xml",
            },
            content=body,
        )

        if is_error_document(response.content):
            document = parse_error_document(response.content)
            raise StorageBackendError(
                message=f"delete_objects failed: {document.code}: {document.message} "
                f"(request_id={document.request_id})",
                operation="delete_objects",
                status_code=response.status_code,
                response_body=response.text,
            )
        if not _is_success(response.status_code):
            raise self._status_error(response, operation="delete_objects")

        result = parse_delete_result(response.content)
        failures = [
            DeleteFailure(key=entry.key, code=entry.code, message=entry.message)
            for entry in result.errors
        ]
        if failures:
            logger.warning(
                "Batch delete reported failures: requested=%d failed=%d",
                len(keys),
                len(failures),
            )
        else:
            logger.debug("Deleted objects: count=%d", len(keys))
        return failures
