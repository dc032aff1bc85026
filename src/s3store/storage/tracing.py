"""s3store Object Storage OpenTelemetry tracing integration.

Provides the tracing decorator applied to every contract operation of every
backend.

Security:
    - Never export raw object keys or prefixes (SHA256 only)
    - Never export object bodies, metadata values, or credentials
"""

from __future__ import annotations

import functools
import hashlib
import logging
import os
from collections.abc import Callable
from typing import Any, TypeVar, cast

from s3store.storage.models import DeleteFailure, ListResult, ObjectHead

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_KEYED_OPERATIONS = frozenset({"get_object", "head_object", "put_object"})


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    val = os.environ.get(key, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    return default


def _is_otel_enabled() -> bool:
    """Check if OpenTelemetry tracing is enabled."""
    return _get_env_bool("S3STORE_OTEL_ENABLED", False)


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def traced_storage_operation(operation: str) -> Callable[[F], F]:
    """Decorator to trace storage operations with OpenTelemetry.

    Emits spans with safe attributes only.

    Args:
        operation: Contract operation name (e.g., "get_object", "list_objects").

    Returns:
        Decorated function that emits OTel spans when tracing is enabled.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            if not _is_otel_enabled():
                return func(self, *args, **kwargs)

            from opentelemetry import trace

            tracer = trace.get_tracer("s3store.object_store")
            span_name = f"s3store.object_store.{operation}"

            with tracer.start_as_current_span(span_name) as span:
                span.set_attribute("storage.backend", getattr(self, "backend_name", "unknown"))
                _add_argument_attributes(span, operation, args, kwargs)

                try:
                    result = func(self, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("error", True)
                    span.set_attribute("error.type", type(e).__name__)
                    raise

                if result is not None:
                    _add_result_attributes(span, result, operation)
                return result

        return cast(F, wrapper)

    return decorator


def _add_argument_attributes(
    span: Any, operation: str, args: tuple[Any, ...], kwargs: dict[str, Any]
) -> None:
    """Add hashed key/prefix and batch size attributes."""
    if operation in _KEYED_OPERATIONS:
        key = args[0] if args else kwargs.get("key")
        if isinstance(key, str):
            span.set_attribute("s3store.object_key_sha256", _sha256(key))
    elif operation == "list_objects":
        prefix = args[0] if args else kwargs.get("prefix", "")
        delimiter = args[1] if len(args) > 1 else kwargs.get("delimiter", "")
        if isinstance(prefix, str):
            span.set_attribute("s3store.list_prefix_sha256", _sha256(prefix))
        span.set_attribute("s3store.list_delimited", bool(delimiter))
    elif operation == "delete_objects":
        keys = args[0] if args else kwargs.get("keys")
        if isinstance(keys, (list, tuple, set, frozenset)):
            span.set_attribute("s3store.delete_key_count", len(keys))


def _add_result_attributes(span: Any, result: Any, operation: str) -> None:
    """Add result-based attributes to span safely.

    Only counts and sizes are recorded.
    """
    try:
        if isinstance(result, ObjectHead):
            span.set_attribute("s3store.object_size_bytes", result.size)
            span.set_attribute("s3store.object_metadata_count", len(result.metadata))
        elif isinstance(result, ListResult):
            span.set_attribute("s3store.list_key_count", len(result.keys))
            span.set_attribute("s3store.list_common_prefix_count", len(result.common_prefixes))
        elif operation == "delete_objects" and isinstance(result, list):
            failures = [r for r in result if isinstance(r, DeleteFailure)]
            span.set_attribute("s3store.delete_failure_count", len(failures))
        elif operation == "get_object" and isinstance(result, dict):
            span.set_attribute("s3store.object_metadata_count", len(result))

    except Exception as e:
        logger.debug("Failed to add result attributes to span: %s", e)
