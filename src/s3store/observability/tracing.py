"""OpenTelemetry tracer provider setup for storage spans.

create_object_store calls configure_tracing() so that spans emitted by
s3store.storage.tracing reach an exporter whenever tracing is switched on.

Environment Variables:
    S3STORE_OTEL_ENABLED: "1" installs a tracer provider (default: off)
    S3STORE_REQUIRE_OTEL: "1" turns exporter setup failures into errors
    S3STORE_OTEL_SERVICE_NAME: service.name resource attribute (default: "s3store")
    S3STORE_OTEL_EXPORTER_OTLP_ENDPOINT: OTLP/HTTP traces endpoint (optional)
    S3STORE_OTEL_TEST_CAPTURE: "1" keeps spans in memory instead of exporting
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from pydantic import BaseModel

logger = logging.getLogger(__name__)

_TRUE_VALUES = frozenset({"1", "true", "yes"})

_provider: TracerProvider | None = None
_capture_exporter: InMemorySpanExporter | None = None


class TracingConfigError(Exception):
    """Raised when S3STORE_REQUIRE_OTEL=1 and no exporter could be installed."""


class TracingSettings(BaseModel):
    """Tracing switches read from S3STORE_OTEL_* variables."""

    enabled: bool = False
    required: bool = False
    service_name: str = "s3store"
    otlp_endpoint: str | None = None
    test_capture: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> TracingSettings:
        env = os.environ if environ is None else environ

        def flag(name: str) -> bool:
            return env.get(name, "").strip().lower() in _TRUE_VALUES

        return cls(
            enabled=flag("S3STORE_OTEL_ENABLED"),
            required=flag("S3STORE_REQUIRE_OTEL"),
            service_name=env.get("S3STORE_OTEL_SERVICE_NAME", "").strip() or "s3store",
            otlp_endpoint=env.get("S3STORE_OTEL_EXPORTER_OTLP_ENDPOINT", "").strip() or None,
            test_capture=flag("S3STORE_OTEL_TEST_CAPTURE"),
        )


def _build_provider(settings: TracingSettings) -> TracerProvider:
    global _capture_exporter

    provider = TracerProvider(resource=Resource.create({"service.name": settings.service_name}))
    if settings.test_capture:
        _capture_exporter = InMemorySpanExporter()
        provider.add_span_processor(SimpleSpanProcessor(_capture_exporter))
    else:
        exporter = (
            OTLPSpanExporter(endpoint=settings.otlp_endpoint)
            if settings.otlp_endpoint
            else OTLPSpanExporter()
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def configure_tracing(settings: TracingSettings | None = None) -> bool:
    """Install the s3store tracer provider if tracing is enabled.

    The global OpenTelemetry provider can be set only once per process, so
    later calls reuse whatever the first successful call installed.

    Args:
        settings: Tracing settings; read from the environment if None.

    Returns:
        True if spans will be recorded, False if tracing is off.

    Raises:
        TracingConfigError: If setup fails and settings.required is set.
    """
    global _provider

    if settings is None:
        settings = TracingSettings.from_env()
    if not settings.enabled:
        logger.debug("Tracing disabled")
        return False
    if _provider is not None:
        return True

    try:
        provider = _build_provider(settings)
    except Exception as e:
        logger.error("Tracing setup failed: %s", e)
        if settings.required:
            raise TracingConfigError(f"Tracing is required but setup failed: {e}") from e
        return False

    trace.set_tracer_provider(provider)
    _provider = provider
    logger.info(
        "Tracing configured: service=%s exporter=%s",
        settings.service_name,
        "in-memory" if settings.test_capture else "otlp",
    )
    return True


def get_test_spans() -> list[ReadableSpan]:
    """Return spans kept by the in-memory exporter, oldest first."""
    if _capture_exporter is None:
        return []
    return list(_capture_exporter.get_finished_spans())


def clear_test_spans() -> None:
    if _capture_exporter is not None:
        _capture_exporter.clear()
