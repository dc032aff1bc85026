"""s3store Observability module.

Provides OpenTelemetry tracer provider setup for storage spans.
"""

from s3store.observability.tracing import TracingConfigError, TracingSettings, configure_tracing

__all__ = ["TracingConfigError", "TracingSettings", "configure_tracing"]
