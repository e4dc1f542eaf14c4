"""OpenTelemetry tracing for persistence gateway calls.

Each hosted-backend call runs inside a ``gateway_span``, so a slow reaction
toggle can be followed from the service operation (carried over from the
logging context) down to the individual REST round trips.

With ``settings.enable_tracing`` off, tracers come from OpenTelemetry's
default no-op provider. With it on, spans are batched to the OTLP collector at
``settings.otlp_endpoint``, or printed to the console when no collector is
configured.

Environment Variables:
    - OTEL_SERVICE_NAME: Service name for traces (default: "engagementdb")

References:
    - OpenTelemetry Python Docs: https://opentelemetry.io/docs/languages/python/instrumentation/
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode, Tracer
from opentelemetry.trace.span import Span

from engagementdb.config import settings
from engagementdb.logging import context_fields, logger

_tracer_provider: TracerProvider | None = None


def initialize_telemetry() -> TracerProvider:
    """Install the global tracer provider once and return it.

    Raises:
        ValueError: If the OTLP exporter rejects the configured endpoint
    """
    global _tracer_provider

    if _tracer_provider is not None:
        return _tracer_provider

    from engagementdb import __version__

    service_name = os.getenv("OTEL_SERVICE_NAME", "engagementdb")
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": service_name,
                "service.version": __version__,
                "deployment.environment": settings.environment.value,
                "engagementdb.gateway": settings.gateway_backend.value,
            }
        )
    )

    if settings.otlp_endpoint:
        try:
            exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        except Exception as e:
            logger.error(f"Failed to initialize OTLP exporter: {e}")
            raise ValueError(f"Invalid OTLP endpoint: {settings.otlp_endpoint}") from e
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info(f"📡 Exporting spans to {settings.otlp_endpoint}")
    else:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.debug("Exporting spans to the console")

    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    return provider


def get_tracer(name: str) -> Tracer:
    """Tracer for a module, installing the provider first when tracing is on."""
    if settings.enable_tracing:
        initialize_telemetry()
    return trace.get_tracer(name)


def add_span_attributes(span: Span, attributes: dict[str, Any]) -> None:
    """Set attributes, skipping None and stringifying containers."""
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, dict)):
            value = str(value)
        span.set_attribute(key, value)


def set_span_error(span: Span, message: str) -> None:
    """Mark a span failed for an error that was returned rather than raised."""
    span.set_status(Status(StatusCode.ERROR, message))


@contextmanager
def gateway_span(backend: str, operation: str, **attributes: Any) -> Iterator[Span]:
    """Span around one gateway operation, named ``{backend}.{operation}``.

    The span carries the logging context (request_id, user_id, operation of
    the enclosing service call) under ``engagementdb.*`` keys. An exception
    escaping the block is recorded and re-raised.
    """
    tracer = get_tracer("engagementdb.gateway")
    with tracer.start_as_current_span(f"{backend}.{operation}", record_exception=False) as span:
        add_span_attributes(
            span,
            {
                "gateway.backend": backend,
                "gateway.operation": operation,
                **{f"engagementdb.{key}": value for key, value in context_fields().items()},
                **attributes,
            },
        )
        try:
            yield span
        except BaseException as exc:
            span.record_exception(exc)
            set_span_error(span, str(exc))
            raise


__all__ = [
    "initialize_telemetry",
    "get_tracer",
    "add_span_attributes",
    "set_span_error",
    "gateway_span",
]
