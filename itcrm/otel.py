from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from itcrm.context import CORRELATION_HEADER
from itcrm.core.config import Settings, get_settings


_provider: TracerProvider | None = None
_exporters_attached = False


def _get_or_create_provider(settings: Settings, service_name: str) -> TracerProvider:
    global _provider

    if _provider is not None:
        return _provider

    _provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": service_name,
                "service.version": settings.app_version,
                "deployment.environment": settings.app_env,
            }
        )
    )
    trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(settings: Settings, service_name: str = "itcrm-api") -> TracerProvider | None:
    """Install the global tracer provider and its exporters once."""

    global _exporters_attached

    if not settings.otel_enabled:
        return None

    provider = _get_or_create_provider(settings, service_name)
    if _exporters_attached:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    _exporters_attached = True
    return provider


def setup_inmemory_otel(service_name: str = "itcrm-api") -> InMemorySpanExporter:
    provider = _get_or_create_provider(get_settings(), service_name)
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
    if span is None or not span.is_recording():
        return
    for name, value in scope.get("headers", []):
        if name == CORRELATION_HEADER.encode("latin-1"):
            span.set_attribute("correlation_id", value.decode("latin-1"))
            return
