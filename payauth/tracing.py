from __future__ import annotations

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Tracer

from .config import ServiceConfig


def parse_headers(raw: str) -> dict[str, str]:
    headers: dict[str, str] = {}
    for part in raw.split(","):
        part = part.strip()
        if not part or "=" not in part:
            continue
        key, value = part.split("=", 1)
        key = key.strip()
        value = value.strip()
        if key:
            headers[key] = value
    return headers


def build_tracer(config: ServiceConfig) -> Tracer:
    """Return an OTLP-exporting tracer when tracing is enabled, else a no-op one."""
    if not config.otel_enabled:
        return trace.NoOpTracer()
    provider = TracerProvider(
        resource=Resource.create({"service.name": config.service_name}),
        sampler=TraceIdRatioBased(config.otel_sample_ratio),
    )
    exporter = OTLPSpanExporter(
        endpoint=config.otel_endpoint,
        headers=parse_headers(config.otel_headers) if config.otel_headers else None,
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider.get_tracer("payauth")
