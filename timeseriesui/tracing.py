import logging
from typing import Sequence

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)

from timeseriesui.vars import OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that drops the per-chunk ASGI body spans produced while a
    proxied response streams, so one proxied request stays one readable trace.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        kept = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if kept:
            return self.exporter.export(kept)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def parse_otlp_headers(raw: str) -> dict:
    headers = {}
    for entry in raw.split(","):
        if "=" in entry:
            key, value = entry.split("=", 1)
            if key.strip():
                headers[key.strip()] = value.strip()
    return headers


def configure_tracing(endpoint: str = OTLP_ENDPOINT, raw_headers: str = OTLP_HEADERS) -> TracerProvider:
    provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    if endpoint:
        exporter = OTLPSpanExporter(
            endpoint=endpoint, headers=parse_otlp_headers(raw_headers) or None
        )
        provider.add_span_processor(BatchSpanProcessor(FilteringSpanExporter(exporter)))
        logger.info(f"Exporting traces to {endpoint}")
    trace.set_tracer_provider(provider)
    return provider
