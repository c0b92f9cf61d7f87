"""OpenTelemetry setup for the bridge process and its pipelines."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from devicegate.common.config import settings


# Proxy tracer: spans are no-ops until `setup_tracing` registers a provider.
tracer = trace.get_tracer("devicegate")


def setup_tracing(service_name: str) -> None:
    """Register a tracer provider exporting over OTLP HTTP."""

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)


def pipeline_span(pipeline: str, event_id: str):
    """Span around one pipeline item; nests the publish/finalize spans."""

    return tracer.start_as_current_span(
        f"pipeline.{pipeline}",
        attributes={"pipeline.name": pipeline, "event.id": event_id},
    )


def instrument_app(app: FastAPI) -> None:
    """FastAPI auto-instrumentation for the health/ops endpoints."""

    FastAPIInstrumentor.instrument_app(app)
