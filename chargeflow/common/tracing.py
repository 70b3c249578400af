"""OpenTelemetry wiring: OTLP export, request spans and gateway call spans."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from chargeflow.common.config import settings


def setup_tracing(service_name: str, endpoint: str | None = None) -> TracerProvider:
    """Register the global provider; spans are exported only when an endpoint is set."""

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    endpoint = settings.otel_exporter_otlp_endpoint if endpoint is None else endpoint
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    return provider


def instrument_app(app: FastAPI) -> None:
    # Skip scrape and probe traffic.
    FastAPIInstrumentor.instrument_app(app, excluded_urls="metrics,health")


def get_tracer(name: str) -> trace.Tracer:
    """No-op until `setup_tracing` has run."""

    return trace.get_tracer(name)
