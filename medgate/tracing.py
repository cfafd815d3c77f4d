import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor


def setup_tracing(app, service_name: str) -> None:
    """
    Configure OpenTelemetry tracing for the proxy.

    - Sets the global TracerProvider with resource attributes.
    - Configures an OTLP HTTP exporter to send traces to the OTel Collector.
    - Auto-instruments FastAPI, requests (upstream provider) and redis.

    Call once at startup, right after the FastAPI app is created. Without
    it the module-level tracer in main.py yields no-op spans.
    """

    endpoint = os.getenv(
        "OTEL_EXPORTER_OTLP_HTTP_ENDPOINT",
        "http://localhost:4318/v1/traces",
    )

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "medgate",
        }
    )

    provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(provider)

    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))

    FastAPIInstrumentor.instrument_app(
        app,
        excluded_urls="/api/health|/ready|/live|/metrics",
    )

    # Outbound HTTP to the chat-completion provider
    RequestsInstrumentor().instrument()

    # Session store, when redis-backed
    RedisInstrumentor().instrument()
