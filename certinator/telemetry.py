"""
Tracing and metrics pipelines.

Both are built once at startup and handed to the server shell. Nothing is
registered globally: the tracer provider and the prometheus registry belong to
the handles returned here.
"""
import logging

from flask import Response
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    ProcessCollector,
    generate_latest,
)

from certinator.errors import StartError

logger = logging.getLogger(__name__)

LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class TracingHandle():
    def __init__(self, provider, service_name):
        self.provider = provider
        self.tracer = provider.get_tracer(service_name)

    def flush(self):
        """
        Push every pending span to the exporter and stop the provider.
        Only meant to be called once, on the shutdown path.
        """
        self.provider.force_flush()
        self.provider.shutdown()


class MetricsHandle():
    def __init__(self, registry):
        self.registry = registry
        self.requests = Counter(
            "certinator_request_count_total",
            "Total number of requests handled",
            labelnames=["route", "method", "status_code"],
            registry=registry,
        )
        self.latency = Histogram(
            "certinator_request_latency_seconds",
            "Request latency in seconds",
            labelnames=["route", "method"],
            buckets=LATENCY_BUCKETS,
            registry=registry,
        )
        self.errors = Counter(
            "certinator_errors_total",
            "Total number of requests whose handler raised",
            labelnames=["route", "error_type"],
            registry=registry,
        )

    def handler(self, request):
        # scrape endpoint, mounted at /metrics by the server
        return Response(generate_latest(self.registry), status=200, content_type=CONTENT_TYPE_LATEST)


class Telemetry():
    """Live exporter connections owned by the server shell."""

    def __init__(self, tracing, metrics):
        self.tracing = tracing
        self.metrics = metrics

    @property
    def tracer(self):
        return self.tracing.tracer

    def flush(self):
        self.tracing.flush()


def init_tracing(service_name, collector_endpoint, environment="development", exporter=None):
    """
    Create the tracing export pipeline.
    An explicit exporter wins over the collector endpoint; with neither, spans
    are still recorded but go nowhere.
    Returns:
        TracingHandle
    Raises:
        StartError: if the pipeline cannot be configured
    """
    try:
        resource = Resource.create({
            "service.name": service_name,
            "deployment.environment": environment,
        })
        provider = TracerProvider(resource=resource)
        if exporter is None and collector_endpoint:
            exporter = OTLPSpanExporter(endpoint=collector_endpoint, insecure=True)
        if exporter is not None:
            provider.add_span_processor(BatchSpanProcessor(exporter))
    except Exception as e:
        raise StartError(f"could not initialize tracing exporter: {e}") from e

    if exporter is None:
        logger.info("span export disabled, no collector endpoint configured")
    else:
        logger.info("exporting spans to %s", collector_endpoint or type(exporter).__name__)
    return TracingHandle(provider, service_name)


def init_metrics(registry=None):
    """
    Create the request instruments in a private registry.
    Returns:
        MetricsHandle
    Raises:
        StartError: if the instruments cannot be registered
    """
    logger.info("initializing prometheus in route /metrics")
    if registry is None:
        registry = CollectorRegistry()
        try:
            ProcessCollector(registry=registry)
        except ValueError as e:
            raise StartError(f"failed to initialize prometheus exporter: {e}") from e
    try:
        return MetricsHandle(registry)
    except ValueError as e:
        #duplicated timeseries, the registry already holds our instruments
        raise StartError(f"failed to initialize prometheus exporter: {e}") from e
