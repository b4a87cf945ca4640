"""OpenTelemetry + Prometheus fallback wiring for tasksync."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from tasksync import config

logger = logging.getLogger("tasksync.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_mutation_counter: Any | None = None
_mutation_latency_hist: Any | None = None
_rebuild_counter: Any | None = None
_rebuild_latency_hist: Any | None = None
_rebuild_size_hist: Any | None = None

_prom_enabled = False
_prom_mutation_counter: Any | None = None
_prom_mutation_latency_hist: Any | None = None
_prom_rebuild_counter: Any | None = None
_prom_rebuild_latency_hist: Any | None = None
_prom_rebuild_size_hist: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _mutation_counter, _mutation_latency_hist, _rebuild_counter, _rebuild_latency_hist
    global _rebuild_size_hist
    global _prom_enabled
    global _prom_mutation_counter, _prom_mutation_latency_hist, _prom_rebuild_counter, _prom_rebuild_latency_hist
    global _prom_rebuild_size_hist

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (TASKSYNC_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "tasksync"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "tasksync",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_exporter = OTLPSpanExporter(endpoint=traces_endpoint or None)
    trace_provider.add_span_processor(BatchSpanProcessor(trace_exporter))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("tasksync")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("tasksync")

    _mutation_counter = meter.create_counter(
        "tasksync_mutations_total",
        unit="1",
        description="Task store mutations by operation and outcome",
    )
    _mutation_latency_hist = meter.create_histogram(
        "tasksync_mutation_latency_ms",
        unit="ms",
        description="Latency of task store mutations including suppression bookkeeping",
    )
    _rebuild_counter = meter.create_counter(
        "tasksync_rebuilds_total",
        unit="1",
        description="Read model rebuilds dispatched to subscribers",
    )
    _rebuild_latency_hist = meter.create_histogram(
        "tasksync_rebuild_latency_ms",
        unit="ms",
        description="Time spent loading the task store into a read model",
    )
    _rebuild_size_hist = meter.create_histogram(
        "tasksync_rebuild_task_count",
        unit="1",
        description="Top-level tasks in each rebuilt read model",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_mutation_counter = Counter(
                "tasksync_mutations_total",
                "Task store mutations by operation and outcome",
                ["operation", "result"],
            )
            _prom_mutation_latency_hist = Histogram(
                "tasksync_mutation_latency_ms",
                "Latency of task store mutations including suppression bookkeeping",
                ["operation"],
            )
            _prom_rebuild_counter = Counter(
                "tasksync_rebuilds_total",
                "Read model rebuilds dispatched to subscribers",
                ["result"],
            )
            _prom_rebuild_latency_hist = Histogram(
                "tasksync_rebuild_latency_ms",
                "Time spent loading the task store into a read model",
                ["result"],
            )
            _prom_rebuild_size_hist = Histogram(
                "tasksync_rebuild_task_count",
                "Top-level tasks in each rebuilt read model",
                buckets=(0, 5, 10, 25, 50, 100, 250, 500, 1000),
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception as exc:  # noqa: BLE001
        logger.debug("FastAPI uninstrument failed: %s", exc)
    try:
        if _meter_provider is not None:
            _meter_provider.shutdown()
    except Exception as exc:  # noqa: BLE001
        logger.debug("Meter provider shutdown failed: %s", exc)
    try:
        if _trace_provider is not None:
            _trace_provider.shutdown()
    except Exception as exc:  # noqa: BLE001
        logger.debug("Trace provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_mutation(operation: str, result: str, duration_ms: float) -> None:
    labels = {
        "operation": operation or "unknown",
        "result": result or "unknown",
    }
    if _enabled and _mutation_counter is not None:
        _mutation_counter.add(1, labels)
    if _enabled and _mutation_latency_hist is not None:
        _mutation_latency_hist.record(max(0.0, float(duration_ms)), {"operation": labels["operation"]})
    if _prom_enabled and _prom_mutation_counter is not None:
        _prom_mutation_counter.labels(**labels).inc()
    if _prom_enabled and _prom_mutation_latency_hist is not None:
        _prom_mutation_latency_hist.labels(operation=labels["operation"]).observe(max(0.0, float(duration_ms)))


def record_rebuild(result: str, duration_ms: float, *, task_count: int = 0) -> None:
    labels = {"result": result or "unknown"}
    if _enabled and _rebuild_counter is not None:
        _rebuild_counter.add(1, labels)
    if _enabled and _rebuild_latency_hist is not None:
        _rebuild_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_rebuild_counter is not None:
        _prom_rebuild_counter.labels(**labels).inc()
    if _prom_enabled and _prom_rebuild_latency_hist is not None:
        _prom_rebuild_latency_hist.labels(**labels).observe(max(0.0, float(duration_ms)))
    if result != "ok":
        return
    if _enabled and _rebuild_size_hist is not None:
        _rebuild_size_hist.record(max(0, int(task_count)))
    if _prom_enabled and _prom_rebuild_size_hist is not None:
        _prom_rebuild_size_hist.observe(max(0, int(task_count)))
