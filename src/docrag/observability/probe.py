"""
Performance probes for the build and query pipelines.

Every probe logs its duration; Prometheus metrics and OpenTelemetry spans
are recorded when enabled through ``configure_probes``.
"""

import contextlib
import time

from opentelemetry import trace
from prometheus_client import Counter, Histogram

from .logging import get_logger

log = get_logger("docrag.probe")

tracer = trace.get_tracer("docrag")

OPS = Counter("docrag_operations_total", "Pipeline operations", ["op", "ok"])
LATENCY = Histogram("docrag_operation_seconds", "Pipeline operation latency", ["op"])

_enabled = {"metrics": True, "tracing": True}


def configure_probes(enable_metrics: bool = True, enable_tracing: bool = True) -> None:
    """Toggle Prometheus recording and OpenTelemetry spans."""
    _enabled["metrics"] = enable_metrics
    _enabled["tracing"] = enable_tracing


@contextlib.contextmanager
def probe(op: str, **labels):
    """
    Time a pipeline operation.

    Args:
        op: Operation name (e.g., "retriever.retrieve")
        **labels: Extra fields written to the log line and span attributes
    """
    span_ctx = (
        tracer.start_as_current_span(op, attributes={k: str(v) for k, v in labels.items()})
        if _enabled["tracing"]
        else contextlib.nullcontext()
    )

    start_time = time.perf_counter()
    ok = "true"
    error_type = None

    with span_ctx:
        try:
            yield
        except Exception as e:
            ok = "false"
            error_type = type(e).__name__
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000

            fields = dict(labels)
            if error_type:
                fields["error"] = error_type
            log.timed(f"{op} finished", duration_ms, op=op, ok=ok, **fields)

            if _enabled["metrics"]:
                OPS.labels(op=op, ok=ok).inc()
                LATENCY.labels(op=op).observe(duration_ms / 1000.0)
