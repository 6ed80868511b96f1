"""
Observability for docrag: structured logging with trace IDs and timing probes.

Usage:
    >>> from docrag.observability import get_logger, probe
    >>> logger = get_logger(__name__)
    >>> with probe("indexer.build", docs_dir="/data/docs"):
    ...     logger.info("Building index", files=12)

Environment variables:
    - DOCRAG_OBSERVABILITY__LOG_LEVEL=INFO
    - DOCRAG_OBSERVABILITY__ENABLE_METRICS=true (Prometheus counters/histograms)
    - DOCRAG_OBSERVABILITY__ENABLE_TRACING=true (OpenTelemetry spans)
"""

from .logging import get_logger, get_trace_id, new_trace_id, setup_logging
from .probe import configure_probes, probe

__all__ = [
    "get_logger",
    "get_trace_id",
    "new_trace_id",
    "setup_logging",
    "configure_probes",
    "probe",
]
