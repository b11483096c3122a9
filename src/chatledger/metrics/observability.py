"""Observability helpers for chatledger."""

from __future__ import annotations

import logging
import time

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str = "chatledger") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


class PipelineMetrics:
    """Prometheus metrics for report and workflow stages."""

    report_latency = Histogram(
        "chatledger_report_duration_seconds",
        "Time spent assembling one customer report.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    )
    report_rows = Histogram(
        "chatledger_report_row_count",
        "Rows produced per customer report.",
        buckets=(0, 1, 10, 50, 100, 500, 1000, 5000),
    )
    match_sources = Counter(
        "chatledger_turn_match_total",
        "Turns attributed per usage match tier.",
        ["match_source"],
    )
    store_latency = Histogram(
        "chatledger_store_read_duration_seconds",
        "Time spent per datastore read.",
        ["operation"],
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0),
    )
    task_attempts = Histogram(
        "chatledger_task_attempt_count",
        "Attempts needed per orchestrated task.",
        buckets=(1, 2, 3, 4, 5, 6),
    )
    failed_chunks = Counter(
        "chatledger_failed_chunk_total",
        "Tasks that exhausted their retries.",
    )
    workflow_latency = Histogram(
        "chatledger_workflow_duration_seconds",
        "Time spent running one batch workflow.",
        buckets=(0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0),
    )

    @classmethod
    def observe_report(cls, duration_seconds: float, row_count: int) -> None:
        cls.report_latency.observe(duration_seconds)
        cls.report_rows.observe(row_count)

    @classmethod
    def observe_match(cls, match_source: str) -> None:
        cls.match_sources.labels(match_source=match_source).inc()

    @classmethod
    def observe_store_read(cls, operation: str, duration_seconds: float) -> None:
        cls.store_latency.labels(operation=operation).observe(duration_seconds)

    @classmethod
    def observe_task(cls, attempts: int, failed: bool) -> None:
        cls.task_attempts.observe(attempts)
        if failed:
            cls.failed_chunks.inc()

    @classmethod
    def observe_workflow(cls, duration_seconds: float) -> None:
        cls.workflow_latency.observe(duration_seconds)


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback) -> None:
        self._callback = callback
        self._start = 0.0
        self.elapsed = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.elapsed = time.perf_counter() - self._start
        self._callback(self.elapsed)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_logger",
]
