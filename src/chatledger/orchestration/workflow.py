"""Scatter-gather batch export across customers, channels and months."""

from __future__ import annotations

import time
from typing import Callable, Sequence

from chatledger.config import Settings
from chatledger.dates import parse_date_range
from chatledger.errors import UpstreamReadFailure
from chatledger.metrics.observability import PipelineMetrics, get_logger
from chatledger.models import BatchMeta, BatchRequest, BatchResult, ReportRow, WorkflowStatus
from chatledger.orchestration.directory import CustomerDirectory, MongoCustomerDirectory
from chatledger.orchestration.planner import normalize_chunk_options, plan_tasks, split_by_month
from chatledger.orchestration.pool import RowCollector, WorkerPool
from chatledger.orchestration.scope import ScopeResolver
from chatledger.reconciliation.report import ReportAssembler
from chatledger.store.reader import DocumentReader


def resolve_status(failed_chunks: int, row_count: int) -> WorkflowStatus:
    if not failed_chunks:
        return WorkflowStatus.SUCCESS
    return WorkflowStatus.PARTIAL if row_count else WorkflowStatus.FAILED


class BatchWorkflow:
    """Plans, runs and merges per-customer report tasks for a batch request."""

    def __init__(
        self,
        reader: DocumentReader,
        settings: Settings,
        *,
        directory: CustomerDirectory | None = None,
        assembler: ReportAssembler | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._directory = directory or MongoCustomerDirectory(reader, settings)
        self._assembler = assembler or ReportAssembler(reader, settings)
        self._scope = ScopeResolver(reader, self._directory, settings)
        self._sleep = sleep
        self._logger = get_logger("workflow")

    def resolve_row_limit(self, row_limit: int | None) -> int:
        maximum = self._settings.max_export_rows
        if row_limit is None:
            return maximum
        return max(1, min(int(row_limit), maximum))

    def run(self, request: BatchRequest) -> BatchResult:
        started = time.perf_counter()
        start, end = parse_date_range(request.start, request.end)
        row_limit = self.resolve_row_limit(request.row_limit)
        options = normalize_chunk_options(request.chunk_options, self._settings)
        windows = split_by_month(start, end)

        scope = self._scope.resolve(request, start, end)
        channels = {
            customer_id: self._scope.channels_for(customer_id, start, end, request.channel_ids)
            for customer_id in scope.customer_ids
        }
        tasks, plan = plan_tasks(
            windows,
            scope.customer_ids,
            channels,
            options,
            page_size=self._settings.max_export_rows,
        )
        self._logger.info(
            "workflow.planned",
            partner_id=scope.partner_id,
            member_count=len(scope.customer_ids),
            window_count=plan.window_count,
            estimated_tasks=plan.estimated_tasks,
        )

        pool = WorkerPool(
            self._assembler.build_report,
            max_workers=plan.max_workers,
            pause_ms=plan.pause_ms,
            max_retries=plan.max_retries,
            sleep=self._sleep,
        )
        skip = request.resume.should_skip if request.resume else None
        collector = pool.run(tasks, RowCollector(row_limit=row_limit, skip=skip))
        rows = self.enrich(collector.sorted_rows())
        status = resolve_status(len(collector.failed_chunks), len(rows))

        duration = time.perf_counter() - started
        PipelineMetrics.observe_workflow(duration)
        self._logger.info(
            "workflow.complete",
            status=status.value,
            row_count=len(rows),
            processed_chunks=collector.processed_chunks,
            failed_chunks=len(collector.failed_chunks),
            duration_seconds=duration,
        )
        meta = BatchMeta(
            partner_id=scope.partner_id,
            member_count=len(scope.customer_ids),
            processed_chunks=collector.processed_chunks,
            failed_chunks=tuple(collector.failed_chunks),
            elapsed_ms=int(duration * 1000),
            execution_plan=plan,
        )
        return BatchResult(
            rows=rows,
            page_size=row_limit,
            has_more=collector.has_more,
            status=status,
            meta=meta,
            total=collector.total if request.include_total else None,
        )

    def enrich(self, rows: Sequence[ReportRow]) -> list[ReportRow]:
        """Attach customer and channel display names; lookups that fail leave names blank."""

        if not rows:
            return []
        try:
            customer_names = self._directory.customer_names(row.customer_id for row in rows)
            channel_names = self._directory.channel_names(row.channel for row in rows)
        except UpstreamReadFailure as exc:
            self._logger.warning("workflow.enrich.failed", detail=str(exc))
            return list(rows)
        return [
            row.with_names(
                customer_name=customer_names.get(row.customer_id, ""),
                channel_name=channel_names.get(row.channel, ""),
            )
            for row in rows
        ]


def run_batch_workflow(
    request: BatchRequest,
    *,
    reader: DocumentReader,
    settings: Settings,
    directory: CustomerDirectory | None = None,
) -> BatchResult:
    return BatchWorkflow(reader, settings, directory=directory).run(request)
