"""Bounded worker pool that drains planned tasks with retries and a row cap."""

from __future__ import annotations

import contextvars
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from chatledger.errors import InvalidRequest
from chatledger.metrics.observability import PipelineMetrics, get_logger
from chatledger.models import FailedChunk, ReportRequest, ReportResult, ReportRow, Task

BACKOFF_SECONDS = 0.3

TaskRunner = Callable[[ReportRequest], ReportResult]


class TaskState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class TaskRun:
    """Per-task retry state; the pool advances it, the task itself stays immutable."""

    task: Task
    state: TaskState = TaskState.PENDING
    attempts: int = 0
    delay_seconds: float = 0.0
    result: ReportResult | None = None
    error: str = ""

    def start(self) -> None:
        if self.state not in (TaskState.PENDING, TaskState.RETRY_SCHEDULED):
            raise RuntimeError(f"cannot start task {self.task.chunk_id} from {self.state.value}")
        self.state = TaskState.RUNNING
        self.attempts += 1
        self.delay_seconds = 0.0

    def succeed(self, result: ReportResult) -> None:
        self.state = TaskState.SUCCEEDED
        self.result = result

    def fail(self, error: Exception, *, max_retries: int, retryable: bool = True) -> None:
        self.error = str(error) or type(error).__name__
        if retryable and self.attempts <= max_retries:
            self.state = TaskState.RETRY_SCHEDULED
            self.delay_seconds = BACKOFF_SECONDS * self.attempts
        else:
            self.state = TaskState.FAILED

    def skip(self) -> None:
        self.state = TaskState.SKIPPED

    @property
    def finished(self) -> bool:
        return self.state in (TaskState.SUCCEEDED, TaskState.FAILED, TaskState.SKIPPED)


class TaskCursor:
    """Hands out each task index exactly once across workers."""

    def __init__(self, tasks: Sequence[Task]) -> None:
        self._tasks = tuple(tasks)
        self._next = 0
        self._lock = threading.Lock()

    def next(self) -> Task | None:
        with self._lock:
            if self._next >= len(self._tasks):
                return None
            task = self._tasks[self._next]
            self._next += 1
            return task


@dataclass
class RowCollector:
    """Deduplicating row map plus the counters workers share."""

    row_limit: int
    skip: Callable[[ReportRow], bool] | None = None
    rows: dict[str, ReportRow] = field(default_factory=dict)
    failed_chunks: list[FailedChunk] = field(default_factory=list)
    processed_chunks: int = 0
    total: int = 0
    has_more: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def is_full(self) -> bool:
        with self._lock:
            return len(self.rows) >= self.row_limit

    def mark_processed(self) -> None:
        with self._lock:
            self.processed_chunks += 1

    def mark_has_more(self) -> None:
        with self._lock:
            self.has_more = True

    def add(self, rows: Sequence[ReportRow], *, has_more: bool = False) -> None:
        with self._lock:
            self.total += len(rows)
            if has_more:
                self.has_more = True
            for row in rows:
                if self.skip is not None and self.skip(row):
                    continue
                self.rows.setdefault(row.row_key, row)
                if len(self.rows) >= self.row_limit:
                    self.has_more = True
                    break

    def record_failure(self, failure: FailedChunk) -> None:
        with self._lock:
            self.failed_chunks.append(failure)

    def sorted_rows(self) -> list[ReportRow]:
        with self._lock:
            ordered = sorted(self.rows.values(), key=lambda row: (row.occurred_at, row.row_key))
        return ordered[: self.row_limit]


class WorkerPool:
    """Runs tasks on one or two threads; each worker pauses ``pause_ms`` after every executed task."""

    def __init__(
        self,
        runner: TaskRunner,
        *,
        max_workers: int = 1,
        pause_ms: int = 200,
        max_retries: int = 2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._runner = runner
        self._max_workers = max_workers
        self._pause_seconds = pause_ms / 1000
        self._max_retries = max_retries
        self._sleep = sleep
        self._logger = get_logger("pool")

    def run(self, tasks: Sequence[Task], collector: RowCollector) -> RowCollector:
        cursor = TaskCursor(tasks)
        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="chatledger-worker") as executor:
            futures = [
                executor.submit(contextvars.copy_context().run, self._work, cursor, collector)
                for _ in range(self._max_workers)
            ]
            for future in futures:
                future.result()
        return collector

    def _work(self, cursor: TaskCursor, collector: RowCollector) -> None:
        while (task := cursor.next()) is not None:
            collector.mark_processed()
            run = TaskRun(task)
            if collector.is_full:
                run.skip()
                collector.mark_has_more()
                continue
            self.execute(run)
            if run.state is TaskState.SUCCEEDED and run.result is not None:
                collector.add(run.result.rows, has_more=run.result.has_more)
            else:
                collector.record_failure(FailedChunk(chunk_id=task.chunk_id, attempts=run.attempts, reason=run.error))
            if self._pause_seconds > 0:
                self._sleep(self._pause_seconds)

    def execute(self, run: TaskRun) -> TaskRun:
        """Drive one task through its state machine until it succeeds or fails for good."""

        while not run.finished:
            if run.state is TaskState.RETRY_SCHEDULED:
                self._sleep(run.delay_seconds)
            run.start()
            try:
                run.succeed(self._runner(run.task.request))
            except InvalidRequest as exc:
                run.fail(exc, max_retries=self._max_retries, retryable=False)
            except Exception as exc:  # noqa: BLE001 - task failures are recorded, never raised
                run.fail(exc, max_retries=self._max_retries)
            if run.state is TaskState.RETRY_SCHEDULED:
                self._logger.warning(
                    "task.retry",
                    chunk_id=run.task.chunk_id,
                    attempt=run.attempts,
                    delay_seconds=run.delay_seconds,
                    detail=run.error,
                )
        if run.state is TaskState.FAILED:
            self._logger.error("task.failed", chunk_id=run.task.chunk_id, attempts=run.attempts, detail=run.error)
        PipelineMetrics.observe_task(run.attempts, run.state is TaskState.FAILED)
        return run
