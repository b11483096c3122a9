"""Decompose a batch request into month windows, customer batches and channel chunks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Sequence, TypeVar

from chatledger.config import Settings
from chatledger.dates import next_month_start
from chatledger.models import ChunkOptions, DateWindow, ExecutionPlan, ReportRequest, Task
from chatledger.reconciliation.usage import DEFAULT_MATCH_WINDOW_SEC

T = TypeVar("T")

STRATEGY = "monthly_window_forced"


@dataclass(frozen=True)
class Bounds:
    low: int
    high: int

    def clamp(self, value: int) -> int:
        return max(self.low, min(value, self.high))


CHUNK_BOUNDS = {
    "customer_batch_size": Bounds(1, 500),
    "channel_chunk_size": Bounds(1, 100),
    "max_workers": Bounds(1, 2),
    "pause_ms": Bounds(0, 5000),
    "max_retries": Bounds(0, 5),
}


def split_by_month(start: datetime, end: datetime) -> list[DateWindow]:
    """UTC calendar-month windows covering ``[start, end]`` without gaps or overlap."""

    windows: list[DateWindow] = []
    cursor = start
    while cursor < end:
        window_end = min(next_month_start(cursor), end)
        windows.append(DateWindow(start=cursor, end=window_end, is_last=window_end == end))
        cursor = window_end
    if not windows:
        windows.append(DateWindow(start=start, end=end, is_last=True))
    return windows


def chunk_list(items: Sequence[T], size: int) -> list[list[T]]:
    return [list(items[index : index + size]) for index in range(0, len(items), size)]


def normalize_chunk_options(options: ChunkOptions | None, settings: Settings) -> ChunkOptions:
    """Fill missing knobs from settings and clamp every knob to its allowed range."""

    options = options or ChunkOptions()
    resolved = {}
    for name, bounds in CHUNK_BOUNDS.items():
        value = getattr(options, name)
        resolved[name] = bounds.clamp(int(value) if value is not None else getattr(settings, name))
    return ChunkOptions(**resolved)


def _task_request(customer_id: str, window: DateWindow, page_size: int, channel: str | None) -> ReportRequest:
    return ReportRequest(
        customer_id=customer_id,
        start=window.start,
        end=window.query_end,
        filters={"channel": channel} if channel else None,
        page_size=page_size,
        sort_order="asc",
        match_window_sec=DEFAULT_MATCH_WINDOW_SEC,
    )


def plan_tasks(
    windows: Sequence[DateWindow],
    customer_ids: Sequence[str],
    channels_by_customer: Mapping[str, Sequence[str]],
    options: ChunkOptions,
    *,
    page_size: int,
) -> tuple[tuple[Task, ...], ExecutionPlan]:
    """Flatten window x customer batch x channel chunk into an ordered task tuple."""

    batches = chunk_list(customer_ids, options.customer_batch_size)
    tasks: list[Task] = []
    for w, window in enumerate(windows, start=1):
        for b, batch in enumerate(batches, start=1):
            prefix = f"{w}/{len(windows)}-{b}/{len(batches)}"
            for customer_id in batch:
                channels = list(channels_by_customer.get(customer_id, ()))
                if not channels:
                    tasks.append(
                        Task(
                            chunk_id=f"{prefix}-{customer_id}-all",
                            request=_task_request(customer_id, window, page_size, None),
                        )
                    )
                    continue
                groups = chunk_list(channels, options.channel_chunk_size)
                for g, group in enumerate(groups, start=1):
                    for i, channel in enumerate(group, start=1):
                        tasks.append(
                            Task(
                                chunk_id=f"{prefix}-{customer_id}-{g}/{len(groups)}-c{i}/{len(group)}",
                                request=_task_request(customer_id, window, page_size, channel),
                            )
                        )
    plan = ExecutionPlan(
        strategy=STRATEGY,
        windows=tuple(windows),
        customer_batch_size=options.customer_batch_size,
        channel_chunk_size=options.channel_chunk_size,
        max_workers=options.max_workers,
        pause_ms=options.pause_ms,
        max_retries=options.max_retries,
        estimated_tasks=len(tasks),
    )
    return tuple(tasks), plan
