"""Shared domain models used across the chatledger pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Sequence

from chatledger.dates import ONE_MILLISECOND, epoch_ms, format_iso


class MatchSource(str, Enum):
    """Tier at which usage/model attribution was resolved for a turn."""

    DIRECT = "direct"
    NEARBY = "nearby"
    FALLBACK = "fallback"
    UNMATCHED = "unmatched"


class MessageRole(str, Enum):
    QUESTION = "question"
    ANSWER = "answer"
    OTHER = "other"


class FeedbackValue(str, Enum):
    LIKE = "좋아요"
    DISLIKE = "나빠요"
    NONE = ""


class WorkflowStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class Message:
    """One chat event read from the chats collection."""

    message_id: str
    creator_id: str
    creator_type: str
    role: MessageRole
    channel_id: str
    session_id: str
    text: str
    created_at: datetime
    model: str | None = None
    document: Mapping[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class Turn:
    """A question message paired with its first answer in the same session."""

    question: Message
    answer: Message | None = None

    @property
    def channel_id(self) -> str:
        return self.question.channel_id

    @property
    def session_id(self) -> str:
        return self.question.session_id

    @property
    def customer_id(self) -> str:
        return self.question.creator_id

    @property
    def anchor_at(self) -> datetime:
        """Time usage is matched against: the answer time, else the question time."""

        return self.answer.created_at if self.answer else self.question.created_at

    @property
    def response_latency_ms(self) -> int | None:
        if self.answer is None:
            return None
        return max(0, epoch_ms(self.answer.created_at) - epoch_ms(self.question.created_at))


@dataclass(frozen=True)
class UsageRecord:
    """A metered usage event used only for attribution."""

    channel_id: str
    creator_id: str
    amount: float
    created_at: datetime
    model: str | None = None


@dataclass(frozen=True)
class ModelTimelineEntry:
    channel_id: str
    at: datetime
    model: str


@dataclass(frozen=True)
class ReportRequest:
    """Query for one customer's reconciled conversation report."""

    customer_id: str
    start: datetime | str
    end: datetime | str
    filters: Mapping[str, Any] | None = None
    page_size: int | None = None
    sort_order: str = "asc"
    match_window_sec: float | None = None


@dataclass(frozen=True)
class ReportRow:
    """Reconciled output unit for one turn."""

    occurred_at: datetime
    answer_at: datetime | None
    response_latency_ms: int | None
    channel: str
    session_id: str
    customer_id: str
    question_creator_type: str
    question_creator_raw: str
    question_text: str
    answer_text: str
    answer_model: str
    model_confidence: float
    credit_used: float
    session_credit_total: float
    match_source: MatchSource
    feedback: FeedbackValue
    feedback_confidence: float
    customer_name: str = ""
    channel_name: str = ""

    @property
    def row_key(self) -> str:
        return "::".join(
            [format_iso(self.occurred_at), self.channel, self.session_id, self.customer_id, self.question_text]
        )

    def with_names(self, *, customer_name: str, channel_name: str) -> "ReportRow":
        return replace(self, customer_name=customer_name, channel_name=channel_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "occurredAt": format_iso(self.occurred_at),
            "answerAt": format_iso(self.answer_at),
            "responseLatencyMs": self.response_latency_ms,
            "channel": self.channel,
            "channelName": self.channel_name,
            "sessionId": self.session_id,
            "customerId": self.customer_id,
            "customerName": self.customer_name,
            "questionCreatorType": self.question_creator_type,
            "questionCreatorRaw": self.question_creator_raw,
            "questionText": self.question_text,
            "finalAnswerText": self.answer_text,
            "finalAnswerModel": self.answer_model,
            "modelConfidence": self.model_confidence,
            "creditUsed": self.credit_used,
            "sessionCreditTotal": self.session_credit_total,
            "matchSource": self.match_source.value,
            "like": self.feedback.value,
            "likeConfidence": self.feedback_confidence,
        }


@dataclass(frozen=True)
class ReportSummary:
    total_rows: int = 0
    total_credit_used: float = 0.0
    fallback_count: int = 0
    unmatched_count: int = 0


@dataclass(frozen=True)
class ReportResult:
    rows: Sequence[ReportRow]
    summary: ReportSummary
    page_size: int
    has_more: bool


@dataclass(frozen=True)
class DateWindow:
    """One calendar-month slice of a requested range."""

    start: datetime
    end: datetime
    is_last: bool

    @property
    def query_end(self) -> datetime:
        """Inclusive upper bound to query; only the last window includes its end."""

        return self.end if self.is_last else self.end - ONE_MILLISECOND


@dataclass(frozen=True)
class Task:
    """One orchestrated unit of work bound to a window, customer and channel."""

    chunk_id: str
    request: ReportRequest


@dataclass(frozen=True)
class ChunkOptions:
    """Caller-supplied decomposition knobs; ``None`` means use the default."""

    customer_batch_size: int | None = None
    channel_chunk_size: int | None = None
    max_workers: int | None = None
    pause_ms: int | None = None
    max_retries: int | None = None


@dataclass(frozen=True)
class ExecutionPlan:
    strategy: str
    windows: Sequence[DateWindow]
    customer_batch_size: int
    channel_chunk_size: int
    max_workers: int
    pause_ms: int
    max_retries: int
    estimated_tasks: int

    @property
    def window_count(self) -> int:
        return len(self.windows)


@dataclass(frozen=True)
class FailedChunk:
    chunk_id: str
    attempts: int
    reason: str


@dataclass(frozen=True)
class ResumeCursor:
    """Rows at or before this position were already exported by an earlier run."""

    occurred_at: str
    row_key: str | None = None

    def should_skip(self, row: ReportRow) -> bool:
        occurred_at = format_iso(row.occurred_at)
        if occurred_at != self.occurred_at:
            return occurred_at < self.occurred_at
        if self.row_key is None:
            return True
        return row.row_key <= self.row_key


@dataclass(frozen=True)
class BatchRequest:
    """Scatter-gather export request over a partner or explicit customers/channels."""

    start: datetime | str
    end: datetime | str
    partner_id: str | None = None
    customer_ids: Sequence[str] = ()
    channel_ids: Sequence[str] = ()
    chunk_options: ChunkOptions = field(default_factory=ChunkOptions)
    row_limit: int | None = None
    include_total: bool = False
    resume: ResumeCursor | None = None


@dataclass(frozen=True)
class BatchMeta:
    partner_id: str | None
    member_count: int
    processed_chunks: int
    failed_chunks: Sequence[FailedChunk]
    elapsed_ms: int
    execution_plan: ExecutionPlan


@dataclass(frozen=True)
class BatchResult:
    rows: Sequence[ReportRow]
    page_size: int
    has_more: bool
    status: WorkflowStatus
    meta: BatchMeta
    total: int | None = None
