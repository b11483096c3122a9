"""Pydantic models for the chatledger API."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chatledger.catalog import DataTypeSchema
from chatledger.dates import format_iso
from chatledger.models import (
    BatchRequest,
    BatchResult,
    ChunkOptions,
    ReportRequest,
    ReportResult,
    ReportRow,
)
from chatledger.orchestration.directory import Customer, CustomerChannel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DateRange(CamelModel):
    start: str = Field(..., description="Inclusive ISO-8601 start")
    end: str = Field(..., description="Inclusive ISO-8601 end")


class CustomerReportRequest(CamelModel):
    customer_id: str = Field(..., description="Customer whose questions anchor the report")
    date_range: DateRange
    filters: Optional[Dict[str, Any]] = Field(default=None, description="Catalog filters, e.g. channel")
    page_size: Optional[int] = Field(default=None, description="Maximum question rows to return")
    sort_order: str = Field(default="asc", description="asc or desc by question time")
    match_window_sec: Optional[float] = Field(default=None, description="Direct usage match window in seconds")

    def to_domain(self) -> ReportRequest:
        return ReportRequest(
            customer_id=self.customer_id,
            start=self.date_range.start,
            end=self.date_range.end,
            filters=self.filters,
            page_size=self.page_size,
            sort_order=self.sort_order,
            match_window_sec=self.match_window_sec,
        )


class ReportRowModel(CamelModel):
    occurred_at: str
    answer_at: str
    response_latency_ms: Optional[int]
    channel: str
    channel_name: str = ""
    session_id: str
    customer_id: str
    customer_name: str = ""
    question_creator_type: str
    question_creator_raw: str
    question_text: str
    final_answer_text: str
    final_answer_model: str
    model_confidence: float
    credit_used: float
    session_credit_total: float
    match_source: Literal["direct", "nearby", "fallback", "unmatched"]
    like: str
    like_confidence: float

    @classmethod
    def from_row(cls, row: ReportRow) -> "ReportRowModel":
        return cls.model_validate(row.to_dict())


class ReportSummaryModel(CamelModel):
    total_rows: int
    total_credit_used: float
    fallback_count: int
    unmatched_count: int


class CustomerReportResponse(CamelModel):
    rows: List[ReportRowModel]
    summary: ReportSummaryModel
    page_size: int
    has_more: bool

    @classmethod
    def from_result(cls, result: ReportResult) -> "CustomerReportResponse":
        summary = result.summary
        return cls(
            rows=[ReportRowModel.from_row(row) for row in result.rows],
            summary=ReportSummaryModel(
                total_rows=summary.total_rows,
                total_credit_used=summary.total_credit_used,
                fallback_count=summary.fallback_count,
                unmatched_count=summary.unmatched_count,
            ),
            page_size=result.page_size,
            has_more=result.has_more,
        )


class ChunkOptionsModel(CamelModel):
    customer_batch_size: Optional[int] = None
    channel_chunk_size: Optional[int] = None
    max_workers: Optional[int] = None
    pause_ms: Optional[int] = None
    max_retries: Optional[int] = None


class BatchFilters(CamelModel):
    customer_ids: List[str] = Field(default_factory=list)
    channel_ids: List[str] = Field(default_factory=list)


class BatchWorkflowRequest(CamelModel):
    partner_id: Optional[str] = None
    date_range: DateRange
    chunk_options: ChunkOptionsModel = Field(default_factory=ChunkOptionsModel)
    filters: BatchFilters = Field(default_factory=BatchFilters)
    row_limit: Optional[int] = Field(default=None, description="Clamped to [1, max export rows]")
    include_total: bool = False

    def to_domain(self) -> BatchRequest:
        return BatchRequest(
            start=self.date_range.start,
            end=self.date_range.end,
            partner_id=self.partner_id,
            customer_ids=tuple(self.filters.customer_ids),
            channel_ids=tuple(self.filters.channel_ids),
            chunk_options=ChunkOptions(**self.chunk_options.model_dump()),
            row_limit=self.row_limit,
            include_total=self.include_total,
        )


class FailedChunkModel(CamelModel):
    chunk_id: str
    attempts: int
    reason: str


class WindowModel(CamelModel):
    start: str
    end: str


class ExecutionPlanModel(CamelModel):
    strategy: str
    window_count: int
    windows: List[WindowModel]
    customer_batch_size: int
    channel_chunk_size: int
    max_workers: int
    pause_ms: int
    max_retries: int
    estimated_tasks: int


class BatchMetaModel(CamelModel):
    partner_id: Optional[str]
    member_count: int
    processed_chunks: int
    failed_chunks: List[FailedChunkModel]
    elapsed_ms: int
    execution_plan: ExecutionPlanModel


class BatchWorkflowResponse(CamelModel):
    rows: List[ReportRowModel]
    page_size: int
    has_more: bool
    total: Optional[int] = None
    status: Literal["success", "partial", "failed"]
    meta: BatchMetaModel

    @classmethod
    def from_result(cls, result: BatchResult) -> "BatchWorkflowResponse":
        meta = result.meta
        plan = meta.execution_plan
        return cls(
            rows=[ReportRowModel.from_row(row) for row in result.rows],
            page_size=result.page_size,
            has_more=result.has_more,
            total=result.total,
            status=result.status.value,
            meta=BatchMetaModel(
                partner_id=meta.partner_id,
                member_count=meta.member_count,
                processed_chunks=meta.processed_chunks,
                failed_chunks=[
                    FailedChunkModel(chunk_id=item.chunk_id, attempts=item.attempts, reason=item.reason)
                    for item in meta.failed_chunks
                ],
                elapsed_ms=meta.elapsed_ms,
                execution_plan=ExecutionPlanModel(
                    strategy=plan.strategy,
                    window_count=plan.window_count,
                    windows=[WindowModel(start=format_iso(w.start), end=format_iso(w.end)) for w in plan.windows],
                    customer_batch_size=plan.customer_batch_size,
                    channel_chunk_size=plan.channel_chunk_size,
                    max_workers=plan.max_workers,
                    pause_ms=plan.pause_ms,
                    max_retries=plan.max_retries,
                    estimated_tasks=plan.estimated_tasks,
                ),
            ),
        )


class CustomerModel(CamelModel):
    id: str
    name: str
    email: str


class PartnerCustomersResponse(CamelModel):
    partner_id: str
    customer_ids: List[str]
    customers: List[CustomerModel]

    @classmethod
    def from_customers(cls, partner_id: str, customers: List[Customer]) -> "PartnerCustomersResponse":
        return cls(
            partner_id=partner_id,
            customer_ids=[customer.customer_id for customer in customers],
            customers=[CustomerModel(id=c.customer_id, name=c.name, email=c.email) for c in customers],
        )


class CustomerSearchResponse(CamelModel):
    customers: List[CustomerModel]

    @classmethod
    def from_customers(cls, customers: List[Customer]) -> "CustomerSearchResponse":
        return cls(customers=[CustomerModel(id=c.customer_id, name=c.name, email=c.email) for c in customers])


class CustomerChannelModel(CamelModel):
    channel_id: str
    channel_name: str = ""


class CustomerChannelsResponse(CamelModel):
    customer_id: str
    data_type: str
    channels: List[CustomerChannelModel]

    @classmethod
    def from_channels(
        cls, customer_id: str, data_type: str, channels: List[CustomerChannel]
    ) -> "CustomerChannelsResponse":
        return cls(
            customer_id=customer_id,
            data_type=data_type,
            channels=[CustomerChannelModel(channel_id=c.channel_id, channel_name=c.channel_name) for c in channels],
        )


class SchemaFilterModel(CamelModel):
    key: str
    label: str
    type: str
    options: List[str] = Field(default_factory=list)


class SchemaColumnModel(CamelModel):
    key: str
    label: str
    type: str


class SchemaResponse(CamelModel):
    data_type: str
    customer_field: str
    timestamp_field: str
    filters: List[SchemaFilterModel]
    columns: List[SchemaColumnModel]

    @classmethod
    def from_schema(cls, schema: DataTypeSchema) -> "SchemaResponse":
        return cls(
            data_type=schema.data_type,
            customer_field=schema.customer_field,
            timestamp_field=schema.timestamp_field,
            filters=[
                SchemaFilterModel(key=f.key, label=f.label, type=f.type, options=list(f.options)) for f in schema.filters
            ],
            columns=[SchemaColumnModel(key=c.key, label=c.label, type=c.type) for c in schema.columns],
        )
