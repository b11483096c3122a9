"""FastAPI application exposing chatledger reports and batch exports."""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from chatledger.api.schemas import (
    BatchWorkflowRequest,
    BatchWorkflowResponse,
    CustomerReportRequest,
    CustomerChannelsResponse,
    CustomerReportResponse,
    CustomerSearchResponse,
    PartnerCustomersResponse,
    SchemaResponse,
)
from chatledger.catalog import get_schema
from chatledger.config import Settings, get_settings
from chatledger.errors import InvalidRequest, PartnerNotFound, UpstreamReadFailure
from chatledger.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from chatledger.orchestration import BatchWorkflow, CustomerDirectory, MongoCustomerDirectory
from chatledger.reconciliation import ReportAssembler
from chatledger.store import DocumentReader, build_reader


@dataclass(frozen=True)
class AppDependencies:
    reader: DocumentReader
    directory: CustomerDirectory
    assembler: ReportAssembler
    workflow: BatchWorkflow


def _build_dependencies(settings: Settings) -> AppDependencies:
    reader = build_reader(settings)
    directory = MongoCustomerDirectory(reader, settings)
    assembler = ReportAssembler(reader, settings)
    workflow = BatchWorkflow(reader, settings, directory=directory, assembler=assembler)
    return AppDependencies(reader=reader, directory=directory, assembler=assembler, workflow=workflow)


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or _build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")
    from chatledger import __version__

    app = FastAPI(title="chatledger API", version=__version__)
    app.state.dependencies = deps

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=list(settings.cors_allow_methods),
            allow_headers=list(settings.cors_allow_headers),
        )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        if request.headers.get("X-API-Key") != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    class RateLimiter:
        def __init__(self, requests: int, window_seconds: int) -> None:
            self.requests = requests
            self.window = window_seconds
            self._buckets: dict[str, deque[float]] = {}
            self._lock = threading.Lock()

        def __call__(self, request: Request) -> None:
            client_ip = request.headers.get("x-forwarded-for") or (request.client.host if request.client else "-")
            key = f"{client_ip}:{request.url.path}"
            now = time.time()
            cutoff = now - self.window
            with self._lock:
                for stale_key in [k for k, b in self._buckets.items() if not b or b[-1] < cutoff]:
                    del self._buckets[stale_key]
                bucket = self._buckets.setdefault(key, deque())
                while bucket and bucket[0] < cutoff:
                    bucket.popleft()
                if len(bucket) >= self.requests:
                    raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")
                bucket.append(now)

        def __len__(self) -> int:
            with self._lock:
                return len(self._buckets)

    rate_limiter = RateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)
    app.state.rate_limiter = rate_limiter

    def _error(request: Request, status_code: int, event: str, detail: str) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.warning(event, correlation_id=correlation_id, detail=detail, status_code=status_code)
        return JSONResponse(status_code=status_code, content={"detail": detail, "correlation_id": correlation_id})

    @app.exception_handler(InvalidRequest)
    async def handle_invalid_request(request: Request, exc: InvalidRequest) -> JSONResponse:
        return _error(request, status.HTTP_400_BAD_REQUEST, "request.invalid", str(exc))

    @app.exception_handler(PartnerNotFound)
    async def handle_partner_not_found(request: Request, exc: PartnerNotFound) -> JSONResponse:
        return _error(request, status.HTTP_404_NOT_FOUND, "partner.not_found", str(exc))

    @app.exception_handler(UpstreamReadFailure)
    async def handle_upstream_failure(request: Request, exc: UpstreamReadFailure) -> JSONResponse:
        return _error(request, status.HTTP_503_SERVICE_UNAVAILABLE, "upstream.error", str(exc))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("unhandled.error", correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal Server Error", "correlation_id": correlation_id},
        )

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    @app.post("/reports/customer", response_model=CustomerReportResponse)
    def customer_report(
        payload: CustomerReportRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
        _rl: None = Depends(rate_limiter),
    ) -> CustomerReportResponse:
        result = dep.assembler.build_report(payload.to_domain())
        return CustomerReportResponse.from_result(result)

    @app.post("/reports/batch", response_model=BatchWorkflowResponse)
    def batch_report(
        payload: BatchWorkflowRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
        _rl: None = Depends(rate_limiter),
    ) -> BatchWorkflowResponse:
        result = dep.workflow.run(payload.to_domain())
        return BatchWorkflowResponse.from_result(result)

    @app.get("/customers/by-partner", response_model=PartnerCustomersResponse)
    def customers_by_partner(
        partner_id: str = Query(..., alias="partnerId", min_length=1),
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> PartnerCustomersResponse:
        partner_id = partner_id.strip()
        if not partner_id:
            raise InvalidRequest("partnerId is required")
        customers = dep.directory.resolve_partner_members(partner_id)
        return PartnerCustomersResponse.from_customers(partner_id, customers)

    @app.get("/customers/search", response_model=CustomerSearchResponse)
    def search_customers(
        q: str = Query(""),
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
        _rl: None = Depends(rate_limiter),
    ) -> CustomerSearchResponse:
        return CustomerSearchResponse.from_customers(dep.directory.search_customers(q))

    @app.get("/customers/{customer_id}/channels", response_model=CustomerChannelsResponse)
    def customer_channels(
        customer_id: str,
        data_type: str = Query("conversations", alias="dataType"),
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> CustomerChannelsResponse:
        channels = dep.directory.list_customer_channels(customer_id, data_type)
        return CustomerChannelsResponse.from_channels(customer_id.strip(), data_type, channels)

    @app.get("/schema/{data_type}", response_model=SchemaResponse)
    async def schema(data_type: str, _auth: None = Depends(require_api_key)) -> SchemaResponse:
        try:
            found = get_schema(data_type)
        except InvalidRequest as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return SchemaResponse.from_schema(found)

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    @app.get("/healthz/ready")
    def readiness(dep: AppDependencies = Depends(get_dependencies)) -> JSONResponse:
        try:
            latency_ms = dep.reader.ping()
        except UpstreamReadFailure as exc:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "error", "detail": str(exc)},
            )
        return JSONResponse(content={"status": "ready", "latency_ms": round(latency_ms, 2)})

    return app
