from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Any

from common.utils import now_utc
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from spotlight.analysis import (
    AnalysisTracker,
    JobValidationError,
    MemberNotFoundError,
    SubmissionOutcome,
)
from spotlight.banners import BannerCache
from spotlight.builder import BannerBuilder
from spotlight.gateway import ServiceGateway
from spotlight.metrics import UNMATCHED_ROUTE, MetricsSnapshot, ServiceMetrics
from spotlight.models import AnalysisJob, AnalysisKind, JobStatus, MemberUpsertRequest
from spotlight.repository import JobConflictError, SpotlightRepository
from spotlight.settings import ServiceSettings

LOGGER = logging.getLogger("skillsync.spotlight")

HISTORY_DAYS = 7
IMAGE_CACHE_CONTROL = "public, max-age=86400"
ANALYSIS_UNAVAILABLE = "AI analysis service temporarily unavailable"


class AnalysisSubmitRequest(BaseModel):
    job_id: str | None = Field(
        default=None,
        min_length=3,
        max_length=64,
        pattern=r"^[a-zA-Z0-9_-]+$",
    )


def error_response(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


def job_view(job: AnalysisJob) -> dict[str, Any]:
    result: dict[str, Any] | None = None
    if job.status == JobStatus.COMPLETED and job.result is not None:
        result = job.result.model_dump()
        result["score"] = job.metadata.score
        result["total_recommendations"] = job.metadata.total_recommendations
    return {
        "success": True,
        "analysis_id": job.id,
        "kind": job.kind.value,
        "status": job.status.value,
        "result": result,
        "error": job.error,
        "metadata": job.metadata.model_dump(),
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }


def submission_response(outcome: SubmissionOutcome, **extra: Any) -> JSONResponse:
    job = outcome.job
    if outcome.succeeded:
        return JSONResponse(content={**job_view(job), "upstream": outcome.upstream, **extra})

    upstream_rejected = outcome.upstream_status == 400
    return error_response(
        400 if upstream_rejected else 502,
        str(outcome.upstream_detail or "Invalid analysis request")
        if upstream_rejected
        else ANALYSIS_UNAVAILABLE,
        status=job.status.value,
        analysis_id=job.id,
        fallback_suggestions=outcome.fallback_suggestions,
    )


def create_app(
    *,
    database_path: str | None = None,
    settings: ServiceSettings | None = None,
    api_tokens: dict[str, str] | None = None,
    gateway: ServiceGateway | None = None,
    clock: Callable[[], datetime] = now_utc,
) -> FastAPI:
    resolved_settings = settings or ServiceSettings.from_env()
    if database_path is not None:
        resolved_settings = resolved_settings.model_copy(update={"database_path": database_path})
    if api_tokens is not None:
        resolved_settings = resolved_settings.model_copy(
            update={
                "api_tokens": {
                    token.strip(): user_id
                    for token, user_id in api_tokens.items()
                    if token.strip()
                }
            }
        )

    repository = SpotlightRepository(database_path=resolved_settings.database_path)
    resolved_gateway = gateway or ServiceGateway(resolved_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(repository.connect)
        app.state.settings = resolved_settings
        app.state.repository = repository
        metrics = ServiceMetrics()
        app.state.metrics = metrics
        app.state.banners = BannerCache(
            repository,
            BannerBuilder(resolved_gateway, clock=clock, metrics=metrics),
            metrics=metrics,
        )
        app.state.analysis = AnalysisTracker(repository, resolved_gateway, metrics=metrics)
        try:
            yield
        finally:
            await run_in_threadpool(repository.close)

    app = FastAPI(title="SkillSync Spotlight", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        details = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        return error_response(422, "Validation failed", details=details)

    @app.exception_handler(JobValidationError)
    async def job_validation_handler(request: Request, exc: JobValidationError) -> JSONResponse:
        return error_response(400, exc.message, details=exc.details)

    @app.exception_handler(MemberNotFoundError)
    async def member_not_found_handler(
        request: Request,
        exc: MemberNotFoundError,
    ) -> JSONResponse:
        return error_response(404, str(exc))

    @app.exception_handler(JobConflictError)
    async def job_conflict_handler(request: Request, exc: JobConflictError) -> JSONResponse:
        return error_response(409, str(exc))

    def log_request(
        request: Request,
        request_id: str,
        status_code: int,
        duration_ms: float,
        *,
        exc_info: bool = False,
        **extra: Any,
    ) -> None:
        route = request.scope.get("route")
        route_path = getattr(route, "path", UNMATCHED_ROUTE)
        request.app.state.metrics.observe_request(
            method=request.method,
            route=route_path,
            status_code=status_code,
            duration_ms=duration_ms,
        )
        record = {
            "event": "request_complete",
            "request_id": request_id,
            "method": request.method,
            "route": route_path,
            "path": request.url.path,
            "status_code": status_code,
            "duration_ms": round(duration_ms, 3),
            **extra,
        }
        level = logging.ERROR if status_code >= 500 else logging.INFO
        LOGGER.log(level, json.dumps(record), exc_info=exc_info)

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed = (time.perf_counter() - started) * 1000
            log_request(request, request_id, 500, elapsed, exc_info=True, error=str(exc))
            failure = error_response(500, "Internal Server Error", request_id=request_id)
            failure.headers["x-request-id"] = request_id
            return failure

        elapsed = (time.perf_counter() - started) * 1000
        response.headers["x-request-id"] = request_id
        log_request(request, request_id, response.status_code, elapsed)
        return response

    def require_identity(request: Request) -> str:
        header = request.headers.get("authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise HTTPException(status_code=401, detail="No token. Authorization denied")
        user_id = request.app.state.settings.api_tokens.get(token.strip())
        if user_id is None:
            raise HTTPException(status_code=401, detail="Token is not valid")
        return user_id

    def today() -> date:
        return clock().date()

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "spotlight"}

    @app.get("/metrics", response_model=MetricsSnapshot)
    async def metrics(request: Request) -> MetricsSnapshot:
        return request.app.state.metrics.snapshot()

    @app.put("/members/me")
    async def upsert_member(payload: MemberUpsertRequest, request: Request) -> dict[str, Any]:
        user_id = require_identity(request)
        member = await run_in_threadpool(request.app.state.repository.upsert_member, user_id, payload)
        return {"success": True, "member": member.model_dump()}

    @app.get("/artifacts/today")
    async def today_artifact(request: Request) -> dict[str, Any]:
        require_identity(request)
        banner = await request.app.state.banners.get_or_create(today())
        return {"success": True, "artifact": banner.public_view()}

    @app.get("/artifacts/history")
    async def artifact_history(request: Request) -> dict[str, Any]:
        require_identity(request)
        since = today() - timedelta(days=HISTORY_DAYS)
        summaries = await request.app.state.banners.history(since, limit=HISTORY_DAYS)
        return {"success": True, "artifacts": [summary.model_dump() for summary in summaries]}

    @app.post("/artifacts/generate")
    async def regenerate_artifact(request: Request) -> dict[str, Any]:
        user_id = require_identity(request)
        LOGGER.info(json.dumps({"event": "banner_regenerate_requested", "user_id": user_id}))
        banner = await request.app.state.banners.regenerate(today())
        return {
            "success": True,
            "message": "New banner generated successfully",
            "artifact": banner.public_view(),
        }

    @app.get("/artifacts/{artifact_id}/image")
    async def artifact_image(artifact_id: str, request: Request) -> Response:
        image = await request.app.state.banners.serve_binary(artifact_id)
        if image is None:
            raise HTTPException(status_code=404, detail="Banner image not found")
        return Response(
            content=image.data,
            media_type=image.content_type,
            headers={"Cache-Control": IMAGE_CACHE_CONTROL},
        )

    @app.post("/analysis/linkedin")
    async def submit_linkedin_analysis(
        request: Request,
        payload: AnalysisSubmitRequest | None = None,
    ) -> JSONResponse:
        user_id = require_identity(request)
        outcome = await request.app.state.analysis.submit(
            user_id,
            AnalysisKind.PROFILE_ANALYSIS,
            job_id=payload.job_id if payload else None,
        )
        return submission_response(outcome)

    @app.get("/analysis/linkedin/{analysis_id}")
    async def linkedin_analysis_status(analysis_id: str, request: Request) -> dict[str, Any]:
        user_id = require_identity(request)
        job = await request.app.state.analysis.get(analysis_id)
        if (
            job is None
            or job.subject_user_id != user_id
            or job.kind != AnalysisKind.PROFILE_ANALYSIS
        ):
            raise HTTPException(status_code=404, detail="Analysis not found")
        return job_view(job)

    @app.post("/analysis/inspiration/{peer_id}")
    async def submit_inspiration(
        peer_id: str,
        request: Request,
        payload: AnalysisSubmitRequest | None = None,
    ) -> JSONResponse:
        user_id = require_identity(request)
        outcome = await request.app.state.analysis.submit(
            user_id,
            AnalysisKind.PEER_INSPIRATION,
            source_user_id=peer_id,
            job_id=payload.job_id if payload else None,
        )
        peer = await run_in_threadpool(request.app.state.repository.get_member, peer_id)
        return submission_response(
            outcome,
            inspiration_source={
                "name": peer.name,
                "role": peer.role,
                "department": peer.department,
            }
            if peer
            else None,
        )

    return app


app = create_app()
