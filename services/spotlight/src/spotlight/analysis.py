from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from common.utils import now_utc_iso, truncate
from fastapi.concurrency import run_in_threadpool

from spotlight.fallbacks import fallback_analysis_suggestions
from spotlight.gateway import ANALYSIS_PATHS, GatewayError, ServiceGateway
from spotlight.metrics import ServiceMetrics
from spotlight.models import (
    NARRATIVE_MAX_LENGTH,
    AnalysisJob,
    AnalysisKind,
    AnalysisResult,
    JobMetadata,
    Member,
    RecommendationBuckets,
)
from spotlight.repository import JobTransitionError, SpotlightRepository

LOGGER = logging.getLogger("skillsync.spotlight.analysis")

BUCKET_NAMES = tuple(RecommendationBuckets.model_fields)
PROVIDER_LABELS = {
    AnalysisKind.PROFILE_ANALYSIS: "CrewAI",
    AnalysisKind.PEER_INSPIRATION: "OpenAI",
}


class JobValidationError(Exception):
    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or [message]


class MemberNotFoundError(LookupError):
    pass


@dataclass
class SubmissionOutcome:
    job: AnalysisJob
    upstream: dict[str, Any] | None = None
    fallback_suggestions: list[str] = field(default_factory=list)
    upstream_status: int | None = None
    upstream_detail: Any = None

    @property
    def succeeded(self) -> bool:
        return self.upstream is not None


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict | list):
        return json.dumps(value)
    return str(value)


def _coerce_items(value: Any) -> list[str]:
    values = value if isinstance(value, list | tuple) else [value]
    return [text for text in (_as_text(item) for item in values) if text]


def normalize_recommendations(raw: dict[str, Any]) -> RecommendationBuckets:
    """Map an analysis reply onto the fixed recommendation buckets.

    Replies put buckets either at the top level or under ``recommendations``.
    A scalar bucket becomes a one-item list, a missing bucket becomes ``[]``
    and blank items are dropped.
    """
    nested = raw.get("recommendations")
    source = nested if isinstance(nested, dict) else raw
    return RecommendationBuckets(**{name: _coerce_items(source.get(name)) for name in BUCKET_NAMES})


def extract_narrative(raw: dict[str, Any], default: str) -> str:
    narrative = raw.get("analysis_result")
    if isinstance(narrative, dict):
        narrative = narrative.get("analysis_text")
    if not isinstance(narrative, str) or not narrative.strip():
        narrative = raw.get("analysis_text")
    if not isinstance(narrative, str) or not narrative.strip():
        narrative = default
    return truncate(narrative, NARRATIVE_MAX_LENGTH)


def compute_profile_score(total_recommendations: int) -> int:
    if total_recommendations <= 0:
        return 50
    return min(100, max(20, 100 - total_recommendations * 5))


def build_analysis_payload(
    kind: AnalysisKind,
    subject: Member,
    peer: Member | None = None,
) -> dict[str, Any]:
    if kind == AnalysisKind.PROFILE_ANALYSIS:
        current_user = subject.analysis_context()
        current_user.pop("id")
        return {
            "user_id": subject.user_id,
            "linkedin_profile": subject.linkedin_profile,
            "current_user": current_user,
        }
    if peer is None:
        raise JobValidationError("A peer is required for career inspiration.")
    inspiration_user = peer.analysis_context()
    inspiration_user["linkedinProfile"] = peer.linkedin_profile
    inspiration_user["twitterProfile"] = peer.twitter_profile
    return {"current_user": subject.analysis_context(), "inspiration_user": inspiration_user}


class AnalysisTracker:
    """Creates analysis jobs and drives each through exactly one transition.

    ``submit`` is the only writer of a job's terminal state. The external call
    runs inline, so the request that submitted the job also settles it. Any
    other exception raised after the job row exists, cancellation included,
    marks the job failed before it propagates.
    """

    def __init__(
        self,
        repository: SpotlightRepository,
        gateway: ServiceGateway,
        *,
        metrics: ServiceMetrics | None = None,
    ) -> None:
        self.repository = repository
        self.gateway = gateway
        self.metrics = metrics or ServiceMetrics()

    async def _load_member(self, user_id: str, label: str) -> Member:
        member = await run_in_threadpool(self.repository.get_member, user_id)
        if member is None:
            raise MemberNotFoundError(f"{label} not found")
        return member

    async def _validate(
        self,
        subject_user_id: str,
        kind: AnalysisKind,
        source_user_id: str | None,
    ) -> tuple[Member, Member | None]:
        if kind not in ANALYSIS_PATHS:
            raise JobValidationError(f"Analysis kind '{kind.value}' is not supported.")

        subject = await self._load_member(subject_user_id, "User")
        if kind == AnalysisKind.PROFILE_ANALYSIS:
            if not (subject.linkedin_profile or "").strip():
                raise JobValidationError(
                    "No LinkedIn profile found. Please add your LinkedIn profile first.",
                    ["linkedin_profile: required for profile analysis"],
                )
            return subject, None

        if not source_user_id:
            raise JobValidationError("A peer is required for career inspiration.")
        if source_user_id == subject_user_id:
            raise JobValidationError(
                "You cannot request career inspiration from yourself.",
                ["peer_id: must differ from the requesting member"],
            )
        peer = await self._load_member(source_user_id, "Peer")
        return subject, peer

    async def submit(
        self,
        subject_user_id: str,
        kind: AnalysisKind,
        *,
        source_user_id: str | None = None,
        job_id: str | None = None,
    ) -> SubmissionOutcome:
        subject, peer = await self._validate(subject_user_id, kind, source_user_id)
        profile_source = peer if peer is not None else subject
        job = await run_in_threadpool(
            lambda: self.repository.create_job(
                job_id or str(uuid.uuid4()),
                subject_user_id=subject.user_id,
                source_user_id=peer.user_id if peer else None,
                kind=kind,
                metadata=JobMetadata(
                    profile_url=profile_source.linkedin_profile,
                    user_role=subject.role,
                    user_department=subject.department,
                    analysis_date=now_utc_iso(),
                    provider=PROVIDER_LABELS.get(kind),
                ),
            )
        )
        LOGGER.info(
            json.dumps({"event": "analysis_job_created", "job_id": job.id, "kind": kind.value})
        )

        try:
            return await self._run(job, subject, peer, profile_source)
        except (Exception, asyncio.CancelledError) as exc:
            self._abandon(job, exc)
            raise

    async def _run(
        self,
        job: AnalysisJob,
        subject: Member,
        peer: Member | None,
        profile_source: Member,
    ) -> SubmissionOutcome:
        kind = job.kind
        try:
            raw = await self.gateway.call_analysis_service(
                kind,
                build_analysis_payload(kind, subject, peer),
            )
        except GatewayError as exc:
            reason = f"Analysis failed: {exc.message}"
            failed = await run_in_threadpool(
                lambda: self.repository.fail_job(job.id, error=reason)
            )
            self.metrics.count(f"analysis_job_failed.{kind.value}")
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "analysis_job_failed",
                        "job_id": job.id,
                        "kind": kind.value,
                        "service": exc.service,
                        "status_code": exc.status_code,
                        "error": exc.message,
                    }
                )
            )
            return SubmissionOutcome(
                job=failed,
                fallback_suggestions=fallback_analysis_suggestions(),
                upstream_status=exc.status_code,
                upstream_detail=exc.detail,
            )

        buckets = normalize_recommendations(raw)
        total = buckets.total_items()
        default_narrative = (
            "LinkedIn profile analysis completed successfully."
            if kind == AnalysisKind.PROFILE_ANALYSIS
            else f"Career inspiration from {profile_source.name}"
        )
        metadata = job.metadata.model_copy(
            update={
                "profile_url": _as_text(raw.get("profile_analyzed")) or job.metadata.profile_url,
                "completed_at": _as_text(raw.get("completed_at")) or now_utc_iso(),
                "provider_user_id": _as_text(raw.get("user_id")),
                "score": compute_profile_score(total),
                "total_recommendations": total,
            }
        )
        completed = await run_in_threadpool(
            lambda: self.repository.complete_job(
                job.id,
                result=AnalysisResult(
                    recommendations=buckets,
                    analysis_narrative=extract_narrative(raw, default_narrative),
                ),
                metadata=metadata,
            )
        )
        self.metrics.count(f"analysis_job_completed.{kind.value}")
        LOGGER.info(
            json.dumps(
                {
                    "event": "analysis_job_completed",
                    "job_id": job.id,
                    "kind": kind.value,
                    "total_recommendations": total,
                }
            )
        )
        return SubmissionOutcome(job=completed, upstream=raw)

    def _abandon(self, job: AnalysisJob, exc: BaseException) -> None:
        # Runs inline: a cancelled task cannot await the threadpool again.
        if isinstance(exc, asyncio.CancelledError):
            reason = "Analysis failed: request was cancelled"
        else:
            reason = f"Analysis failed: {exc.__class__.__name__}"
        try:
            self.repository.fail_job(job.id, error=reason)
        except JobTransitionError:
            return
        self.metrics.count(f"analysis_job_abandoned.{job.kind.value}")
        LOGGER.error(
            json.dumps(
                {
                    "event": "analysis_job_abandoned",
                    "job_id": job.id,
                    "kind": job.kind.value,
                    "error": repr(exc),
                }
            )
        )

    async def get(self, job_id: str) -> AnalysisJob | None:
        return await run_in_threadpool(self.repository.get_job, job_id)
