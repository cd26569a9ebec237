from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 500
BODY_MAX_LENGTH = 2000
TOPIC_SUMMARY_MAX_LENGTH = 200
NARRATIVE_MAX_LENGTH = 2000

BannerStatus = Literal["active", "expired", "draft"]


class AnalysisKind(StrEnum):
    PROFILE_ANALYSIS = "profile_analysis"
    PEER_INSPIRATION = "peer_inspiration"
    SKILL_DEVELOPMENT = "skill_development"


class JobStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class BannerContent(BaseModel):
    title: str
    description: str
    body: str
    image_search_term: str


class ImagePayload(BaseModel):
    data: bytes
    content_type: str


class BannerOrigin(BaseModel):
    source: str
    generated_at: str
    category: str | None = None
    engagement_score: int = 0


class BannerDraft(BaseModel):
    """A fully assembled banner that has not been persisted yet."""

    date: str
    title: str
    description: str
    body: str
    topic_summary: str
    image_url: str
    image: ImagePayload
    origin: BannerOrigin
    status: BannerStatus = "active"
    expires_at: str


class BannerSummary(BaseModel):
    id: str
    date: str
    title: str
    description: str
    topic_summary: str
    origin: BannerOrigin
    created_at: str


class Banner(BannerSummary):
    body: str
    image_url: str
    image_content_type: str
    image_size: int
    status: BannerStatus
    expires_at: str

    @property
    def image_serve_url(self) -> str:
        return f"/artifacts/{self.id}/image"

    def public_view(self) -> dict[str, Any]:
        payload = self.model_dump()
        payload["image_serve_url"] = self.image_serve_url
        return payload


class MemberUpsertRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    role: str | None = Field(default=None, max_length=120)
    department: str | None = Field(default=None, max_length=120)
    bio: str | None = Field(default=None, max_length=500)
    linkedin_profile: str | None = Field(
        default=None,
        pattern=r"^(https?://)?(www\.)?linkedin\.com/in/[a-zA-Z0-9-]+/?$",
    )
    twitter_profile: str | None = None
    skills: list[str] = Field(default_factory=list)
    experience_level: str | None = None

    def normalized_skills(self) -> list[str]:
        return [" ".join(skill.split()) for skill in self.skills if skill.strip()]


class Member(BaseModel):
    user_id: str
    name: str
    role: str | None = None
    department: str | None = None
    bio: str | None = None
    linkedin_profile: str | None = None
    twitter_profile: str | None = None
    skills: list[str] = Field(default_factory=list)
    experience_level: str | None = None
    created_at: str
    updated_at: str

    def analysis_context(self) -> dict[str, Any]:
        return {
            "id": self.user_id,
            "name": self.name,
            "role": self.role,
            "department": self.department,
            "bio": self.bio,
            "skills": list(self.skills),
            "experience_level": self.experience_level,
        }


class RecommendationBuckets(BaseModel):
    profile_optimization: list[str] = Field(default_factory=list)
    networking: list[str] = Field(default_factory=list)
    content_strategy: list[str] = Field(default_factory=list)
    skill_development: list[str] = Field(default_factory=list)
    career_roadmap: list[str] = Field(default_factory=list)

    def total_items(self) -> int:
        return sum(
            len(items)
            for items in (
                self.profile_optimization,
                self.networking,
                self.content_strategy,
                self.skill_development,
                self.career_roadmap,
            )
        )


class AnalysisResult(BaseModel):
    recommendations: RecommendationBuckets
    analysis_narrative: str


class JobMetadata(BaseModel):
    profile_url: str | None = None
    user_role: str | None = None
    user_department: str | None = None
    analysis_date: str | None = None
    completed_at: str | None = None
    provider: str | None = None
    provider_user_id: str | None = None
    score: int | None = None
    total_recommendations: int | None = None


class AnalysisJob(BaseModel):
    id: str
    subject_user_id: str
    source_user_id: str | None = None
    kind: AnalysisKind
    status: JobStatus
    result: AnalysisResult | None = None
    metadata: JobMetadata
    error: str | None = None
    created_at: str
    updated_at: str
