from __future__ import annotations

import asyncio
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
from spotlight.gateway import GatewayError
from spotlight.models import AnalysisKind, BannerContent, ImagePayload, MemberUpsertRequest
from spotlight.repository import SpotlightRepository

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64

LINKEDIN_REPLY: dict[str, Any] = {
    "profile_optimization": ["Rewrite the headline", "Add a banner photo"],
    "networking": "Join two industry groups",
    "content_strategy": [],
    "skill_development": ["Finish the cloud certification", "   "],
    "analysis_result": "Strong technical profile with a thin summary.",
    "profile_analyzed": "https://linkedin.com/in/ada-lovelace",
    "completed_at": "2024-05-01T10:00:00Z",
    "user_id": "crew-42",
}


class FakeGateway:
    """In-memory stand-in for ServiceGateway with per-service failure switches."""

    def __init__(self) -> None:
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self.topic_barrier: asyncio.Barrier | None = None
        self.image_term: str | None = None
        self.analysis_reply: dict[str, Any] = dict(LINKEDIN_REPLY)
        self.analysis_error: BaseException | None = None
        self.analysis_payloads: list[tuple[AnalysisKind, dict[str, Any]]] = []

    def _maybe_fail(self, service: str) -> None:
        self.calls.append(service)
        if service in self.failing:
            raise GatewayError(service, "service unavailable")

    async def fetch_trending_topics(self, period_label: str) -> str:
        if self.topic_barrier is not None:
            await self.topic_barrier.wait()
        self._maybe_fail("topics")
        return f"1. Agentic AI in {period_label}\n2. Platform engineering\n3. Green software"

    async def generate_banner_content(self, topic_text: str, day_label: str) -> BannerContent:
        self._maybe_fail("content")
        return BannerContent(
            title="Ride the Agentic AI Wave",
            description=f"What {day_label} means for your career",
            body=f"Context: {topic_text}",
            image_search_term="ai team collaboration",
        )

    async def search_image(self, term: str) -> str:
        self.image_term = term
        self._maybe_fail("image_search")
        return "https://images.example.com/banner.png"

    async def fetch_image(self, url: str) -> ImagePayload:
        self._maybe_fail("image_fetch")
        return ImagePayload(data=PNG_BYTES, content_type="image/png")

    async def call_analysis_service(
        self,
        kind: AnalysisKind,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        self.calls.append(f"analysis:{kind.value}")
        self.analysis_payloads.append((kind, payload))
        if self.analysis_error is not None:
            raise self.analysis_error
        return self.analysis_reply


class FixedClock:
    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def fixed_clock() -> FixedClock:
    return FixedClock(datetime(2024, 5, 1, 9, 30, tzinfo=UTC))


@pytest.fixture
def repository(tmp_path: Path) -> Iterator[SpotlightRepository]:
    repo = SpotlightRepository(str(tmp_path / "spotlight.sqlite3"))
    repo.connect()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture
def seeded_repository(repository: SpotlightRepository) -> SpotlightRepository:
    repository.upsert_member(
        "ada",
        MemberUpsertRequest(
            name="Ada Lovelace",
            role="Staff Engineer",
            department="Platform",
            linkedin_profile="https://linkedin.com/in/ada-lovelace",
            skills=["Python", "  Distributed   Systems "],
            experience_level="senior",
        ),
    )
    repository.upsert_member(
        "grace",
        MemberUpsertRequest(
            name="Grace Hopper",
            role="Principal Engineer",
            department="Compilers",
            linkedin_profile="https://linkedin.com/in/grace-hopper",
            skills=["COBOL"],
        ),
    )
    repository.upsert_member("linus", MemberUpsertRequest(name="Linus", role="Engineer"))
    return repository
