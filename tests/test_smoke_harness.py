from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest
import spotlight.main as spotlight_main
from fastapi.testclient import TestClient
from spotlight.gateway import ServiceGateway
from spotlight.settings import ServiceSettings

pytestmark = [pytest.mark.integration, pytest.mark.smoke]

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x10" * 128


class UpstreamStub:
    """Answers every third-party host the gateway talks to."""

    def __init__(self) -> None:
        self.requests: list[str] = []
        self.down: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        self.requests.append(f"{request.method} {host}{request.url.path}")
        if host in self.down:
            return httpx.Response(503, json={"error": "maintenance"})

        if host == "api.perplexity.ai":
            prompt = json.loads(request.content)["messages"][1]["content"]
            if prompt.startswith("What are the top 3"):
                content = "1. AI copilots\n2. Skills-based hiring\n3. Security culture"
            else:
                content = (
                    "Absolutely! Here's your banner:\n"
                    '{"title": "Pair With Your AI Copilot", '
                    '"description": "Small habits, big leverage.", '
                    '"content": "Copilots are changing daily work.", '
                    '"image_search_term": "developer laptop"}'
                )
            return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

        if host == "api.unsplash.com":
            return httpx.Response(
                200,
                json={"results": [{"urls": {"regular": "https://images.unsplash.com/photo-1"}}]},
            )

        if host == "images.unsplash.com":
            return httpx.Response(200, content=JPEG_BYTES, headers={"content-type": "image/jpeg"})

        if host == "crew.example.com":
            return httpx.Response(
                200,
                json={
                    "profile_optimization": "Lead with impact metrics",
                    "networking": ["Comment weekly on peers' posts"],
                    "analysis_result": "Solid foundation.",
                },
            )

        return httpx.Response(404)


@pytest.fixture
def upstream() -> UpstreamStub:
    return UpstreamStub()


@pytest.fixture
def client(tmp_path: Path, upstream: UpstreamStub):
    settings = ServiceSettings(
        database_path=str(tmp_path / "spotlight.sqlite3"),
        api_tokens={"smoke-token": "smoke-user"},
        perplexity_api_key="pplx-smoke",
        unsplash_access_key="unsplash-smoke",
        analysis_service_url="https://crew.example.com",
    )
    gateway = ServiceGateway(settings, transport=httpx.MockTransport(upstream))
    with TestClient(spotlight_main.create_app(settings=settings, gateway=gateway)) as test_client:
        yield test_client


def test_smoke_module_app_is_ready() -> None:
    with TestClient(spotlight_main.app) as client:
        health = client.get("/health")

    assert health.status_code == 200


def test_smoke_banner_pipeline_through_real_gateway(client: TestClient, upstream) -> None:
    headers = {"Authorization": "Bearer smoke-token"}

    artifact = client.get("/artifacts/today", headers=headers).json()["artifact"]
    image = client.get(artifact["image_serve_url"])

    assert artifact["title"] == "Pair With Your AI Copilot"
    assert artifact["origin"]["source"] == "Perplexity AI + Unsplash"
    assert artifact["image_url"] == "https://images.unsplash.com/photo-1"
    assert image.headers["content-type"] == "image/jpeg"
    assert image.content == JPEG_BYTES
    assert upstream.requests == [
        "POST api.perplexity.ai/chat/completions",
        "POST api.perplexity.ai/chat/completions",
        "GET api.unsplash.com/search/photos",
        "GET images.unsplash.com/photo-1",
    ]


def test_smoke_banner_pipeline_degrades_when_upstreams_fail(client: TestClient, upstream) -> None:
    upstream.down = {"api.perplexity.ai", "api.unsplash.com", "via.placeholder.com"}
    headers = {"Authorization": "Bearer smoke-token"}

    artifact = client.get("/artifacts/today", headers=headers).json()["artifact"]

    assert artifact["title"] == "🚀 Boost Your Career Today!"
    assert artifact["image_url"].startswith("https://via.placeholder.com/1200x300/")
    assert artifact["image_content_type"] == "image/svg+xml"


def test_smoke_linkedin_analysis_through_real_gateway(client: TestClient) -> None:
    headers = {"Authorization": "Bearer smoke-token"}
    client.put(
        "/members/me",
        headers=headers,
        json={"name": "Smoke User", "linkedin_profile": "https://www.linkedin.com/in/smoke-user/"},
    )

    response = client.post("/analysis/linkedin", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert body["result"]["profile_optimization"] == ["Lead with impact metrics"]
    assert body["result"]["score"] == 90
