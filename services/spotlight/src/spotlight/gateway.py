from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from common.utils import extract_json_object

from spotlight.models import AnalysisKind, BannerContent, ImagePayload
from spotlight.settings import ServiceSettings

LOGGER = logging.getLogger("skillsync.spotlight.gateway")

ANALYSIS_PATHS = {
    AnalysisKind.PROFILE_ANALYSIS: "/analyze-linkedin-profile",
    AnalysisKind.PEER_INSPIRATION: "/generate-career-inspiration",
}

TOPICS_SYSTEM_PROMPT = (
    "You are a professional trends analyst. Provide concise, accurate information "
    "about current technology and professional development trends."
)
CONTENT_SYSTEM_PROMPT = (
    "You are a content creator specializing in professional development content. "
    "Always respond with valid JSON format."
)


class GatewayError(Exception):
    """Raised for any failed outbound call: timeout, transport, status or body."""

    def __init__(
        self,
        service: str,
        message: str,
        *,
        status_code: int | None = None,
        detail: Any = None,
    ) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.message = message
        self.status_code = status_code
        self.detail = detail


def build_topics_prompt(period_label: str) -> str:
    return (
        "What are the top 3 trending topics in technology, AI, and professional development "
        f"for {period_label}? Focus on topics that would be relevant for professionals and "
        "career development. Please provide a brief description of each trend and why it's "
        "significant."
    )


def build_content_prompt(topic_text: str, day_label: str) -> str:
    return f"""Create engaging banner content for a professional skills development platform for {day_label}.

Hot Topic Context: {topic_text}

Please provide:
1. A catchy title (max 50 characters) that relates to the hot topic and professional growth
2. A compelling description (max 150 characters) that motivates professionals
3. Main content (max 300 words) that provides valuable insights about the hot topic and how professionals can leverage it for career growth
4. Suggest a relevant professional stock image search term for the banner background

Format your response as JSON:
{{
  "title": "...",
  "description": "...",
  "content": "...",
  "image_search_term": "..."
}}"""


def parse_banner_content(text: str) -> BannerContent:
    try:
        parsed = extract_json_object(text)
    except ValueError as exc:
        raise GatewayError("content", f"unparsable content reply: {exc}") from exc

    fields: dict[str, str] = {}
    for name, keys in (
        ("title", ("title",)),
        ("description", ("description",)),
        ("body", ("content", "body")),
        ("image_search_term", ("image_search_term", "imageSearchTerm")),
    ):
        value = next((parsed[key] for key in keys if key in parsed), None)
        if not isinstance(value, str) or not value.strip():
            raise GatewayError("content", f"content reply is missing '{name}'")
        fields[name] = value.strip()
    return BannerContent(**fields)


class ServiceGateway:
    """Typed client for every third-party call made by the service.

    Each call opens a short-lived ``httpx.AsyncClient`` bounded by the timeout
    configured for that call. ``transport`` lets tests route requests to an
    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        settings: ServiceSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout,
            transport=self._transport,
            headers={"User-Agent": self.settings.user_agent},
            follow_redirects=True,
        )

    async def _send(
        self,
        service: str,
        method: str,
        url: str,
        *,
        timeout: float,
        **request_kwargs: Any,
    ) -> httpx.Response:
        try:
            async with self._client(timeout) as client:
                response = await client.request(method, url, **request_kwargs)
        except httpx.TimeoutException as exc:
            raise GatewayError(service, f"timed out after {timeout:g}s") from exc
        except httpx.InvalidURL as exc:
            raise GatewayError(service, f"invalid url: {exc}") from exc
        except httpx.HTTPError as exc:
            raise GatewayError(service, f"request failed: {exc}") from exc

        if response.status_code >= 400:
            detail: Any = None
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                detail = body.get("detail") or body.get("error")
            raise GatewayError(
                service,
                f"upstream returned HTTP {response.status_code}",
                status_code=response.status_code,
                detail=detail,
            )
        return response

    @staticmethod
    def _json(service: str, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(service, "upstream returned a non-JSON body") from exc

    async def _chat_completion(
        self,
        service: str,
        *,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        timeout: float,
    ) -> str:
        if not self.settings.perplexity_api_key:
            raise GatewayError(service, "missing Perplexity API key")

        response = await self._send(
            service,
            "POST",
            f"{self.settings.perplexity_base_url.rstrip('/')}/chat/completions",
            timeout=timeout,
            headers={"Authorization": f"Bearer {self.settings.perplexity_api_key}"},
            json={
                "model": self.settings.perplexity_model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                "max_tokens": max_tokens,
                "temperature": temperature,
            },
        )
        body = self._json(service, response)
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GatewayError(service, "completion reply has no message content") from exc
        if not isinstance(content, str) or not content.strip():
            raise GatewayError(service, "completion reply is empty")
        return content

    async def fetch_trending_topics(self, period_label: str) -> str:
        return await self._chat_completion(
            "topics",
            system_prompt=TOPICS_SYSTEM_PROMPT,
            user_prompt=build_topics_prompt(period_label),
            max_tokens=1000,
            temperature=0.7,
            timeout=self.settings.topic_timeout_seconds,
        )

    async def generate_banner_content(self, topic_text: str, day_label: str) -> BannerContent:
        reply = await self._chat_completion(
            "content",
            system_prompt=CONTENT_SYSTEM_PROMPT,
            user_prompt=build_content_prompt(topic_text, day_label),
            max_tokens=1500,
            temperature=0.8,
            timeout=self.settings.content_timeout_seconds,
        )
        return parse_banner_content(reply)

    async def search_image(self, term: str) -> str:
        if not self.settings.unsplash_access_key:
            raise GatewayError("image_search", "missing Unsplash access key")

        response = await self._send(
            "image_search",
            "GET",
            f"{self.settings.unsplash_base_url.rstrip('/')}/search/photos",
            timeout=self.settings.image_timeout_seconds,
            headers={"Authorization": f"Client-ID {self.settings.unsplash_access_key}"},
            params={
                "query": term,
                "per_page": 1,
                "orientation": "landscape",
                "content_filter": "high",
            },
        )
        body = self._json("image_search", response)
        results = body.get("results") if isinstance(body, dict) else None
        if not results:
            raise GatewayError("image_search", f"no image found for '{term}'")
        try:
            url = results[0]["urls"]["regular"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GatewayError("image_search", "search result has no image url") from exc
        if not isinstance(url, str) or not url:
            raise GatewayError("image_search", "search result has no image url")
        return url

    async def fetch_image(self, url: str) -> ImagePayload:
        response = await self._send(
            "image_fetch",
            "GET",
            url,
            timeout=self.settings.image_timeout_seconds,
        )
        if not response.content:
            raise GatewayError("image_fetch", "image body is empty")
        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        return ImagePayload(data=response.content, content_type=content_type or "image/jpeg")

    async def call_analysis_service(
        self,
        kind: AnalysisKind,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        service = f"analysis:{kind.value}"
        path = ANALYSIS_PATHS.get(kind)
        if path is None:
            raise GatewayError(service, f"no analysis route for kind '{kind.value}'")
        if not self.settings.analysis_service_url:
            raise GatewayError(service, "analysis service url is not configured")

        timeout = (
            self.settings.profile_analysis_timeout_seconds
            if kind == AnalysisKind.PROFILE_ANALYSIS
            else self.settings.inspiration_timeout_seconds
        )
        LOGGER.info(json.dumps({"event": "analysis_call", "kind": kind.value, "path": path}))
        response = await self._send(
            service,
            "POST",
            f"{self.settings.analysis_service_url.rstrip('/')}{path}",
            timeout=timeout,
            json=payload,
        )
        body = self._json(service, response)
        if not isinstance(body, dict):
            raise GatewayError(service, "analysis reply is not a JSON object")
        return body
