from __future__ import annotations

import json
import os
import tempfile

from pydantic import BaseModel, Field

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "skillsync", "spotlight.sqlite3")


def parse_api_tokens(raw: str) -> dict[str, str]:
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError("SPOTLIGHT_API_TOKENS_JSON must be a JSON object.")

    token_map: dict[str, str] = {}
    for token, user_id in parsed.items():
        if not isinstance(token, str) or not token.strip():
            raise ValueError("Token keys must be non-empty strings.")
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValueError("Token values must be non-empty member ids.")
        token_map[token.strip()] = user_id.strip()
    return token_map


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


class ServiceSettings(BaseModel):
    database_path: str = DEFAULT_DB_PATH
    api_tokens: dict[str, str] = Field(default_factory=dict)

    perplexity_api_key: str | None = None
    perplexity_base_url: str = "https://api.perplexity.ai"
    perplexity_model: str = "sonar-pro"

    unsplash_access_key: str | None = None
    unsplash_base_url: str = "https://api.unsplash.com"

    analysis_service_url: str | None = None

    topic_timeout_seconds: float = Field(default=30.0, gt=0)
    content_timeout_seconds: float = Field(default=30.0, gt=0)
    image_timeout_seconds: float = Field(default=30.0, gt=0)
    profile_analysis_timeout_seconds: float = Field(default=60.0, gt=0)
    inspiration_timeout_seconds: float = Field(default=45.0, gt=0)

    user_agent: str = "SkillSync-Banner-Bot/1.0"

    @classmethod
    def from_env(cls) -> ServiceSettings:
        raw_tokens = _env("SPOTLIGHT_API_TOKENS_JSON")
        return cls(
            database_path=_env("SPOTLIGHT_DB_PATH") or DEFAULT_DB_PATH,
            api_tokens=parse_api_tokens(raw_tokens) if raw_tokens else {},
            perplexity_api_key=_env("PERPLEXITY_API_KEY") or None,
            perplexity_base_url=_env("PERPLEXITY_BASE_URL") or "https://api.perplexity.ai",
            perplexity_model=_env("PERPLEXITY_MODEL") or "sonar-pro",
            unsplash_access_key=_env("UNSPLASH_ACCESS_KEY") or None,
            unsplash_base_url=_env("UNSPLASH_BASE_URL") or "https://api.unsplash.com",
            analysis_service_url=_env("ANALYSIS_SERVICE_URL") or None,
        )
