from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import date, datetime

from common.utils import now_utc, start_of_next_day, truncate

from spotlight.fallbacks import (
    FALLBACK_SOURCE,
    fallback_banner_content,
    fallback_banner_graphic,
    fallback_topic_summary,
    placeholder_image_url,
)
from spotlight.gateway import GatewayError, ServiceGateway
from spotlight.metrics import ServiceMetrics
from spotlight.models import (
    BODY_MAX_LENGTH,
    DESCRIPTION_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    TOPIC_SUMMARY_MAX_LENGTH,
    BannerContent,
    BannerDraft,
    BannerOrigin,
    ImagePayload,
)

LOGGER = logging.getLogger("skillsync.spotlight.builder")

CONTENT_PROVIDER = "Perplexity AI"
IMAGE_PROVIDER = "Unsplash"
BANNER_CATEGORY = "Professional Development"


def period_label(day: date) -> str:
    return day.strftime("%B %Y")


def day_label(day: date) -> str:
    return f"{day.strftime('%A, %B')} {day.day}, {day.year}"


class BannerBuilder:
    """Runs the four-stage banner pipeline for one calendar day.

    Stages: trending topics, banner copy, image search, image download. A
    failed stage is replaced by its fallback and the next stage still runs,
    so ``build`` always returns a complete draft. Nothing is persisted here.
    """

    def __init__(
        self,
        gateway: ServiceGateway,
        *,
        clock: Callable[[], datetime] = now_utc,
        metrics: ServiceMetrics | None = None,
    ) -> None:
        self.gateway = gateway
        self.clock = clock
        self.metrics = metrics or ServiceMetrics()

    def _fallback(self, stage: str, day: date, exc: GatewayError) -> None:
        self.metrics.count(f"banner_stage_fallback.{stage}")
        LOGGER.warning(
            json.dumps(
                {
                    "event": "banner_stage_fallback",
                    "stage": stage,
                    "date": day.isoformat(),
                    "service": exc.service,
                    "error": exc.message,
                }
            )
        )

    async def _topics(self, day: date) -> str:
        try:
            return await self.gateway.fetch_trending_topics(period_label(day))
        except GatewayError as exc:
            self._fallback("topics", day, exc)
            return fallback_topic_summary()

    async def _content(self, day: date, topic_text: str) -> tuple[BannerContent, bool]:
        try:
            content = await self.gateway.generate_banner_content(topic_text, day_label(day))
            return content, True
        except GatewayError as exc:
            self._fallback("content", day, exc)
            return fallback_banner_content(), False

    async def _image_url(self, day: date, term: str) -> tuple[str, bool]:
        try:
            return await self.gateway.search_image(term), True
        except GatewayError as exc:
            self._fallback("image_search", day, exc)
            return placeholder_image_url(), False

    async def _image(self, day: date, url: str) -> tuple[ImagePayload, bool]:
        try:
            return await self.gateway.fetch_image(url), True
        except GatewayError as exc:
            self._fallback("image_fetch", day, exc)
            return fallback_banner_graphic(), False

    async def build(self, day: date) -> BannerDraft:
        topic_text = await self._topics(day)
        content, content_ok = await self._content(day, topic_text)
        image_url, search_ok = await self._image_url(day, content.image_search_term)
        image, fetch_ok = await self._image(day, image_url)

        source_parts = [
            CONTENT_PROVIDER if content_ok else FALLBACK_SOURCE,
            IMAGE_PROVIDER if search_ok and fetch_ok else FALLBACK_SOURCE,
        ]
        draft = BannerDraft(
            date=day.isoformat(),
            title=truncate(content.title, TITLE_MAX_LENGTH),
            description=truncate(content.description, DESCRIPTION_MAX_LENGTH),
            body=truncate(content.body, BODY_MAX_LENGTH),
            topic_summary=truncate(topic_text, TOPIC_SUMMARY_MAX_LENGTH),
            image_url=image_url,
            image=image,
            origin=BannerOrigin(
                source=" + ".join(source_parts),
                generated_at=self.clock().isoformat(),
                category=BANNER_CATEGORY,
            ),
            expires_at=start_of_next_day(day).isoformat(),
        )
        self.metrics.count("banner_built")
        LOGGER.info(
            json.dumps(
                {
                    "event": "banner_built",
                    "date": draft.date,
                    "source": draft.origin.source,
                    "image_content_type": image.content_type,
                    "image_size": len(image.data),
                }
            )
        )
        return draft
