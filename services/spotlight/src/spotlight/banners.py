from __future__ import annotations

import json
import logging
import uuid
from datetime import date

from fastapi.concurrency import run_in_threadpool

from spotlight.builder import BannerBuilder
from spotlight.metrics import ServiceMetrics
from spotlight.models import Banner, BannerSummary, ImagePayload
from spotlight.repository import BannerConflictError, SpotlightRepository

LOGGER = logging.getLogger("skillsync.spotlight.banners")


class BannerCache:
    """One stored banner per calendar date, built on first read.

    There is no application lock. Concurrent misses may each run the full
    pipeline; the UNIQUE constraint on ``banners.date`` picks the survivor and
    every loser re-reads the stored row instead of returning its own draft.

    A stored row that is not ``active`` (expired or draft) still occupies the
    date. It is served as-is until ``regenerate`` replaces it.
    """

    def __init__(
        self,
        repository: SpotlightRepository,
        builder: BannerBuilder,
        *,
        metrics: ServiceMetrics | None = None,
    ) -> None:
        self.repository = repository
        self.builder = builder
        self.metrics = metrics or builder.metrics

    async def get_or_create(self, day: date) -> Banner:
        key = day.isoformat()
        existing = await run_in_threadpool(self.repository.get_active_banner, key)
        if existing is not None:
            return existing

        occupied = await run_in_threadpool(self.repository.get_banner_for_date, key)
        if occupied is not None:
            self.metrics.count("banner_inactive_hit")
            LOGGER.info(
                json.dumps(
                    {
                        "event": "banner_inactive_hit",
                        "date": key,
                        "banner_id": occupied.id,
                        "status": occupied.status,
                    }
                )
            )
            return occupied

        self.metrics.count("banner_cache_miss")
        LOGGER.info(json.dumps({"event": "banner_cache_miss", "date": key}))
        return await self._build_and_store(day)

    async def regenerate(self, day: date) -> Banner:
        deleted = await run_in_threadpool(
            self.repository.delete_banners_for_date,
            day.isoformat(),
        )
        self.metrics.count("banner_regenerated")
        LOGGER.info(
            json.dumps({"event": "banner_regenerate", "date": day.isoformat(), "deleted": deleted})
        )
        return await self._build_and_store(day)

    async def serve_binary(self, banner_id: str) -> ImagePayload | None:
        return await run_in_threadpool(self.repository.get_banner_image, banner_id)

    async def history(self, since: date, *, limit: int = 7) -> list[BannerSummary]:
        return await run_in_threadpool(
            self.repository.list_banner_summaries,
            since.isoformat(),
            limit,
        )

    async def _build_and_store(self, day: date) -> Banner:
        draft = await self.builder.build(day)
        try:
            return await run_in_threadpool(
                self.repository.insert_banner,
                str(uuid.uuid4()),
                draft,
            )
        except BannerConflictError:
            self.metrics.count("banner_insert_race_lost")
            LOGGER.info(json.dumps({"event": "banner_insert_race_lost", "date": draft.date}))

        stored = await run_in_threadpool(self.repository.get_banner_for_date, draft.date)
        if stored is None:
            # The winner was deleted by a concurrent regenerate before we re-read.
            return await self._build_and_store(day)
        return stored
