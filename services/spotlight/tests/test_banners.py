from __future__ import annotations

import asyncio
from datetime import date, timedelta

import pytest
from spotlight.banners import BannerCache
from spotlight.builder import BannerBuilder
from spotlight.repository import BannerConflictError

pytestmark = pytest.mark.unit

DAY = date(2024, 5, 1)


def count_banners(repository, day: date) -> int:
    return int(
        repository.connection.execute(
            "SELECT COUNT(1) AS c FROM banners WHERE date = ?",
            (day.isoformat(),),
        ).fetchone()["c"]
    )


@pytest.fixture
def cache(repository, fake_gateway, fixed_clock) -> BannerCache:
    return BannerCache(repository, BannerBuilder(fake_gateway, clock=fixed_clock))


@pytest.mark.asyncio
async def test_get_or_create_is_idempotent_for_a_day(cache, repository, fake_gateway) -> None:
    first = await cache.get_or_create(DAY)
    second = await cache.get_or_create(DAY)

    assert first.id == second.id
    assert fake_gateway.calls.count("topics") == 1
    assert count_banners(repository, DAY) == 1


@pytest.mark.asyncio
async def test_concurrent_misses_persist_exactly_one_banner(
    cache,
    repository,
    fake_gateway,
) -> None:
    callers = 5
    fake_gateway.topic_barrier = asyncio.Barrier(callers)

    banners = await asyncio.gather(*(cache.get_or_create(DAY) for _ in range(callers)))

    # Every caller missed and built, but only one build survived.
    assert fake_gateway.calls.count("topics") == callers
    assert len({banner.id for banner in banners}) == 1
    assert count_banners(repository, DAY) == 1
    stored = repository.get_active_banner(DAY.isoformat())
    assert stored is not None
    assert stored.id == banners[0].id


@pytest.mark.asyncio
async def test_losing_insert_returns_the_stored_winner(cache, repository, fixed_clock) -> None:
    original_build = cache.builder.build
    winner = {}

    async def build_then_lose_race(day: date):
        draft = await original_build(day)
        winner["banner"] = repository.insert_banner("winner-id", draft)
        return draft

    cache.builder.build = build_then_lose_race

    banner = await cache.get_or_create(DAY)

    assert banner.id == "winner-id"
    assert banner.id == winner["banner"].id
    assert count_banners(repository, DAY) == 1


def test_repository_rejects_second_banner_for_same_day(repository, fake_gateway) -> None:
    draft = asyncio.run(BannerBuilder(fake_gateway).build(DAY))
    repository.insert_banner("first", draft)

    with pytest.raises(BannerConflictError):
        repository.insert_banner("second", draft)


@pytest.mark.asyncio
async def test_regenerate_replaces_the_days_banner(cache, repository, fake_gateway) -> None:
    original = await cache.get_or_create(DAY)
    fake_gateway.failing = {"content"}

    regenerated = await cache.regenerate(DAY)

    assert regenerated.id != original.id
    assert regenerated.title == "🚀 Boost Your Career Today!"
    assert count_banners(repository, DAY) == 1
    assert (await cache.get_or_create(DAY)).id == regenerated.id


@pytest.mark.asyncio
async def test_regenerate_without_existing_banner_creates_one(cache, repository) -> None:
    banner = await cache.regenerate(DAY)

    assert banner.date == DAY.isoformat()
    assert count_banners(repository, DAY) == 1


@pytest.mark.asyncio
async def test_serve_binary_returns_stored_bytes(cache, fake_gateway) -> None:
    fake_gateway.failing = {"image_fetch"}
    banner = await cache.get_or_create(DAY)

    image = await cache.serve_binary(banner.id)

    assert image is not None
    assert image.content_type == "image/svg+xml"
    assert len(image.data) == banner.image_size
    assert await cache.serve_binary("does-not-exist") is None


@pytest.mark.asyncio
async def test_history_is_newest_first_and_bounded(cache) -> None:
    for offset in range(10):
        await cache.get_or_create(DAY - timedelta(days=offset))

    summaries = await cache.history(DAY - timedelta(days=7), limit=7)

    assert [summary.date for summary in summaries] == [
        (DAY - timedelta(days=offset)).isoformat() for offset in range(7)
    ]
    assert all(not hasattr(summary, "body") for summary in summaries)
    assert "image_bytes" not in summaries[0].model_dump()


@pytest.mark.asyncio
async def test_inactive_row_for_the_day_is_served_without_rebuilding(
    cache,
    repository,
    fake_gateway,
) -> None:
    draft = await cache.builder.build(DAY)
    repository.insert_banner("expired-id", draft.model_copy(update={"status": "expired"}))
    fake_gateway.calls.clear()

    banner = await cache.get_or_create(DAY)

    assert banner.id == "expired-id"
    assert banner.status == "expired"
    assert fake_gateway.calls == []
    assert cache.metrics.snapshot().pipeline["banner_inactive_hit"] == 1


@pytest.mark.asyncio
async def test_pipeline_counters_track_misses_fallbacks_and_races(cache, fake_gateway) -> None:
    callers = 3
    fake_gateway.topic_barrier = asyncio.Barrier(callers)
    fake_gateway.failing = {"image_fetch"}

    await asyncio.gather(*(cache.get_or_create(DAY) for _ in range(callers)))

    assert cache.metrics.snapshot().pipeline == {
        "banner_built": callers,
        "banner_cache_miss": callers,
        "banner_insert_race_lost": callers - 1,
        "banner_stage_fallback.image_fetch": callers,
    }
