from __future__ import annotations

import json

import pytest

from app.core.config import Settings
from app.deps.feed_services import build_feed_services
from app.models.feeds import FeedConfig, FeedSourceRef
from services import feed_service
from services.article_sink import PostgresArticleSink
from services.ephemeral_cache import PostgresEphemeralCache
from services.feed_service import InMemoryFeedRegistry, PostgresFeedRegistry
from services.news_source_service import InMemoryNewsSourceRegistry, PostgresNewsSourceRegistry


def _make_feed() -> FeedConfig:
    return FeedConfig(
        feed_id="feed-1",
        user_id="user-1",
        name="Morning reads",
        sources=[FeedSourceRef(source_id="src-1"), FeedSourceRef(source_id="src-2", enabled=False)],
        keywords=["markets"],
    )


@pytest.mark.asyncio
async def test_postgres_feed_round_trip(monkeypatch):
    stored = {}

    async def fake_execute(query, *args):
        stored[args[0]] = args[2]
        return "INSERT 0 1"

    async def fake_fetchrow(query, *args):
        config = stored.get(args[0])
        return {"config": config} if config else None

    monkeypatch.setattr(feed_service, "execute", fake_execute)
    monkeypatch.setattr(feed_service, "fetchrow", fake_fetchrow)

    registry = PostgresFeedRegistry()
    await registry.save_feed(_make_feed())
    loaded = await registry.get_feed_by_id("feed-1")

    assert loaded == _make_feed()
    assert loaded.enabled_source_ids == ["src-1"]
    assert await registry.get_feed_by_id("missing") is None


@pytest.mark.asyncio
async def test_postgres_feed_with_invalid_config_is_missing(monkeypatch):
    async def fake_fetchrow(query, *args):
        return {"config": json.dumps({"feed_id": "feed-1"})}

    monkeypatch.setattr(feed_service, "fetchrow", fake_fetchrow)

    assert await PostgresFeedRegistry().get_feed_by_id("feed-1") is None


def test_database_url_switches_every_store_to_postgres():
    services = build_feed_services(Settings(_env_file=None, DATABASE_URL="postgresql://db.example/feeds"))

    assert isinstance(services.registry, PostgresNewsSourceRegistry)
    assert isinstance(services.feeds, PostgresFeedRegistry)
    assert isinstance(services.cache, PostgresEphemeralCache)
    assert isinstance(services.sink, PostgresArticleSink)
    assert services.uses_database is True


def test_without_database_everything_is_in_process():
    services = build_feed_services(Settings(_env_file=None, DATABASE_URL=None))

    assert isinstance(services.registry, InMemoryNewsSourceRegistry)
    assert isinstance(services.feeds, InMemoryFeedRegistry)
    assert services.uses_database is False
