from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from app.core.config import DEFAULT_NEWS_SOURCES_CONFIG
from app.models.news_sources import (
    DefaultSourceSpec,
    NewsSource,
    SourceReliability,
    SourceType,
    load_default_sources,
    load_news_sources_config,
)
from services import news_source_service
from services.news_source_service import (
    InMemoryNewsSourceRegistry,
    PostgresNewsSourceRegistry,
    default_source_id,
    ensure_default_sources,
    reliability_after_failure,
    reliability_after_success,
)

NOW = datetime(2024, 2, 1, 8, 0, tzinfo=timezone.utc)


def _write_config(tmp_path: Path, content: str) -> Path:
    cfg_path = tmp_path / "news_sources.yml"
    cfg_path.write_text(content, encoding="utf-8")
    return cfg_path


def _make_spec(name: str) -> DefaultSourceSpec:
    return DefaultSourceSpec(
        name=name,
        url=f"https://{name.lower().replace(' ', '')}.example/feed",
        type=SourceType.RSS,
        category="mainstream",
        description=None,
        tags=["news"],
    )


def test_load_default_sources_parses_valid_entries(tmp_path: Path):
    cfg_path = _write_config(
        tmp_path,
        """
version: 1
sources:
  - name: Reason Magazine
    description: "  Free minds and free markets "
    url: https://reason.com/feed/
    type: rss
    category: libertarian
    tags: [Libertarian, " politics ", 3]
  - name: Tech Wire
    url: https://tech.example/feed
    category: tech
""",
    )

    sources = load_default_sources(cfg_path)

    assert [s.name for s in sources] == ["Reason Magazine", "Tech Wire"]
    reason = sources[0]
    assert reason.type == SourceType.RSS
    assert reason.description == "Free minds and free markets"
    assert reason.tags == ["libertarian", "politics"]
    assert sources[1].type == SourceType.RSS
    assert sources[1].tags == []


def test_load_default_sources_skips_invalid_entries(tmp_path: Path):
    cfg_path = _write_config(
        tmp_path,
        """
sources:
  - name: Missing URL
    category: tech
  - name: Bad Category
    url: https://bad.example/feed
    category: gossip
  - name: Bad Scheme
    url: ftp://bad.example/feed
    category: tech
  - name: Bad Type
    url: https://bad.example/feed
    category: tech
    type: carrier-pigeon
  - just a string
  - name: Good
    url: https://good.example/feed
    type: API
    category: financial
""",
    )

    sources = load_default_sources(cfg_path)

    assert [s.name for s in sources] == ["Good"]
    assert sources[0].type == SourceType.API


def test_load_config_missing_or_invalid_file(tmp_path: Path):
    assert load_news_sources_config(tmp_path / "missing.yml") == {}
    assert load_news_sources_config(_write_config(tmp_path, "- a\n- b\n")) == {}
    assert load_news_sources_config(_write_config(tmp_path, "sources: [unclosed\n")) == {}
    assert load_default_sources(_write_config(tmp_path, "sources: nope\n")) == []


def test_bundled_default_catalog_is_valid():
    sources = load_default_sources(DEFAULT_NEWS_SOURCES_CONFIG)

    names = {s.name for s in sources}
    assert len(sources) == 8
    assert {"Reason Magazine", "BBC News", "Ars Technica"} <= names
    assert all(s.url.startswith(("http://", "https://")) for s in sources)


def test_reliability_after_failure_penalizes_each_failure():
    current = SourceReliability(score=90, failure_count=1, last_successful_fetch=NOW)

    updated = reliability_after_failure(current, NOW)

    assert updated.failure_count == 2
    assert updated.score == 80
    assert updated.last_failed_fetch == NOW
    assert updated.last_successful_fetch == NOW


def test_reliability_score_floors_at_zero():
    updated = reliability_after_failure(SourceReliability(score=0, failure_count=12), NOW)

    assert updated.score == 0
    assert updated.failure_count == 13


def test_reliability_after_success_resets():
    updated = reliability_after_success(NOW)

    assert updated.score == 100
    assert updated.failure_count == 0
    assert updated.last_successful_fetch == NOW


@pytest.mark.asyncio
async def test_failure_at_threshold_deactivates_source():
    source = NewsSource(
        source_id="s1",
        name="Shaky",
        url="https://shaky.example/rss",
        reliability=SourceReliability(score=40, failure_count=6),
    )
    registry = InMemoryNewsSourceRegistry([source])

    await registry.record_fetch_failure("s1", "HTTP 500")

    updated = await registry.get_news_source_by_id("s1")
    assert updated.reliability.score == 30
    assert updated.is_active is False


@pytest.mark.asyncio
async def test_active_sources_for_fetching_limits_then_filters_by_score():
    sources = [
        NewsSource(source_id="a", name="A", url="https://a.example/rss"),
        NewsSource(
            source_id="b",
            name="B",
            url="https://b.example/rss",
            reliability=SourceReliability(score=40, failure_count=6),
        ),
        NewsSource(source_id="c", name="C", url="https://c.example/rss", is_active=False),
        NewsSource(source_id="d", name="D", url="https://d.example/rss"),
    ]
    registry = InMemoryNewsSourceRegistry(sources)

    assert [s.source_id for s in await registry.get_active_sources_for_fetching(50)] == ["a", "d"]
    assert [s.source_id for s in await registry.get_active_sources_for_fetching(2)] == ["a"]


@pytest.mark.asyncio
async def test_ensure_default_sources_is_idempotent():
    registry = InMemoryNewsSourceRegistry(
        [NewsSource(source_id="existing", name="Alpha", url="https://alpha.example/feed")]
    )
    defaults = [_make_spec("Alpha"), _make_spec("Beta"), _make_spec("Gamma")]

    created_first = await ensure_default_sources(registry, defaults)
    created_again = await ensure_default_sources(registry, defaults)

    assert created_first == 2
    assert created_again == 0
    names = sorted(s.name for s in await registry.list_public_sources())
    assert names == ["Alpha", "Beta", "Gamma"]


@pytest.mark.asyncio
async def test_ensure_default_sources_continues_after_create_error():
    class FlakyRegistry(InMemoryNewsSourceRegistry):
        async def create_news_source(self, *, name, **kwargs):
            if name == "Beta":
                raise RuntimeError("unique violation")
            return await super().create_news_source(name=name, **kwargs)

    registry = FlakyRegistry()

    created = await ensure_default_sources(registry, [_make_spec("Beta"), _make_spec("Gamma")])

    assert created == 1
    assert [s.name for s in await registry.list_public_sources()] == ["Gamma"]


@pytest.mark.asyncio
async def test_seeded_sources_get_name_derived_ids():
    first = InMemoryNewsSourceRegistry()
    second = InMemoryNewsSourceRegistry()

    await ensure_default_sources(first, [_make_spec("Beta")])
    await ensure_default_sources(second, [_make_spec("Beta")])

    [a] = await first.list_public_sources()
    [b] = await second.list_public_sources()
    assert a.source_id == b.source_id == default_source_id("Beta")
    assert default_source_id("  beta ") == default_source_id("Beta")
    assert default_source_id("Gamma") != default_source_id("Beta")


def _make_row(source_id: str = "s1", **overrides):
    row = {
        "id": source_id,
        "name": f"Source {source_id}",
        "url": f"https://{source_id}.example/rss",
        "type": "rss",
        "category": "mainstream",
        "description": None,
        "is_active": True,
        "is_public": True,
        "added_by_user_id": None,
        "tags": ["news"],
        "fetch_config": '{"headers": {"X-Api-Key": "k"}, "rate_limit": 10, "selector": null}',
        "reliability_score": 100,
        "failure_count": 0,
        "last_successful_fetch": None,
        "last_failed_fetch": None,
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_postgres_registry_maps_rows(monkeypatch):
    async def fake_fetchrow(query, *args):
        assert args == ("s1",)
        return _make_row("s1", type="api")

    monkeypatch.setattr(news_source_service, "fetchrow", fake_fetchrow)

    source = await PostgresNewsSourceRegistry().get_news_source_by_id("s1")

    assert source.type == SourceType.API
    assert source.tags == ["news"]
    assert source.fetch_config.headers == {"X-Api-Key": "k"}
    assert source.fetch_config.rate_limit == 10
    assert source.reliability.score == 100


@pytest.mark.asyncio
async def test_postgres_registry_filters_low_scores_after_limit(monkeypatch):
    queries = []

    async def fake_fetch(query, *args):
        queries.append((query, args))
        return [_make_row("a"), _make_row("b", reliability_score=40, failure_count=6)]

    monkeypatch.setattr(news_source_service, "fetch", fake_fetch)

    sources = await PostgresNewsSourceRegistry().get_active_sources_for_fetching(2)

    assert [s.source_id for s in sources] == ["a"]
    assert "WHERE is_active" in queries[0][0]
    assert queries[0][1] == (2,)


@pytest.mark.asyncio
async def test_postgres_registry_failure_persists_penalty_and_deactivates(monkeypatch):
    updates = []

    async def fake_fetchrow(query, *args):
        return _make_row("s1", reliability_score=40, failure_count=6)

    async def fake_execute(query, *args):
        updates.append((query, args))
        return "UPDATE 1"

    monkeypatch.setattr(news_source_service, "fetchrow", fake_fetchrow)
    monkeypatch.setattr(news_source_service, "execute", fake_execute)

    await PostgresNewsSourceRegistry().record_fetch_failure("s1", "HTTP 500")

    query, args = updates[0]
    assert "UPDATE news_sources" in query
    assert args[0] == "s1"
    assert args[1] == 30
    assert args[2] == 7
    assert args[4] is False
    assert args[5] == "HTTP 500"


@pytest.mark.asyncio
async def test_postgres_registry_success_resets_score(monkeypatch):
    updates = []

    async def fake_execute(query, *args):
        updates.append(args)
        return "UPDATE 1"

    monkeypatch.setattr(news_source_service, "execute", fake_execute)

    await PostgresNewsSourceRegistry().record_fetch_success("s1")

    assert updates[0][0] == "s1"
    assert updates[0][1] == 100
    assert updates[0][2] is not None


@pytest.mark.asyncio
async def test_postgres_seeding_uses_stable_ids_and_skips_existing(monkeypatch):
    inserted = []

    async def fake_fetch(query, *args):
        return [_make_row(default_source_id("Alpha"), name="Alpha")]

    async def fake_fetchrow(query, *args):
        inserted.append(args)
        return _make_row(args[0], name=args[1], url=args[2])

    monkeypatch.setattr(news_source_service, "fetch", fake_fetch)
    monkeypatch.setattr(news_source_service, "fetchrow", fake_fetchrow)

    created = await ensure_default_sources(PostgresNewsSourceRegistry(), [_make_spec("Alpha"), _make_spec("Beta")])

    assert created == 1
    assert [args[0] for args in inserted] == [default_source_id("Beta")]
    assert inserted[0][1] == "Beta"
