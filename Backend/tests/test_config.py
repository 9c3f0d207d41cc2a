from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.core.config import DEFAULT_NEWS_SOURCES_CONFIG, Settings


def test_settings_defaults(monkeypatch):
    for name in (
        "FEED_EPHEMERAL_TTL_MINUTES",
        "FEED_EPHEMERAL_DEFAULT_LIMIT",
        "MAX_AGGREGATION_LIMIT",
        "NEWS_FETCH_DEFAULT_CONCURRENCY",
        "NEWS_FETCH_MAX_CONCURRENCY",
        "NEWS_FETCH_DEFAULT_SOURCE_LIMIT",
        "RSS_FETCH_TIMEOUT_S",
        "NEWS_SOURCES_CONFIG",
        "DB_POOL_MIN_SIZE",
        "DB_POOL_MAX_SIZE",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.FEED_EPHEMERAL_TTL_MINUTES == 15
    assert settings.FEED_EPHEMERAL_DEFAULT_LIMIT == 20
    assert settings.MAX_AGGREGATION_LIMIT == 100
    assert settings.NEWS_FETCH_DEFAULT_CONCURRENCY == 5
    assert settings.NEWS_FETCH_MAX_CONCURRENCY == 20
    assert settings.NEWS_FETCH_DEFAULT_SOURCE_LIMIT == 50
    assert settings.RSS_FETCH_TIMEOUT_S == 10
    assert settings.NEWS_SOURCES_CONFIG == DEFAULT_NEWS_SOURCES_CONFIG
    assert settings.DB_POOL_MIN_SIZE == 1
    assert settings.DB_POOL_MAX_SIZE == 4
    assert settings.LOG_LEVEL == "INFO"


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("FEED_EPHEMERAL_TTL_MINUTES", "30")
    monkeypatch.setenv("rss_user_agent", "custom-reader/2.0")

    settings = Settings(_env_file=None)

    assert settings.FEED_EPHEMERAL_TTL_MINUTES == 30
    assert settings.RSS_USER_AGENT == "custom-reader/2.0"


def test_default_limit_cannot_exceed_maximum():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, FEED_EPHEMERAL_DEFAULT_LIMIT=200, MAX_AGGREGATION_LIMIT=100)


def test_default_concurrency_cannot_exceed_maximum():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, NEWS_FETCH_DEFAULT_CONCURRENCY=30, NEWS_FETCH_MAX_CONCURRENCY=20)


def test_non_positive_ttl_is_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, FEED_EPHEMERAL_TTL_MINUTES=0)


def test_pool_min_cannot_exceed_max():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, DB_POOL_MIN_SIZE=10, DB_POOL_MAX_SIZE=2)
