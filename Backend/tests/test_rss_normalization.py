from __future__ import annotations

from datetime import datetime, timezone

import feedparser

from app.models.news_sources import NewsSource
from services.rss_normalization import (
    MAX_SUMMARY_LENGTH,
    extract_image_url,
    extract_published_at,
    merge_tags,
    normalize_entry,
    normalize_feed_entries,
    normalize_url,
    sanitize_tag,
)

FETCHED_AT = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _make_source(tags=None) -> NewsSource:
    return NewsSource(
        source_id="src-reason",
        name="Reason Magazine",
        url="https://reason.com/feed/",
        category="libertarian",
        tags=list(tags if tags is not None else ["libertarian", "politics"]),
    )


def test_rss_normalization_happy_path():
    xml = """
    <rss version="2.0">
      <channel>
        <title>Example RSS</title>
        <item>
          <title>First item</title>
          <link>https://example.com/1?utm_source=rss&amp;id=7</link>
          <description><![CDATA[<p>Hello <b>world</b></p>]]></description>
          <pubDate>Mon, 01 Jan 2024 10:00:00 GMT</pubDate>
          <category>Free Markets</category>
          <author>editor@example.com (Jane Editor)</author>
        </item>
      </channel>
    </rss>
    """
    parsed = feedparser.parse(xml)

    items, errors = normalize_feed_entries(parsed, _make_source(), FETCHED_AT)

    assert errors == []
    assert len(items) == 1
    item = items[0]
    assert item.title == "First item"
    assert item.original_url == "https://example.com/1?id=7"
    assert item.summary == "Hello world"
    assert item.source_id == "src-reason"
    assert item.source_name == "Reason Magazine"
    assert item.published_at == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert item.tags == ["free-markets", "libertarian", "politics"]


def test_atom_normalization_uses_alternate_link():
    xml = """
    <feed xmlns="http://www.w3.org/2005/Atom">
      <title>Example Atom</title>
      <entry>
        <title>Atom entry</title>
        <id>tag:example.com,2024:1</id>
        <updated>2024-01-01T10:00:00Z</updated>
        <summary>Summary text</summary>
        <link rel="alternate" href="https://example.com/atom/1" />
      </entry>
    </feed>
    """
    parsed = feedparser.parse(xml)

    items, errors = normalize_feed_entries(parsed, _make_source(), FETCHED_AT)

    assert errors == []
    assert len(items) == 1
    assert items[0].original_url == "https://example.com/atom/1"
    assert items[0].summary == "Summary text"
    assert items[0].published_at.tzinfo is not None


def test_entries_without_link_or_title_are_dropped():
    xml = """
    <rss version="2.0">
      <channel>
        <title>Partial</title>
        <item>
          <title>No link here</title>
        </item>
        <item>
          <link>https://example.com/untitled</link>
        </item>
        <item>
          <title>Complete</title>
          <link>https://example.com/complete</link>
        </item>
      </channel>
    </rss>
    """
    parsed = feedparser.parse(xml)

    items, errors = normalize_feed_entries(parsed, _make_source(), FETCHED_AT)

    assert errors == []
    assert [i.title for i in items] == ["Complete"]


def test_missing_fields_receive_defaults():
    entry = {"title": "Bare", "link": "https://example.com/bare"}

    item = normalize_entry(_make_source(), entry, FETCHED_AT)

    assert item is not None
    assert item.published_at == FETCHED_AT
    assert item.author == "Reason Magazine"
    assert item.summary == ""
    assert item.image_url is None


def test_corrupt_entry_becomes_error_without_failing_feed():
    feed = {
        "entries": [
            {"title": "Good", "link": "https://example.com/good"},
            "not-an-entry",
        ]
    }

    items, errors = normalize_feed_entries(feed, _make_source(), FETCHED_AT)

    assert [i.title for i in items] == ["Good"]
    assert len(errors) == 1
    assert errors[0].entry_raw == {}


def test_summary_is_truncated():
    entry = {
        "title": "Long",
        "link": "https://example.com/long",
        "summary": "x" * 800,
    }

    item = normalize_entry(_make_source(), entry, FETCHED_AT)

    assert len(item.summary) == MAX_SUMMARY_LENGTH


def test_summary_falls_back_to_content_block():
    entry = {
        "title": "Body only",
        "link": "https://example.com/body",
        "content": [{"value": "<div>Full <em>body</em></div>"}],
    }

    item = normalize_entry(_make_source(), entry, FETCHED_AT)

    assert item.summary == "Full body"
    assert item.content == "<div>Full <em>body</em></div>"


def test_normalize_url_strips_tracking_params():
    assert (
        normalize_url("https://Example.com/path?utm_source=x&id=5&utm_medium=y")
        == "https://example.com/path?id=5"
    )
    assert normalize_url("https://example.com/a?utm_campaign=z") == "https://example.com/a"
    assert normalize_url("/relative?utm_source=x") == "/relative?utm_source=x"


def test_image_priority_prefers_thumbnail_then_media_content():
    entry = {
        "media_thumbnail": [{"url": "https://img.example/thumb.jpg"}],
        "media_content": [{"url": "https://img.example/content.jpg"}],
        "enclosures": [{"href": "https://img.example/enc.jpg", "type": "image/jpeg"}],
        "summary": '<img src="https://img.example/inline.jpg">',
    }
    assert extract_image_url(entry) == "https://img.example/thumb.jpg"

    entry.pop("media_thumbnail")
    assert extract_image_url(entry) == "https://img.example/content.jpg"

    entry.pop("media_content")
    assert extract_image_url(entry) == "https://img.example/enc.jpg"

    entry.pop("enclosures")
    assert extract_image_url(entry) == "https://img.example/inline.jpg"


def test_non_image_enclosure_is_ignored():
    entry = {
        "enclosures": [{"href": "https://cdn.example/episode.mp3", "type": "audio/mpeg"}],
    }
    assert extract_image_url(entry) is None


def test_media_thumbnail_from_real_feed():
    xml = """
    <rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/">
      <channel>
        <title>Media</title>
        <item>
          <title>With thumbnail</title>
          <link>https://example.com/media</link>
          <media:thumbnail url="https://img.example/feed-thumb.jpg" />
        </item>
      </channel>
    </rss>
    """
    parsed = feedparser.parse(xml)

    items, _ = normalize_feed_entries(parsed, _make_source(), FETCHED_AT)

    assert items[0].image_url == "https://img.example/feed-thumb.jpg"


def test_published_at_tries_string_fields_in_order():
    entry = {"published": "not a date", "updated": "2024-03-05T08:30:00Z"}
    assert extract_published_at(entry, FETCHED_AT) == datetime(2024, 3, 5, 8, 30, tzinfo=timezone.utc)

    assert extract_published_at({"published": "garbage"}, FETCHED_AT) == FETCHED_AT


def test_raw_date_strings_are_converted_to_utc():
    rfc822 = {"pubDate": "Tue, 02 Jan 2024 09:00:00 +0200"}
    assert extract_published_at(rfc822, FETCHED_AT) == datetime(2024, 1, 2, 7, 0, tzinfo=timezone.utc)

    naive = {"date": "2024-03-05 08:30"}
    assert extract_published_at(naive, FETCHED_AT) == datetime(2024, 3, 5, 8, 30, tzinfo=timezone.utc)


def test_tags_are_sanitized_bounded_and_capped():
    assert sanitize_tag("  Free Markets! ") == "free-markets"

    entry = {
        "title": "Tagged",
        "link": "https://example.com/tagged",
        "tags": [{"term": "a" * 50}, {"term": "b" * 51}, {"term": "!!!"}],
    }
    item = normalize_entry(_make_source(tags=[]), entry, FETCHED_AT)
    assert item.tags == ["a" * 50]

    many = {
        "title": "Many",
        "link": "https://example.com/many",
        "tags": [{"term": f"topic {i}"} for i in range(12)],
    }
    item = normalize_entry(_make_source(), many, FETCHED_AT)
    assert len(item.tags) == 10
    assert item.tags[0] == "topic-0"


def test_merge_tags_keeps_first_occurrence():
    assert merge_tags(["economics", "policy"], ["policy", "liberty"]) == ["economics", "policy", "liberty"]
