from __future__ import annotations

import logging

from app.core.logging import (
    MAX_FIELD_CHARS,
    _add_correlation_ids,
    _clip_long_fields,
    _redact_secrets,
    resolve_level,
)
from app.core.request_id import begin_request, end_request, get_request_id, get_run_id, with_run_id


def test_secrets_are_redacted():
    event = {"event": "rss_fetch_failed", "headers": {"X-Api-Key": "k"}, "Authorization": "Bearer t", "source_id": "s1"}

    redacted = _redact_secrets(None, "warning", event)

    assert redacted["headers"] == "***redacted***"
    assert redacted["Authorization"] == "***redacted***"
    assert redacted["source_id"] == "s1"


def test_long_error_strings_are_clipped():
    event = _clip_long_fields(None, "warning", {"event": "x", "error": "e" * 2000, "title": "t" * 2000})

    assert len(event["error"]) == MAX_FIELD_CHARS + 3
    assert len(event["title"]) == 2000


def test_run_id_is_bound_only_inside_context():
    assert get_run_id() is None

    with with_run_id("run-1") as rid:
        assert rid == "run-1"
        event = _add_correlation_ids(None, "info", {"event": "x"})
        assert event["run_id"] == "run-1"

    assert get_run_id() is None


def test_request_id_uses_caller_value_or_generates_one():
    token = begin_request("req-9")
    try:
        event = _add_correlation_ids(None, "info", {"event": "x"})
    finally:
        end_request(token)
    assert event["request_id"] == "req-9"
    assert get_request_id() is None

    token = begin_request("   ")
    try:
        generated = get_request_id()
    finally:
        end_request(token)
    assert generated and len(generated) == 32


def test_resolve_level():
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(logging.WARNING) == logging.WARNING
    assert resolve_level("nonsense") == logging.INFO
