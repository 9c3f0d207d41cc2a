# Backend/app/core/request_id.py
"""
Correlation ids attached to every log event.

Feed reads get a request id (the caller's X-Request-Id, or a fresh one);
each bulk fetch run gets a run id.
"""
from __future__ import annotations

import contextvars
import uuid
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

REQUEST_ID_HEADER = "X-Request-Id"

_request_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)
_run_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("run_id", default=None)


def _new_id() -> str:
    return uuid.uuid4().hex


def begin_request(incoming: Optional[str] = None) -> contextvars.Token:
    """Bind the caller's request id (or a generated one) to the current context."""
    return _request_id_ctx.set((incoming or "").strip() or _new_id())


def end_request(token: contextvars.Token) -> None:
    _request_id_ctx.reset(token)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


def get_run_id() -> Optional[str]:
    return _run_id_ctx.get()


def correlation_ids() -> Dict[str, str]:
    ids: Dict[str, str] = {}
    request_id = _request_id_ctx.get()
    if request_id:
        ids["request_id"] = request_id
    run_id = _run_id_ctx.get()
    if run_id:
        ids["run_id"] = run_id
    return ids


@contextmanager
def with_run_id(run_id: Optional[str] = None) -> Iterator[str]:
    """
    Scope one worker run:

        with with_run_id():
            await run_news_fetch(...)
    """
    rid = run_id or _new_id()
    token = _run_id_ctx.set(rid)
    try:
        yield rid
    finally:
        _run_id_ctx.reset(token)
