"""Correlation ids for hub exchanges.

Every command sent to the hub runs inside ``correlation_context()``, so the
request, the response and any failure logged for that exchange carry the same
id. Background loops (keep-alive, polling) call ``ensure_correlation_id()``
once at start; asyncio copies the context into each task, so ids never leak
between tasks.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "ensure_correlation_id",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
    "short_correlation_id",
]

SHORT_ID_LENGTH = 8

_current: contextvars.ContextVar[str | None] = contextvars.ContextVar("smartika_correlation_id", default=None)


def generate_correlation_id() -> str:
    """32 hex digits from a random UUID."""
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    return _current.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _current.set(correlation_id)


def short_correlation_id(correlation_id: str | None = None) -> str | None:
    """Leading digits of ``correlation_id`` (or the current id) for compact log lines."""
    value = correlation_id if correlation_id is not None else _current.get()
    return value[:SHORT_ID_LENGTH] if value else None


@contextmanager
def correlation_context(correlation_id: str | None = None, auto_generate: bool = True) -> Iterator[str | None]:
    """Run a block under ``correlation_id``, or a fresh id when none is given.

    With ``auto_generate=False`` and no id the block runs with no id at all.
    The previous id is restored on exit, including on error.
    """
    if correlation_id is None and auto_generate:
        correlation_id = generate_correlation_id()
    token = _current.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _current.reset(token)


def ensure_correlation_id() -> str:
    """Return the current id, creating one for this context if there is none."""
    current = _current.get()
    if current is None:
        current = generate_correlation_id()
        _current.set(current)
    return current
