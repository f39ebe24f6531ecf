"""Per-request values shared with loggers and the audit trail."""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token

CORRELATION_HEADER = "x-correlation-id"

_correlation_id: ContextVar[str | None] = ContextVar("itcrm_correlation_id", default=None)


def new_correlation_id(candidate: str | None = None) -> str:
    """Keep a caller-supplied id, otherwise mint one."""

    candidate = (candidate or "").strip()
    return candidate[:128] if candidate else str(uuid.uuid4())


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(value: str | None) -> Token[str | None]:
    return _correlation_id.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    _correlation_id.reset(token)


@contextmanager
def correlation_scope(value: str) -> Iterator[str]:
    token = set_correlation_id(value)
    try:
        yield value
    finally:
        reset_correlation_id(token)
