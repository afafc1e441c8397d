"""Request and broker-task context carried into log records."""

from __future__ import annotations

from contextvars import ContextVar, Token
from uuid import uuid4

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)
# Background create/refresh tasks copy this at spawn time
_task_id: ContextVar[str | None] = ContextVar("broker_task_id", default=None)


def get_request_id() -> str | None:
    return _request_id.get()


def set_request_id(request_id: str | None) -> Token:
    return _request_id.set(request_id)


def reset_request_id(token: Token) -> None:
    _request_id.reset(token)


def ensure_request_id(request_id: str | None = None) -> str:
    """Return the caller's request id, or a fresh one."""
    return request_id or uuid4().hex


def get_task_id() -> str | None:
    """Broker task most recently submitted in this context."""
    return _task_id.get()


def set_task_id(task_id: str | None) -> Token:
    return _task_id.set(task_id)
