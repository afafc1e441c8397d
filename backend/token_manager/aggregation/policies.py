"""Aggregation policies folding per-site replies into an operation result.

- first_success: the first Ok wins and the stream is abandoned; otherwise
  the last Err, and NoRepliesReceived if nothing arrived at all.
- union_by_site: table names per responding site, independent of arrival
  order; failing sites are left out.
- collect_all: persists each Ok as it arrives and keeps going past errors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from token_manager.broker.decoder import ReplyStream
from token_manager.broker.schemas import ReplyErr, SiteReply
from token_manager.errors import NoRepliesReceived, TokenManagerError

logger = logging.getLogger(__name__)


async def first_success(replies: ReplyStream) -> SiteReply:
    last_error: SiteReply | None = None
    try:
        async for reply in replies:
            if reply.ok:
                return reply
            logger.warning(
                "%s answered task %s with status code %s: %s",
                reply.site,
                replies.task_id,
                reply.body.status_code,
                reply.body.message,
            )
            last_error = reply
    finally:
        await replies.aclose()

    if last_error is not None:
        return last_error
    raise NoRepliesReceived(replies.task_id, replies.last_error)


async def union_by_site(replies: ReplyStream) -> dict[str, frozenset[str]]:
    tables: dict[str, set[str]] = {}
    async for reply in replies:
        if isinstance(reply.body, ReplyErr):
            logger.warning("%s failed to fetch tables: %s", reply.site, reply.body.message)
            continue
        names = reply.body.value
        if isinstance(names, str):
            names = [names]
        logger.info("Fetched tables from %s: %s", reply.site, names)
        tables.setdefault(reply.site, set()).update(names)

    if replies.received == 0:
        raise NoRepliesReceived(replies.task_id, replies.last_error)
    return {site: frozenset(names) for site, names in tables.items()}


@dataclass
class CollectOutcome:
    """What a collect-all run persisted and what went wrong along the way."""

    task_id: str
    persisted: dict[str, Any] = field(default_factory=dict)
    failed: dict[str, ReplyErr] = field(default_factory=dict)
    last_error: str | None = None


async def collect_all(
    replies: ReplyStream,
    on_ok: Callable[[SiteReply], Awaitable[Any]],
) -> CollectOutcome:
    """Run ``on_ok`` once per site that answers Ok, as replies arrive."""
    outcome = CollectOutcome(task_id=replies.task_id)

    async for reply in replies:
        if isinstance(reply.body, ReplyErr):
            logger.warning(
                "%s failed to create a token with status code: %s, error: %s",
                reply.site,
                reply.body.status_code,
                reply.body.message,
            )
            outcome.failed[reply.site] = reply.body
            outcome.last_error = f"Error: {reply.body.message}"
            continue
        if reply.site in outcome.persisted:
            logger.debug("Ignoring repeated reply from %s on task %s", reply.site, replies.task_id)
            continue
        try:
            outcome.persisted[reply.site] = await on_ok(reply)
        except TokenManagerError as exc:
            logger.warning("Could not persist reply from %s on task %s: %s", reply.site, replies.task_id, exc)
            outcome.last_error = str(exc)

    if outcome.last_error is None:
        outcome.last_error = replies.last_error
    if outcome.last_error:
        logger.warning("Error processing task %s: %s", replies.task_id, outcome.last_error)
    return outcome
