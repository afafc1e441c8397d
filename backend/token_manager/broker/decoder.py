"""Decoding of broker result streams into per-site replies."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncGenerator

from token_manager.broker.client import BrokerClient
from token_manager.broker.schemas import ReplyShape, SiteReply, parse_site_reply
from token_manager.broker.sse import iter_events
from token_manager.errors import MalformedReply

logger = logging.getLogger(__name__)


async def _with_deadline(lines: AsyncGenerator[str, None], timeout: float | None, task_id: str) -> AsyncGenerator[str, None]:
    """Stop reading lines once ``timeout`` seconds have passed.

    A broker that goes silent is cut off by the read timeout of the
    underlying request; this covers one that keeps the stream busy.
    """
    loop = asyncio.get_running_loop()
    deadline = None if timeout is None else loop.time() + timeout
    try:
        async for line in lines:
            if deadline is not None and loop.time() > deadline:
                logger.warning("Result stream for task %s hit the %.0fs deadline", task_id, timeout)
                return
            yield line
    finally:
        await lines.aclose()


class ReplyStream:
    """Finite, single-use async sequence of SiteReply for one task.

    Counts what it saw so callers can tell an empty stream from one where
    every frame was malformed.
    """

    def __init__(self, task_id: str, lines: AsyncGenerator[str, None], shape: ReplyShape) -> None:
        self.task_id = task_id
        self.shape = shape
        self.received = 0
        self.malformed = 0
        self.last_error: str | None = None
        self._lines = lines
        self._replies = self._decode()

    def __aiter__(self) -> "ReplyStream":
        return self

    async def __anext__(self) -> SiteReply:
        return await self._replies.__anext__()

    async def aclose(self) -> None:
        await self._replies.aclose()

    async def _decode(self) -> AsyncGenerator[SiteReply, None]:
        try:
            async for event in iter_events(self._lines):
                # Results arrive as named events (e.g. new_result); error frames carry broker diagnostics
                if event.event == "error":
                    logger.warning("Broker error on task %s: %s", self.task_id, event.data)
                    self.last_error = event.data
                    continue
                try:
                    reply = parse_site_reply(event.data, self.shape)
                except MalformedReply as exc:
                    self.malformed += 1
                    self.last_error = str(exc)
                    logger.warning("Skipping malformed reply on task %s: %s", self.task_id, exc)
                    continue
                self.received += 1
                yield reply
        finally:
            await self._lines.aclose()


class ResponseDecoder:
    """Opens the results stream of a task and decodes its frames."""

    def __init__(self, broker: BrokerClient, *, stream_timeout: float | None = None) -> None:
        self.broker = broker
        self.stream_timeout = stream_timeout

    def decode(self, task_id: str, expected_count: int, shape: ReplyShape) -> ReplyStream:
        lines = _with_deadline(
            self.broker.stream_results(task_id, expected_count, timeout=self.stream_timeout),
            self.stream_timeout,
            task_id,
        )
        return ReplyStream(task_id, lines, shape)
