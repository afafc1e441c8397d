"""Server-sent event framing for broker result streams."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator


@dataclass(frozen=True)
class SseEvent:
    event: str
    data: str
    id: str | None = None


async def iter_events(lines: AsyncIterable[str]) -> AsyncIterator[SseEvent]:
    """Group event-stream lines into frames.

    A blank line dispatches the pending frame. Comment lines are dropped,
    multi-line ``data`` fields are joined with newlines and a frame left
    open when the stream closes is still dispatched.
    """
    event_type = ""
    data_lines: list[str] = []
    last_id: str | None = None

    async for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if not line:
            if data_lines:
                yield SseEvent(event_type or "message", "\n".join(data_lines), last_id)
            event_type = ""
            data_lines = []
            continue
        if line.startswith(":"):
            continue

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "event":
            event_type = value
        elif field == "data":
            data_lines.append(value)
        elif field == "id":
            last_id = value

    if data_lines:
        yield SseEvent(event_type or "message", "\n".join(data_lines), last_id)
