"""HTTP client for the beam broker proxy."""

from __future__ import annotations

import logging
from typing import AsyncGenerator

import httpx

from token_manager.broker.schemas import TaskEnvelope
from token_manager.errors import BrokerUnreachable

logger = logging.getLogger(__name__)


class BrokerClient:
    """Client used to submit tasks to the broker and stream their results.

    Keeps one httpx.AsyncClient for connection pooling across operations.
    Pass ``transport`` to talk to something other than the network, e.g.
    an ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        base_url: str,
        app_id: str,
        secret: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.app_id = app_id
        self.timeout = timeout
        self._secret = secret
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Authorization": f"ApiKey {self.app_id} {self._secret}"},
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying connection pool."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def post_task(self, envelope: TaskEnvelope) -> None:
        client = await self._get_client()
        try:
            response = await client.post("/v1/tasks", json=envelope.to_wire())
        except httpx.HTTPError as exc:
            raise BrokerUnreachable(f"Error posting task to beam: {exc}", envelope.id) from exc

        if response.is_error:
            raise BrokerUnreachable(
                f"Beam rejected task {envelope.id} with status {response.status_code}: {response.text}",
                envelope.id,
            )

    async def stream_results(
        self, task_id: str, wait_count: int, *, timeout: float | None = None
    ) -> AsyncGenerator[str, None]:
        """Yield raw event-stream lines for the results of a task.

        Failing to open the stream raises BrokerUnreachable. A connection
        dropped after the stream opened just ends it.
        """
        client = await self._get_client()
        opened = False
        try:
            async with client.stream(
                "GET",
                f"/v1/tasks/{task_id}/results",
                params={"wait_count": wait_count},
                headers={"Accept": "text/event-stream"},
                # Results trickle in until the task TTL runs out; timeout=None waits on the broker
                timeout=httpx.Timeout(self.timeout, read=timeout),
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise BrokerUnreachable(
                        f"Beam refused results for task {task_id} with status {response.status_code}",
                        task_id,
                    )
                opened = True
                async for line in response.aiter_lines():
                    yield line
        except httpx.HTTPError as exc:
            if not opened:
                raise BrokerUnreachable(f"Error polling results of task {task_id}: {exc}", task_id) from exc
            logger.warning("Result stream for task %s dropped: %s", task_id, exc)
