# conftest.py - Global pytest configuration
"""
Shared fixtures for the token manager tests.

The broker is replaced by an httpx.MockTransport (FakeBroker) and the token
store by an in-memory SQLite database created fresh for every test.
"""
import json
from collections import deque
from typing import Any, AsyncGenerator

import httpx
import pytest

from token_manager.broker.decoder import ReplyStream
from token_manager.broker.schemas import ReplyShape
from token_manager.config import Settings
from token_manager.orchestration import build_orchestrator
from token_manager.storage.database import build_engine, build_session_maker, init_db

TEST_KEY = "test-key-0123456789abcdef-test-k"


# =============================================================================
# SSE helpers
# =============================================================================

def site_result(site: str, body: Any, task: str = "task-1", event: str = "new_result") -> str:
    """One SSE frame holding a site's result, as the broker relays it."""
    payload = json.dumps({"from": site, "to": ["token-manager.proxy.broker"], "task": task, "status": "succeeded", "body": body})
    return f"event: {event}\ndata: {payload}\n\n"


async def _lines(text: str) -> AsyncGenerator[str, None]:
    for line in text.splitlines():
        yield line


def make_stream(frames: list[str], shape: ReplyShape = ReplyShape.TOKEN, task_id: str = "task-1") -> ReplyStream:
    """Build a ReplyStream straight from SSE text, no broker involved."""
    return ReplyStream(task_id, _lines("".join(frames)), shape)


# =============================================================================
# Fake broker
# =============================================================================

class FakeBroker:
    """In-process stand-in for the beam proxy.

    Queue result frames with ``queue(...)``; each submitted task takes the
    next queued batch in submission order.
    """

    def __init__(self):
        self.tasks: list[dict] = []
        self.result_requests: list[httpx.Request] = []
        self.fail_submit = False
        self.refused_types: set[str] = set()
        self.reject_submit_status: int | None = None
        self.results_status = 200
        self._queued: deque[list[str]] = deque()
        self._results: dict[str, list[str]] = {}

    def queue(self, *frames: str) -> None:
        self._queued.append(list(frames))

    def tasks_of(self, request_type: str) -> list[dict]:
        return [task for task in self.tasks if task["body"]["request_type"] == request_type]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/v1/tasks":
            if self.fail_submit:
                raise httpx.ConnectError("connection refused", request=request)
            if self.reject_submit_status is not None:
                return httpx.Response(self.reject_submit_status, text="rejected")
            task = json.loads(request.content)
            if task["body"]["request_type"] in self.refused_types:
                raise httpx.ConnectError("connection reset", request=request)
            self.tasks.append(task)
            frames = self._queued.popleft() if self._queued else []
            self._results[task["id"]] = [frame.replace("task-1", task["id"]) for frame in frames]
            return httpx.Response(201)

        if request.method == "GET" and request.url.path.endswith("/results"):
            self.result_requests.append(request)
            if self.results_status != 200:
                return httpx.Response(self.results_status, text="no such task")
            task_id = request.url.path.split("/")[3]
            body = "".join(self._results.get(task_id, []))
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body.encode())

        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings():
    return Settings(
        beam_url="http://beam.test",
        beam_id="token-manager.proxy.broker",
        beam_secret="secret",
        database_url="sqlite+aiosqlite:///:memory:",
        token_encrypt_key=TEST_KEY,
        stream_timeout_seconds=None,
    )


@pytest.fixture
async def db_engine(settings):
    engine = build_engine(settings.database_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_maker(db_engine)


@pytest.fixture
async def async_db(session_factory):
    """Fresh session on the in-memory token store."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_broker():
    return FakeBroker()


@pytest.fixture
async def orchestrator(settings, session_factory, fake_broker):
    orchestrator = build_orchestrator(settings, session_factory, transport=fake_broker.transport)
    yield orchestrator
    await orchestrator.drain()
    await orchestrator.dispatcher.broker.close()
