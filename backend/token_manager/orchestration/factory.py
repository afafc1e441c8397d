"""Builds an orchestrator and its collaborators from settings."""

from __future__ import annotations

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from token_manager.broker import BrokerClient, ResponseDecoder
from token_manager.config import Settings
from token_manager.crypto import TokenCipher
from token_manager.dispatch import TaskDispatcher
from token_manager.orchestration.orchestrator import OperationOrchestrator


def build_orchestrator(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> OperationOrchestrator:
    """Wire broker client, dispatcher, decoder and cipher from settings."""
    broker = BrokerClient(
        settings.beam_url,
        settings.beam_id,
        settings.beam_secret,
        transport=transport,
    )
    return OperationOrchestrator(
        dispatcher=TaskDispatcher(broker, sender=settings.beam_id, ttl=settings.task_ttl),
        decoder=ResponseDecoder(broker, stream_timeout=settings.stream_timeout_seconds),
        session_factory=session_factory,
        cipher=TokenCipher(settings.token_encrypt_key),
    )
