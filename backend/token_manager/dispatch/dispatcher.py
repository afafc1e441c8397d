"""Building and submitting fan-out tasks to the broker."""

from __future__ import annotations

import logging
import re
from typing import Iterable

from token_manager.broker.client import BrokerClient
from token_manager.broker.schemas import OpalRequest, OperationKind, TaskEnvelope
from token_manager.errors import InvalidTaskError

logger = logging.getLogger(__name__)

# Beam app ids: dot separated labels, e.g. "opal.site-a.broker.example.org"
APP_ID_PATTERN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?)*$")


def validate_recipients(recipients: Iterable[str] | None) -> tuple[str, ...]:
    """Return recipients in order without duplicates, rejecting invalid ids."""
    resolved: list[str] = []
    for recipient in recipients or ():
        site = recipient.strip()
        if not APP_ID_PATTERN.match(site):
            raise InvalidTaskError(f"Invalid bridgehead id: {recipient!r}")
        if site not in resolved:
            resolved.append(site)
    if not resolved:
        raise InvalidTaskError("At least one bridgehead is required")
    return tuple(resolved)


def _check_fields(kind: OperationKind, name: str | None, project: str | None, token: str | None) -> None:
    if kind is OperationKind.CREATE:
        missing = [field for field, value in (("name", name), ("project", project)) if not value]
    elif kind is OperationKind.UPDATE:
        missing = [field for field, value in (("name", name), ("project", project), ("token", token)) if not value]
    elif kind is OperationKind.DISCOVER_TABLES:
        missing = [] if project else ["project"]
    else:
        # DELETE and STATUS target either a token (by name) or a whole project
        missing = [] if (name or project) else ["name or project"]

    if missing:
        raise InvalidTaskError(f"{kind.value} task requires {', '.join(missing)}")


class TaskDispatcher:
    """Builds task envelopes for this coordinator and posts them to the broker."""

    def __init__(self, broker: BrokerClient, *, sender: str, ttl: str = "60s") -> None:
        self.broker = broker
        self.sender = sender
        self.ttl = ttl

    def build(
        self,
        kind: OperationKind,
        *,
        recipients: Iterable[str],
        name: str | None = None,
        project: str | None = None,
        token: str | None = None,
    ) -> TaskEnvelope:
        _check_fields(kind, name, project, token)
        return TaskEnvelope(
            from_=self.sender,
            to=validate_recipients(recipients),
            body=OpalRequest(
                request_type=kind.request_type,
                name=name,
                project=project,
                token=token,
            ),
            ttl=self.ttl,
        )

    async def submit(self, envelope: TaskEnvelope) -> TaskEnvelope:
        """Post a built envelope; BrokerUnreachable propagates."""
        await self.broker.post_task(envelope)
        logger.info(
            "Submitted %s task %s to %d bridgehead(s)",
            envelope.body.request_type.value,
            envelope.id,
            envelope.expected_replies,
        )
        return envelope

    async def dispatch(
        self,
        kind: OperationKind,
        *,
        recipients: Iterable[str],
        name: str | None = None,
        project: str | None = None,
        token: str | None = None,
    ) -> TaskEnvelope:
        envelope = self.build(kind, recipients=recipients, name=name, project=project, token=token)
        return await self.submit(envelope)
