"""Per-operation coordination: dispatch, stream, fold, persist.

Every operation walks BUILT -> SUBMITTED -> STREAMING -> FOLDED and ends in
PERSISTED (writes to the token store) or REPORTED (result returned to the
caller). Token creation and refresh return once the task is submitted and
finish streaming in a background task; everything else runs to completion
before returning.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from token_manager.aggregation import CollectOutcome, collect_all, first_success, union_by_site
from token_manager.broker.decoder import ReplyStream, ResponseDecoder
from token_manager.broker.schemas import OperationKind, ReplyShape, SiteReply, TaskEnvelope
from token_manager.crypto import TokenCipher
from token_manager.dispatch import TaskDispatcher
from token_manager.errors import BrokerUnreachable, PersistenceError, TokenManagerError, TokenNotFound
from token_manager.observability.request_context import set_task_id
from token_manager.schemas import ProjectQueryParams, TokenParams, TokensQueryParams
from token_manager.script import NO_RECORDS_MESSAGE, build_login_lines, generate_r_script
from token_manager.storage import token_store
from token_manager.storage.models import ProjectStatus, TokenStatus, format_timestamp

logger = logging.getLogger(__name__)


class OperationState(str, Enum):
    BUILT = "BUILT"
    SUBMITTED = "SUBMITTED"
    STREAMING = "STREAMING"
    FOLDED = "FOLDED"
    PERSISTED = "PERSISTED"
    REPORTED = "REPORTED"


@dataclass
class BackgroundOperation:
    """Handle on a submitted create/refresh whose results are still streaming."""

    task_id: str
    token_name: str
    completion: asyncio.Task

    async def wait(self) -> CollectOutcome:
        return await self.completion


class OperationOrchestrator:
    """Runs token operations against the bridgeheads through the broker."""

    def __init__(
        self,
        dispatcher: TaskDispatcher,
        decoder: ResponseDecoder,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: TokenCipher,
    ) -> None:
        self.dispatcher = dispatcher
        self.decoder = decoder
        self.session_factory = session_factory
        self.cipher = cipher
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _log_state(self, envelope: TaskEnvelope, state: OperationState) -> None:
        logger.debug("Task %s (%s) -> %s", envelope.id, envelope.body.request_type.value, state.value)

    async def _submit(self, kind: OperationKind, **fields: Any) -> TaskEnvelope:
        envelope = self.dispatcher.build(kind, **fields)
        set_task_id(envelope.id)
        self._log_state(envelope, OperationState.BUILT)
        await self.dispatcher.submit(envelope)
        self._log_state(envelope, OperationState.SUBMITTED)
        return envelope

    def _stream(self, envelope: TaskEnvelope, shape: ReplyShape) -> ReplyStream:
        self._log_state(envelope, OperationState.STREAMING)
        return self.decoder.decode(envelope.id, envelope.expected_replies, shape)

    async def _first_success(self, envelope: TaskEnvelope, shape: ReplyShape) -> SiteReply:
        reply = await first_success(self._stream(envelope, shape))
        self._log_state(envelope, OperationState.FOLDED)
        return reply

    def _spawn(self, coro: Coroutine[Any, Any, CollectOutcome], envelope: TaskEnvelope) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"{envelope.body.request_type.value.lower()}:{envelope.id}")
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            logger.warning("Background operation %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background operation %s failed: %s", task.get_name(), exc, exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._background)

    async def drain(self) -> None:
        """Wait for every background operation still streaming."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _collect_into_store(
        self,
        envelope: TaskEnvelope,
        write: Callable[[AsyncSession, SiteReply], Awaitable[Any]],
    ) -> CollectOutcome:
        async with self.session_factory() as db:
            async def persist(reply: SiteReply) -> Any:
                try:
                    return await write(db, reply)
                except SQLAlchemyError as exc:
                    await db.rollback()
                    raise PersistenceError(f"Could not store token from {reply.site}: {exc}") from exc

            outcome = await collect_all(self._stream(envelope, ReplyShape.TOKEN), persist)

        self._log_state(envelope, OperationState.FOLDED)
        self._log_state(envelope, OperationState.PERSISTED)
        logger.info(
            "Task %s stored tokens for %d of %d bridgehead(s)",
            envelope.id,
            len(outcome.persisted),
            envelope.expected_replies,
        )
        return outcome

    # ------------------------------------------------------------------
    # Create / refresh (collect-all, background)
    # ------------------------------------------------------------------

    async def create_tokens(self, params: TokenParams) -> BackgroundOperation:
        token_name = str(uuid4())
        envelope = await self._submit(
            OperationKind.CREATE,
            recipients=params.bridgehead_ids,
            name=token_name,
            project=params.project_id,
        )
        logger.info("Created token task %s", envelope.id)

        created_at = format_timestamp()

        async def save(db: AsyncSession, reply: SiteReply):
            return await token_store.save_token(
                db,
                token_name=token_name,
                token=self.cipher.encrypt(str(reply.body.value), token_name),
                project_id=params.project_id,
                bk=reply.site,
                user_id=params.user_id,
                token_status=TokenStatus.CREATED.value,
                project_status=ProjectStatus.CREATED.value,
                token_created_at=created_at,
            )

        completion = self._spawn(self._collect_into_store(envelope, save), envelope)
        return BackgroundOperation(envelope.id, token_name, completion)

    async def refresh_tokens(self, params: TokenParams) -> BackgroundOperation:
        async with self.session_factory() as db:
            record = await token_store.get_latest_record(
                db, user_id=params.user_id, project_id=params.project_id
            )
        if record is None:
            raise TokenNotFound(f"No token for user {params.user_id} in project {params.project_id}")

        token_name = record.token_name
        envelope = await self._submit(
            OperationKind.UPDATE,
            recipients=params.bridgehead_ids,
            name=token_name,
            project=params.project_id,
            token=self.cipher.decrypt(record.token, token_name),
        )
        logger.info("Refresh token task %s", envelope.id)

        async def update(db: AsyncSession, reply: SiteReply):
            return await token_store.update_token(
                db,
                user_id=params.user_id,
                project_id=params.project_id,
                bk=reply.site,
                token=self.cipher.encrypt(str(reply.body.value), token_name),
            )

        completion = self._spawn(self._collect_into_store(envelope, update), envelope)
        return BackgroundOperation(envelope.id, token_name, completion)

    # ------------------------------------------------------------------
    # Removal (first-success, synchronous)
    # ------------------------------------------------------------------

    async def remove_project(self, params: ProjectQueryParams) -> SiteReply:
        envelope = await self._submit(
            OperationKind.DELETE,
            recipients=[params.bk],
            project=params.project_id,
        )
        reply = await self._first_success(envelope, ReplyShape.STATUS)
        if reply.ok:
            async with self.session_factory() as db:
                await token_store.delete_project(db, params.project_id)
            self._log_state(envelope, OperationState.PERSISTED)
        return reply

    async def remove_tokens(self, params: TokensQueryParams) -> SiteReply:
        async with self.session_factory() as db:
            token_name = await token_store.get_token_name(
                db, user_id=params.user_id, project_id=params.project_id
            )
        if token_name is None:
            raise TokenNotFound("Token not found")

        envelope = await self._submit(
            OperationKind.DELETE,
            recipients=[params.bk],
            name=token_name,
        )
        reply = await self._first_success(envelope, ReplyShape.STATUS)
        if reply.ok:
            async with self.session_factory() as db:
                await token_store.delete_token(db, token_name)
            self._log_state(envelope, OperationState.PERSISTED)
        return reply

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def project_status(self, params: ProjectQueryParams) -> dict:
        response = {
            "project_id": params.project_id,
            "bk": params.bk,
            "project_status": ProjectStatus.NOT_FOUND.value,
        }
        envelope = await self._submit(
            OperationKind.STATUS,
            recipients=[params.bk],
            project=params.project_id,
        )
        reply = await self._first_success(envelope, ReplyShape.STATUS)
        if reply.ok:
            response["project_status"] = reply.body.value
        else:
            logger.warning("Project status error: %s, %s", reply.body.status_code, reply.body.message)
        self._log_state(envelope, OperationState.REPORTED)
        return response

    async def _site_token_status(self, record) -> str | None:
        envelope = await self._submit(
            OperationKind.STATUS,
            recipients=[record.bk],
            name=record.token_name,
        )
        reply = await self._first_success(envelope, ReplyShape.STATUS)
        if not reply.ok:
            logger.warning("Token status error: %s, %s", reply.body.status_code, reply.body.message)
            return None

        status = reply.body.value
        if status == TokenStatus.CREATED.value:
            return status

        # The bridgehead lost the token: hand it the stored one again
        try:
            resend = await self._submit(
                OperationKind.CREATE,
                recipients=[record.bk],
                name=record.token_name,
                project=record.project_id,
                token=self.cipher.decrypt(record.token, record.token_name),
            )
        except BrokerUnreachable as exc:
            logger.error("Could not resend token %s to %s: %s", record.token_name, record.bk, exc)
            return status
        logger.info("Create token in Opal from DB task %s", resend.id)
        return TokenStatus.CREATED.value

    async def token_status(self, params: TokensQueryParams) -> dict:
        response = {
            "project_id": params.project_id,
            "bk": params.bk,
            "user_id": params.user_id,
            "token_created_at": "",
            "project_status": ProjectStatus.NOT_FOUND.value,
            "token_status": TokenStatus.NOT_FOUND.value,
        }

        try:
            project = await self.project_status(ProjectQueryParams(bk=params.bk, project_id=params.project_id))
            response["project_status"] = project["project_status"]
        except TokenManagerError as exc:
            logger.error("Error retrieving project status: %s", exc)

        async with self.session_factory() as db:
            record = await token_store.get_latest_record(
                db, user_id=params.user_id, project_id=params.project_id, bk=params.bk
            )
            if record is None:
                logger.info("Token not found with user_id: %s", params.user_id)
                return response

            response["token_created_at"] = record.token_created_at
            try:
                status = await self._site_token_status(record)
            except TokenManagerError as exc:
                logger.error("Error retrieving token status: %s", exc)
                return response

            if status is not None:
                response["token_status"] = status
                await token_store.update_token_status(
                    db,
                    user_id=params.user_id,
                    project_id=params.project_id,
                    bk=params.bk,
                    token_status=status,
                )
        return response

    async def authentication_status(self, params: TokenParams) -> bool:
        async with self.session_factory() as db:
            return await token_store.is_any_token_available(
                db,
                user_id=params.user_id,
                project_id=params.project_id,
                bridgehead_ids=params.bridgehead_ids,
            )

    # ------------------------------------------------------------------
    # Table discovery and scripts (set-union, synchronous)
    # ------------------------------------------------------------------

    async def discover_tables(
        self,
        *,
        user_id: str,
        project_id: str,
        bridgeheads: list[str],
    ) -> dict[str, frozenset[str]]:
        envelope = await self._submit(
            OperationKind.DISCOVER_TABLES,
            recipients=bridgeheads,
            name=user_id,
            project=project_id,
        )
        tables = await union_by_site(self._stream(envelope, ReplyShape.TABLES))
        self._log_state(envelope, OperationState.FOLDED)
        self._log_state(envelope, OperationState.REPORTED)
        return tables

    async def generate_script(self, params: TokenParams) -> str:
        tables = await self.discover_tables(
            user_id=params.user_id,
            project_id=params.project_id,
            bridgeheads=params.bridgehead_ids,
        )

        tokens: dict[str, str] = {}
        async with self.session_factory() as db:
            for bk in params.bridgehead_ids:
                record = await token_store.get_latest_record(
                    db, user_id=params.user_id, project_id=params.project_id, bk=bk
                )
                if record is None:
                    logger.info("No records were found for %s", bk)
                    return NO_RECORDS_MESSAGE
                tokens[bk] = self.cipher.decrypt(record.token, record.token_name)

        lines = build_login_lines(params.bridgehead_ids, tokens, tables)
        if not lines:
            return NO_RECORDS_MESSAGE
        return generate_r_script(lines)
