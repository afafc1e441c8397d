"""Token store queries and writes.

Every write commits on its own so that per-site results survive a failure
at another site.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from token_manager.storage.models import TokenRecord, TokenStatus, format_timestamp

logger = logging.getLogger(__name__)


async def save_token(
    db: AsyncSession,
    *,
    token_name: str,
    token: str,
    project_id: str,
    bk: str,
    user_id: str,
    token_status: str,
    project_status: str,
    token_created_at: str | None = None,
) -> TokenRecord:
    record = TokenRecord(
        token_name=token_name,
        token=token,
        project_id=project_id,
        bk=bk,
        user_id=user_id,
        token_status=token_status,
        project_status=project_status,
        token_created_at=token_created_at or format_timestamp(),
    )
    db.add(record)
    await db.commit()
    logger.info("New token %s saved for %s", token_name, bk)
    return record


async def update_token(
    db: AsyncSession,
    *,
    user_id: str,
    project_id: str,
    bk: str,
    token: str,
    token_created_at: str | None = None,
) -> TokenRecord | None:
    """Replace the token on the newest record for user, project and site."""
    record = await get_latest_record(db, user_id=user_id, project_id=project_id, bk=bk)
    if record is None:
        logger.warning("No token record to update for %s/%s at %s", user_id, project_id, bk)
        return None

    record.token = token
    record.token_status = TokenStatus.UPDATED.value
    record.token_created_at = token_created_at or format_timestamp()
    await db.commit()
    logger.info("Token updated for %s", bk)
    return record


async def update_token_status(
    db: AsyncSession,
    *,
    user_id: str,
    project_id: str,
    bk: str,
    token_status: str,
) -> int:
    result = await db.execute(
        update(TokenRecord)
        .where(
            TokenRecord.user_id == user_id,
            TokenRecord.project_id == project_id,
            TokenRecord.bk == bk,
        )
        .values(token_status=token_status)
    )
    await db.commit()
    return result.rowcount


async def delete_project(db: AsyncSession, project_id: str) -> int:
    result = await db.execute(delete(TokenRecord).where(TokenRecord.project_id == project_id))
    await db.commit()
    logger.info("Project %s and its tokens deleted (%d rows)", project_id, result.rowcount)
    return result.rowcount


async def delete_token(db: AsyncSession, token_name: str) -> int:
    result = await db.execute(delete(TokenRecord).where(TokenRecord.token_name == token_name))
    await db.commit()
    logger.info("Token %s deleted (%d rows)", token_name, result.rowcount)
    return result.rowcount


async def get_latest_record(
    db: AsyncSession,
    *,
    user_id: str,
    project_id: str,
    bk: str | None = None,
) -> TokenRecord | None:
    query = select(TokenRecord).where(
        TokenRecord.user_id == user_id,
        TokenRecord.project_id == project_id,
    )
    if bk is not None:
        query = query.where(TokenRecord.bk == bk)
    result = await db.execute(query.order_by(TokenRecord.id.desc()).limit(1))
    return result.scalar_one_or_none()


async def get_token_name(db: AsyncSession, *, user_id: str, project_id: str) -> str | None:
    record = await get_latest_record(db, user_id=user_id, project_id=project_id)
    return record.token_name if record else None


async def get_token_value(
    db: AsyncSession,
    *,
    user_id: str,
    project_id: str,
    bk: str | None = None,
) -> str | None:
    """Return the newest encrypted token value."""
    record = await get_latest_record(db, user_id=user_id, project_id=project_id, bk=bk)
    return record.token if record else None


async def list_records(
    db: AsyncSession,
    *,
    user_id: str | None = None,
    project_id: str | None = None,
    bk: str | None = None,
) -> list[TokenRecord]:
    query = select(TokenRecord)
    if user_id is not None:
        query = query.where(TokenRecord.user_id == user_id)
    if project_id is not None:
        query = query.where(TokenRecord.project_id == project_id)
    if bk is not None:
        query = query.where(TokenRecord.bk == bk)
    result = await db.execute(query.order_by(TokenRecord.id.asc()))
    return list(result.scalars().all())


async def is_any_token_available(
    db: AsyncSession,
    *,
    user_id: str,
    project_id: str,
    bridgehead_ids: list[str],
) -> bool:
    if not bridgehead_ids:
        return False
    result = await db.execute(
        select(TokenRecord.id)
        .where(
            TokenRecord.user_id == user_id,
            TokenRecord.project_id == project_id,
            TokenRecord.bk.in_(bridgehead_ids),
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None
