"""SQLAlchemy models for the token store."""

from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import String, Text, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column
from token_manager.storage.database import Base

# Stored as text, local time
TIMESTAMP_FORMAT = "%d-%m-%Y %H:%M:%S"


# ============================================================================
# Enums
# ============================================================================

class TokenStatus(str, PyEnum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    EXPIRED = "EXPIRED"
    NOT_FOUND = "NOT_FOUND"


class ProjectStatus(str, PyEnum):
    CREATED = "CREATED"
    WITH_DATA = "WITH_DATA"
    NOT_FOUND = "NOT_FOUND"


def format_timestamp(moment: datetime | None = None) -> str:
    return (moment or datetime.now()).strftime(TIMESTAMP_FORMAT)


# ============================================================================
# Models
# ============================================================================

class TokenRecord(Base):
    """One Opal token issued to a user for a project at one bridgehead."""
    __tablename__ = "tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    token: Mapped[str] = mapped_column(Text, nullable=False)  # encrypted, base64
    project_id: Mapped[str] = mapped_column(String(255), nullable=False)
    project_status: Mapped[str] = mapped_column(String(50), nullable=False, default=ProjectStatus.CREATED.value)
    bk: Mapped[str] = mapped_column(String(255), nullable=False)  # bridgehead app id
    token_status: Mapped[str] = mapped_column(String(50), nullable=False, default=TokenStatus.CREATED.value)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    token_created_at: Mapped[str] = mapped_column(String(32), nullable=False, default=lambda: format_timestamp())

    __table_args__ = (
        Index("ix_tokens_user_project_bk", "user_id", "project_id", "bk"),
    )

    def __repr__(self) -> str:
        return f"<TokenRecord {self.token_name} {self.user_id}/{self.project_id}@{self.bk} {self.token_status}>"
