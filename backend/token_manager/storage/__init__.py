"""Storage package init."""
from token_manager.storage.database import Base, build_engine, build_session_maker, get_db, init_db
from token_manager.storage.models import (
    TokenRecord,
    TokenStatus,
    ProjectStatus,
    format_timestamp,
)

__all__ = [
    "Base",
    "get_db",
    "init_db",
    "build_engine",
    "build_session_maker",
    "TokenRecord",
    "TokenStatus",
    "ProjectStatus",
    "format_timestamp",
]
