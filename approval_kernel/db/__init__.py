"""Database layer: declarative base, column types, engine/session helpers."""

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
    session_scope,
)
from approval_kernel.db.types import UTCDateTime

__all__ = [
    "Base",
    "UTCDateTime",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "is_postgres",
    "reset_engine",
    "session_scope",
]
