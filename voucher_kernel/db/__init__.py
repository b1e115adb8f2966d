"""Database layer - engine, base classes, column types."""

from voucher_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from voucher_kernel.db.engine import (
    create_tables,
    get_engine,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "create_tables",
    "get_engine",
    "init_engine_from_url",
    "session_scope",
]
