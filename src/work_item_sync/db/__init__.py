"""Relational store for sync state."""

from work_item_sync.db.connection import (
    create_db_engine,
    create_session_factory,
    init_db,
    session_scope,
)
from work_item_sync.db.repository import SyncRepository

__all__ = [
    "SyncRepository",
    "create_db_engine",
    "create_session_factory",
    "init_db",
    "session_scope",
]
