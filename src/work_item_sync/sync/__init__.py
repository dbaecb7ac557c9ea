"""Synchronization logic."""

from work_item_sync.sync.engine import SyncEngine, SyncResult
from work_item_sync.sync.related import RelatedContentSync, format_comment
from work_item_sync.sync.scheduler import SyncScheduler, next_run_time
from work_item_sync.sync.versions import VersionStore, content_hash

__all__ = [
    "RelatedContentSync",
    "SyncEngine",
    "SyncResult",
    "SyncScheduler",
    "VersionStore",
    "content_hash",
    "format_comment",
    "next_run_time",
]
