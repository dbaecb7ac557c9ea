"""Utility modules for work item synchronizer."""

from work_item_sync.utils.logging import ExecutionLog, get_logger, setup_logging
from work_item_sync.utils.storage import StorageManager

__all__ = ["ExecutionLog", "get_logger", "setup_logging", "StorageManager"]
