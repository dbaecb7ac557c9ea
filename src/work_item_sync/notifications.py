"""Sync lifecycle events and the sinks that receive them.

The core only emits events; delivery (email, webhooks) belongs to the sink.
"""

import logging
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    sync_completed = "sync_completed"
    sync_failed = "sync_failed"
    conflict_detected = "conflict_detected"


class SyncEvent(BaseModel):
    """Structured event emitted at the end of a run or per detected conflict."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    event_type: EventType = Field(alias="eventType")
    sync_config_id: int = Field(alias="syncConfigId")
    sync_config_name: str | None = Field(default=None, alias="syncConfigName")
    execution_id: int | None = Field(default=None, alias="executionId")
    items_synced: int = Field(default=0, alias="itemsSynced")
    items_failed: int = Field(default=0, alias="itemsFailed")
    conflicts_detected: int = Field(default=0, alias="conflictsDetected")
    started_at: datetime | None = Field(default=None, alias="startedAt")
    ended_at: datetime | None = Field(default=None, alias="endedAt")
    error_message: str | None = Field(default=None, alias="errorMessage")
    item_id: str | None = Field(default=None, alias="itemId")
    conflict_type: str | None = Field(default=None, alias="conflictType")


class NotificationSink:
    """Receives sync events. Subclasses deliver them somewhere."""

    def send(self, event: SyncEvent) -> None:
        raise NotImplementedError


class LoggingNotificationSink(NotificationSink):
    """Writes events to the application log."""

    def send(self, event: SyncEvent) -> None:
        if event.event_type == EventType.sync_failed.value:
            logger.error(
                f"Sync failed: config {event.sync_config_id}, execution {event.execution_id}: "
                f"{event.error_message or 'Unknown error'}"
            )
        elif event.event_type == EventType.conflict_detected.value:
            logger.warning(
                f"Conflict detected: config {event.sync_config_id}, item {event.item_id} "
                f"({event.conflict_type})"
            )
        else:
            logger.info(
                f"Sync completed: config {event.sync_config_id}, execution {event.execution_id}, "
                f"{event.items_synced} synced, {event.items_failed} failed"
            )


class CollectingNotificationSink(NotificationSink):
    """Keeps events in memory, for callers that inspect them after a run."""

    def __init__(self) -> None:
        self.events: list[SyncEvent] = []

    def send(self, event: SyncEvent) -> None:
        self.events.append(event)
