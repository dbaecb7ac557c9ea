"""SQLAlchemy ORM models for the sync state database.

Covers connector metadata, sync configurations and their type/field/status
mappings, per-side work item version snapshots, conflicts with their
resolution audit trail, and execution bookkeeping. Uses SQLAlchemy 2.0 style
with Mapped and mapped_column.

Timestamps are stored as naive UTC datetimes.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utc_now() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Normalise an aware datetime to naive UTC; naive values pass through."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class SyncDirection(str, Enum):
    one_way = "one-way"
    bidirectional = "bidirectional"


class TriggerType(str, Enum):
    manual = "manual"
    scheduled = "scheduled"
    webhook = "webhook"


class ResolutionStrategy(str, Enum):
    """Conflict resolution policies."""

    last_write_wins = "last-write-wins"
    source_priority = "source-priority"
    target_priority = "target-priority"
    merge = "merge"
    manual = "manual"
    ignored = "ignored"


class Side(str, Enum):
    source = "source"
    target = "target"


class ConflictType(str, Enum):
    field_conflict = "field_conflict"
    version_conflict = "version_conflict"
    deletion_conflict = "deletion_conflict"


class ConflictStatus(str, Enum):
    """Conflict lifecycle.

    Lifecycle: unresolved -> resolved | ignored (terminal, never reverses)
    """

    unresolved = "unresolved"
    resolved = "resolved"
    ignored = "ignored"


class ExecutionStatus(str, Enum):
    """Sync execution lifecycle.

    Lifecycle: running -> completed | completed_with_errors | failed | cancelled
    """

    running = "running"
    completed = "completed"
    completed_with_errors = "completed_with_errors"
    failed = "failed"
    cancelled = "cancelled"


class LinkStatus(str, Enum):
    """A link waits as pending until its linked item has a synced partner."""

    synced = "synced"
    pending = "pending"


TERMINAL_EXECUTION_STATUSES = frozenset(
    {
        ExecutionStatus.completed.value,
        ExecutionStatus.completed_with_errors.value,
        ExecutionStatus.failed.value,
        ExecutionStatus.cancelled.value,
    }
)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Connector metadata


class Connector(Base):
    """External tracking system endpoint."""

    __tablename__ = "connectors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    connector_type: Mapped[str] = mapped_column(String(50), nullable=False, default="rest")
    base_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    settings: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)

    work_item_types: Mapped[list["ConnectorWorkItemType"]] = relationship(
        back_populates="connector", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Connector(id={self.id}, name={self.name!r})>"


class ConnectorWorkItemType(Base):
    """Work item type declared for a connector."""

    __tablename__ = "connector_work_item_types"
    __table_args__ = (UniqueConstraint("connector_id", "type_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    connector_id: Mapped[int] = mapped_column(
        ForeignKey("connectors.id", ondelete="CASCADE"), nullable=False
    )
    type_name: Mapped[str] = mapped_column(String(255), nullable=False)

    connector: Mapped[Connector] = relationship(back_populates="work_item_types")
    fields: Mapped[list["ConnectorField"]] = relationship(
        back_populates="work_item_type", cascade="all, delete-orphan"
    )
    statuses: Mapped[list["ConnectorStatus"]] = relationship(
        back_populates="work_item_type", cascade="all, delete-orphan"
    )


class ConnectorField(Base):
    """Field declared for a connector work item type."""

    __tablename__ = "connector_fields"
    __table_args__ = (UniqueConstraint("work_item_type_id", "field_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    work_item_type_id: Mapped[int] = mapped_column(
        ForeignKey("connector_work_item_types.id", ondelete="CASCADE"), nullable=False
    )
    field_name: Mapped[str] = mapped_column(String(255), nullable=False)
    field_type: Mapped[str] = mapped_column(String(50), nullable=False, default="string")
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    work_item_type: Mapped[ConnectorWorkItemType] = relationship(back_populates="fields")


class ConnectorStatus(Base):
    """Workflow status declared for a connector work item type."""

    __tablename__ = "connector_statuses"
    __table_args__ = (UniqueConstraint("work_item_type_id", "status_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    work_item_type_id: Mapped[int] = mapped_column(
        ForeignKey("connector_work_item_types.id", ondelete="CASCADE"), nullable=False
    )
    status_name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)

    work_item_type: Mapped[ConnectorWorkItemType] = relationship(back_populates="statuses")


# Sync configuration and mappings


class SyncConfiguration(Base):
    """Pairing of a source and target connector with sync policy.

    Attributes:
        direction: one-way or bidirectional
        conflict_strategy: default resolution strategy for auto resolution
        trigger_type: manual, scheduled or webhook
        schedule_cron: cron expression evaluated for scheduled triggers
        sync_filter: opaque query object handed to the source connector
    """

    __tablename__ = "sync_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    source_connector_id: Mapped[int] = mapped_column(
        ForeignKey("connectors.id", ondelete="CASCADE"), nullable=False
    )
    target_connector_id: Mapped[int] = mapped_column(
        ForeignKey("connectors.id", ondelete="CASCADE"), nullable=False
    )
    direction: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SyncDirection.one_way.value
    )
    conflict_strategy: Mapped[str] = mapped_column(
        String(30), nullable=False, default=ResolutionStrategy.last_write_wins.value
    )
    trigger_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TriggerType.manual.value
    )
    schedule_cron: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sync_filter: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    options: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    next_sync_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utc_now, onupdate=utc_now
    )

    type_mappings: Mapped[list["TypeMapping"]] = relationship(
        back_populates="sync_config", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def is_bidirectional(self) -> bool:
        return self.direction == SyncDirection.bidirectional.value

    def __repr__(self) -> str:
        return f"<SyncConfiguration(id={self.id}, name={self.name!r})>"


class TypeMapping(Base):
    """Maps one source work item type to one target work item type."""

    __tablename__ = "type_mappings"
    __table_args__ = (UniqueConstraint("sync_config_id", "source_type", "target_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sync_config_id: Mapped[int] = mapped_column(
        ForeignKey("sync_configs.id", ondelete="CASCADE"), nullable=False
    )
    source_type: Mapped[str] = mapped_column(String(255), nullable=False)
    target_type: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    sync_config: Mapped[SyncConfiguration] = relationship(back_populates="type_mappings")
    field_mappings: Mapped[list["FieldMapping"]] = relationship(
        back_populates="type_mapping", cascade="all, delete-orphan", passive_deletes=True
    )
    status_mappings: Mapped[list["StatusMapping"]] = relationship(
        back_populates="type_mapping", cascade="all, delete-orphan", passive_deletes=True
    )


class FieldMapping(Base):
    """Source field to target field, with a transformation or constant.

    A mapping with constant_value set ignores source_field.
    """

    __tablename__ = "field_mappings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type_mapping_id: Mapped[int] = mapped_column(
        ForeignKey("type_mappings.id", ondelete="CASCADE"), nullable=False
    )
    source_field: Mapped[str | None] = mapped_column(String(255), nullable=True)
    target_field: Mapped[str] = mapped_column(String(255), nullable=False)
    transformation: Mapped[Any] = mapped_column(JSON, nullable=True)
    reverse_transformation: Mapped[Any] = mapped_column(JSON, nullable=True)
    constant_value: Mapped[Any] = mapped_column(JSON, nullable=True)

    type_mapping: Mapped[TypeMapping] = relationship(back_populates="field_mappings")

    @property
    def is_constant(self) -> bool:
        return self.constant_value is not None


class StatusMapping(Base):
    """Source status to target status for one type mapping."""

    __tablename__ = "status_mappings"
    __table_args__ = (UniqueConstraint("type_mapping_id", "source_status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type_mapping_id: Mapped[int] = mapped_column(
        ForeignKey("type_mappings.id", ondelete="CASCADE"), nullable=False
    )
    source_status: Mapped[str] = mapped_column(String(255), nullable=False)
    target_status: Mapped[str] = mapped_column(String(255), nullable=False)

    type_mapping: Mapped[TypeMapping] = relationship(back_populates="status_mappings")


# Execution bookkeeping


class SyncExecution(Base):
    """One orchestrator run over a configuration's item set.

    Created with status=running; terminal once status leaves running.
    """

    __tablename__ = "sync_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sync_config_id: Mapped[int] = mapped_column(
        ForeignKey("sync_configs.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=ExecutionStatus.running.value
    )
    trigger: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TriggerType.manual.value
    )
    dry_run: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    items_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    conflicts_detected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    conflicts_resolved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    conflicts_unresolved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    execution_log: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (Index("idx_executions_config_status", "sync_config_id", "status"),)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EXECUTION_STATUSES

    def __repr__(self) -> str:
        return f"<SyncExecution(id={self.id}, status={self.status})>"


class SyncErrorRecord(Base):
    """Per-item failure recorded during an execution. Append-only."""

    __tablename__ = "sync_errors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    execution_id: Mapped[int] = mapped_column(
        ForeignKey("sync_executions.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    item_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_type: Mapped[str] = mapped_column(String(100), nullable=False)
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    stack_trace: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)


class SyncedItem(Base):
    """Durable source item -> target item pairing for a configuration.

    base_version_id points at the target snapshot written by the last run.
    base_overrides keeps the earlier base value of every field the two sides
    did not agree on in that run (open conflicts, target changes that were
    not propagated); None stands for an absent value.
    """

    __tablename__ = "synced_items"
    __table_args__ = (UniqueConstraint("sync_config_id", "source_item_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sync_config_id: Mapped[int] = mapped_column(
        ForeignKey("sync_configs.id", ondelete="CASCADE"), nullable=False
    )
    source_item_id: Mapped[str] = mapped_column(String(255), nullable=False)
    target_item_id: Mapped[str] = mapped_column(String(255), nullable=False)
    source_item_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    target_item_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sync_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    base_version_id: Mapped[int | None] = mapped_column(
        ForeignKey("work_item_versions.id", ondelete="SET NULL"), nullable=True
    )
    base_overrides: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    first_synced_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
    last_synced_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)


class SyncedComment(Base):
    """Source comment already copied to the target item of a pair."""

    __tablename__ = "synced_comments"
    __table_args__ = (UniqueConstraint("synced_item_id", "source_comment_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    synced_item_id: Mapped[int] = mapped_column(
        ForeignKey("synced_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_comment_id: Mapped[str] = mapped_column(String(255), nullable=False)
    target_comment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    comment_text: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)


class SyncedLink(Base):
    """Source link of a pair, copied to the target or pending its partner."""

    __tablename__ = "synced_links"
    __table_args__ = (
        UniqueConstraint("synced_item_id", "link_type", "source_linked_item_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    synced_item_id: Mapped[int] = mapped_column(
        ForeignKey("synced_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    link_type: Mapped[str] = mapped_column(String(255), nullable=False)
    source_linked_item_id: Mapped[str] = mapped_column(String(255), nullable=False)
    target_linked_item_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LinkStatus.pending.value, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class WorkItemVersion(Base):
    """Immutable snapshot of a work item as seen from one side.

    Never mutated; a changed state is recorded by inserting a new row with
    the next version counter.
    """

    __tablename__ = "work_item_versions"
    __table_args__ = (
        UniqueConstraint("sync_config_id", "side", "work_item_id", "version"),
        Index("idx_versions_lookup", "sync_config_id", "side", "work_item_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sync_config_id: Mapped[int] = mapped_column(
        ForeignKey("sync_configs.id", ondelete="CASCADE"), nullable=False
    )
    side: Mapped[str] = mapped_column(String(10), nullable=False)
    work_item_id: Mapped[str] = mapped_column(String(255), nullable=False)
    work_item_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    revision: Mapped[str | None] = mapped_column(String(100), nullable=True)
    changed_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    changed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    fields_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    captured_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
    execution_id: Mapped[int | None] = mapped_column(
        ForeignKey("sync_executions.id", ondelete="SET NULL"), nullable=True
    )


class Conflict(Base):
    """Discrepancy detected between source and target.

    Created by the detector; mutated only by the resolver. Status moves
    from unresolved to resolved or ignored and never back.
    """

    __tablename__ = "conflicts"
    __table_args__ = (
        Index("idx_conflicts_config_status", "sync_config_id", "status"),
        Index("idx_conflicts_item_field", "sync_config_id", "source_work_item_id", "field_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sync_config_id: Mapped[int] = mapped_column(
        ForeignKey("sync_configs.id", ondelete="CASCADE"), nullable=False
    )
    execution_id: Mapped[int | None] = mapped_column(
        ForeignKey("sync_executions.id", ondelete="SET NULL"), nullable=True
    )
    source_work_item_id: Mapped[str] = mapped_column(String(255), nullable=False)
    target_work_item_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    work_item_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    conflict_type: Mapped[str] = mapped_column(String(30), nullable=False)
    field_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    target_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    base_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    source_version_id: Mapped[int | None] = mapped_column(
        ForeignKey("work_item_versions.id", ondelete="SET NULL"), nullable=True
    )
    target_version_id: Mapped[int | None] = mapped_column(
        ForeignKey("work_item_versions.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConflictStatus.unresolved.value
    )
    resolution_strategy: Mapped[str | None] = mapped_column(String(30), nullable=True)
    resolved_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    detected_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    resolutions: Mapped[list["ConflictResolution"]] = relationship(
        back_populates="conflict",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ConflictResolution.id",
    )

    def __repr__(self) -> str:
        return f"<Conflict(id={self.id}, type={self.conflict_type}, status={self.status})>"


class ConflictResolution(Base):
    """Audit row for one resolution action on a conflict."""

    __tablename__ = "conflict_resolutions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    conflict_id: Mapped[int] = mapped_column(
        ForeignKey("conflicts.id", ondelete="CASCADE"), nullable=False
    )
    strategy: Mapped[str] = mapped_column(String(30), nullable=False)
    previous_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    resolved_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    applied_to_source: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    applied_to_target: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    application_result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolved_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    conflict: Mapped[Conflict] = relationship(back_populates="resolutions")
