"""Sync engine driving one execution of a sync configuration."""

import asyncio
import logging
import traceback
from collections.abc import Callable
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from work_item_sync.conflict.detector import ConflictDetector
from work_item_sync.conflict.resolver import ConflictResolver
from work_item_sync.connectors.base import Connector
from work_item_sync.connectors.models import WorkItem
from work_item_sync.connectors.registry import ConnectorRegistry
from work_item_sync.db.connection import session_scope
from work_item_sync.db.models import (
    Conflict,
    ConflictStatus,
    ConflictType,
    ExecutionStatus,
    ResolutionStrategy,
    Side,
    SyncConfiguration,
    SyncedItem,
    SyncErrorRecord,
    SyncExecution,
    TriggerType,
    utc_now,
)
from work_item_sync.errors import (
    ConfigInactive,
    ConfigNotFound,
    ItemNotFoundError,
    SyncError,
    VersionMismatchError,
)
from work_item_sync.mapping.engine import MappingEngine
from work_item_sync.notifications import (
    EventType,
    LoggingNotificationSink,
    NotificationSink,
    SyncEvent,
)
from work_item_sync.sync.related import RelatedContentSync
from work_item_sync.sync.versions import VersionStore
from work_item_sync.utils.logging import ExecutionLog

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict[str, Any]], None]


class SyncResult:
    """Results from a sync execution."""

    def __init__(self) -> None:
        """Initialize sync result."""
        self.items_created = 0
        self.items_updated = 0
        self.items_skipped = 0
        self.items_failed = 0
        self.comments_synced = 0
        self.links_synced = 0
        self.conflicts: list[Conflict] = []
        self.errors: list[str] = []

    @property
    def items_synced(self) -> int:
        return self.items_created + self.items_updated

    @property
    def items_processed(self) -> int:
        return self.items_synced + self.items_skipped + self.items_failed

    def add_created(self) -> None:
        """Record a target item created."""
        self.items_created += 1

    def add_updated(self) -> None:
        """Record an existing pair brought up to date."""
        self.items_updated += 1

    def add_skip(self) -> None:
        """Record an item held back by an item-level conflict."""
        self.items_skipped += 1

    def add_failure(self, error: str) -> None:
        """Record a failed item."""
        self.items_failed += 1
        self.errors.append(error)

    def add_conflicts(self, conflicts: list[Conflict]) -> None:
        self.conflicts.extend(conflicts)

    def merge(self, other: "SyncResult") -> None:
        """Fold the counters of another result into this one."""
        self.items_created += other.items_created
        self.items_updated += other.items_updated
        self.items_skipped += other.items_skipped
        self.items_failed += other.items_failed
        self.comments_synced += other.comments_synced
        self.links_synced += other.links_synced
        self.conflicts.extend(other.conflicts)
        self.errors.extend(other.errors)

    def __str__(self) -> str:
        """String representation of results."""
        return (
            f"Created: {self.items_created}, "
            f"Updated: {self.items_updated}, "
            f"Skipped: {self.items_skipped}, "
            f"Failed: {self.items_failed}, "
            f"Conflicts: {len(self.conflicts)}"
        )


class _ConfigView:
    """Plain copy of the configuration values a run needs."""

    def __init__(self, config: SyncConfiguration) -> None:
        self.id = config.id
        self.name = config.name
        self.is_active = config.is_active
        self.source_connector_id = config.source_connector_id
        self.target_connector_id = config.target_connector_id
        self.sync_filter = config.sync_filter
        self.is_bidirectional = config.is_bidirectional
        self.conflict_strategy = config.conflict_strategy
        self.options = dict(config.options or {})


class SyncEngine:
    """Runs sync executions.

    Items are processed one at a time. No transaction is open while a
    connector is awaited: an item's version captures and SyncedItem upsert
    commit together once its connector writes are done, so a failed or
    cancelled run never leaves an item half-recorded. Conflicts are
    inserted in one batch when the item loop ends.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: ConnectorRegistry,
        mapping_engine: MappingEngine,
        version_store: VersionStore | None = None,
        detector: ConflictDetector | None = None,
        resolver: ConflictResolver | None = None,
        notifier: NotificationSink | None = None,
    ) -> None:
        """Initialize sync engine.

        Args:
            session_factory: Factory for database sessions.
            registry: Connector instances keyed by connector id.
            mapping_engine: Mapping engine.
            version_store: Version store.
            detector: Conflict detector.
            resolver: Conflict resolver used for auto resolution.
            notifier: Sink receiving sync events.
        """
        self.session_factory = session_factory
        self.registry = registry
        self.mapping_engine = mapping_engine
        self.version_store = version_store or VersionStore()
        self.detector = detector or ConflictDetector()
        self.resolver = resolver or ConflictResolver(session_factory, registry, mapping_engine)
        self.notifier = notifier or LoggingNotificationSink()
        self.related = RelatedContentSync(session_factory)

    def start_execution(
        self,
        config_id: int,
        trigger: TriggerType | str = TriggerType.manual,
        dry_run: bool = False,
    ) -> SyncExecution:
        """Create the running SyncExecution row for a configuration.

        Raises:
            ConfigNotFound: If the configuration does not exist.
        """
        with session_scope(self.session_factory) as session:
            if session.get(SyncConfiguration, config_id) is None:
                raise ConfigNotFound(config_id)
            execution = SyncExecution(
                sync_config_id=config_id,
                status=ExecutionStatus.running.value,
                trigger=TriggerType(trigger).value,
                dry_run=dry_run,
            )
            session.add(execution)
            session.flush()
            logger.info(
                f"Started execution {execution.id} for configuration {config_id}"
                f"{' (dry run)' if dry_run else ''}"
            )
            return execution

    async def execute(
        self,
        config_id: int,
        work_item_ids: list[str] | None = None,
        dry_run: bool = False,
        trigger: TriggerType | str = TriggerType.manual,
        cancel_event: asyncio.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> SyncExecution:
        """Start and run an execution, returning its terminal row."""
        execution = self.start_execution(config_id, trigger=trigger, dry_run=dry_run)
        return await self.run(
            execution.id,
            work_item_ids=work_item_ids,
            cancel_event=cancel_event,
            on_progress=on_progress,
        )

    async def run(
        self,
        execution_id: int,
        work_item_ids: list[str] | None = None,
        cancel_event: asyncio.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> SyncExecution:
        """Run a started execution to a terminal status.

        Configuration-level failures (inactive configuration, missing
        mappings or connectors, failed source query) end the run as failed;
        per-item failures are recorded and the run continues.

        Args:
            execution_id: Execution created by start_execution.
            work_item_ids: Restrict the run to these source item ids.
            cancel_event: Checked between items; when set the run stops
                and ends as cancelled.
            on_progress: Called after each item with a progress dict.

        Returns:
            The terminal SyncExecution.
        """
        with session_scope(self.session_factory) as session:
            execution = session.get(SyncExecution, execution_id)
            if execution is None:
                raise SyncError(f"Execution {execution_id} not found")
            config_row = session.get(SyncConfiguration, execution.sync_config_id)
            if config_row is None:
                raise ConfigNotFound(execution.sync_config_id)
            config = _ConfigView(config_row)
            dry_run = execution.dry_run
            started_at = execution.started_at

        log = ExecutionLog(logger, execution_id)
        result = SyncResult()
        status = ExecutionStatus.completed
        error_message: str | None = None
        cancelled = False

        log.info(
            f"Starting sync for configuration '{config.name}'",
            config_id=config.id,
            dry_run=dry_run,
        )

        try:
            if not config.is_active:
                raise ConfigInactive(config.id)

            type_rules = self.mapping_engine.load_mappings(config.id)
            log.info(f"Loaded {len(type_rules)} type mappings")

            source = self.registry.get(config.source_connector_id)
            target = self.registry.get(config.target_connector_id)

            entries: list[WorkItem | str]
            if work_item_ids:
                entries = [str(item_id) for item_id in work_item_ids]
            else:
                entries = list(await source.query_items(config.sync_filter))
                if not config.sync_filter:
                    entries.extend(self._missing_from_query(config.id, entries, log))
            log.info(f"Found {len(entries)} work items to sync")

            for index, entry in enumerate(entries, start=1):
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    log.warning(f"Cancelled after {index - 1} of {len(entries)} items")
                    break

                item_id = entry if isinstance(entry, str) else entry.id
                outcome = await self._process_item(
                    config, execution_id, item_id, entry, source, target, dry_run, result, log
                )
                if on_progress is not None:
                    on_progress(
                        {
                            "execution_id": execution_id,
                            "sync_config_id": config.id,
                            "item_id": item_id,
                            "outcome": outcome,
                            "processed": index,
                            "total": len(entries),
                        }
                    )

            if result.comments_synced or result.links_synced:
                log.info(
                    f"Synced {result.comments_synced} comments and {result.links_synced} links"
                )

            if result.conflicts and not dry_run:
                self._insert_conflicts(execution_id, result.conflicts)
                log.warning(f"Detected {len(result.conflicts)} conflicts")
                await self._auto_resolve(config, result.conflicts, log)

            if cancelled:
                status = ExecutionStatus.cancelled
                error_message = "Execution cancelled"
            elif result.items_failed and result.items_failed == result.items_processed:
                status = ExecutionStatus.failed
                error_message = f"All {result.items_failed} items failed"
            elif result.items_failed:
                status = ExecutionStatus.completed_with_errors

        except Exception as e:
            status = ExecutionStatus.failed
            error_message = str(e)
            log.error("Sync execution failed", error=e)

        log.info(f"Sync finished with status {status.value}: {result}")
        execution = self._finish(
            execution_id, config.id, status, result, error_message, log, dry_run
        )
        self._emit(config, execution, started_at)
        return execution

    def fail_execution(self, execution_id: int, message: str) -> SyncExecution | None:
        """Force a non-terminal execution to failed, e.g. after a timeout."""
        with session_scope(self.session_factory) as session:
            execution = session.get(SyncExecution, execution_id)
            if execution is None or execution.is_terminal:
                return execution
            execution.status = ExecutionStatus.failed.value
            execution.error_message = message
            execution.completed_at = utc_now()
            log = list(execution.execution_log or [])
            log.append({"timestamp": utc_now().isoformat(), "level": "error", "message": message})
            execution.execution_log = log
            config = session.get(SyncConfiguration, execution.sync_config_id)
            config_name = config.name if config else None
        logger.error(f"Execution {execution_id} failed: {message}")
        self.notifier.send(
            SyncEvent(
                event_type=EventType.sync_failed,
                sync_config_id=execution.sync_config_id,
                sync_config_name=config_name,
                execution_id=execution.id,
                items_synced=execution.items_synced,
                items_failed=execution.items_failed,
                started_at=execution.started_at,
                ended_at=execution.completed_at,
                error_message=message,
            )
        )
        return execution

    def get_execution(self, execution_id: int) -> SyncExecution | None:
        with session_scope(self.session_factory) as session:
            return session.get(SyncExecution, execution_id)

    async def _process_item(
        self,
        config: _ConfigView,
        execution_id: int,
        item_id: str,
        entry: WorkItem | str,
        source: Connector,
        target: Connector,
        dry_run: bool,
        result: SyncResult,
        log: ExecutionLog,
    ) -> str:
        item_type = None if isinstance(entry, str) else entry.type
        item_result = SyncResult()
        try:
            outcome = await self._sync_item(
                config, execution_id, entry, source, target, dry_run, item_result, log
            )
        except Exception as e:
            result.add_failure(f"{item_id}: {e}")
            log.error(f"Failed to sync work item {item_id}", error=e, work_item_id=item_id)
            self._record_error(execution_id, item_id, item_type, e)
            return "failed"
        result.merge(item_result)
        return outcome

    def _missing_from_query(
        self, config_id: int, entries: list[WorkItem | str], log: ExecutionLog
    ) -> list[str]:
        """Synced source ids an unfiltered query no longer returns.

        They are fetched one by one, so a deleted source item is flagged.
        """
        returned = {entry if isinstance(entry, str) else entry.id for entry in entries}
        with session_scope(self.session_factory) as session:
            synced_ids = session.scalars(
                select(SyncedItem.source_item_id)
                .where(SyncedItem.sync_config_id == config_id)
                .order_by(SyncedItem.id)
            ).all()
        missing = [item_id for item_id in synced_ids if item_id not in returned]
        if missing:
            log.info(f"{len(missing)} synced items missing from the source query")
        return missing

    def _find_synced(self, config_id: int, source_item_id: str) -> SyncedItem | None:
        with session_scope(self.session_factory) as session:
            return session.scalars(
                select(SyncedItem).where(
                    SyncedItem.sync_config_id == config_id,
                    SyncedItem.source_item_id == source_item_id,
                )
            ).first()

    async def _sync_item(
        self,
        config: _ConfigView,
        execution_id: int,
        entry: WorkItem | str,
        source: Connector,
        target: Connector,
        dry_run: bool,
        result: SyncResult,
        log: ExecutionLog,
    ) -> str:
        """Sync one source item.

        Connector calls run between short transactions: state is read first,
        the connectors are called, then one transaction records the versions
        and the pair.
        """
        item_id = entry if isinstance(entry, str) else entry.id
        synced = self._find_synced(config.id, item_id)

        if isinstance(entry, WorkItem):
            item = entry
        else:
            try:
                item = await source.get_item(item_id)
            except ItemNotFoundError:
                if synced is None:
                    raise
                self._flag_deletion(config, execution_id, synced, Side.source, None, result, log)
                return "deleted_in_source"

        mapped = self.mapping_engine.map_work_item(config.id, item)

        if not dry_run:
            try:
                with session_scope(self.session_factory) as session:
                    self.version_store.check_version(session, config.id, Side.source, item)
            except VersionMismatchError as e:
                self._flag_version(config, execution_id, item, synced, e, result, log)
                return "version_conflict"

        if synced is None:
            if dry_run:
                log.info(f"[DRY RUN] Would create {mapped.type} from source item {item.id}")
                result.add_created()
                return "created"
            created = await target.create_item(mapped.type, mapped.fields)
            with session_scope(self.session_factory) as session:
                self.version_store.capture_version(session, config.id, Side.source, item, execution_id)
                target_version = self.version_store.capture_version(
                    session, config.id, Side.target, created, execution_id
                )
                session.add(
                    SyncedItem(
                        sync_config_id=config.id,
                        source_item_id=item.id,
                        target_item_id=created.id,
                        source_item_type=item.type,
                        target_item_type=mapped.type,
                        sync_count=1,
                        base_version_id=target_version.id,
                    )
                )
            log.info(f"Created target item {created.id} from source item {item.id}")
            result.add_created()
            return "created"

        try:
            target_item = await target.get_item(synced.target_item_id)
        except ItemNotFoundError:
            self._flag_deletion(
                config, execution_id, synced, Side.target, mapped.fields, result, log
            )
            return "deleted_in_target"

        try:
            with session_scope(self.session_factory) as session:
                if not dry_run:
                    self.version_store.check_version(session, config.id, Side.target, target_item)
                base = self.version_store.get_base_fields(session, config.id, item.id)
                fields = self.mapping_engine.managed_target_fields(config.id, item.type)
                detection = self.detector.detect(
                    session, config.id, item.id, mapped.fields, target_item.fields, base, fields
                )
        except VersionMismatchError as e:
            self._flag_version(config, execution_id, item, synced, e, result, log)
            return "version_conflict"

        if dry_run:
            log.info(
                f"[DRY RUN] Item {item.id}: would update {sorted(detection.to_target)}, "
                f"{len(detection.conflicts)} conflicts"
            )
            result.add_updated()
            return "updated"

        updated_target = None
        if detection.to_target:
            updated_target = await target.update_item(synced.target_item_id, detection.to_target)
            log.info(f"Updated target item {synced.target_item_id}: {sorted(detection.to_target)}")

        # target-side changes that are not written back stay unsettled
        held_back = set(detection.to_source)
        updated_source = None
        if detection.to_source and config.is_bidirectional:
            source_fields: dict[str, Any] = {}
            for name, value in detection.to_source.items():
                reversed_fields = self.mapping_engine.reverse_map_fields(
                    config.id, item.type, {name: value}
                )
                if reversed_fields:
                    source_fields.update(reversed_fields)
                    held_back.discard(name)
            if source_fields:
                updated_source = await source.update_item(item.id, source_fields)
                log.info(f"Updated source item {item.id}: {sorted(source_fields)}")

        with session_scope(self.session_factory) as session:
            source_version = self.version_store.capture_version(
                session, config.id, Side.source, item, execution_id
            )
            target_version = self.version_store.capture_version(
                session, config.id, Side.target, target_item, execution_id
            )
            if detection.conflicts:
                result.add_conflicts(
                    self.detector.build_field_conflicts(
                        config.id,
                        execution_id,
                        item.id,
                        synced.target_item_id,
                        item.type,
                        detection,
                        source_version,
                        target_version,
                    )
                )
            if updated_target is not None:
                target_version = self.version_store.capture_version(
                    session, config.id, Side.target, updated_target, execution_id
                )
            if updated_source is not None:
                self.version_store.capture_version(
                    session, config.id, Side.source, updated_source, execution_id
                )
            row = session.get(SyncedItem, synced.id)
            self.version_store.advance_base(row, target_version, base, detection.unsettled | held_back)
            row.sync_count += 1
            row.last_synced_at = utc_now()

        result.add_updated()
        await self._sync_related(config, synced, source, target, result, log)
        return "updated"

    async def _sync_related(
        self,
        config: _ConfigView,
        synced: SyncedItem,
        source: Connector,
        target: Connector,
        result: SyncResult,
        log: ExecutionLog,
    ) -> None:
        ids = (synced.id, synced.source_item_id, synced.target_item_id)
        try:
            if config.options.get("sync_comments"):
                result.comments_synced += await self.related.sync_comments(
                    *ids, source, target, log
                )
            if config.options.get("sync_links"):
                result.links_synced += await self.related.sync_links(
                    config.id, *ids, source, target, log
                )
        except SyncError as e:
            log.warning(f"Comment and link sync failed for {synced.source_item_id}: {e}")

    def _flag_deletion(
        self,
        config: _ConfigView,
        execution_id: int,
        synced: SyncedItem,
        missing_side: Side,
        surviving_fields: dict[str, Any] | None,
        result: SyncResult,
        log: ExecutionLog,
    ) -> None:
        log.warning(
            f"Work item missing in {missing_side.value} for pair "
            f"{synced.source_item_id} -> {synced.target_item_id}"
        )
        result.add_skip()
        missing_id = (
            synced.source_item_id if missing_side == Side.source else synced.target_item_id
        )
        with session_scope(self.session_factory) as session:
            if self.detector.has_open_conflict(
                session, config.id, synced.source_item_id, ConflictType.deletion_conflict
            ):
                return
            last_known = self.version_store.get_latest(session, config.id, missing_side, missing_id)
        result.add_conflicts(
            [
                self.detector.build_deletion_conflict(
                    config.id,
                    execution_id,
                    synced.source_item_id,
                    synced.target_item_id,
                    missing_side,
                    last_known,
                    surviving_fields,
                )
            ]
        )

    def _flag_version(
        self,
        config: _ConfigView,
        execution_id: int,
        item: WorkItem,
        synced: SyncedItem | None,
        error: VersionMismatchError,
        result: SyncResult,
        log: ExecutionLog,
    ) -> None:
        log.warning(str(error), work_item_id=item.id)
        result.add_skip()
        with session_scope(self.session_factory) as session:
            if self.detector.has_open_conflict(
                session, config.id, item.id, ConflictType.version_conflict
            ):
                return
        result.add_conflicts(
            [
                self.detector.build_version_conflict(
                    config.id,
                    execution_id,
                    item.id,
                    synced.target_item_id if synced else None,
                    item.type,
                    error,
                )
            ]
        )

    def _record_error(
        self, execution_id: int, item_id: str | None, item_type: str | None, error: Exception
    ) -> None:
        with session_scope(self.session_factory) as session:
            session.add(
                SyncErrorRecord(
                    execution_id=execution_id,
                    item_id=item_id,
                    item_type=getattr(error, "work_item_type", None) or item_type,
                    error_type=type(error).__name__,
                    error_message=str(error),
                    stack_trace="".join(
                        traceback.format_exception(type(error), error, error.__traceback__)
                    ),
                )
            )

    def _insert_conflicts(self, execution_id: int, conflicts: list[Conflict]) -> None:
        with session_scope(self.session_factory) as session:
            session.add_all(conflicts)
            execution = session.get(SyncExecution, execution_id)
            execution.conflicts_detected = len(conflicts)
            execution.conflicts_unresolved = len(conflicts)
            execution.conflicts_resolved = 0

    async def _auto_resolve(self, config: _ConfigView, conflicts: list[Conflict], log: ExecutionLog) -> None:
        if not config.options.get("auto_resolve"):
            return
        if config.conflict_strategy == ResolutionStrategy.manual.value:
            return

        for conflict in conflicts:
            try:
                resolved = self.resolver.resolve_auto(conflict.id)
                if resolved.status != ConflictStatus.resolved.value:
                    continue
                if conflict.conflict_type == ConflictType.field_conflict.value:
                    await self.resolver.apply_resolution(
                        conflict.id, to_target=True, to_source=config.is_bidirectional
                    )
                log.info(f"Auto-resolved conflict {conflict.id} with {config.conflict_strategy}")
            except SyncError as e:
                log.warning(f"Conflict {conflict.id} left for manual resolution: {e}")

    def _finish(
        self,
        execution_id: int,
        config_id: int,
        status: ExecutionStatus,
        result: SyncResult,
        error_message: str | None,
        log: ExecutionLog,
        dry_run: bool,
    ) -> SyncExecution:
        with session_scope(self.session_factory) as session:
            execution = session.get(SyncExecution, execution_id)
            execution.status = status.value
            execution.items_synced = result.items_synced
            execution.items_failed = result.items_failed
            execution.error_message = error_message
            execution.completed_at = utc_now()
            execution.execution_log = log.entries
            if not dry_run and status != ExecutionStatus.failed:
                config = session.get(SyncConfiguration, config_id)
                if config is not None:
                    config.last_sync_at = execution.completed_at
            return execution

    def _emit(self, config: _ConfigView, execution: SyncExecution, started_at: Any) -> None:
        failed = execution.status in (ExecutionStatus.failed.value, ExecutionStatus.cancelled.value)
        self.notifier.send(
            SyncEvent(
                event_type=EventType.sync_failed if failed else EventType.sync_completed,
                sync_config_id=config.id,
                sync_config_name=config.name,
                execution_id=execution.id,
                items_synced=execution.items_synced,
                items_failed=execution.items_failed,
                conflicts_detected=execution.conflicts_detected,
                started_at=started_at,
                ended_at=execution.completed_at,
                error_message=execution.error_message,
            )
        )
        if execution.dry_run:
            return
        with session_scope(self.session_factory) as session:
            conflicts = session.scalars(
                select(Conflict).where(Conflict.execution_id == execution.id).order_by(Conflict.id)
            ).all()
            for conflict in conflicts:
                self.notifier.send(
                    SyncEvent(
                        event_type=EventType.conflict_detected,
                        sync_config_id=config.id,
                        sync_config_name=config.name,
                        execution_id=execution.id,
                        item_id=conflict.source_work_item_id,
                        conflict_type=conflict.conflict_type,
                    )
                )
