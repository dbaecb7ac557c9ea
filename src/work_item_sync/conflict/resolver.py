"""Conflict resolution: manual, automatic and ignore, with an audit trail."""

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from work_item_sync.connectors.registry import ConnectorRegistry
from work_item_sync.db.connection import session_scope
from work_item_sync.db.models import (
    Conflict,
    ConflictResolution,
    ConflictStatus,
    ConflictType,
    ResolutionStrategy,
    SyncConfiguration,
    SyncExecution,
    WorkItemVersion,
    utc_now,
)
from work_item_sync.errors import (
    AlreadyResolvedError,
    ConfigNotFound,
    ConflictNotFound,
    ConflictNotResolvedError,
    SyncError,
    UnmergeableFieldError,
)
from work_item_sync.mapping.engine import MappingEngine

logger = logging.getLogger(__name__)

AUTO_STRATEGIES = (
    ResolutionStrategy.last_write_wins,
    ResolutionStrategy.source_priority,
    ResolutionStrategy.target_priority,
    ResolutionStrategy.merge,
)


class ConflictFilter(BaseModel):
    """Criteria for listing conflicts; unset fields do not filter."""

    sync_config_id: int | None = None
    status: ConflictStatus | None = None
    conflict_type: ConflictType | None = None
    execution_id: int | None = None
    work_item_id: str | None = None
    field_name: str | None = None
    limit: int | None = None


class ResolutionOutcome(BaseModel):
    conflict_id: int
    success: bool
    status: str | None = None
    resolved_value: Any = None
    error: str | None = None


def merge_values(conflict_id: int, field_name: str | None, source: Any, target: Any, separator: str) -> Any:
    """Merge two conflicting values.

    Lists merge to their union (source order first); strings concatenate
    with the separator. Anything else cannot be merged.

    Raises:
        UnmergeableFieldError: If the values cannot be merged.
    """
    if isinstance(source, list) and isinstance(target, list):
        merged = list(source)
        for element in target:
            if element not in merged:
                merged.append(element)
        return merged
    if isinstance(source, str) and isinstance(target, str):
        if source in target:
            return target
        if target in source:
            return source
        return f"{source}{separator}{target}"
    raise UnmergeableFieldError(conflict_id, field_name)


class ConflictResolver:
    """Applies resolution strategies to conflicts.

    Every state change is a single transaction: a failed resolution leaves
    the conflict untouched. Status only moves from unresolved to resolved
    or ignored; resolving twice raises AlreadyResolvedError.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: ConnectorRegistry | None = None,
        mapping_engine: MappingEngine | None = None,
        merge_separator: str = "\n",
    ) -> None:
        """Initialize resolver.

        Args:
            session_factory: Factory for database sessions.
            registry: Connectors used by apply_resolution.
            mapping_engine: Reverse mapping for values pushed to the source.
            merge_separator: Separator used when merging strings.
        """
        self.session_factory = session_factory
        self.registry = registry
        self.mapping_engine = mapping_engine
        self.merge_separator = merge_separator

    def resolve_manually(
        self,
        conflict_id: int,
        value: Any,
        rationale: str | None = None,
        resolved_by: str | None = None,
    ) -> Conflict:
        """Resolve a conflict with an operator-chosen value.

        Applying the value to the external systems is a separate step
        (apply_resolution).

        Raises:
            ConflictNotFound: If the conflict does not exist.
            AlreadyResolvedError: If the conflict is not unresolved.
        """
        with session_scope(self.session_factory) as session:
            conflict = self._get_unresolved(session, conflict_id)
            self._record(
                session,
                conflict,
                ResolutionStrategy.manual,
                value,
                rationale=rationale,
                resolved_by=resolved_by,
            )
            logger.info(f"Conflict {conflict_id} resolved manually by {resolved_by or 'unknown'}")
            return conflict

    def resolve_auto(
        self,
        conflict_id: int,
        strategy: ResolutionStrategy | str | None = None,
        resolved_by: str | None = "system",
    ) -> Conflict:
        """Resolve a conflict with an automatic strategy.

        Args:
            conflict_id: Conflict to resolve.
            strategy: last-write-wins, source-priority, target-priority or
                merge. None uses the configuration's strategy; a configured
                manual strategy leaves the conflict unresolved.
            resolved_by: Recorded on the conflict and audit row.

        Returns:
            The conflict, resolved unless the effective strategy is manual.

        Raises:
            ConflictNotFound: If the conflict does not exist.
            AlreadyResolvedError: If the conflict is not unresolved.
            UnmergeableFieldError: If merge cannot combine the values.
            ValueError: If the strategy is not an automatic one.
        """
        with session_scope(self.session_factory) as session:
            conflict = self._get_unresolved(session, conflict_id)

            if strategy is None:
                config = session.get(SyncConfiguration, conflict.sync_config_id)
                if config is None:
                    raise ConfigNotFound(conflict.sync_config_id)
                strategy = config.conflict_strategy
            strategy = ResolutionStrategy(strategy)

            if strategy == ResolutionStrategy.manual:
                logger.info(f"Conflict {conflict_id} left for manual resolution")
                return conflict
            if strategy not in AUTO_STRATEGIES:
                raise ValueError(f"{strategy.value} is not an automatic resolution strategy")

            value, rationale = self._auto_value(session, conflict, strategy)
            self._record(
                session, conflict, strategy, value, rationale=rationale, resolved_by=resolved_by
            )
            logger.info(f"Conflict {conflict_id} resolved with {strategy.value}: {rationale}")
            return conflict

    def ignore(
        self, conflict_id: int, rationale: str | None = None, resolved_by: str | None = None
    ) -> Conflict:
        """Mark a conflict ignored. No value is recorded.

        Raises:
            ConflictNotFound: If the conflict does not exist.
            AlreadyResolvedError: If the conflict is not unresolved.
        """
        with session_scope(self.session_factory) as session:
            conflict = self._get_unresolved(session, conflict_id)
            conflict.status = ConflictStatus.ignored.value
            conflict.resolution_strategy = ResolutionStrategy.ignored.value
            conflict.resolved_by = resolved_by
            conflict.resolved_at = utc_now()
            session.add(
                ConflictResolution(
                    conflict_id=conflict.id,
                    strategy=ResolutionStrategy.ignored.value,
                    previous_value=conflict.target_value,
                    resolved_value=None,
                    rationale=rationale,
                    resolved_by=resolved_by,
                )
            )
            self._update_execution_counters(session, conflict, resolved=False)
            logger.info(f"Conflict {conflict_id} ignored")
            return conflict

    def resolve_many(
        self, conflict_ids: list[int], strategy: ResolutionStrategy | str | None = None
    ) -> list[ResolutionOutcome]:
        """Auto-resolve several conflicts; one failure does not stop the rest."""
        outcomes = []
        for conflict_id in conflict_ids:
            try:
                conflict = self.resolve_auto(conflict_id, strategy)
            except (SyncError, ValueError) as e:
                logger.warning(f"Could not resolve conflict {conflict_id}: {e}")
                outcomes.append(ResolutionOutcome(conflict_id=conflict_id, success=False, error=str(e)))
                continue
            outcomes.append(
                ResolutionOutcome(
                    conflict_id=conflict_id,
                    success=conflict.status == ConflictStatus.resolved.value,
                    status=conflict.status,
                    resolved_value=conflict.resolved_value,
                )
            )
        return outcomes

    async def apply_resolution(
        self, conflict_id: int, to_target: bool = True, to_source: bool = False
    ) -> ConflictResolution:
        """Write a resolved field value to the external system(s).

        Connector failures are recorded in application_result rather than
        raised; the corresponding applied flag stays false.

        Raises:
            ConflictNotFound: If the conflict does not exist.
            ConflictNotResolvedError: If the conflict is not a resolved
                field conflict.
        """
        if self.registry is None:
            raise SyncError("No connector registry available to apply resolutions")

        with session_scope(self.session_factory) as session:
            conflict = self._get(session, conflict_id)
            if conflict.status != ConflictStatus.resolved.value:
                raise ConflictNotResolvedError(conflict_id, f"status is {conflict.status}")
            if conflict.conflict_type != ConflictType.field_conflict.value or not conflict.field_name:
                raise ConflictNotResolvedError(conflict_id, "only field conflicts can be applied")
            config = session.get(SyncConfiguration, conflict.sync_config_id)
            if config is None:
                raise ConfigNotFound(conflict.sync_config_id)
            resolution = conflict.resolutions[-1]
            field_name = conflict.field_name
            value = conflict.resolved_value
            source_connector_id = config.source_connector_id
            target_connector_id = config.target_connector_id

        result: dict[str, Any] = {"applied_at": utc_now().isoformat()}
        applied_target = applied_source = False

        if to_target:
            if not conflict.target_work_item_id:
                result["target"] = {"error": "conflict has no target work item"}
            else:
                try:
                    await self.registry.get(target_connector_id).update_item(
                        conflict.target_work_item_id, {field_name: value}
                    )
                    result["target"] = {"updated": [field_name]}
                    applied_target = True
                except SyncError as e:
                    logger.error(f"Failed to apply conflict {conflict_id} to target: {e}")
                    result["target"] = {"error": str(e)}

        if to_source:
            try:
                source_fields = self._source_fields(conflict, field_name, value)
                if not source_fields:
                    result["source"] = {"error": f"field '{field_name}' has no reverse mapping"}
                else:
                    await self.registry.get(source_connector_id).update_item(
                        conflict.source_work_item_id, source_fields
                    )
                    result["source"] = {"updated": sorted(source_fields)}
                    applied_source = True
            except SyncError as e:
                logger.error(f"Failed to apply conflict {conflict_id} to source: {e}")
                result["source"] = {"error": str(e)}

        with session_scope(self.session_factory) as session:
            row = session.get(ConflictResolution, resolution.id)
            row.applied_to_target = row.applied_to_target or applied_target
            row.applied_to_source = row.applied_to_source or applied_source
            row.application_result = result
            return row

    def get_resolution_history(self, conflict_id: int) -> list[ConflictResolution]:
        with session_scope(self.session_factory) as session:
            self._get(session, conflict_id)
            return list(
                session.scalars(
                    select(ConflictResolution)
                    .where(ConflictResolution.conflict_id == conflict_id)
                    .order_by(ConflictResolution.id)
                ).all()
            )

    def get_conflict(self, conflict_id: int) -> Conflict:
        with session_scope(self.session_factory) as session:
            return self._get(session, conflict_id)

    def list_conflicts(self, conflict_filter: ConflictFilter | None = None) -> list[Conflict]:
        """List conflicts matching a filter, newest first."""
        conflict_filter = conflict_filter or ConflictFilter()
        query = select(Conflict)
        if conflict_filter.sync_config_id is not None:
            query = query.where(Conflict.sync_config_id == conflict_filter.sync_config_id)
        if conflict_filter.status is not None:
            query = query.where(Conflict.status == ConflictStatus(conflict_filter.status).value)
        if conflict_filter.conflict_type is not None:
            query = query.where(
                Conflict.conflict_type == ConflictType(conflict_filter.conflict_type).value
            )
        if conflict_filter.execution_id is not None:
            query = query.where(Conflict.execution_id == conflict_filter.execution_id)
        if conflict_filter.work_item_id is not None:
            query = query.where(
                (Conflict.source_work_item_id == conflict_filter.work_item_id)
                | (Conflict.target_work_item_id == conflict_filter.work_item_id)
            )
        if conflict_filter.field_name is not None:
            query = query.where(Conflict.field_name == conflict_filter.field_name)
        query = query.order_by(Conflict.detected_at.desc(), Conflict.id.desc())
        if conflict_filter.limit:
            query = query.limit(conflict_filter.limit)

        with session_scope(self.session_factory) as session:
            return list(session.scalars(query).all())

    def _auto_value(
        self, session: Session, conflict: Conflict, strategy: ResolutionStrategy
    ) -> tuple[Any, str]:
        if strategy == ResolutionStrategy.source_priority:
            return conflict.source_value, "source priority"
        if strategy == ResolutionStrategy.target_priority:
            return conflict.target_value, "target priority"
        if strategy == ResolutionStrategy.merge:
            if conflict.conflict_type != ConflictType.field_conflict.value:
                raise UnmergeableFieldError(conflict.id, conflict.field_name)
            merged = merge_values(
                conflict.id,
                conflict.field_name,
                conflict.source_value,
                conflict.target_value,
                self.merge_separator,
            )
            return merged, "merged source and target values"

        source_date = self._changed_date(session, conflict.source_version_id)
        target_date = self._changed_date(session, conflict.target_version_id)
        # a missing date loses; equal dates go to source
        if target_date is not None and (source_date is None or target_date > source_date):
            return conflict.target_value, f"target changed later ({target_date.isoformat()})"
        return conflict.source_value, (
            f"source changed at {source_date.isoformat()}" if source_date else "no change dates, source wins"
        )

    @staticmethod
    def _changed_date(session: Session, version_id: int | None) -> datetime | None:
        if version_id is None:
            return None
        version = session.get(WorkItemVersion, version_id)
        return version.changed_date if version else None

    def _source_fields(self, conflict: Conflict, field_name: str, value: Any) -> dict[str, Any]:
        if self.mapping_engine is None:
            return {}
        return self.mapping_engine.reverse_map_fields(
            conflict.sync_config_id, conflict.work_item_type, {field_name: value}
        )

    def _record(
        self,
        session: Session,
        conflict: Conflict,
        strategy: ResolutionStrategy,
        value: Any,
        rationale: str | None,
        resolved_by: str | None,
    ) -> None:
        conflict.status = ConflictStatus.resolved.value
        conflict.resolution_strategy = strategy.value
        conflict.resolved_value = value
        conflict.resolved_by = resolved_by
        conflict.resolved_at = utc_now()
        session.add(
            ConflictResolution(
                conflict_id=conflict.id,
                strategy=strategy.value,
                previous_value=conflict.target_value,
                resolved_value=value,
                rationale=rationale,
                resolved_by=resolved_by,
            )
        )
        self._update_execution_counters(session, conflict)

    @staticmethod
    def _update_execution_counters(session: Session, conflict: Conflict, resolved: bool = True) -> None:
        if conflict.execution_id is None:
            return
        execution = session.get(SyncExecution, conflict.execution_id)
        if execution is None:
            return
        if resolved:
            execution.conflicts_resolved += 1
        execution.conflicts_unresolved = max(execution.conflicts_unresolved - 1, 0)

    @staticmethod
    def _get(session: Session, conflict_id: int) -> Conflict:
        conflict = session.get(Conflict, conflict_id)
        if conflict is None:
            raise ConflictNotFound(conflict_id)
        return conflict

    def _get_unresolved(self, session: Session, conflict_id: int) -> Conflict:
        conflict = self._get(session, conflict_id)
        if conflict.status != ConflictStatus.unresolved.value:
            raise AlreadyResolvedError(conflict_id, conflict.status)
        return conflict
