"""Three-way change detection between source, target and their last agreed base."""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from work_item_sync.db.models import (
    Conflict,
    ConflictStatus,
    ConflictType,
    Side,
    WorkItemVersion,
)
from work_item_sync.errors import VersionMismatchError

logger = logging.getLogger(__name__)


class _Absent:
    def __repr__(self) -> str:
        return "ABSENT"


ABSENT: Any = _Absent()


def _value(fields: dict[str, Any] | None, name: str) -> Any:
    if fields is None:
        return ABSENT
    value = fields.get(name)
    return ABSENT if value is None else value


def _stored(value: Any) -> Any:
    return None if value is ABSENT else value


class FieldConflict:
    """A field changed differently on both sides since the base."""

    def __init__(self, field_name: str, source_value: Any, target_value: Any, base_value: Any) -> None:
        self.field_name = field_name
        self.source_value = source_value
        self.target_value = target_value
        self.base_value = base_value

    def __repr__(self) -> str:
        return (
            f"FieldConflict({self.field_name!r}, source={self.source_value!r}, "
            f"target={self.target_value!r}, base={self.base_value!r})"
        )


class DetectionResult:
    """Outcome of comparing one item pair.

    Attributes:
        to_target: target field -> value to write to the target
        to_source: target field -> target value to propagate back to the source
        conflicts: new field conflicts
        pending: fields held back by an existing unresolved conflict
    """

    def __init__(self) -> None:
        self.to_target: dict[str, Any] = {}
        self.to_source: dict[str, Any] = {}
        self.conflicts: list[FieldConflict] = []
        self.pending: list[str] = []

    @property
    def unsettled(self) -> set[str]:
        """Fields the two sides still disagree on."""
        return {conflict.field_name for conflict in self.conflicts} | set(self.pending)


def compare_fields(
    base: dict[str, Any] | None,
    source: dict[str, Any],
    target: dict[str, Any],
    fields: list[str],
    pending: dict[str, list[tuple[Any, Any]]] | None = None,
    settled: dict[str, list[tuple[Any, tuple[Any, ...]]]] | None = None,
) -> DetectionResult:
    """Compare field values of a pair against their base.

    Values are compared in the target namespace; None counts as absent.
    Without a base every differing source value is propagated and no
    conflict is raised.

    Args:
        base: Base snapshot, or None for a pair without an agreed state.
        source: Mapped source fields.
        target: Current target fields.
        fields: Field names to compare.
        pending: field -> (source, target) pairs of unresolved conflicts.
        settled: field -> (source, accepted target values) of resolved conflicts.

    Returns:
        Detection result.
    """
    pending = pending or {}
    settled = settled or {}
    result = DetectionResult()

    for name in fields:
        src = _value(source, name)
        tgt = _value(target, name)
        if src == tgt:
            continue

        if any(src == p_src and tgt == p_tgt for p_src, p_tgt in pending.get(name, [])):
            result.pending.append(name)
            continue
        if any(src == s_src and tgt in accepted for s_src, accepted in settled.get(name, [])):
            continue

        if base is None:
            if src is not ABSENT:
                result.to_target[name] = src
            continue

        bse = _value(base, name)
        if src != bse and tgt == bse:
            if src is not ABSENT:
                result.to_target[name] = src
        elif tgt != bse and src == bse:
            if tgt is not ABSENT:
                result.to_source[name] = tgt
        else:
            result.conflicts.append(
                FieldConflict(name, _stored(src), _stored(tgt), _stored(bse))
            )

    return result


class ConflictDetector:
    """Detects conflicts for item pairs and builds Conflict rows.

    Rows are returned unsaved; the orchestrator inserts them in one batch
    per execution.
    """

    def detect(
        self,
        session: Session,
        config_id: int,
        source_item_id: str,
        source_fields: dict[str, Any],
        target_fields: dict[str, Any],
        base: dict[str, Any] | None,
        fields: list[str],
    ) -> DetectionResult:
        """Compare a pair, skipping fields covered by earlier conflicts.

        Args:
            session: Active session.
            config_id: Sync configuration ID.
            source_item_id: Source work item ID.
            source_fields: Mapped source fields (target namespace).
            target_fields: Current target fields.
            base: Base field values of the pair, if any.
            fields: Managed target fields to compare.

        Returns:
            Detection result.
        """
        pending: dict[str, list[tuple[Any, Any]]] = {}
        settled: dict[str, list[tuple[Any, tuple[Any, ...]]]] = {}
        for conflict in self._field_conflicts(session, config_id, source_item_id):
            src = ABSENT if conflict.source_value is None else conflict.source_value
            tgt = ABSENT if conflict.target_value is None else conflict.target_value
            if conflict.status == ConflictStatus.unresolved.value:
                pending.setdefault(conflict.field_name, []).append((src, tgt))
            elif conflict.status == ConflictStatus.resolved.value:
                resolved = ABSENT if conflict.resolved_value is None else conflict.resolved_value
                settled.setdefault(conflict.field_name, []).append((src, (tgt, resolved)))

        result = compare_fields(
            base,
            source_fields,
            target_fields,
            fields,
            pending=pending,
            settled=settled,
        )
        if result.conflicts:
            logger.info(
                f"Item {source_item_id}: {len(result.conflicts)} field conflict(s) "
                f"({', '.join(c.field_name for c in result.conflicts)})"
            )
        return result

    def build_field_conflicts(
        self,
        config_id: int,
        execution_id: int | None,
        source_item_id: str,
        target_item_id: str,
        work_item_type: str | None,
        result: DetectionResult,
        source_version: WorkItemVersion | None,
        target_version: WorkItemVersion | None,
    ) -> list[Conflict]:
        """Build unsaved Conflict rows for the field conflicts of a result."""
        details = {
            "source_revision": source_version.revision if source_version else None,
            "target_revision": target_version.revision if target_version else None,
            "source_changed_date": source_version.changed_date if source_version else None,
            "target_changed_date": target_version.changed_date if target_version else None,
            "source_changed_by": source_version.changed_by if source_version else None,
            "target_changed_by": target_version.changed_by if target_version else None,
        }
        return [
            Conflict(
                sync_config_id=config_id,
                execution_id=execution_id,
                source_work_item_id=source_item_id,
                target_work_item_id=target_item_id,
                work_item_type=work_item_type,
                conflict_type=ConflictType.field_conflict.value,
                field_name=field.field_name,
                source_value=field.source_value,
                target_value=field.target_value,
                base_value=field.base_value,
                source_version_id=source_version.id if source_version else None,
                target_version_id=target_version.id if target_version else None,
                status=ConflictStatus.unresolved.value,
                details=details,
            )
            for field in result.conflicts
        ]

    def build_version_conflict(
        self,
        config_id: int,
        execution_id: int | None,
        source_item_id: str,
        target_item_id: str | None,
        work_item_type: str | None,
        error: VersionMismatchError,
    ) -> Conflict:
        """Conflict for an external revision that moved backwards."""
        observed_on_source = error.side == Side.source.value
        return Conflict(
            sync_config_id=config_id,
            execution_id=execution_id,
            source_work_item_id=source_item_id,
            target_work_item_id=target_item_id,
            work_item_type=work_item_type,
            conflict_type=ConflictType.version_conflict.value,
            source_value=str(error.actual) if observed_on_source else None,
            target_value=None if observed_on_source else str(error.actual),
            base_value=str(error.expected),
            status=ConflictStatus.unresolved.value,
            details={"side": error.side, "message": str(error)},
        )

    def build_deletion_conflict(
        self,
        config_id: int,
        execution_id: int | None,
        source_item_id: str,
        target_item_id: str | None,
        missing_side: Side,
        last_known: WorkItemVersion | None,
        surviving_fields: dict[str, Any] | None,
    ) -> Conflict:
        """Conflict for an item that disappeared from one side after being synced.

        The work item type is taken from the last snapshot of the missing item.
        """
        return Conflict(
            sync_config_id=config_id,
            execution_id=execution_id,
            source_work_item_id=source_item_id,
            target_work_item_id=target_item_id,
            work_item_type=last_known.work_item_type if last_known else None,
            conflict_type=ConflictType.deletion_conflict.value,
            source_value=None if missing_side == Side.source else surviving_fields,
            target_value=None if missing_side == Side.target else surviving_fields,
            base_value=last_known.fields_snapshot if last_known else None,
            status=ConflictStatus.unresolved.value,
            details={
                "missing_side": missing_side.value,
                "last_known_version_id": last_known.id if last_known else None,
            },
        )

    def has_open_conflict(
        self, session: Session, config_id: int, source_item_id: str, conflict_type: ConflictType
    ) -> bool:
        """Whether an unresolved item-level conflict of this type already exists."""
        return (
            session.scalars(
                select(Conflict.id).where(
                    Conflict.sync_config_id == config_id,
                    Conflict.source_work_item_id == str(source_item_id),
                    Conflict.conflict_type == conflict_type.value,
                    Conflict.status == ConflictStatus.unresolved.value,
                )
            ).first()
            is not None
        )

    @staticmethod
    def _field_conflicts(session: Session, config_id: int, source_item_id: str) -> list[Conflict]:
        return list(
            session.scalars(
                select(Conflict)
                .where(
                    Conflict.sync_config_id == config_id,
                    Conflict.source_work_item_id == str(source_item_id),
                    Conflict.conflict_type == ConflictType.field_conflict.value,
                    Conflict.status != ConflictStatus.ignored.value,
                )
                .order_by(Conflict.id)
            ).all()
        )
