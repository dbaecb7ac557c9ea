"""Point-in-time snapshots of work items on each side of a sync."""

import hashlib
import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from work_item_sync.connectors.models import WorkItem
from work_item_sync.db.models import Side, SyncedItem, WorkItemVersion, to_naive_utc
from work_item_sync.errors import VersionMismatchError

logger = logging.getLogger(__name__)


def content_hash(fields: dict[str, Any]) -> str:
    """SHA-256 over a canonical JSON rendering; key order does not matter."""
    canonical = json.dumps(fields, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _revision_regressed(stored: str | None, observed: Any) -> bool:
    if stored is None or observed is None:
        return False
    stored_int, observed_int = _as_int(stored), _as_int(observed)
    if stored_int is not None and observed_int is not None:
        return observed_int < stored_int
    # opaque tokens (etags) carry no ordering
    return False


class VersionStore:
    """Stores immutable WorkItemVersion rows and answers base lookups.

    Methods take the caller's session so a capture commits together with
    the rest of an item's processing.
    """

    def get_latest(
        self, session: Session, config_id: int, side: Side | str, work_item_id: str
    ) -> WorkItemVersion | None:
        """Most recent snapshot for one side of a work item, or None."""
        return session.scalars(
            select(WorkItemVersion)
            .where(
                WorkItemVersion.sync_config_id == config_id,
                WorkItemVersion.side == Side(side).value,
                WorkItemVersion.work_item_id == str(work_item_id),
            )
            .order_by(WorkItemVersion.version.desc())
            .limit(1)
        ).first()

    def check_version(
        self, session: Session, config_id: int, side: Side | str, item: WorkItem
    ) -> WorkItemVersion | None:
        """Latest snapshot of the item, checked against the item's own revision.

        Writes nothing, so it can run before any connector call.

        Raises:
            VersionMismatchError: If the item's revision or changed date is
                older than the stored snapshot.
        """
        side = Side(side)
        current = self.get_latest(session, config_id, side, item.id)
        if current is None:
            return None
        changed_date = to_naive_utc(item.changed_date)
        if _revision_regressed(current.revision, item.revision):
            raise VersionMismatchError(side.value, item.id, current.revision, item.revision)
        if current.changed_date and changed_date and changed_date < current.changed_date:
            raise VersionMismatchError(side.value, item.id, current.changed_date, changed_date)
        return current

    def capture_version(
        self,
        session: Session,
        config_id: int,
        side: Side | str,
        item: WorkItem,
        execution_id: int | None = None,
    ) -> WorkItemVersion:
        """Record the item's current state if it differs from the last capture.

        Args:
            session: Active session; the caller commits.
            config_id: Sync configuration ID.
            side: Which connector the item was read from.
            item: Work item as just read.
            execution_id: Execution the capture belongs to.

        Returns:
            The new version, or the latest one when the content is unchanged.

        Raises:
            VersionMismatchError: If the item's revision or changed date is
                older than the stored snapshot.
        """
        side = Side(side)
        current = self.check_version(session, config_id, side, item)
        digest = content_hash(item.fields)
        changed_date = to_naive_utc(item.changed_date)

        if current is not None and current.content_hash == digest:
            return current

        version = WorkItemVersion(
            sync_config_id=config_id,
            side=side.value,
            work_item_id=item.id,
            work_item_type=item.type,
            version=(current.version + 1) if current else 1,
            revision=None if item.revision is None else str(item.revision),
            changed_date=changed_date,
            changed_by=item.changed_by,
            fields_snapshot=dict(item.fields),
            content_hash=digest,
            execution_id=execution_id,
        )
        session.add(version)
        session.flush()
        logger.debug(
            f"Captured {side.value} version {version.version} of item {item.id} "
            f"(config {config_id})"
        )
        return version

    def get_base_version(
        self, session: Session, config_id: int, source_item_id: str
    ) -> WorkItemVersion | None:
        """Target snapshot both sides last agreed on, for 3-way comparison.

        Returns None when the item pair has never been synced.
        """
        synced = session.scalars(
            select(SyncedItem).where(
                SyncedItem.sync_config_id == config_id,
                SyncedItem.source_item_id == str(source_item_id),
            )
        ).first()
        if synced is None or synced.base_version_id is None:
            return None
        return session.get(WorkItemVersion, synced.base_version_id)

    def get_base_fields(
        self, session: Session, config_id: int, source_item_id: str
    ) -> dict[str, Any] | None:
        """Field values of the base with per-field overrides applied."""
        base = self.get_base_version(session, config_id, source_item_id)
        if base is None:
            return None
        synced = session.scalars(
            select(SyncedItem).where(
                SyncedItem.sync_config_id == config_id,
                SyncedItem.source_item_id == str(source_item_id),
            )
        ).one()
        return {**base.fields_snapshot, **(synced.base_overrides or {})}

    def advance_base(
        self,
        synced: SyncedItem,
        version: WorkItemVersion,
        base_fields: dict[str, Any] | None,
        unsettled: set[str],
    ) -> None:
        """Move the base to a target snapshot, keeping old values for unsettled fields."""
        synced.base_version_id = version.id
        previous = base_fields or {}
        synced.base_overrides = {name: previous.get(name) for name in sorted(unsettled)} or None

    def history(
        self, session: Session, config_id: int, side: Side | str, work_item_id: str
    ) -> list[WorkItemVersion]:
        return list(
            session.scalars(
                select(WorkItemVersion)
                .where(
                    WorkItemVersion.sync_config_id == config_id,
                    WorkItemVersion.side == Side(side).value,
                    WorkItemVersion.work_item_id == str(work_item_id),
                )
                .order_by(WorkItemVersion.version)
            ).all()
        )
