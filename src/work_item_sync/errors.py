"""Exception hierarchy for work item synchronization."""

from typing import Any


class SyncError(Exception):
    """Base class for all synchronization errors."""


class ConfigNotFound(SyncError):
    """Sync configuration does not exist."""

    def __init__(self, config_id: int, message: str | None = None) -> None:
        self.config_id = config_id
        super().__init__(message or f"Sync configuration {config_id} not found")


class MappingsNotFound(ConfigNotFound):
    """Sync configuration has no type mappings."""

    def __init__(self, config_id: int) -> None:
        super().__init__(config_id, f"Sync configuration {config_id} has no mappings")


class ConfigInactive(SyncError):
    """Sync configuration is not active."""

    def __init__(self, config_id: int) -> None:
        self.config_id = config_id
        super().__init__(f"Sync configuration {config_id} is not active")


class UnmappedTypeError(SyncError):
    """No TypeMapping exists for a source work item type."""

    def __init__(self, work_item_type: str | None, work_item_id: str | None = None) -> None:
        self.work_item_type = work_item_type
        self.work_item_id = work_item_id
        super().__init__(f"No type mapping configured for work item type '{work_item_type}'")


class UnmergeableFieldError(SyncError):
    """Merge strategy cannot combine the conflicting values."""

    def __init__(self, conflict_id: int, field_name: str | None) -> None:
        self.conflict_id = conflict_id
        self.field_name = field_name
        super().__init__(
            f"Conflict {conflict_id}: field '{field_name}' cannot be merged automatically"
        )


class AlreadyResolvedError(SyncError):
    """Resolution attempted on a conflict that is no longer unresolved."""

    def __init__(self, conflict_id: int, status: str) -> None:
        self.conflict_id = conflict_id
        self.status = status
        super().__init__(f"Conflict {conflict_id} is already {status}")


class ConflictNotFound(SyncError):
    """Conflict does not exist."""

    def __init__(self, conflict_id: int) -> None:
        self.conflict_id = conflict_id
        super().__init__(f"Conflict {conflict_id} not found")


class ConnectorError(SyncError):
    """Failure reported by an external tracking system."""

    def __init__(self, message: str, connector: str | None = None, status_code: int | None = None) -> None:
        self.connector = connector
        self.status_code = status_code
        super().__init__(message)


class ItemNotFoundError(ConnectorError):
    """Work item does not exist in the external system."""

    def __init__(self, item_id: str, connector: str | None = None) -> None:
        self.item_id = item_id
        super().__init__(f"Work item {item_id} not found", connector=connector, status_code=404)


class VersionMismatchError(SyncError):
    """External revision moved backwards compared to the stored version."""

    def __init__(self, side: str, work_item_id: str, expected: Any, actual: Any) -> None:
        self.side = side
        self.work_item_id = work_item_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{side} work item {work_item_id}: revision {actual} is older than stored revision {expected}"
        )


class SyncAlreadyRunningError(SyncError):
    """A run is already in progress for the configuration."""

    def __init__(self, config_id: int) -> None:
        self.config_id = config_id
        super().__init__(f"A sync run is already in progress for configuration {config_id}")


class InvalidMappingError(SyncError):
    """Mapping references an undeclared type, field or status."""


class UnknownTransformationError(SyncError):
    """Transformation rule names an unknown function."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown transformation: {name}")


class InvalidScheduleError(SyncError):
    """Cron expression cannot be evaluated."""

    def __init__(self, expression: str | None) -> None:
        self.expression = expression
        super().__init__(f"Invalid cron expression: {expression!r}")


class ConflictNotResolvedError(SyncError):
    """Resolution value requested for a conflict that has none to apply."""

    def __init__(self, conflict_id: int, reason: str) -> None:
        self.conflict_id = conflict_id
        super().__init__(f"Conflict {conflict_id}: {reason}")
