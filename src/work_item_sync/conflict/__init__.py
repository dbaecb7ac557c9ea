"""Conflict detection and resolution."""

from work_item_sync.conflict.detector import (
    ABSENT,
    ConflictDetector,
    DetectionResult,
    FieldConflict,
    compare_fields,
)
from work_item_sync.conflict.resolver import (
    ConflictFilter,
    ConflictResolver,
    ResolutionOutcome,
    merge_values,
)

__all__ = [
    "ABSENT",
    "ConflictDetector",
    "ConflictFilter",
    "ConflictResolver",
    "DetectionResult",
    "FieldConflict",
    "ResolutionOutcome",
    "compare_fields",
    "merge_values",
]
