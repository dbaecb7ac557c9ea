"""Type, field and status mapping between connectors."""

from work_item_sync.mapping.engine import (
    FieldRule,
    MappedWorkItem,
    MappingEngine,
    TypeRule,
    ValidationReport,
)
from work_item_sync.mapping.suggestions import MappingSuggestions, suggest_mappings
from work_item_sync.mapping.transformations import apply_transformation, available_transformations

__all__ = [
    "FieldRule",
    "MappedWorkItem",
    "MappingEngine",
    "MappingSuggestions",
    "TypeRule",
    "ValidationReport",
    "apply_transformation",
    "available_transformations",
    "suggest_mappings",
]
