"""Best-effort field and status mapping suggestions between two connector types."""

import re

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from work_item_sync.db.models import ConnectorField, ConnectorStatus, ConnectorWorkItemType
from work_item_sync.errors import InvalidMappingError


class FieldSuggestion(BaseModel):
    source_field: str
    source_type: str
    target_field: str | None = None
    target_type: str | None = None
    confidence: float = 0.0

    @property
    def requires_transformation(self) -> bool:
        return self.target_type is not None and self.source_type != self.target_type


class StatusSuggestion(BaseModel):
    source_status: str
    target_status: str | None = None
    confidence: float = 0.0


class MappingSuggestions(BaseModel):
    fields: list[FieldSuggestion] = Field(default_factory=list)
    statuses: list[StatusSuggestion] = Field(default_factory=list)


def normalize_field_name(name: str) -> str:
    """Lowercase last dotted segment with separators removed (System.Work_Item -> workitem)."""
    return re.sub(r"[^a-z0-9]", "", name.lower().split(".")[-1])


def _suggest_field(source: ConnectorField, targets: list[ConnectorField]) -> FieldSuggestion:
    suggestion = FieldSuggestion(source_field=source.field_name, source_type=source.field_type)
    name = source.field_name.lower()

    exact = next((t for t in targets if t.field_name.lower() == name), None)
    if exact is not None:
        match, confidence = exact, 1.0
    else:
        normalized = normalize_field_name(source.field_name)
        match = next((t for t in targets if normalize_field_name(t.field_name) == normalized), None)
        confidence = 0.9
        if match is None:
            short = name.split(".")[-1]
            match = next(
                (
                    t
                    for t in targets
                    if t.field_type == source.field_type
                    and (
                        short in t.field_name.lower()
                        or t.field_name.lower().split(".")[-1] in name
                    )
                ),
                None,
            )
            confidence = 0.7

    if match is not None:
        suggestion.target_field = match.field_name
        suggestion.target_type = match.field_type
        suggestion.confidence = confidence
    return suggestion


def _suggest_status(source: ConnectorStatus, targets: list[ConnectorStatus]) -> StatusSuggestion:
    suggestion = StatusSuggestion(source_status=source.status_name)
    exact = next((t for t in targets if t.status_name.lower() == source.status_name.lower()), None)
    if exact is not None:
        suggestion.target_status = exact.status_name
        suggestion.confidence = 1.0
        return suggestion

    if source.category:
        same_category = next((t for t in targets if t.category == source.category), None)
        if same_category is not None:
            suggestion.target_status = same_category.status_name
            suggestion.confidence = 0.8
    return suggestion


def suggest_mappings(
    session: Session,
    source_connector_id: int,
    source_type: str,
    target_connector_id: int,
    target_type: str,
) -> MappingSuggestions:
    """Suggest field and status mappings for a type pair.

    Fields: exact name (1.0), normalised name (0.9), same field type with a
    name substring match (0.7). Statuses: exact name (1.0), same category (0.8).
    Unmatched entries are returned with confidence 0.

    Raises:
        InvalidMappingError: If either type is not declared.
    """
    source = _load_type(session, source_connector_id, source_type)
    target = _load_type(session, target_connector_id, target_type)

    target_fields = sorted(target.fields, key=lambda f: f.field_name)
    target_statuses = sorted(target.statuses, key=lambda s: s.status_name)
    return MappingSuggestions(
        fields=[
            _suggest_field(field, target_fields)
            for field in sorted(source.fields, key=lambda f: f.field_name)
        ],
        statuses=[
            _suggest_status(status, target_statuses)
            for status in sorted(source.statuses, key=lambda s: s.status_name)
        ],
    )


def _load_type(session: Session, connector_id: int, type_name: str) -> ConnectorWorkItemType:
    declared = session.scalars(
        select(ConnectorWorkItemType)
        .where(
            ConnectorWorkItemType.connector_id == connector_id,
            ConnectorWorkItemType.type_name == type_name,
        )
        .options(
            selectinload(ConnectorWorkItemType.fields),
            selectinload(ConnectorWorkItemType.statuses),
        )
    ).first()
    if declared is None:
        raise InvalidMappingError(
            f"Work item type '{type_name}' is not declared for connector {connector_id}"
        )
    return declared
