"""Mapping engine translating source work items into target work items."""

import logging
import time
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from work_item_sync.connectors.models import WorkItem
from work_item_sync.db.connection import session_scope
from work_item_sync.db.models import (
    ConnectorField,
    ConnectorWorkItemType,
    SyncConfiguration,
    TypeMapping,
)
from work_item_sync.errors import (
    ConfigNotFound,
    MappingsNotFound,
    UnknownTransformationError,
    UnmappedTypeError,
)
from work_item_sync.mapping.transformations import (
    TRANSFORMATIONS,
    STATUS_RULE,
    apply_transformation,
    is_status_rule,
    rule_names,
)

logger = logging.getLogger(__name__)


class FieldRule(BaseModel):
    """Field mapping detached from the database session."""

    source_field: str | None = None
    target_field: str
    transformation: Any = None
    reverse_transformation: Any = None
    constant_value: Any = None

    @property
    def is_constant(self) -> bool:
        return self.constant_value is not None


class TypeRule(BaseModel):
    """Type mapping with its field rules and status table."""

    source_type: str
    target_type: str
    fields: list[FieldRule] = Field(default_factory=list)
    statuses: dict[str, str] = Field(default_factory=dict)

    def map_status(self, source_status: Any) -> str | None:
        if source_status is None:
            return None
        return self.statuses.get(str(source_status))

    def unmap_status(self, target_status: Any) -> str | None:
        if target_status is None:
            return None
        for source_status, mapped in self.statuses.items():
            if mapped == str(target_status):
                return source_status
        return None


class MappedWorkItem(BaseModel):
    """Target-namespace representation of a source work item."""

    type: str
    fields: dict[str, Any] = Field(default_factory=dict)


class MappingIssue(BaseModel):
    level: str
    source_type: str
    field: str | None = None
    message: str


class ValidationReport(BaseModel):
    issues: list[MappingIssue] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not any(issue.level == "error" for issue in self.issues)


class MappingEngine:
    """Loads per-configuration mappings and applies them to work items.

    Loaded mappings are cached per configuration for cache_ttl seconds;
    call clear_cache() after changing mappings.
    """

    def __init__(self, session_factory: sessionmaker[Session], cache_ttl: float = 300) -> None:
        """Initialize mapping engine.

        Args:
            session_factory: Factory for database sessions.
            cache_ttl: Seconds a loaded mapping set stays valid.
        """
        self.session_factory = session_factory
        self.cache_ttl = cache_ttl
        self._cache: dict[int, tuple[float, dict[str, TypeRule]]] = {}

    def load_mappings(self, config_id: int) -> dict[str, TypeRule]:
        """Load all active type mappings for a configuration.

        Args:
            config_id: Sync configuration ID.

        Returns:
            Type rules keyed by source type name.

        Raises:
            ConfigNotFound: If the configuration does not exist.
            MappingsNotFound: If the configuration has no active type mappings.
        """
        cached = self._cache.get(config_id)
        if cached and time.monotonic() - cached[0] < self.cache_ttl:
            return cached[1]

        with session_scope(self.session_factory) as session:
            if session.get(SyncConfiguration, config_id) is None:
                raise ConfigNotFound(config_id)

            type_mappings = session.scalars(
                select(TypeMapping)
                .where(TypeMapping.sync_config_id == config_id, TypeMapping.is_active.is_(True))
                .options(
                    selectinload(TypeMapping.field_mappings),
                    selectinload(TypeMapping.status_mappings),
                )
                .order_by(TypeMapping.id)
            ).all()

            lookup: dict[str, TypeRule] = {}
            for type_mapping in type_mappings:
                if type_mapping.source_type in lookup:
                    logger.warning(
                        f"Configuration {config_id}: source type {type_mapping.source_type} is "
                        f"mapped more than once, using -> {lookup[type_mapping.source_type].target_type}"
                    )
                    continue
                lookup[type_mapping.source_type] = TypeRule(
                    source_type=type_mapping.source_type,
                    target_type=type_mapping.target_type,
                    fields=[
                        FieldRule(
                            source_field=fm.source_field,
                            target_field=fm.target_field,
                            transformation=fm.transformation,
                            reverse_transformation=fm.reverse_transformation,
                            constant_value=fm.constant_value,
                        )
                        for fm in sorted(type_mapping.field_mappings, key=lambda fm: fm.id)
                    ],
                    statuses={
                        sm.source_status: sm.target_status for sm in type_mapping.status_mappings
                    },
                )

        if not lookup:
            raise MappingsNotFound(config_id)

        self._cache[config_id] = (time.monotonic(), lookup)
        logger.debug(f"Loaded {len(lookup)} type mappings for configuration {config_id}")
        return lookup

    def clear_cache(self, config_id: int | None = None) -> None:
        if config_id is None:
            self._cache.clear()
        else:
            self._cache.pop(config_id, None)

    def get_type_rule(self, config_id: int, source_type: str | None) -> TypeRule:
        """Get the type rule for a source type.

        Raises:
            UnmappedTypeError: If the type has no mapping.
        """
        rule = self.load_mappings(config_id).get(source_type or "")
        if rule is None:
            raise UnmappedTypeError(source_type)
        return rule

    def map_work_item(self, config_id: int, item: WorkItem) -> MappedWorkItem:
        """Map a source work item to its target type and fields.

        Constant mappings always emit their constant. Other mappings read the
        source field and apply the transformation; a None result is dropped.
        Source fields without a mapping are never copied.

        Args:
            config_id: Sync configuration ID.
            item: Source work item.

        Returns:
            Mapped work item in the target namespace.

        Raises:
            UnmappedTypeError: If the item's type has no mapping.
            UnknownTransformationError: If a rule names an unknown transformation.
        """
        try:
            type_rule = self.get_type_rule(config_id, item.type)
        except UnmappedTypeError:
            raise UnmappedTypeError(item.type, item.id) from None

        fields: dict[str, Any] = {}
        for rule in type_rule.fields:
            if rule.is_constant:
                fields[rule.target_field] = rule.constant_value
                continue

            if rule.source_field not in item.fields:
                continue
            value = item.fields[rule.source_field]
            if value is None:
                continue

            mapped = apply_transformation(value, rule.transformation, type_rule.map_status)
            if mapped is None:
                if is_status_rule(rule.transformation):
                    logger.warning(
                        f"Item {item.id}: status '{value}' has no mapping for "
                        f"{type_rule.source_type} -> {type_rule.target_type}, field dropped"
                    )
                continue
            fields[rule.target_field] = mapped

        return MappedWorkItem(type=type_rule.target_type, fields=fields)

    def managed_target_fields(self, config_id: int, source_type: str | None) -> list[str]:
        """Target fields written by the mappings of a source type."""
        type_rule = self.get_type_rule(config_id, source_type)
        return list(dict.fromkeys(rule.target_field for rule in type_rule.fields))

    def reverse_map_fields(
        self, config_id: int, source_type: str | None, target_fields: dict[str, Any]
    ) -> dict[str, Any]:
        """Map target-namespace values back to source field names.

        Constant mappings are never reversed. A reverse_transformation is
        applied when configured; a status rule without one is inverted
        through the status table.

        Args:
            config_id: Sync configuration ID.
            source_type: Source work item type the fields belong to.
            target_fields: Values keyed by target field name.

        Returns:
            Values keyed by source field name.
        """
        type_rule = self.get_type_rule(config_id, source_type)
        source_fields: dict[str, Any] = {}
        for rule in type_rule.fields:
            if rule.is_constant or not rule.source_field:
                continue
            if rule.target_field not in target_fields:
                continue
            value = target_fields[rule.target_field]
            if value is None:
                continue

            if rule.reverse_transformation is not None:
                value = apply_transformation(value, rule.reverse_transformation, type_rule.unmap_status)
            elif is_status_rule(rule.transformation):
                value = type_rule.unmap_status(value)

            if value is not None:
                source_fields[rule.source_field] = value
        return source_fields

    def validate_mappings(self, config_id: int) -> ValidationReport:
        """Check transformations and field type compatibility.

        Unknown transformations are errors; a source/target field type
        mismatch without a transformation is a warning.
        """
        lookup = self.load_mappings(config_id)
        report = ValidationReport()

        with session_scope(self.session_factory) as session:
            config = session.get(SyncConfiguration, config_id)
            if config is None:
                raise ConfigNotFound(config_id)
            source_types = self._field_types(session, config.source_connector_id)
            target_types = self._field_types(session, config.target_connector_id)

        known = set(TRANSFORMATIONS) | {STATUS_RULE}
        for type_rule in lookup.values():
            for rule in type_rule.fields:
                label = rule.source_field or rule.target_field
                for transformation in (rule.transformation, rule.reverse_transformation):
                    for name in rule_names(transformation):
                        if name not in known:
                            report.issues.append(
                                MappingIssue(
                                    level="error",
                                    source_type=type_rule.source_type,
                                    field=label,
                                    message=str(UnknownTransformationError(name)),
                                )
                            )

                if rule.is_constant or rule.transformation is not None:
                    continue
                source_type = source_types.get((type_rule.source_type, rule.source_field))
                target_type = target_types.get((type_rule.target_type, rule.target_field))
                if source_type and target_type and source_type != target_type:
                    report.issues.append(
                        MappingIssue(
                            level="warning",
                            source_type=type_rule.source_type,
                            field=label,
                            message=(
                                f"Type mismatch: {source_type} -> {target_type}. "
                                "Consider adding a transformation."
                            ),
                        )
                    )
        return report

    @staticmethod
    def _field_types(session: Session, connector_id: int) -> dict[tuple[str, str], str]:
        rows = session.execute(
            select(ConnectorWorkItemType.type_name, ConnectorField.field_name, ConnectorField.field_type)
            .join(ConnectorField, ConnectorField.work_item_type_id == ConnectorWorkItemType.id)
            .where(ConnectorWorkItemType.connector_id == connector_id)
        ).all()
        return {(type_name, field_name): field_type for type_name, field_name, field_type in rows}
