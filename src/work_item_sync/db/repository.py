"""Transactional operations over connector metadata and sync configurations."""

import logging
from collections.abc import Callable
from typing import Any

from croniter import croniter
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from work_item_sync.db.connection import session_scope
from work_item_sync.db.models import (
    Connector,
    ConnectorField,
    ConnectorStatus,
    ConnectorWorkItemType,
    FieldMapping,
    ResolutionStrategy,
    StatusMapping,
    SyncConfiguration,
    SyncDirection,
    TriggerType,
    TypeMapping,
)
from work_item_sync.errors import ConfigNotFound, InvalidMappingError, InvalidScheduleError, SyncError

logger = logging.getLogger(__name__)


class SyncRepository:
    """Creates and removes connectors, configurations and mappings.

    Each public method runs in its own transaction, so a type mapping and
    its field/status mappings are written together or not at all.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        on_mappings_changed: Callable[[int], None] | None = None,
    ) -> None:
        """Initialize repository.

        Args:
            session_factory: Factory for database sessions.
            on_mappings_changed: Called with the configuration ID after its
                mappings were written or deleted, e.g. MappingEngine.clear_cache.
        """
        self.session_factory = session_factory
        self.on_mappings_changed = on_mappings_changed

    def register_connector(
        self,
        name: str,
        base_url: str | None = None,
        connector_type: str = "rest",
        work_item_types: dict[str, dict[str, Any]] | None = None,
        settings: dict[str, Any] | None = None,
    ) -> Connector:
        """Register a connector with its declared types, fields and statuses.

        Args:
            name: Unique connector name.
            base_url: API root of the external system.
            connector_type: Implementation used to talk to the system.
            work_item_types: Type name -> {"fields": {name: field_type},
                "statuses": {name: category}}.
            settings: Free-form connector settings.

        Returns:
            The stored connector.
        """
        with session_scope(self.session_factory) as session:
            connector = Connector(
                name=name,
                base_url=base_url,
                connector_type=connector_type,
                settings=settings,
            )
            for type_name, declaration in (work_item_types or {}).items():
                item_type = ConnectorWorkItemType(type_name=type_name)
                for field_name, field_type in (declaration.get("fields") or {}).items():
                    item_type.fields.append(
                        ConnectorField(field_name=field_name, field_type=field_type or "string")
                    )
                for status_name, category in (declaration.get("statuses") or {}).items():
                    item_type.statuses.append(
                        ConnectorStatus(status_name=status_name, category=category)
                    )
                connector.work_item_types.append(item_type)
            session.add(connector)
            session.flush()
            logger.info(f"Registered connector {name} (id={connector.id})")
            return connector

    def get_connector_by_name(self, name: str) -> Connector | None:
        with session_scope(self.session_factory) as session:
            return session.scalars(select(Connector).where(Connector.name == name)).first()

    def create_sync_configuration(
        self,
        name: str,
        source_connector_id: int,
        target_connector_id: int,
        direction: SyncDirection | str = SyncDirection.one_way,
        conflict_strategy: ResolutionStrategy | str = ResolutionStrategy.last_write_wins,
        trigger_type: TriggerType | str = TriggerType.manual,
        schedule_cron: str | None = None,
        sync_filter: dict[str, Any] | None = None,
        is_active: bool = True,
        options: dict[str, Any] | None = None,
    ) -> SyncConfiguration:
        """Create a sync configuration.

        Raises:
            InvalidScheduleError: If trigger is scheduled and the cron
                expression is missing or invalid.
            SyncError: If a configuration with this name exists.
        """
        with session_scope(self.session_factory) as session:
            config = self._new_configuration(
                session,
                name,
                source_connector_id,
                target_connector_id,
                direction=direction,
                conflict_strategy=conflict_strategy,
                trigger_type=trigger_type,
                schedule_cron=schedule_cron,
                sync_filter=sync_filter,
                is_active=is_active,
                options=options,
            )
            logger.info(f"Created sync configuration {name} (id={config.id})")
            return config

    def import_sync_configuration(
        self, entry: dict[str, Any], source_connector_id: int, target_connector_id: int
    ) -> SyncConfiguration:
        """Create a configuration and all of its mappings in one transaction.

        Args:
            entry: One parsed ``sync_configurations`` entry: name, optional
                direction, conflict_strategy, trigger_type, schedule_cron,
                sync_filter, is_active and options, plus ``type_mappings`` in
                the shape accepted by import_mapping_definition.
            source_connector_id: Resolved source connector.
            target_connector_id: Resolved target connector.

        Returns:
            The stored configuration. Nothing is stored if any mapping is
            invalid.
        """
        with session_scope(self.session_factory) as session:
            config = self._new_configuration(
                session,
                entry["name"],
                source_connector_id,
                target_connector_id,
                direction=entry.get("direction", SyncDirection.one_way),
                conflict_strategy=entry.get("conflict_strategy", ResolutionStrategy.last_write_wins),
                trigger_type=entry.get("trigger_type", TriggerType.manual),
                schedule_cron=entry.get("schedule_cron"),
                sync_filter=entry.get("sync_filter"),
                is_active=entry.get("is_active", True),
                options=entry.get("options"),
            )
            mappings = [
                self._build_type_mapping(
                    session,
                    config,
                    mapping["source_type"],
                    mapping["target_type"],
                    mapping.get("fields"),
                    mapping.get("statuses"),
                )
                for mapping in entry.get("type_mappings") or []
            ]
            logger.info(
                f"Imported sync configuration {config.name} (id={config.id}) "
                f"with {len(mappings)} type mappings"
            )
        self._mappings_changed(config.id)
        return config

    def set_active(self, config_id: int, is_active: bool) -> None:
        with session_scope(self.session_factory) as session:
            config = session.get(SyncConfiguration, config_id)
            if config is None:
                raise ConfigNotFound(config_id)
            config.is_active = is_active

    def add_type_mapping(
        self,
        config_id: int,
        source_type: str,
        target_type: str,
        fields: list[dict[str, Any]] | None = None,
        statuses: list[dict[str, str]] | dict[str, str] | None = None,
    ) -> TypeMapping:
        """Add a type mapping with its field and status mappings.

        Args:
            config_id: Owning sync configuration.
            source_type: Source work item type name.
            target_type: Target work item type name.
            fields: Dicts with target_field and either source_field (plus an
                optional transformation/reverse_transformation) or
                constant_value.
            statuses: Source status -> target status, as a dict or a list of
                {source_status, target_status} dicts.

        Returns:
            The stored type mapping.

        Raises:
            ConfigNotFound: If the configuration does not exist.
            InvalidMappingError: If a type, field or status is not declared
                for its connector, or the type pair is already mapped.
        """
        with session_scope(self.session_factory) as session:
            config = session.get(SyncConfiguration, config_id)
            if config is None:
                raise ConfigNotFound(config_id)
            type_mapping = self._build_type_mapping(
                session, config, source_type, target_type, fields, statuses
            )
        self._mappings_changed(config_id)
        return type_mapping

    def import_mapping_definition(self, config_id: int, definition: dict[str, Any]) -> list[TypeMapping]:
        """Import type mappings from a parsed YAML definition.

        Expected shape::

            type_mappings:
              - source_type: Bug
                target_type: Bug
                fields:
                  - source_field: Title
                    target_field: Title
                statuses:
                  Active: Doing

        All type mappings are written in one transaction.
        """
        with session_scope(self.session_factory) as session:
            config = session.get(SyncConfiguration, config_id)
            if config is None:
                raise ConfigNotFound(config_id)
            imported = [
                self._build_type_mapping(
                    session,
                    config,
                    entry["source_type"],
                    entry["target_type"],
                    entry.get("fields"),
                    entry.get("statuses"),
                )
                for entry in definition.get("type_mappings") or []
            ]
        self._mappings_changed(config_id)
        return imported

    def _mappings_changed(self, config_id: int) -> None:
        if self.on_mappings_changed is not None:
            self.on_mappings_changed(config_id)

    @staticmethod
    def _new_configuration(
        session: Session,
        name: str,
        source_connector_id: int,
        target_connector_id: int,
        direction: SyncDirection | str,
        conflict_strategy: ResolutionStrategy | str,
        trigger_type: TriggerType | str,
        schedule_cron: str | None,
        sync_filter: dict[str, Any] | None,
        is_active: bool,
        options: dict[str, Any] | None,
    ) -> SyncConfiguration:
        trigger = TriggerType(trigger_type).value
        if trigger == TriggerType.scheduled.value:
            if not schedule_cron or not croniter.is_valid(schedule_cron):
                raise InvalidScheduleError(schedule_cron)

        existing = session.scalars(
            select(SyncConfiguration.id).where(SyncConfiguration.name == name)
        ).first()
        if existing is not None:
            raise SyncError(f"Sync configuration {name} already exists (id={existing})")

        config = SyncConfiguration(
            name=name,
            source_connector_id=source_connector_id,
            target_connector_id=target_connector_id,
            direction=SyncDirection(direction).value,
            conflict_strategy=ResolutionStrategy(conflict_strategy).value,
            trigger_type=trigger,
            schedule_cron=schedule_cron,
            sync_filter=sync_filter,
            is_active=is_active,
            options=options,
        )
        session.add(config)
        session.flush()
        return config

    def _build_type_mapping(
        self,
        session: Session,
        config: SyncConfiguration,
        source_type: str,
        target_type: str,
        fields: list[dict[str, Any]] | None,
        statuses: list[dict[str, str]] | dict[str, str] | None,
    ) -> TypeMapping:
        fields = fields or []
        if isinstance(statuses, dict):
            statuses = [
                {"source_status": src, "target_status": tgt} for src, tgt in statuses.items()
            ]
        statuses = statuses or []

        existing = session.scalars(
            select(TypeMapping).where(
                TypeMapping.sync_config_id == config.id,
                TypeMapping.source_type == source_type,
                TypeMapping.target_type == target_type,
            )
        ).first()
        if existing is not None:
            raise InvalidMappingError(
                f"Type mapping {source_type} -> {target_type} already exists "
                f"for configuration {config.id}"
            )

        source_decl = self._declared_type(session, config.source_connector_id, source_type)
        target_decl = self._declared_type(session, config.target_connector_id, target_type)
        source_fields = {f.field_name for f in source_decl.fields}
        target_fields = {f.field_name for f in target_decl.fields}
        source_statuses = {s.status_name for s in source_decl.statuses}
        target_statuses = {s.status_name for s in target_decl.statuses}

        type_mapping = TypeMapping(
            sync_config_id=config.id, source_type=source_type, target_type=target_type
        )

        for definition in fields:
            target_field = definition.get("target_field")
            if target_field not in target_fields:
                raise InvalidMappingError(
                    f"Target field '{target_field}' is not declared for type '{target_type}'"
                )
            constant_value = definition.get("constant_value")
            source_field = definition.get("source_field")
            if constant_value is None:
                if source_field not in source_fields:
                    raise InvalidMappingError(
                        f"Source field '{source_field}' is not declared for type '{source_type}'"
                    )
            type_mapping.field_mappings.append(
                FieldMapping(
                    source_field=source_field,
                    target_field=target_field,
                    transformation=definition.get("transformation"),
                    reverse_transformation=definition.get("reverse_transformation"),
                    constant_value=constant_value,
                )
            )

        for definition in statuses:
            source_status = definition["source_status"]
            target_status = definition["target_status"]
            if source_status not in source_statuses:
                raise InvalidMappingError(
                    f"Source status '{source_status}' is not declared for type '{source_type}'"
                )
            if target_status not in target_statuses:
                raise InvalidMappingError(
                    f"Target status '{target_status}' is not declared for type '{target_type}'"
                )
            type_mapping.status_mappings.append(
                StatusMapping(source_status=source_status, target_status=target_status)
            )

        session.add(type_mapping)
        session.flush()
        logger.info(
            f"Added type mapping {source_type} -> {target_type} to configuration {config.id} "
            f"({len(fields)} fields, {len(statuses)} statuses)"
        )
        return type_mapping

    def delete_sync_configuration(self, config_id: int) -> None:
        """Delete a configuration together with all dependent rows.

        Raises:
            ConfigNotFound: If the configuration does not exist.
        """
        with session_scope(self.session_factory) as session:
            config = session.get(SyncConfiguration, config_id)
            if config is None:
                raise ConfigNotFound(config_id)
            session.delete(config)
        logger.info(f"Deleted sync configuration {config_id}")
        self._mappings_changed(config_id)

    @staticmethod
    def _declared_type(session: Session, connector_id: int, type_name: str) -> ConnectorWorkItemType:
        declared = session.scalars(
            select(ConnectorWorkItemType).where(
                ConnectorWorkItemType.connector_id == connector_id,
                ConnectorWorkItemType.type_name == type_name,
            )
        ).first()
        if declared is None:
            raise InvalidMappingError(
                f"Work item type '{type_name}' is not declared for connector {connector_id}"
            )
        return declared
