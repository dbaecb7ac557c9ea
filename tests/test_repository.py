"""Tests for sync repository."""

import pytest
from sqlalchemy import func, select

from work_item_sync.db import SyncRepository, session_scope
from work_item_sync.db.models import (
    Conflict,
    ConnectorField,
    FieldMapping,
    SyncConfiguration,
    TypeMapping,
)
from work_item_sync.errors import ConfigNotFound, InvalidMappingError, SyncError
from work_item_sync.mapping import MappingEngine


def _count(session_factory, model) -> int:
    with session_scope(session_factory) as session:
        return session.scalar(select(func.count()).select_from(model))


class TestConnectors:
    """Test connector registration."""

    def test_register_connector(self, repository: SyncRepository, session_factory) -> None:
        connector = repository.register_connector(
            "tracker",
            base_url="https://tracker.example.com/api",
            work_item_types={"Bug": {"fields": {"Title": "string", "Notes": None}}},
        )

        assert connector.id is not None
        assert repository.get_connector_by_name("tracker").id == connector.id
        assert repository.get_connector_by_name("missing") is None
        with session_scope(session_factory) as session:
            types = dict(session.execute(select(ConnectorField.field_name, ConnectorField.field_type)).all())
        assert types == {"Title": "string", "Notes": "string"}


class TestSyncConfigurations:
    """Test configuration lifecycle."""

    def test_create_defaults(self, repository: SyncRepository, connector_ids: tuple[int, int]) -> None:
        config = repository.create_sync_configuration("bugs", *connector_ids)

        assert config.direction == "one-way"
        assert config.conflict_strategy == "last-write-wins"
        assert config.trigger_type == "manual"
        assert config.is_active is True
        assert config.is_bidirectional is False

    def test_unknown_strategy(self, repository: SyncRepository, connector_ids: tuple[int, int]) -> None:
        with pytest.raises(ValueError):
            repository.create_sync_configuration("bugs", *connector_ids, conflict_strategy="coin-flip")

    def test_set_active_unknown(self, repository: SyncRepository) -> None:
        with pytest.raises(ConfigNotFound):
            repository.set_active(12, False)

    def test_delete_cascades(
        self, repository: SyncRepository, sync_config: SyncConfiguration, session_factory
    ) -> None:
        with session_scope(session_factory) as session:
            session.add(
                Conflict(
                    sync_config_id=sync_config.id,
                    source_work_item_id="S-1",
                    conflict_type="deletion_conflict",
                )
            )

        repository.delete_sync_configuration(sync_config.id)

        assert _count(session_factory, SyncConfiguration) == 0
        assert _count(session_factory, TypeMapping) == 0
        assert _count(session_factory, FieldMapping) == 0
        assert _count(session_factory, Conflict) == 0

    def test_delete_unknown(self, repository: SyncRepository) -> None:
        with pytest.raises(ConfigNotFound):
            repository.delete_sync_configuration(12)


class TestTypeMappings:
    """Test mapping validation on write."""

    @pytest.fixture
    def config_id(self, repository: SyncRepository, connector_ids: tuple[int, int]) -> int:
        return repository.create_sync_configuration("bugs", *connector_ids).id

    def test_status_list_form(self, repository: SyncRepository, config_id: int) -> None:
        mapping = repository.add_type_mapping(
            config_id,
            "Bug",
            "Bug",
            fields=[{"source_field": "Title", "target_field": "Title"}],
            statuses=[{"source_status": "New", "target_status": "Active"}],
        )

        assert [(s.source_status, s.target_status) for s in mapping.status_mappings] == [("New", "Active")]

    @pytest.mark.parametrize(
        ("fields", "statuses", "message"),
        [
            ([{"source_field": "Title", "target_field": "Summary"}], None, "Target field 'Summary'"),
            ([{"source_field": "Body", "target_field": "Title"}], None, "Source field 'Body'"),
            (None, {"Triaged": "New"}, "Source status 'Triaged'"),
            (None, {"New": "Open"}, "Target status 'Open'"),
        ],
    )
    def test_undeclared_names(
        self, repository: SyncRepository, config_id: int, session_factory, fields, statuses, message
    ) -> None:
        with pytest.raises(InvalidMappingError, match=message):
            repository.add_type_mapping(config_id, "Bug", "Bug", fields=fields, statuses=statuses)

        assert _count(session_factory, TypeMapping) == 0

    def test_constant_needs_no_source_field(self, repository: SyncRepository, config_id: int) -> None:
        mapping = repository.add_type_mapping(
            config_id, "Bug", "Bug", fields=[{"target_field": "State", "constant_value": "New"}]
        )

        assert mapping.field_mappings[0].is_constant

    def test_undeclared_type(self, repository: SyncRepository, config_id: int) -> None:
        with pytest.raises(InvalidMappingError):
            repository.add_type_mapping(config_id, "Epic", "Bug")

    def test_duplicate_type_pair(self, repository: SyncRepository, config_id: int) -> None:
        repository.add_type_mapping(config_id, "Bug", "Bug")

        with pytest.raises(InvalidMappingError, match="already exists"):
            repository.add_type_mapping(config_id, "Bug", "Bug")

    def test_import_mapping_definition(self, repository: SyncRepository, config_id: int) -> None:
        imported = repository.import_mapping_definition(
            config_id,
            {
                "type_mappings": [
                    {
                        "source_type": "Bug",
                        "target_type": "Bug",
                        "fields": [{"source_field": "Title", "target_field": "Title"}],
                        "statuses": {"Closed": "Closed"},
                    }
                ]
            },
        )

        assert len(imported) == 1
        assert imported[0].field_mappings[0].target_field == "Title"


class TestImportSyncConfiguration:
    """Configurations imported together with their mappings."""

    ENTRY = {
        "name": "bugs",
        "conflict_strategy": "manual",
        "options": {"sync_comments": True},
        "type_mappings": [
            {
                "source_type": "Bug",
                "target_type": "Bug",
                "fields": [{"source_field": "Title", "target_field": "Title"}],
                "statuses": {"New": "New"},
            }
        ],
    }

    def test_creates_configuration_with_mappings(
        self, repository: SyncRepository, connector_ids: tuple[int, int], session_factory
    ) -> None:
        config = repository.import_sync_configuration(self.ENTRY, *connector_ids)

        assert config.conflict_strategy == "manual"
        assert config.options == {"sync_comments": True}
        assert _count(session_factory, TypeMapping) == 1
        assert _count(session_factory, FieldMapping) == 1

    def test_invalid_mapping_stores_nothing(
        self, repository: SyncRepository, connector_ids: tuple[int, int], session_factory
    ) -> None:
        broken = {
            **self.ENTRY,
            "type_mappings": [{"source_type": "Bug", "target_type": "Bug", "statuses": {"Triaged": "New"}}],
        }

        with pytest.raises(InvalidMappingError):
            repository.import_sync_configuration(broken, *connector_ids)

        assert _count(session_factory, SyncConfiguration) == 0
        assert _count(session_factory, TypeMapping) == 0
        assert repository.import_sync_configuration(self.ENTRY, *connector_ids).name == "bugs"

    def test_duplicate_name(self, repository: SyncRepository, connector_ids: tuple[int, int]) -> None:
        repository.import_sync_configuration(self.ENTRY, *connector_ids)

        with pytest.raises(SyncError, match="already exists"):
            repository.import_sync_configuration(self.ENTRY, *connector_ids)


class TestMappingChangeCallback:
    """Mapping writes invalidate cached mappings."""

    def test_cache_cleared_after_writes(self, session_factory) -> None:
        mapping_engine = MappingEngine(session_factory, cache_ttl=300)
        repository = SyncRepository(session_factory, on_mappings_changed=mapping_engine.clear_cache)
        types = {"Bug": {"fields": {"Title": "string"}}, "Task": {"fields": {"Title": "string"}}}
        source = repository.register_connector("source-tracker", work_item_types=types)
        target = repository.register_connector("target-tracker", work_item_types=types)
        config = repository.create_sync_configuration("work", source.id, target.id)
        repository.add_type_mapping(config.id, "Bug", "Bug")
        assert set(mapping_engine.load_mappings(config.id)) == {"Bug"}

        repository.import_mapping_definition(
            config.id, {"type_mappings": [{"source_type": "Task", "target_type": "Task"}]}
        )

        assert set(mapping_engine.load_mappings(config.id)) == {"Bug", "Task"}

        repository.delete_sync_configuration(config.id)

        with pytest.raises(ConfigNotFound):
            mapping_engine.load_mappings(config.id)
