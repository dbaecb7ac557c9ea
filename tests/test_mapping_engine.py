"""Tests for mapping engine."""

from datetime import datetime

import pytest

from conftest import create_config
from work_item_sync.connectors import WorkItem
from work_item_sync.db import SyncRepository
from work_item_sync.db.models import SyncConfiguration
from work_item_sync.errors import ConfigNotFound, MappingsNotFound, UnmappedTypeError
from work_item_sync.mapping import MappingEngine


def _bug(**fields) -> WorkItem:
    return WorkItem(
        id="S-1",
        type="Bug",
        fields=fields,
        revision=1,
        changed_date=datetime(2024, 1, 1, 12, 0),
    )


@pytest.fixture
def custom_config(repository: SyncRepository, connector_ids: tuple[int, int]) -> SyncConfiguration:
    """Configuration with a transformation, a constant and a reverse rule."""
    config = repository.create_sync_configuration("custom", *connector_ids)
    repository.add_type_mapping(
        config.id,
        "Bug",
        "Bug",
        fields=[
            {
                "source_field": "Title",
                "target_field": "Title",
                "transformation": {"chain": ["trim", "uppercase"]},
                "reverse_transformation": "lowercase",
            },
            {"target_field": "Tags", "constant_value": ["synced"]},
        ],
    )
    return config


class TestMapWorkItem:
    """Test mapping of source work items."""

    def test_maps_declared_fields(self, mapping_engine: MappingEngine, sync_config: SyncConfiguration) -> None:
        mapped = mapping_engine.map_work_item(
            sync_config.id, _bug(Title="Crash", Priority=2, State="Active", Tags=["ui"])
        )

        assert mapped.type == "Bug"
        assert mapped.fields == {"Title": "Crash", "Priority": 2, "State": "Active"}

    def test_none_values_are_dropped(self, mapping_engine: MappingEngine, sync_config: SyncConfiguration) -> None:
        mapped = mapping_engine.map_work_item(sync_config.id, _bug(Title="Crash", Priority=None))

        assert mapped.fields == {"Title": "Crash"}

    def test_unmapped_status_is_dropped(
        self, mapping_engine: MappingEngine, sync_config: SyncConfiguration, caplog: pytest.LogCaptureFixture
    ) -> None:
        mapped = mapping_engine.map_work_item(sync_config.id, _bug(Title="Crash", State="Triaged"))

        assert "State" not in mapped.fields
        assert "Triaged" in caplog.text

    def test_transformation_and_constant(
        self, mapping_engine: MappingEngine, custom_config: SyncConfiguration
    ) -> None:
        mapped = mapping_engine.map_work_item(custom_config.id, _bug(Title="  crash  "))

        assert mapped.fields == {"Title": "CRASH", "Tags": ["synced"]}

    def test_constant_is_emitted_without_source_field(
        self, mapping_engine: MappingEngine, custom_config: SyncConfiguration
    ) -> None:
        mapped = mapping_engine.map_work_item(custom_config.id, _bug())

        assert mapped.fields == {"Tags": ["synced"]}

    def test_unmapped_type(self, mapping_engine: MappingEngine, sync_config: SyncConfiguration) -> None:
        item = WorkItem(id="S-9", type="Epic", fields={"Title": "Big"})

        with pytest.raises(UnmappedTypeError) as exc_info:
            mapping_engine.map_work_item(sync_config.id, item)

        assert exc_info.value.work_item_type == "Epic"
        assert exc_info.value.work_item_id == "S-9"


class TestReverseMapping:
    """Test target to source mapping."""

    def test_status_is_inverted(self, mapping_engine: MappingEngine, sync_config: SyncConfiguration) -> None:
        fields = mapping_engine.reverse_map_fields(
            sync_config.id, "Bug", {"Title": "Crash", "State": "Closed"}
        )

        assert fields == {"Title": "Crash", "State": "Closed"}

    def test_reverse_transformation_and_constants(
        self, mapping_engine: MappingEngine, custom_config: SyncConfiguration
    ) -> None:
        fields = mapping_engine.reverse_map_fields(
            custom_config.id, "Bug", {"Title": "CRASH", "Tags": ["other"]}
        )

        assert fields == {"Title": "crash"}

    def test_managed_target_fields(self, mapping_engine: MappingEngine, custom_config: SyncConfiguration) -> None:
        assert mapping_engine.managed_target_fields(custom_config.id, "Bug") == ["Title", "Tags"]


class TestLoadMappings:
    """Test loading and caching."""

    def test_unknown_configuration(self, mapping_engine: MappingEngine) -> None:
        with pytest.raises(ConfigNotFound):
            mapping_engine.load_mappings(42)

    def test_configuration_without_mappings(
        self, mapping_engine: MappingEngine, repository: SyncRepository, connector_ids: tuple[int, int]
    ) -> None:
        config = repository.create_sync_configuration("empty", *connector_ids)

        with pytest.raises(MappingsNotFound):
            mapping_engine.load_mappings(config.id)

    def test_cache(self, session_factory, sync_config: SyncConfiguration) -> None:
        engine = MappingEngine(session_factory, cache_ttl=300)

        first = engine.load_mappings(sync_config.id)
        assert engine.load_mappings(sync_config.id) is first

        engine.clear_cache(sync_config.id)
        assert engine.load_mappings(sync_config.id) is not first

    def test_zero_ttl_always_reloads(self, mapping_engine: MappingEngine, sync_config: SyncConfiguration) -> None:
        first = mapping_engine.load_mappings(sync_config.id)

        assert mapping_engine.load_mappings(sync_config.id) is not first


class TestValidateMappings:
    """Test mapping validation."""

    def test_valid(self, mapping_engine: MappingEngine, sync_config: SyncConfiguration) -> None:
        report = mapping_engine.validate_mappings(sync_config.id)

        assert report.valid is True
        assert report.issues == []

    def test_unknown_transformation_and_type_mismatch(
        self, mapping_engine: MappingEngine, repository: SyncRepository, connector_ids: tuple[int, int]
    ) -> None:
        config = repository.create_sync_configuration("broken", *connector_ids)
        repository.add_type_mapping(
            config.id,
            "Bug",
            "Bug",
            fields=[
                {"source_field": "Priority", "target_field": "Title"},
                {"source_field": "Title", "target_field": "Title", "transformation": "reverse_words"},
            ],
        )

        report = mapping_engine.validate_mappings(config.id)

        assert report.valid is False
        levels = sorted((issue.level, issue.field) for issue in report.issues)
        assert levels == [("error", "Title"), ("warning", "Priority")]
        assert "reverse_words" in next(i.message for i in report.issues if i.level == "error")

    def test_create_config_helper_has_status_rule(
        self, mapping_engine: MappingEngine, repository: SyncRepository, connector_ids: tuple[int, int]
    ) -> None:
        config = create_config(repository, connector_ids, name="second")

        rule = mapping_engine.get_type_rule(config.id, "Bug")
        assert rule.statuses == {"New": "New", "Active": "Active", "Closed": "Closed"}
        assert rule.map_status("Active") == "Active"
        assert rule.unmap_status("Gone") is None
