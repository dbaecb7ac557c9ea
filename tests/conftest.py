"""Pytest configuration and fixtures."""

import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.orm import Session, sessionmaker

from work_item_sync.config import Config
from work_item_sync.conflict import ConflictResolver
from work_item_sync.connectors import Connector, ConnectorRegistry, WorkItem
from work_item_sync.db import SyncRepository, create_db_engine, create_session_factory, init_db
from work_item_sync.db.models import SyncConfiguration
from work_item_sync.errors import ItemNotFoundError
from work_item_sync.mapping import MappingEngine
from work_item_sync.notifications import CollectingNotificationSink
from work_item_sync.sync import SyncEngine
from work_item_sync.utils import StorageManager

BUG_DECLARATION = {
    "Bug": {
        "fields": {"Title": "string", "Priority": "integer", "State": "string", "Tags": "list"},
        "statuses": {"New": "proposed", "Active": "in_progress", "Closed": "completed"},
    }
}


class FakeConnector(Connector):
    """In-memory tracker. Every write bumps the revision and changed date."""

    def __init__(self, name: str, prefix: str) -> None:
        self.name = name
        self.prefix = prefix
        self.items: dict[str, WorkItem] = {}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.created: list[str] = []
        self.fail_on: set[str] = set()
        self._counter = 0
        self._clock = datetime(2024, 1, 1, 12, 0, 0)

    def _tick(self) -> datetime:
        self._clock += timedelta(minutes=1)
        return self._clock

    def add(self, fields: dict[str, Any], item_type: str = "Bug", item_id: str | None = None) -> WorkItem:
        """Seed an item as if someone created it in the tracker."""
        self._counter += 1
        item_id = item_id or f"{self.prefix}-{self._counter}"
        self.items[item_id] = WorkItem(
            id=item_id,
            type=item_type,
            fields=dict(fields),
            revision=1,
            changed_date=self._tick(),
            changed_by="alice@example.com",
        )
        return self.items[item_id].model_copy(deep=True)

    def edit(self, item_id: str, **fields: Any) -> WorkItem:
        """Change an item outside of the sync."""
        item = self.items[item_id]
        item.fields.update(fields)
        item.revision = int(item.revision) + 1
        item.changed_date = self._tick()
        return item.model_copy(deep=True)

    def remove(self, item_id: str) -> None:
        del self.items[item_id]

    async def query_items(self, sync_filter: dict[str, Any] | None = None) -> list[WorkItem]:
        items = list(self.items.values())
        if sync_filter and "type" in sync_filter:
            items = [item for item in items if item.type == sync_filter["type"]]
        return [item.model_copy(deep=True) for item in items]

    async def get_item(self, item_id: str) -> WorkItem:
        if item_id in self.fail_on:
            raise RuntimeError(f"{self.name} is unavailable")
        if item_id not in self.items:
            raise ItemNotFoundError(item_id, connector=self.name)
        return self.items[item_id].model_copy(deep=True)

    async def create_item(self, item_type: str, fields: dict[str, Any]) -> WorkItem:
        item = self.add(fields, item_type=item_type)
        self.created.append(item.id)
        return item

    async def update_item(self, item_id: str, fields: dict[str, Any]) -> WorkItem:
        if item_id not in self.items:
            raise ItemNotFoundError(item_id, connector=self.name)
        self.updates.append((item_id, dict(fields)))
        return self.edit(item_id, **fields)


@pytest.fixture
def temp_config_dir() -> Path:
    """Create a temporary configuration directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def storage_manager(temp_config_dir: Path) -> StorageManager:
    """Create a storage manager with temporary directory."""
    return StorageManager(temp_config_dir)


@pytest.fixture
def config(temp_config_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Config:
    """Create a config instance with temporary directory."""
    monkeypatch.delenv("WORK_ITEM_SYNC_DATABASE_URL", raising=False)
    return Config(temp_config_dir)


@pytest.fixture
def session_factory() -> sessionmaker[Session]:
    """In-memory database shared by every session of a test."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def repository(session_factory: sessionmaker[Session]) -> SyncRepository:
    return SyncRepository(session_factory)


@pytest.fixture
def connector_ids(repository: SyncRepository) -> tuple[int, int]:
    """Register a source and a target connector declaring the Bug type."""
    source = repository.register_connector("source-tracker", work_item_types=BUG_DECLARATION)
    target = repository.register_connector("target-tracker", work_item_types=BUG_DECLARATION)
    return source.id, target.id


def create_config(
    repository: SyncRepository,
    connector_ids: tuple[int, int],
    name: str = "bugs",
    **kwargs: Any,
) -> SyncConfiguration:
    """Create a configuration mapping Bug Title, Priority and State one to one."""
    sync_config = repository.create_sync_configuration(name, *connector_ids, **kwargs)
    repository.add_type_mapping(
        sync_config.id,
        "Bug",
        "Bug",
        fields=[
            {"source_field": "Title", "target_field": "Title"},
            {"source_field": "Priority", "target_field": "Priority"},
            {"source_field": "State", "target_field": "State", "transformation": "status"},
        ],
        statuses={"New": "New", "Active": "Active", "Closed": "Closed"},
    )
    return sync_config


@pytest.fixture
def sync_config(repository: SyncRepository, connector_ids: tuple[int, int]) -> SyncConfiguration:
    """One-way configuration with manual conflict resolution."""
    return create_config(repository, connector_ids, conflict_strategy="manual")


@pytest.fixture
def source_connector() -> FakeConnector:
    return FakeConnector("source-tracker", "S")


@pytest.fixture
def target_connector() -> FakeConnector:
    return FakeConnector("target-tracker", "T")


@pytest.fixture
def registry(
    connector_ids: tuple[int, int],
    source_connector: FakeConnector,
    target_connector: FakeConnector,
) -> ConnectorRegistry:
    registry = ConnectorRegistry()
    registry.register(connector_ids[0], source_connector)
    registry.register(connector_ids[1], target_connector)
    return registry


@pytest.fixture
def mapping_engine(session_factory: sessionmaker[Session]) -> MappingEngine:
    return MappingEngine(session_factory, cache_ttl=0)


@pytest.fixture
def resolver(
    session_factory: sessionmaker[Session],
    registry: ConnectorRegistry,
    mapping_engine: MappingEngine,
) -> ConflictResolver:
    return ConflictResolver(session_factory, registry, mapping_engine)


@pytest.fixture
def notifier() -> CollectingNotificationSink:
    return CollectingNotificationSink()


@pytest.fixture
def sync_engine(
    session_factory: sessionmaker[Session],
    registry: ConnectorRegistry,
    mapping_engine: MappingEngine,
    resolver: ConflictResolver,
    notifier: CollectingNotificationSink,
) -> SyncEngine:
    return SyncEngine(
        session_factory,
        registry,
        mapping_engine,
        resolver=resolver,
        notifier=notifier,
    )
