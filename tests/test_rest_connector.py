"""Tests for the REST connector and connector registry."""

import json

import httpx
import pytest

from work_item_sync.connectors import ConnectorRegistry, RestConnector
from work_item_sync.db import SyncRepository, session_scope
from work_item_sync.errors import ConnectorError, ItemNotFoundError
from work_item_sync.utils import StorageManager

ITEM = {
    "id": 101,
    "type": "Bug",
    "fields": {"Title": "Crash", "Priority": 2},
    "revision": 3,
    "changedDate": "2024-01-01T12:00:00Z",
    "changedBy": "alice@example.com",
}


def _connector(handler) -> RestConnector:
    return RestConnector(
        name="tracker",
        base_url="https://tracker.example.com/api",
        token="secret",
        transport=httpx.MockTransport(handler),
    )


class TestRestConnector:
    """Test RestConnector functionality."""

    @pytest.mark.asyncio
    async def test_query_items(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"items": [ITEM]})

        async with _connector(handler) as connector:
            items = await connector.query_items({"type": "Bug"})

        assert len(items) == 1
        assert items[0].id == "101"
        assert items[0].changed_by == "alice@example.com"
        assert items[0].changed_date.year == 2024
        assert requests[0].method == "POST"
        assert requests[0].url.path == "/api/items/query"
        assert requests[0].headers["Authorization"] == "Bearer secret"
        assert json.loads(requests[0].content) == {"filter": {"type": "Bug"}}

    @pytest.mark.asyncio
    async def test_query_accepts_plain_list(self) -> None:
        async with _connector(lambda request: httpx.Response(200, json=[ITEM])) as connector:
            items = await connector.query_items()

        assert [item.id for item in items] == ["101"]

    @pytest.mark.asyncio
    async def test_get_item_not_found(self) -> None:
        async with _connector(lambda request: httpx.Response(404)) as connector:
            with pytest.raises(ItemNotFoundError) as exc_info:
                await connector.get_item("7")

        assert exc_info.value.item_id == "7"
        assert exc_info.value.connector == "tracker"

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        async with _connector(lambda request: httpx.Response(500)) as connector:
            with pytest.raises(ConnectorError) as exc_info:
                await connector.get_item("7")

        assert not isinstance(exc_info.value, ItemNotFoundError)
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _connector(handler) as connector:
            with pytest.raises(ConnectorError) as exc_info:
                await connector.query_items()

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_create_and_update(self) -> None:
        bodies: list[tuple[str, str, dict]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            bodies.append((request.method, request.url.path, body))
            return httpx.Response(200, json={**ITEM, "fields": body["fields"]})

        async with _connector(handler) as connector:
            created = await connector.create_item("Bug", {"Title": "New"})
            updated = await connector.update_item("101", {"Priority": 1})

        assert created.fields == {"Title": "New"}
        assert updated.fields == {"Priority": 1}
        assert bodies == [
            ("POST", "/api/items", {"type": "Bug", "fields": {"Title": "New"}}),
            ("PATCH", "/api/items/101", {"fields": {"Priority": 1}}),
        ]

    @pytest.mark.asyncio
    async def test_update_missing_item(self) -> None:
        async with _connector(lambda request: httpx.Response(404)) as connector:
            with pytest.raises(ItemNotFoundError):
                await connector.update_item("7", {"Title": "x"})

    @pytest.mark.asyncio
    async def test_comments(self) -> None:
        requests: list[tuple[str, str, bytes]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append((request.method, request.url.path, request.content))
            if request.method == "GET":
                return httpx.Response(
                    200,
                    json={
                        "comments": [
                            {"id": 5, "text": "Seen on 2.1", "createdBy": "bob", "createdDate": "2024-01-02T08:30:00Z"}
                        ]
                    },
                )
            return httpx.Response(200, json={"id": 77, "text": json.loads(request.content)["text"]})

        async with _connector(handler) as connector:
            comments = await connector.get_comments("101")
            created = await connector.add_comment("202", "Copied")

        assert connector.supports_comments
        assert comments[0].id == "5"
        assert comments[0].created_by == "bob"
        assert created.id == "77"
        assert requests[0][:2] == ("GET", "/api/items/101/comments")
        assert requests[1][:2] == ("POST", "/api/items/202/comments")
        assert json.loads(requests[1][2]) == {"text": "Copied"}

    @pytest.mark.asyncio
    async def test_relations(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json=[{"rel": "Related", "linkedWorkItemId": 102}])
            bodies.append(json.loads(request.content))
            return httpx.Response(204)

        async with _connector(handler) as connector:
            relations = await connector.get_relations("101")
            await connector.add_relation("201", "Related", "202")

        assert [(r.rel, r.linked_item_id) for r in relations] == [("Related", "102")]
        assert bodies == [{"rel": "Related", "linkedWorkItemId": "202"}]


class TestConnectorRegistry:
    """Test ConnectorRegistry functionality."""

    def test_unknown_connector(self) -> None:
        registry = ConnectorRegistry()

        assert 1 not in registry
        with pytest.raises(ConnectorError):
            registry.get(1)

    @pytest.mark.asyncio
    async def test_from_database(
        self, repository: SyncRepository, session_factory, storage_manager: StorageManager
    ) -> None:
        rest = repository.register_connector("tracker", base_url="https://tracker.example.com/api")
        no_url = repository.register_connector("no-url")
        other = repository.register_connector(
            "ado", base_url="https://dev.azure.com/org", connector_type="azure-devops"
        )
        storage_manager.set_token("tracker", "secret")

        with session_scope(session_factory) as session:
            registry = ConnectorRegistry.from_database(session, storage_manager)

        try:
            connector = registry.get(rest.id)
            assert isinstance(connector, RestConnector)
            assert connector.client.headers["Authorization"] == "Bearer secret"
            assert no_url.id not in registry
            assert other.id not in registry
        finally:
            await registry.aclose()
