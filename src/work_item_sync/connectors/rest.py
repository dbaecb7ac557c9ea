"""Generic JSON-over-HTTP connector."""

import logging
from typing import Any

import httpx

from work_item_sync.connectors.base import Connector
from work_item_sync.connectors.models import Comment, Relation, WorkItem
from work_item_sync.errors import ConnectorError, ItemNotFoundError

logger = logging.getLogger(__name__)


class RestConnector(Connector):
    """Connector for trackers exposing a plain work item REST API.

    Routes, relative to base_url:
        POST  /items/query   body {"filter": ...} -> {"items": [...]}
        GET   /items/{id}    -> item
        POST  /items         body {"type": ..., "fields": {...}} -> item
        PATCH /items/{id}    body {"fields": {...}} -> item
        GET   /items/{id}/comments   -> {"comments": [...]}
        POST  /items/{id}/comments   body {"text": ...} -> comment
        GET   /items/{id}/relations  -> {"relations": [...]}
        POST  /items/{id}/relations  body {"rel": ..., "linkedWorkItemId": ...}
    """

    supports_comments = True
    supports_links = True

    def __init__(
        self,
        name: str,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize REST connector.

        Args:
            name: Connector name, used in error messages.
            base_url: API root of the tracker.
            token: Bearer token, if the tracker requires one.
            timeout: Request timeout in seconds.
            transport: Custom transport (tests use httpx.MockTransport).
        """
        self.name = name
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "RestConnector":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise ConnectorError(
                f"{self.name}: {method} {url} failed with status {e.response.status_code}",
                connector=self.name,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ConnectorError(f"{self.name}: {method} {url} failed: {e}", connector=self.name) from e

    async def query_items(self, sync_filter: dict[str, Any] | None = None) -> list[WorkItem]:
        """Query items matching a filter.

        Args:
            sync_filter: Filter object passed through unchanged.

        Returns:
            Matching work items.

        Raises:
            ConnectorError: If the request fails.
        """
        response = await self._request("POST", "/items/query", json={"filter": sync_filter or {}})
        data = response.json()
        items = data.get("items", []) if isinstance(data, dict) else data
        logger.debug(f"{self.name}: query returned {len(items)} items")
        return [WorkItem.model_validate(item) for item in items]

    async def get_item(self, item_id: str) -> WorkItem:
        """Fetch one item.

        Raises:
            ItemNotFoundError: If the tracker answers 404.
            ConnectorError: For any other failure.
        """
        try:
            response = await self._request("GET", f"/items/{item_id}")
        except ConnectorError as e:
            if e.status_code == 404:
                raise ItemNotFoundError(item_id, connector=self.name) from e
            raise
        return WorkItem.model_validate(response.json())

    async def create_item(self, item_type: str, fields: dict[str, Any]) -> WorkItem:
        response = await self._request("POST", "/items", json={"type": item_type, "fields": fields})
        item = WorkItem.model_validate(response.json())
        logger.info(f"{self.name}: created {item_type} {item.id}")
        return item

    async def update_item(self, item_id: str, fields: dict[str, Any]) -> WorkItem:
        try:
            response = await self._request("PATCH", f"/items/{item_id}", json={"fields": fields})
        except ConnectorError as e:
            if e.status_code == 404:
                raise ItemNotFoundError(item_id, connector=self.name) from e
            raise
        logger.info(f"{self.name}: updated {item_id} ({', '.join(sorted(fields))})")
        return WorkItem.model_validate(response.json())

    async def get_comments(self, item_id: str) -> list[Comment]:
        response = await self._request("GET", f"/items/{item_id}/comments")
        data = response.json()
        comments = data.get("comments", []) if isinstance(data, dict) else data
        return [Comment.model_validate(comment) for comment in comments]

    async def add_comment(self, item_id: str, text: str) -> Comment:
        response = await self._request("POST", f"/items/{item_id}/comments", json={"text": text})
        comment = Comment.model_validate(response.json())
        logger.info(f"{self.name}: added comment {comment.id} to {item_id}")
        return comment

    async def get_relations(self, item_id: str) -> list[Relation]:
        response = await self._request("GET", f"/items/{item_id}/relations")
        data = response.json()
        relations = data.get("relations", []) if isinstance(data, dict) else data
        return [Relation.model_validate(relation) for relation in relations]

    async def add_relation(self, item_id: str, rel: str, linked_item_id: str) -> None:
        await self._request(
            "POST",
            f"/items/{item_id}/relations",
            json={"rel": rel, "linkedWorkItemId": linked_item_id},
        )
        logger.info(f"{self.name}: linked {item_id} -> {linked_item_id} ({rel})")
