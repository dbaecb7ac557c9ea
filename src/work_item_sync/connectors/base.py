"""Connector capability shared by all external tracking systems."""

from abc import ABC, abstractmethod
from typing import Any

from work_item_sync.connectors.models import Comment, Relation, WorkItem
from work_item_sync.errors import ConnectorError


class Connector(ABC):
    """Async access to one external tracking system.

    Implementations raise ConnectorError for transport failures and
    ItemNotFoundError when a requested item does not exist.

    Comments and relations are optional; a connector that has them sets
    supports_comments or supports_links and overrides the matching methods.
    """

    name: str = "connector"
    supports_comments: bool = False
    supports_links: bool = False

    @abstractmethod
    async def query_items(self, sync_filter: dict[str, Any] | None = None) -> list[WorkItem]:
        """Return the items matching an opaque, connector-specific filter."""

    @abstractmethod
    async def get_item(self, item_id: str) -> WorkItem:
        """Fetch a single item by id."""

    @abstractmethod
    async def create_item(self, item_type: str, fields: dict[str, Any]) -> WorkItem:
        """Create an item and return it as stored by the system."""

    @abstractmethod
    async def update_item(self, item_id: str, fields: dict[str, Any]) -> WorkItem:
        """Update the given fields of an item and return its new state."""

    async def get_comments(self, item_id: str) -> list[Comment]:
        """Comments of an item, oldest first."""
        raise ConnectorError(f"{self.name} does not support comments", connector=self.name)

    async def add_comment(self, item_id: str, text: str) -> Comment:
        raise ConnectorError(f"{self.name} does not support comments", connector=self.name)

    async def get_relations(self, item_id: str) -> list[Relation]:
        """Links from an item to other items of the same system."""
        raise ConnectorError(f"{self.name} does not support links", connector=self.name)

    async def add_relation(self, item_id: str, rel: str, linked_item_id: str) -> None:
        raise ConnectorError(f"{self.name} does not support links", connector=self.name)

    async def aclose(self) -> None:
        """Release network resources."""
