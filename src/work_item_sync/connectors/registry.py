"""Lookup of connector instances by connector id."""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from work_item_sync.connectors.base import Connector
from work_item_sync.connectors.rest import RestConnector
from work_item_sync.db.models import Connector as ConnectorRecord
from work_item_sync.errors import ConnectorError
from work_item_sync.utils import StorageManager

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    """Holds the live connector for each registered connector id."""

    def __init__(self) -> None:
        self._connectors: dict[int, Connector] = {}

    def register(self, connector_id: int, connector: Connector) -> None:
        self._connectors[connector_id] = connector

    def get(self, connector_id: int) -> Connector:
        """Get the connector for an id.

        Raises:
            ConnectorError: If no connector is registered for the id.
        """
        try:
            return self._connectors[connector_id]
        except KeyError:
            raise ConnectorError(f"No connector registered for id {connector_id}") from None

    def __contains__(self, connector_id: int) -> bool:
        return connector_id in self._connectors

    async def aclose(self) -> None:
        for connector in self._connectors.values():
            await connector.aclose()

    @classmethod
    def from_database(cls, session: Session, storage: StorageManager) -> "ConnectorRegistry":
        """Build REST connectors for every active connector row.

        Tokens are read from the token store under the connector name.
        """
        registry = cls()
        records = session.scalars(
            select(ConnectorRecord).where(ConnectorRecord.is_active.is_(True))
        ).all()
        for record in records:
            if record.connector_type != "rest":
                logger.warning(
                    f"Skipping connector {record.name}: unsupported type {record.connector_type}"
                )
                continue
            if not record.base_url:
                logger.warning(f"Skipping connector {record.name}: no base URL configured")
                continue
            registry.register(
                record.id,
                RestConnector(
                    name=record.name,
                    base_url=record.base_url,
                    token=storage.get_token(record.name),
                ),
            )
        return registry
