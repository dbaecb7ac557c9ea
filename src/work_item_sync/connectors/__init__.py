"""Connectors to external tracking systems."""

from work_item_sync.connectors.base import Connector
from work_item_sync.connectors.models import Comment, Relation, WorkItem
from work_item_sync.connectors.registry import ConnectorRegistry
from work_item_sync.connectors.rest import RestConnector

__all__ = [
    "Comment",
    "Connector",
    "ConnectorRegistry",
    "Relation",
    "RestConnector",
    "WorkItem",
]
