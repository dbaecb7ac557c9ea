"""Pydantic models for work items exchanged with connectors."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WorkItem(BaseModel):
    """Work item as returned by an external tracking system."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: str
    fields: dict[str, Any] = Field(default_factory=dict)
    revision: int | str | None = None
    changed_date: datetime | None = Field(default=None, alias="changedDate")
    changed_by: str | None = Field(default=None, alias="changedBy")

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, value: Any) -> Any:
        # trackers use numeric and string ids interchangeably
        if isinstance(value, int):
            return str(value)
        return value


class Comment(BaseModel):
    """Discussion comment on a work item."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    text: str
    created_by: str | None = Field(default=None, alias="createdBy")
    created_date: datetime | None = Field(default=None, alias="createdDate")

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value


class Relation(BaseModel):
    """Link from a work item to another item in the same system."""

    model_config = ConfigDict(populate_by_name=True)

    rel: str
    linked_item_id: str = Field(alias="linkedWorkItemId")

    @field_validator("linked_item_id", mode="before")
    @classmethod
    def _id_as_string(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value
