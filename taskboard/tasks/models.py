from __future__ import annotations

import datetime as _dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

TITLE_MAX_LEN = 50
DESCRIPTION_MAX_LEN = 200
DEFAULT_CATEGORY = "To-Do"


def utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.UTC)


class Task(BaseModel):
    """A task placed in one column of its owner's board.

    - `order` positions the task inside its `(owner_id, category)` partition
    - `seq` is assigned by the store at insert time and breaks `order` ties
    - Wire names (aliases) are what HTTP clients and realtime subscribers see
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default="", alias="_id")
    owner_id: str = Field(alias="ownerId")
    title: str
    description: str = ""
    category: str = DEFAULT_CATEGORY
    order: int = 0
    seq: int = 0
    created_at: _dt.datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: _dt.datetime | None = Field(default=None, alias="updatedAt")

    def sort_key(self) -> tuple[str, int, int]:
        return (self.category, self.order, self.seq)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def sort_tasks(tasks: list[Task]) -> list[Task]:
    """Sort ascending by category, then order, then insertion sequence."""
    return sorted(tasks, key=Task.sort_key)


__all__ = [
    "DEFAULT_CATEGORY",
    "DESCRIPTION_MAX_LEN",
    "TITLE_MAX_LEN",
    "Task",
    "sort_tasks",
    "utcnow",
]
