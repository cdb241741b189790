from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from taskboard.errors import ValidationError


class CreateTaskRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    category: str | None = None


class UpdateTaskRequest(BaseModel):
    """Partial patch: only keys present in the body are applied."""

    title: Any = None
    description: Any = None
    category: Any = None
    order: Any = None

    def present_fields(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class ReorderItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(alias="_id", min_length=1)
    order: int
    category: str | None = Field(default=None, min_length=1)


class ColumnReorder(BaseModel):
    category: str = Field(min_length=1)
    tasks: list[ReorderItem]


class MultiColumnReorder(BaseModel):
    category_updates: list[ColumnReorder] = Field(alias="categoryUpdates")


def _describe(exc: PydanticValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


def parse_reorder(body: Any) -> list[ColumnReorder]:
    """Normalise either reorder payload shape into a list of column updates.

    Accepts `{category, tasks: [...]}` or `{categoryUpdates: [{category, tasks}, ...]}`.
    Raises ValidationError for anything else, including a body carrying both.
    """
    if not isinstance(body, dict):
        raise ValidationError("Reorder body must be a JSON object.")
    has_multi = "categoryUpdates" in body
    has_single = "category" in body or "tasks" in body
    if has_multi and has_single:
        raise ValidationError("Provide either category/tasks or categoryUpdates, not both.")
    if not has_multi and not has_single:
        raise ValidationError("Provide category/tasks or categoryUpdates.")
    try:
        if has_multi:
            return MultiColumnReorder.model_validate(body).category_updates
        return [ColumnReorder.model_validate(body)]
    except PydanticValidationError as exc:
        raise ValidationError(f"Malformed reorder request ({_describe(exc)}).") from exc


__all__ = [
    "ColumnReorder",
    "CreateTaskRequest",
    "MultiColumnReorder",
    "ReorderItem",
    "UpdateTaskRequest",
    "parse_reorder",
]
