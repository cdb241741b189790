from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from taskboard.errors import NoOp, NotFound, ValidationError
from taskboard.observability import Tracer, get_json_logger, get_metrics

from .events import TaskBroadcaster
from .models import DEFAULT_CATEGORY, DESCRIPTION_MAX_LEN, TITLE_MAX_LEN, Task, utcnow
from .ordering import OrderingEngine, ReorderResult
from .schemas import parse_reorder
from .store import TaskStore


def _validate_title(value: Any, *, required_message: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(required_message)
    if len(value) > TITLE_MAX_LEN:
        raise ValidationError(f"Title must be {TITLE_MAX_LEN} characters or less.")
    return value


def _validate_description(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError("Description must be a string.")
    if len(value) > DESCRIPTION_MAX_LEN:
        raise ValidationError(f"Description must be {DESCRIPTION_MAX_LEN} characters or less.")
    return value


def _validate_order(value: Any) -> int:
    # bool is an int subclass but never a position
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValidationError("Order must be a number.")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError("Order must be a whole number.")
        return int(value)
    return value


class TaskService:
    """Task lifecycle: validation, ordering, persistence and change events.

    Every operation is scoped to the calling owner. Each mutation that
    persists a change emits exactly one event per affected task.
    """

    def __init__(
        self,
        store: TaskStore,
        broadcaster: TaskBroadcaster,
        ordering: OrderingEngine | None = None,
    ) -> None:
        self._store = store
        self._broadcaster = broadcaster
        self._ordering = ordering or OrderingEngine(store)
        self._logger = get_json_logger("taskboard.tasks")
        self._tracer = Tracer(get_json_logger("taskboard.trace"))

    async def create(
        self,
        owner_id: str,
        title: Any,
        description: Any = None,
        category: Any = None,
    ) -> Task:
        ttl = _validate_title(title, required_message="Title is required.")
        desc = "" if description is None else _validate_description(description)
        if category is not None and not isinstance(category, str):
            raise ValidationError("Category must be a string.")
        cat = category or DEFAULT_CATEGORY

        order = await self._ordering.next_order(owner_id, cat)
        task = Task(
            owner_id=owner_id,
            title=ttl,
            description=desc,
            category=cat,
            order=order,
            created_at=utcnow(),
        )
        stored = await self._store.insert(task)
        self._logger.info(
            "task created",
            extra={
                "event": "task_created",
                "task_id": stored.id,
                "category": stored.category,
                "attributes": {"order": stored.order},
            },
        )
        get_metrics().increment("tasks_created")
        await self._broadcaster.task_created(stored)
        return stored

    async def update(self, owner_id: str, task_id: str, patch: Mapping[str, Any]) -> Task:
        if await self._store.find_one(owner_id, task_id) is None:
            raise NotFound()

        fields: dict[str, Any] = {}
        if "title" in patch:
            fields["title"] = _validate_title(
                patch["title"], required_message="Title cannot be empty."
            )
        if "description" in patch:
            fields["description"] = _validate_description(patch["description"])
        if "category" in patch:
            cat = patch["category"]
            if not isinstance(cat, str) or not cat:
                raise ValidationError("Category cannot be empty.")
            fields["category"] = cat
        if "order" in patch:
            fields["order"] = _validate_order(patch["order"])
        if not fields:
            raise NoOp("No valid fields provided for update.")

        changed = await self._store.update_fields(owner_id, task_id, fields, utcnow())
        if changed is None:
            raise NotFound()
        if changed == 0:
            raise NoOp("No changes made to the task.")

        # Subscribers get the stored document, not the patch
        updated = await self._store.find_one(owner_id, task_id)
        if updated is None:
            raise NotFound()
        self._logger.info(
            "task updated",
            extra={
                "event": "task_updated",
                "task_id": task_id,
                "category": updated.category,
                "attributes": {"fields": sorted(fields), "changed": changed},
            },
        )
        get_metrics().increment("tasks_updated")
        await self._broadcaster.task_moved(updated)
        return updated

    async def remove(self, owner_id: str, task_id: str) -> None:
        if not await self._store.delete(owner_id, task_id):
            raise NotFound()
        self._logger.info("task deleted", extra={"event": "task_deleted", "task_id": task_id})
        get_metrics().increment("tasks_deleted")
        await self._broadcaster.task_deleted(task_id)

    async def list_tasks(self, owner_id: str) -> list[Task]:
        return await self._store.list_by_owner(owner_id)

    async def reorder(self, owner_id: str, body: Any) -> ReorderResult:
        columns = parse_reorder(body)
        with self._tracer.span(
            "tasks.reorder",
            {"columns": [c.category for c in columns], "items": sum(len(c.tasks) for c in columns)},
        ):
            result = await self._ordering.apply_reorder(owner_id, columns)
        for task in result.moved:
            await self._broadcaster.task_moved(task)
        self._logger.info(
            "task reorder",
            extra={
                "event": "task_reorder",
                "attributes": {
                    "matched": result.matched,
                    "modified": result.modified,
                    "failed": len(result.failed),
                },
            },
        )
        get_metrics().increment("task_reorders")
        return result


__all__ = ["TaskService"]
