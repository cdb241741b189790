from __future__ import annotations

import datetime as _dt
from typing import Any, Protocol

from .models import Task

# Fields a caller may change after creation; id, owner_id, seq and created_at are fixed
MUTABLE_FIELDS = frozenset({"title", "description", "category", "order"})


class TaskStore(Protocol):
    """Owner-scoped persistence for tasks.

    Every method is a suspension point; implementations must not hold
    cross-call locks. Lookups that name a task always filter by owner, so a
    task belonging to someone else behaves exactly like a missing one.
    """

    async def insert(self, task: Task) -> Task:
        """Persist a new task, assigning `id` and `seq`. Returns the stored task."""

    async def find_one(self, owner_id: str, task_id: str) -> Task | None:
        """Return the task if it exists and belongs to owner_id."""

    async def max_order(self, owner_id: str, category: str) -> int | None:
        """Highest `order` in the partition, or None when it is empty."""

    async def update_fields(
        self,
        owner_id: str,
        task_id: str,
        fields: dict[str, Any],
        updated_at: _dt.datetime,
    ) -> int | None:
        """Apply a partial write to one task.

        Returns None when nothing matched, otherwise the number of fields
        whose stored value changed. `updated_at` is only written when that
        number is positive.
        """

    async def delete(self, owner_id: str, task_id: str) -> bool:
        """Remove the task; False when nothing matched."""

    async def list_by_owner(self, owner_id: str) -> list[Task]:
        """All of the owner's tasks sorted by (category, order, seq)."""

    async def ping(self) -> bool:
        """Cheap connectivity check."""

    async def close(self) -> None:
        """Release connections."""


def diff_fields(current: Task, fields: dict[str, Any]) -> dict[str, Any]:
    """Return the subset of fields whose value differs from the stored task."""
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"not updatable: {', '.join(sorted(unknown))}")
    return {k: v for k, v in fields.items() if getattr(current, k) != v}


__all__ = ["MUTABLE_FIELDS", "TaskStore", "diff_fields"]
