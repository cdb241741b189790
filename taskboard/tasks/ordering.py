from __future__ import annotations

from dataclasses import dataclass, field

from taskboard.errors import ValidationError
from taskboard.observability import get_json_logger, get_metrics

from .models import Task, utcnow
from .schemas import ColumnReorder
from .store import TaskStore


@dataclass(slots=True)
class ReorderFailure:
    task_id: str
    reason: str


@dataclass(slots=True)
class ReorderResult:
    """Outcome of a best-effort reorder batch.

    - matched: items that resolved to one of the caller's tasks
    - modified: matched items whose stored category/order actually changed
    - failed: items that did not resolve; the rest of the batch still ran
    - moved: reloaded tasks for every modified item, in payload order
    """

    matched: int = 0
    modified: int = 0
    failed: list[ReorderFailure] = field(default_factory=list)
    moved: list[Task] = field(default_factory=list)

    def summary(self) -> dict[str, object]:
        return {
            "message": "Reorder applied.",
            "updated": self.matched,
            "modified": self.modified,
            "failed": [f.task_id for f in self.failed],
        }


class OrderingEngine:
    """Computes append positions for new tasks and applies client-driven reorders.

    Orders are never renormalised: gaps are fine and a reorder writes exactly
    the values the client sent. Reorder items are applied one by one with no
    rollback, so a batch can end up partially applied.
    """

    def __init__(self, store: TaskStore) -> None:
        self._store = store
        self._logger = get_json_logger("taskboard.ordering")

    async def next_order(self, owner_id: str, category: str) -> int:
        if not owner_id or not category:
            raise ValidationError("Owner and category are required.")
        current = await self._store.max_order(owner_id, category)
        return 0 if current is None else current + 1

    async def apply_reorder(self, owner_id: str, columns: list[ColumnReorder]) -> ReorderResult:
        result = ReorderResult()
        for column in columns:
            for item in column.tasks:
                fields = {"order": item.order, "category": item.category or column.category}
                changed = await self._store.update_fields(
                    owner_id, item.task_id, fields, utcnow()
                )
                if changed is None:
                    result.failed.append(
                        ReorderFailure(task_id=item.task_id, reason="Task not found or not yours.")
                    )
                    continue
                result.matched += 1
                if changed == 0:
                    continue
                result.modified += 1
                reloaded = await self._store.find_one(owner_id, item.task_id)
                # Deleted concurrently after the write; nothing left to announce
                if reloaded is not None:
                    result.moved.append(reloaded)

        if result.failed:
            self._logger.warning(
                "reorder partially applied",
                extra={
                    "event": "task_reorder_partial",
                    "attributes": {
                        "matched": result.matched,
                        "failed": [f.task_id for f in result.failed],
                    },
                },
            )
            get_metrics().increment("task_reorder_item_misses", amount=len(result.failed))
        return result


__all__ = ["OrderingEngine", "ReorderFailure", "ReorderResult"]
