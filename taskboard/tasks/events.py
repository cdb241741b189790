from __future__ import annotations

import asyncio
from typing import Any, Literal

from taskboard.bus.interface import Bus, BusMessage
from taskboard.observability import get_json_logger, get_metrics

from .models import Task

TASK_CREATED = "taskCreated"
TASK_MOVED = "taskMoved"
TASK_DELETED = "taskDeleted"

TaskEventName = Literal["taskCreated", "taskMoved", "taskDeleted"]


def task_event(event: TaskEventName, data: Any) -> dict[str, Any]:
    return {"event": event, "data": data}


class TaskBroadcaster:
    """Fans task lifecycle events out to every realtime subscriber.

    All events go to one shared topic regardless of owner. Delivery is
    fire-and-forget: a failed publish is logged and counted but does not
    fail the mutation that produced it, and nothing is replayed later.
    """

    def __init__(self, bus: Bus, topic: str = "taskboard:events") -> None:
        self._bus = bus
        self.topic = topic
        self._logger = get_json_logger("taskboard.events")

    async def task_created(self, task: Task) -> None:
        await self._emit(task_event(TASK_CREATED, task.to_wire()), task.id)

    async def task_moved(self, task: Task) -> None:
        await self._emit(task_event(TASK_MOVED, task.to_wire()), task.id)

    async def task_deleted(self, task_id: str) -> None:
        await self._emit(task_event(TASK_DELETED, task_id), task_id)

    async def _emit(self, payload: dict[str, Any], task_id: str) -> None:
        message = BusMessage(topic=self.topic, payload=payload)
        try:
            await asyncio.to_thread(self._bus.publish, self.topic, message)
        except Exception:
            self._logger.exception(
                "broadcast failed",
                extra={"event": "broadcast_error", "task_id": task_id},
            )
            get_metrics().increment("broadcast_errors", {"event": str(payload["event"])})
            return
        get_metrics().increment("broadcasts", {"event": str(payload["event"])})


__all__ = [
    "TASK_CREATED",
    "TASK_DELETED",
    "TASK_MOVED",
    "TaskBroadcaster",
    "task_event",
]
