from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from taskboard.errors import NoOp, NotFound, ValidationError
from taskboard.observability import get_metrics, reset_metrics
from taskboard.tasks.events import TaskBroadcaster
from taskboard.tasks.service import TaskService
from tests.helpers.bus import FailingBus
from tests.helpers.store import InMemoryTaskStore


@pytest.mark.asyncio
async def test_create_defaults_category_and_starts_at_zero(service: TaskService) -> None:
    task = await service.create("u1", "A")

    assert task.id
    assert task.owner_id == "u1"
    assert task.category == "To-Do"
    assert task.order == 0
    assert task.description == ""
    assert task.updated_at is None


@pytest.mark.asyncio
async def test_sequential_creates_increment_order_by_one(service: TaskService) -> None:
    orders = [(await service.create("u1", f"t{i}")).order for i in range(4)]
    assert orders == [0, 1, 2, 3]

    other = await service.create("u1", "x", category="Done")
    assert other.order == 0


@pytest.mark.asyncio
async def test_create_blank_category_falls_back_to_default(service: TaskService) -> None:
    task = await service.create("u1", "A", category="")
    assert task.category == "To-Do"


@pytest.mark.parametrize(
    ("title", "description", "message"),
    [
        (None, None, "Title is required."),
        ("", None, "Title is required."),
        ("x" * 51, None, "Title must be 50 characters or less."),
        ("ok", "d" * 201, "Description must be 200 characters or less."),
    ],
)
@pytest.mark.asyncio
async def test_create_validation(
    service: TaskService,
    store: InMemoryTaskStore,
    title: str | None,
    description: str | None,
    message: str,
) -> None:
    with pytest.raises(ValidationError) as exc:
        await service.create("u1", title, description)
    assert exc.value.message == message
    assert await store.list_by_owner("u1") == []


@pytest.mark.asyncio
async def test_create_keeps_whitespace_title_verbatim(service: TaskService) -> None:
    task = await service.create("u1", "  ")
    assert task.title == "  "


@pytest.mark.asyncio
async def test_create_accepts_limits_exactly(service: TaskService) -> None:
    task = await service.create("u1", "x" * 50, "d" * 200)
    assert len(task.title) == 50
    assert len(task.description) == 200


@pytest.mark.asyncio
async def test_create_broadcasts_full_task(
    service: TaskService, published: Callable[[], list[dict]]
) -> None:
    task = await service.create("u1", "A", "desc")

    events = published()
    assert len(events) == 1
    assert events[0]["event"] == "taskCreated"
    assert events[0]["data"]["_id"] == task.id
    assert events[0]["data"]["ownerId"] == "u1"
    assert events[0]["data"]["description"] == "desc"


@pytest.mark.asyncio
async def test_update_applies_patch_and_broadcasts_reloaded_task(
    service: TaskService, published: Callable[[], list[dict]]
) -> None:
    task = await service.create("u1", "A")

    updated = await service.update("u1", task.id, {"title": "A2", "category": "Done", "order": 4})

    assert (updated.title, updated.category, updated.order) == ("A2", "Done", 4)
    assert updated.updated_at is not None
    moved = published()[-1]
    assert moved["event"] == "taskMoved"
    assert moved["data"]["title"] == "A2"
    assert moved["data"]["category"] == "Done"
    assert moved["data"]["updatedAt"] is not None


@pytest.mark.asyncio
async def test_update_empty_patch_is_noop(service: TaskService) -> None:
    task = await service.create("u1", "A")
    with pytest.raises(NoOp) as exc:
        await service.update("u1", task.id, {})
    assert exc.value.message == "No valid fields provided for update."


@pytest.mark.asyncio
async def test_update_identical_values_is_noop_without_event(
    service: TaskService, published: Callable[[], list[dict]]
) -> None:
    task = await service.create("u1", "A")
    with pytest.raises(NoOp) as exc:
        await service.update("u1", task.id, {"title": "A", "order": 0})
    assert exc.value.message == "No changes made to the task."
    assert [e["event"] for e in published()] == ["taskCreated"]


@pytest.mark.asyncio
async def test_update_long_title_leaves_task_unmodified(
    service: TaskService, store: InMemoryTaskStore
) -> None:
    task = await service.create("u1", "A")
    with pytest.raises(ValidationError):
        await service.update("u1", task.id, {"title": "x" * 51, "order": 9})

    stored = store.raw(task.id)
    assert stored is not None
    assert (stored.title, stored.order, stored.updated_at) == ("A", 0, None)


@pytest.mark.parametrize(
    ("patch", "message"),
    [
        ({"title": ""}, "Title cannot be empty."),
        ({"title": None}, "Title cannot be empty."),
        ({"description": "d" * 201}, "Description must be 200 characters or less."),
        ({"category": ""}, "Category cannot be empty."),
        ({"order": "3"}, "Order must be a number."),
        ({"order": True}, "Order must be a number."),
        ({"order": 1.5}, "Order must be a whole number."),
    ],
)
@pytest.mark.asyncio
async def test_update_validation(service: TaskService, patch: dict, message: str) -> None:
    task = await service.create("u1", "A")
    with pytest.raises(ValidationError) as exc:
        await service.update("u1", task.id, patch)
    assert exc.value.message == message


@pytest.mark.asyncio
async def test_update_integral_float_order_is_accepted(service: TaskService) -> None:
    task = await service.create("u1", "A")
    updated = await service.update("u1", task.id, {"order": 3.0})
    assert updated.order == 3


@pytest.mark.asyncio
async def test_update_task_of_other_owner_is_not_found(
    service: TaskService, store: InMemoryTaskStore
) -> None:
    task = await service.create("u1", "A")
    with pytest.raises(NotFound):
        await service.update("u2", task.id, {"title": "stolen"})
    assert store.raw(task.id).title == "A"  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_update_missing_task_is_not_found_before_validation(service: TaskService) -> None:
    with pytest.raises(NotFound):
        await service.update("u1", "nope", {"title": ""})


@pytest.mark.asyncio
async def test_remove_deletes_and_broadcasts_id(
    service: TaskService, store: InMemoryTaskStore, published: Callable[[], list[dict]]
) -> None:
    task = await service.create("u1", "A")

    await service.remove("u1", task.id)

    assert store.raw(task.id) is None
    assert published()[-1] == {"event": "taskDeleted", "data": task.id}


@pytest.mark.asyncio
async def test_remove_task_of_other_owner_is_not_found(
    service: TaskService, store: InMemoryTaskStore, published: Callable[[], list[dict]]
) -> None:
    task = await service.create("u1", "A")
    with pytest.raises(NotFound):
        await service.remove("u2", task.id)
    assert store.raw(task.id) is not None
    assert [e["event"] for e in published()] == ["taskCreated"]


@pytest.mark.asyncio
async def test_list_sorted_by_category_then_order(service: TaskService) -> None:
    t1 = await service.create("u1", "t1", category="To-Do")
    d1 = await service.create("u1", "d1", category="Done")
    t2 = await service.create("u1", "t2", category="To-Do")
    d2 = await service.create("u1", "d2", category="Done")
    await service.update("u1", t1.id, {"order": 10})
    await service.update("u1", d2.id, {"order": -1})
    await service.create("u2", "other")

    listed = await service.list_tasks("u1")

    assert [t.id for t in listed] == [d2.id, d1.id, t2.id, t1.id]
    assert [t.sort_key()[:2] for t in listed] == sorted(t.sort_key()[:2] for t in listed)


@pytest.mark.asyncio
async def test_scenario_create_create_reorder_list(service: TaskService) -> None:
    a = await service.create("U1", "A")
    b = await service.create("U1", "B")
    assert (a.category, a.order) == ("To-Do", 0)
    assert b.order == 1

    result = await service.reorder(
        "U1",
        {"category": "To-Do", "tasks": [{"_id": a.id, "order": 1}, {"_id": b.id, "order": 0}]},
    )

    assert result.matched == 2
    assert [t.title for t in await service.list_tasks("U1")] == ["B", "A"]


@pytest.mark.asyncio
async def test_reorder_broadcasts_one_moved_event_per_changed_task(
    service: TaskService, published: Callable[[], list[dict]]
) -> None:
    a = await service.create("u1", "A")
    b = await service.create("u1", "B")
    c = await service.create("u1", "C")

    await service.reorder(
        "u1",
        {
            "categoryUpdates": [
                {"category": "To-Do", "tasks": [{"_id": a.id, "order": 0}]},
                {
                    "category": "Done",
                    "tasks": [{"_id": b.id, "order": 0}, {"_id": "gone", "order": 1}],
                },
            ]
        },
    )

    moved = [e for e in published() if e["event"] == "taskMoved"]
    assert [e["data"]["_id"] for e in moved] == [b.id]
    assert moved[0]["data"]["category"] == "Done"
    assert c.id not in {e["data"]["_id"] for e in moved}


@pytest.mark.asyncio
async def test_reorder_malformed_shape_is_rejected_before_any_write(
    service: TaskService, store: InMemoryTaskStore
) -> None:
    a = await service.create("u1", "A")
    with pytest.raises(ValidationError):
        await service.reorder("u1", {"tasks": [{"_id": a.id, "order": 4}]})
    assert store.raw(a.id).order == 0  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_concurrent_creates_may_tie_and_list_breaks_tie_by_insertion(
    service: TaskService,
) -> None:
    first, second = await asyncio.gather(
        service.create("u1", "first"), service.create("u1", "second")
    )

    # Both read the empty partition before either insert landed
    assert first.order == second.order == 0
    listed = await service.list_tasks("u1")
    assert [t.title for t in listed] == ["first", "second"]
    assert listed[0].seq < listed[1].seq
    # Appends after the race continue from the shared maximum
    assert (await service.create("u1", "third")).order == 1


@pytest.mark.asyncio
async def test_broadcast_failure_does_not_fail_mutation(store: InMemoryTaskStore) -> None:
    reset_metrics()
    service = TaskService(store, TaskBroadcaster(FailingBus(), "t"))

    task = await service.create("u1", "A")

    assert store.raw(task.id) is not None
    assert get_metrics().value("broadcast_errors", {"event": "taskCreated"}) == 1
