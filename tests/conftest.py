from __future__ import annotations

import os
import uuid
from collections.abc import Callable

import pytest

from taskboard.tasks.events import TaskBroadcaster
from taskboard.tasks.service import TaskService
from tests.helpers.bus import InMemoryBus
from tests.helpers.store import InMemoryTaskStore

EVENTS_TOPIC = "taskboard:test:events"


def _redis_ping(url: str) -> bool:
    try:
        import redis

        r = redis.Redis.from_url(url)
        return bool(r.ping())
    except Exception:
        return False


@pytest.fixture(scope="session")
def redis_url() -> str:
    """Provide a reachable Redis URL or skip.

    Priority: REDIS_URL env, then localhost:6379.
    """
    for url in (os.getenv("REDIS_URL"), "redis://localhost:6379/0"):
        if url and _redis_ping(url):
            return url
    pytest.skip("Redis not available; set REDIS_URL or start local Redis")


@pytest.fixture()
def unique_prefix() -> str:
    return f"test:{uuid.uuid4().hex}"


@pytest.fixture()
def store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture()
def bus() -> InMemoryBus:
    return InMemoryBus()


@pytest.fixture()
def service(store: InMemoryTaskStore, bus: InMemoryBus) -> TaskService:
    return TaskService(store, TaskBroadcaster(bus, EVENTS_TOPIC))


@pytest.fixture()
def published(bus: InMemoryBus) -> Callable[[], list[dict]]:
    """Payloads broadcast so far on the events topic."""

    def _read() -> list[dict]:
        return [m.payload for m in bus.messages(EVENTS_TOPIC)]

    return _read
