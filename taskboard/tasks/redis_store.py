from __future__ import annotations

import datetime as _dt
import functools
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from taskboard.errors import Internal
from taskboard.observability import get_json_logger, get_metrics

from .models import Task, sort_tasks
from .store import TaskStore, diff_fields

_T = TypeVar("_T")


def _store_call(
    func: Callable[..., Awaitable[_T]],
) -> Callable[..., Awaitable[_T]]:
    """Surface connection and command failures as `Internal`."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> _T:
        try:
            return await func(*args, **kwargs)
        except RedisError as exc:
            get_json_logger("taskboard.store").error(
                "store call failed",
                exc_info=exc,
                extra={"event": "store_error", "attributes": {"op": func.__name__}},
            )
            get_metrics().increment("store_errors", {"op": func.__name__})
            raise Internal() from exc

    return wrapper


class RedisTaskStore(TaskStore):
    """Redis-backed task store (asyncio client).

    Data structures:
    - Hash per task: key `{prefix}:task:{id}` with field `json`
    - Set per owner: key `{prefix}:owner:{owner_id}`, members are task ids
    - Sorted set per partition: key `{prefix}:col:{len(owner_id)}:{owner_id}:{category}`,
      score=order, member=task_id; answers max_order with one ZREVRANGE
    - Counter `{prefix}:seq` providing the insertion sequence

    Single-task writes run under WATCH/MULTI so each document is updated
    atomically; nothing spans more than one task.
    """

    def __init__(
        self, *, url: str, key_prefix: str = "taskboard", client: Any | None = None
    ) -> None:
        if client is not None:
            self._redis = client
        else:
            self._redis = aioredis.Redis.from_url(url, decode_responses=True)
        self._prefix = key_prefix.rstrip(":")

    # key helpers
    def _task_key(self, task_id: str) -> str:
        return f"{self._prefix}:task:{task_id}"

    def _owner_key(self, owner_id: str) -> str:
        return f"{self._prefix}:owner:{owner_id}"

    def _col_key(self, owner_id: str, category: str) -> str:
        # Length prefix keeps owner "a:b" + "c" apart from owner "a" + "b:c"
        return f"{self._prefix}:col:{len(owner_id)}:{owner_id}:{category}"

    def _seq_key(self) -> str:
        return f"{self._prefix}:seq"

    @staticmethod
    def _dump(task: Task) -> str:
        return task.model_dump_json(by_alias=True)

    @staticmethod
    def _load(raw: str | bytes | None) -> Task | None:
        if raw is None:
            return None
        return Task.model_validate_json(raw)

    @_store_call
    async def insert(self, task: Task) -> Task:
        seq = int(await self._redis.incr(self._seq_key()))
        stored = task.model_copy(update={"id": uuid.uuid4().hex, "seq": seq})
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(self._task_key(stored.id), mapping={"json": self._dump(stored)})
            pipe.sadd(self._owner_key(stored.owner_id), stored.id)
            pipe.zadd(self._col_key(stored.owner_id, stored.category), {stored.id: stored.order})
            await pipe.execute()
        return stored

    @_store_call
    async def find_one(self, owner_id: str, task_id: str) -> Task | None:
        task = self._load(await self._redis.hget(self._task_key(task_id), "json"))
        if task is None or task.owner_id != owner_id:
            return None
        return task

    @_store_call
    async def max_order(self, owner_id: str, category: str) -> int | None:
        top = await self._redis.zrevrange(self._col_key(owner_id, category), 0, 0, withscores=True)
        if not top:
            return None
        _, score = top[0]
        return int(score)

    @_store_call
    async def update_fields(
        self,
        owner_id: str,
        task_id: str,
        fields: dict[str, Any],
        updated_at: _dt.datetime,
    ) -> int | None:
        key = self._task_key(task_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    current = self._load(await pipe.hget(key, "json"))
                    if current is None or current.owner_id != owner_id:
                        await pipe.unwatch()
                        return None
                    changes = diff_fields(current, fields)
                    if not changes:
                        await pipe.unwatch()
                        return 0
                    updated = current.model_copy(update={**changes, "updated_at": updated_at})
                    pipe.multi()
                    pipe.hset(key, mapping={"json": self._dump(updated)})
                    if "category" in changes or "order" in changes:
                        pipe.zrem(self._col_key(owner_id, current.category), task_id)
                        pipe.zadd(
                            self._col_key(owner_id, updated.category), {task_id: updated.order}
                        )
                    await pipe.execute()
                    return len(changes)
                except WatchError:
                    # Another writer touched this task between WATCH and EXEC
                    continue

    @_store_call
    async def delete(self, owner_id: str, task_id: str) -> bool:
        key = self._task_key(task_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    current = self._load(await pipe.hget(key, "json"))
                    if current is None or current.owner_id != owner_id:
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.delete(key)
                    pipe.srem(self._owner_key(owner_id), task_id)
                    pipe.zrem(self._col_key(owner_id, current.category), task_id)
                    await pipe.execute()
                    return True
                except WatchError:
                    continue

    @_store_call
    async def list_by_owner(self, owner_id: str) -> list[Task]:
        ids = sorted(await self._redis.smembers(self._owner_key(owner_id)))
        if not ids:
            return []
        async with self._redis.pipeline(transaction=False) as pipe:
            for tid in ids:
                pipe.hget(self._task_key(tid), "json")
            raws = await pipe.execute()
        tasks = [t for t in (self._load(r) for r in raws) if t is not None]
        return sort_tasks([t for t in tasks if t.owner_id == owner_id])

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.aclose()


__all__ = ["RedisTaskStore"]
