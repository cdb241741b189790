from __future__ import annotations

import json
import os
from collections.abc import Iterable
from typing import Any

import redis

from taskboard.observability import get_json_logger, get_metrics

from .interface import Bus, BusMessage

# Exclusive lower bound that precedes every entry id
_STREAM_START = "0-0"


class RedisBus(Bus):
    """Redis Streams-backed Bus adapter.

    - publish: XADD to the stream named by topic, trimmed to about `maxlen` entries
    - read: tail via XREVRANGE, or strictly after last_id (entry id or uuid) via XRANGE
    - read_blocking: XREAD with BLOCK after last_id, or only new entries when None

    Returned messages carry the stream entry id as `cursor`. An entry id stays
    usable after XADD trimming; a uuid that was trimmed away resumes from the
    oldest retained entry.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        maxlen: int | None = 1000,
        client: Any | None = None,
    ) -> None:
        url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        if client is not None:
            self._redis = client
        else:
            # decode_responses=True returns str everywhere for easier JSON handling
            self._redis = redis.Redis.from_url(url, decode_responses=True)
        self._maxlen = maxlen

    # ----------------------------
    # Public API
    # ----------------------------
    def get_client(self) -> Any:
        return self._redis

    def publish(self, topic: str, message: BusMessage) -> str:  # noqa: D401
        """Append one message to a topic. Returns the Bus message id (uuid)."""
        fields = {
            "id": message.id,
            "payload": json.dumps(message.payload, separators=(",", ":")),
        }
        if self._maxlen:
            # Events are never replayed, so the stream only needs a short tail
            self._redis.xadd(topic, fields, maxlen=self._maxlen, approximate=True)
        else:
            self._redis.xadd(topic, fields)
        return message.id

    def read(
        self,
        topic: str,
        last_id: str | None = None,
        limit: int = 100,
    ) -> Iterable[BusMessage]:  # noqa: D401
        """Read messages after last_id (or tail if None)."""
        if last_id is None:
            return self._tail_messages(topic, limit)
        if self._is_entry_id(last_id):
            return self._collect_after_cursor(topic, last_id, limit)
        cursor_id = self._scan_for_uuid(topic, last_id, max(limit * 2, 100))
        return self._collect_after_cursor(topic, cursor_id or _STREAM_START, limit)

    def read_blocking(
        self,
        topic: str,
        last_id: str | None = None,
        limit: int = 100,
        block_ms: int = 1000,
    ) -> Iterable[BusMessage]:  # noqa: D401
        """Block up to block_ms waiting for messages after last_id."""
        if last_id is None:
            start_id = "$"  # only new messages
        elif self._is_entry_id(last_id):
            start_id = last_id
        else:
            resolved = self._scan_for_uuid(topic, last_id, max(limit * 2, 100))
            start_id = resolved if resolved is not None else _STREAM_START

        resp = self._redis.xread(streams={topic: start_id}, count=limit, block=block_ms) or []
        if not resp:
            return []
        # resp shape: [(stream, [(entry_id, {field: value, ...}), ...])]
        _, items = resp[0]
        return [self._to_bus_message(topic, data, entry_id) for entry_id, data in items]

    # ----------------------------
    # Internal helpers
    # ----------------------------
    def _tail_messages(self, topic: str, limit: int) -> list[BusMessage]:
        entries = self._redis.xrevrange(topic, "+", "-", count=limit) or []
        entries.reverse()
        return [self._to_bus_message(topic, data, entry_id) for entry_id, data in entries]

    @staticmethod
    def _is_entry_id(value: str) -> bool:
        # Redis stream IDs look like '<milliseconds>-<sequence>'
        if "-" not in value:
            return False
        left, _, right = value.partition("-")
        return left.isdigit() and right.isdigit()

    def _scan_for_uuid(self, topic: str, last_uuid: str, chunk_size: int) -> str | None:
        cursor = "-"
        while True:
            start = cursor if cursor == "-" else f"({cursor}"
            chunk = self._redis.xrange(topic, start, "+", count=chunk_size) or []
            if not chunk:
                return None
            for entry_id, data in chunk:
                if data.get("id") == last_uuid:
                    return entry_id
            cursor = chunk[-1][0]

    def _collect_after_cursor(self, topic: str, cursor_id: str, limit: int) -> list[BusMessage]:
        messages: list[BusMessage] = []
        next_id = cursor_id
        while len(messages) < limit:
            start = f"({next_id}"
            chunk = self._redis.xrange(topic, start, "+", count=limit - len(messages)) or []
            if not chunk:
                break
            for entry_id, data in chunk:
                messages.append(self._to_bus_message(topic, data, entry_id))
                next_id = entry_id
        return messages

    @staticmethod
    def _to_bus_message(topic: str, data: dict[str, str], entry_id: str) -> BusMessage:
        payload_raw = data.get("payload", "{}")
        try:
            payload = json.loads(payload_raw)
        except json.JSONDecodeError:
            get_json_logger("taskboard.bus").warning(
                "invalid bus payload json",
                extra={
                    "event": "bus_payload_invalid_json",
                    "attributes": {"topic": topic, "entry_id": entry_id},
                },
            )
            get_metrics().increment("bus_payload_decode_errors", {"topic": topic})
            payload = {}

        bus_id = data.get("id") or entry_id
        return BusMessage(topic=topic, payload=payload, id=bus_id, cursor=entry_id)


__all__ = ["RedisBus"]
