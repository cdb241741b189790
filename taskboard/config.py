from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

DEFAULT_CORS_ORIGINS = ("http://localhost:5173", "http://localhost:5174")


@dataclass(slots=True)
class AppConfig:
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "taskboard"
    events_topic: str = "taskboard:events"
    events_maxlen: int = 1000
    token_secret: str = "mydefaultsecret"
    token_ttl_seconds: int = 3600
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    host: str = "0.0.0.0"
    port: int = 9000


def _read_int(raw: Any, default: int, *, minimum: int = 1) -> int:
    text = str(raw or "").strip()
    try:
        value = int(text) if text else default
    except ValueError:
        value = default
    return max(minimum, value)


def _read_list(raw: Any, default: tuple[str, ...]) -> list[str]:
    text = str(raw or "").strip()
    if not text:
        return list(default)
    return [item.strip() for item in text.split(",") if item.strip()]


def load_config(env: dict[str, str] | None = None) -> AppConfig:
    e: dict[str, Any] = dict(os.environ)
    if env:
        e.update(env)
    return AppConfig(
        redis_url=e.get("REDIS_URL") or "redis://localhost:6379/0",
        key_prefix=(e.get("TASKBOARD_KEY_PREFIX") or "taskboard").rstrip(":"),
        events_topic=e.get("TASKBOARD_EVENTS_TOPIC") or "taskboard:events",
        events_maxlen=_read_int(e.get("TASKBOARD_EVENTS_MAXLEN"), 1000),
        token_secret=e.get("ACCESS_TOKEN_SECRET") or "mydefaultsecret",
        token_ttl_seconds=_read_int(e.get("ACCESS_TOKEN_TTL"), 3600),
        cors_origins=_read_list(e.get("CORS_ORIGINS"), DEFAULT_CORS_ORIGINS),
        host=e.get("HOST") or "0.0.0.0",
        port=_read_int(e.get("PORT"), 9000),
    )


__all__ = ["AppConfig", "load_config"]
