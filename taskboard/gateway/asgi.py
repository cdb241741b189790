from __future__ import annotations

from taskboard.bus.redis_adapter import RedisBus
from taskboard.config import load_config
from taskboard.tasks.redis_store import RedisTaskStore

from .app import create_app

_config = load_config()
_store = RedisTaskStore(url=_config.redis_url, key_prefix=_config.key_prefix)
_bus = RedisBus(redis_url=_config.redis_url, maxlen=_config.events_maxlen)
app = create_app(_store, _bus, config=_config)
