"""Process-wide Redis handle shared by the context cache, job locks and alert cooldowns."""
from __future__ import annotations
import redis
from dbmonitor.config import get_settings

_client = None


def get_redis():
    global _client
    if _client is None:
        settings = get_settings()
        _client = redis.Redis.from_url(
            settings.redis_url,
            socket_timeout=settings.redis_socket_timeout_seconds,
            socket_connect_timeout=settings.redis_socket_timeout_seconds,
        )
    return _client


def set_redis_client(client) -> None:
    """Swap the shared client (tests inject an in-process double here)."""
    global _client
    _client = client


def redis_available() -> bool:
    try:
        return bool(get_redis().ping())
    except (redis.RedisError, OSError):
        return False
