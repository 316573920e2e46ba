"""Cache-aside store for per-target database context.

Redis is an optimisation only: every failure talking to it degrades to a
miss (get) or a no-op (set/invalidate) and is counted, never raised.
"""
from __future__ import annotations
import json
import logging
from typing import Any, Callable
import redis
from prometheus_client import Counter
from dbmonitor.config import get_settings
from dbmonitor.errors import CacheUnavailable
from dbmonitor.infrastructure.redis_client import get_redis

logger = logging.getLogger(__name__)

CONTEXT_KEY_PREFIX = "query_context:"

CACHE_HITS = Counter('context_cache_hits_total', 'Context cache hits')
CACHE_MISSES = Counter('context_cache_misses_total', 'Context cache misses')
CACHE_ERRORS = Counter('context_cache_errors_total', 'Context cache store errors', ['op'])
CACHE_INVALIDATIONS = Counter('context_cache_invalidations_total', 'Context cache invalidations')


class ContextCache:
    def __init__(self, client=None, ttl_seconds: int | None = None):
        self._client = client
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else get_settings().context_cache_ttl_seconds

    @staticmethod
    def key(target_id: int) -> str:
        return f"{CONTEXT_KEY_PREFIX}{target_id}"

    def _run(self, op: str, fn: Callable[[Any], Any]) -> Any:
        try:
            client = self._client if self._client is not None else get_redis()
            return fn(client)
        except (redis.RedisError, OSError) as e:
            CACHE_ERRORS.labels(op=op).inc()
            raise CacheUnavailable(f"{op}: {e}") from e

    def get(self, target_id: int) -> dict | None:
        try:
            raw = self._run("get", lambda c: c.get(self.key(target_id)))
        except CacheUnavailable as e:
            logger.warning("context cache get degraded to miss for target %s: %s", target_id, e)
            CACHE_MISSES.inc()
            return None
        if raw is None:
            CACHE_MISSES.inc()
            return None
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning("discarding undecodable context cache entry for target %s", target_id)
            CACHE_MISSES.inc()
            return None
        CACHE_HITS.inc()
        return value

    def set(self, target_id: int, entry: dict, ttl_seconds: int | None = None) -> bool:
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        payload = json.dumps(entry, default=str)
        try:
            self._run("set", lambda c: c.setex(self.key(target_id), ttl, payload))
            return True
        except CacheUnavailable as e:
            logger.warning("context cache set skipped for target %s: %s", target_id, e)
            return False

    def invalidate(self, target_id: int) -> bool:
        try:
            self._run("delete", lambda c: c.delete(self.key(target_id)))
            CACHE_INVALIDATIONS.inc()
            return True
        except CacheUnavailable as e:
            logger.warning("context cache invalidation skipped for target %s: %s", target_id, e)
            return False

    def available(self) -> bool:
        try:
            return bool(self._run("ping", lambda c: c.ping()))
        except CacheUnavailable:
            return False
