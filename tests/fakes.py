"""In-process stand-ins for Redis, target connections and collaborators."""
from __future__ import annotations
import time
from contextlib import contextmanager
import psycopg2
import redis

from dbmonitor import statements

EXACT_COUNT = "exact_count"


class FakeRedis:
    """Subset of the redis-py client used by the cache, job locks and cooldowns."""

    def __init__(self):
        self.store: dict[str, tuple[bytes, float | None]] = {}
        self.ttls: dict[str, int] = {}

    def _live(self, key):
        item = self.store.get(key)
        if item is None:
            return None
        value, expires = item
        if expires is not None and expires <= time.monotonic():
            del self.store[key]
            return None
        return value

    def get(self, key):
        return self._live(key)

    def set(self, key, value, nx=False, ex=None):
        if nx and self._live(key) is not None:
            return None
        data = value if isinstance(value, bytes) else str(value).encode()
        self.store[key] = (data, time.monotonic() + ex if ex else None)
        if ex:
            self.ttls[key] = ex
        return True

    def setex(self, key, ttl, value):
        return self.set(key, value, ex=ttl)

    def delete(self, *keys):
        removed = 0
        for k in keys:
            if self.store.pop(k, None) is not None:
                removed += 1
        return removed

    def ping(self):
        return True


class BrokenRedis:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise redis.ConnectionError("connection refused")
        return fail


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rows = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, statement, params=None):
        self.rows = self.conn.respond(statement, params or {})

    def fetchall(self):
        return self.rows


class FakeConnection:
    """Answers known statements from a handler map; anything else is a ProgrammingError.

    Handler values are row lists, callables taking the bound params, or
    exceptions to raise.
    """

    def __init__(self, handlers: dict | None = None):
        self.handlers = dict(handlers or {})
        self.executed: list = []
        self.closed = False

    def cursor(self, cursor_factory=None):
        return FakeCursor(self)

    def respond(self, statement, params):
        key = statement if isinstance(statement, str) else EXACT_COUNT
        self.executed.append((key, params))
        if key not in self.handlers:
            raise psycopg2.ProgrammingError("unexpected statement")
        handler = self.handlers[key]
        result = handler(params) if callable(handler) else handler
        if isinstance(result, Exception):
            raise result
        return [dict(r) for r in result]


class FakeConnector:
    """Drop-in for open_target: one scripted connection (or failure) per target id."""

    def __init__(self, default: FakeConnection | Exception | None = None):
        self.by_target: dict = {}
        self.default = default
        self.opened = 0
        self.closed = 0

    def register(self, target_id, conn_or_exc):
        self.by_target[target_id] = conn_or_exc
        return conn_or_exc

    @contextmanager
    def __call__(self, target):
        item = self.by_target.get(target.id, self.default)
        if item is None:
            raise AssertionError(f"no scripted connection for target {target.id}")
        if isinstance(item, Exception):
            raise item
        self.opened += 1
        try:
            yield item
        finally:
            self.closed += 1
            item.closed = True


class RecordingNotifier:
    def __init__(self, result=None, raises: Exception | None = None):
        self.calls: list[tuple[list, dict]] = []
        self.result = result or {"status": "sent"}
        self.raises = raises

    def send(self, events, target_info):
        self.calls.append((list(events), dict(target_info)))
        if self.raises:
            raise self.raises
        return self.result


class ScriptedGenerator:
    def __init__(self, text: str = "", raises: Exception | None = None, chunks: list[str] | None = None):
        self.text = text
        self.raises = raises
        self.chunks = chunks or []
        self.prompts: list[tuple[str, str]] = []

    def generate(self, system, prompt):
        self.prompts.append((system, prompt))
        if self.raises:
            raise self.raises
        return self.text

    def stream(self, system, prompt):
        self.prompts.append((system, prompt))
        yield from self.chunks


def stat_row(query, calls=10, total=100.0, mean=10.0, min_=1.0, max_=20.0, rows=5):
    return {
        "query": query,
        "calls": calls,
        "total_exec_time": total,
        "mean_exec_time": mean,
        "min_exec_time": min_,
        "max_exec_time": max_,
        "rows": rows,
    }


def stats_connection(rows) -> FakeConnection:
    return FakeConnection({statements.TOP_STATEMENTS: rows})
