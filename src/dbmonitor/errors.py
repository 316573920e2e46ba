"""Failure taxonomy for the observation pipeline.

Every collector isolates these at the finest grain that still allows forward
progress (row, then table, then target, then job). None of them is allowed to
escape a scheduled task.
"""
from __future__ import annotations


class MonitorError(Exception):
    pass


class TargetConnectionError(MonitorError):
    """Target unreachable or its stored credential cannot be decrypted."""

    def __init__(self, target_id: int | None, reason: str):
        super().__init__(f"target {target_id}: {reason}")
        self.target_id = target_id
        self.reason = reason


class QueryError(MonitorError):
    """A statement against a target failed or returned an unusable shape."""


class PersistenceError(MonitorError):
    """A write to the persistent store failed and was rolled back."""


class CacheUnavailable(MonitorError):
    """Cache store unreachable; callers treat this as a miss."""


class SynthesisParseError(MonitorError):
    """Generated text did not contain exactly three well-formed suggestions."""


__all__ = [
    "MonitorError",
    "TargetConnectionError",
    "QueryError",
    "PersistenceError",
    "CacheUnavailable",
    "SynthesisParseError",
]
