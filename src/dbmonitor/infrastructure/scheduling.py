"""Named periodic jobs with an explicit overlap policy.

Each job declares what happens when a firing arrives while the previous run
of the same job is still going:

  skip        drop the new firing (default; bounds connection fan-out)
  queue       wait for the running firing, up to one interval, then drop
  concurrent  run regardless

Exclusion is a Redis lock (SET NX EX with a per-run token), so it holds
across worker processes. If Redis is unreachable the job runs unguarded.
"""
from __future__ import annotations
import functools
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
import redis
from prometheus_client import Counter, Histogram
from dbmonitor.config import Settings, get_settings
from dbmonitor.infrastructure.redis_client import get_redis

logger = logging.getLogger(__name__)

JOB_RUNS = Counter('monitor_job_runs_total', 'Scheduled job firings by outcome', ['job', 'outcome'])
JOB_DURATION = Histogram('monitor_job_duration_seconds', 'Scheduled job runtime', ['job'], buckets=(0.5, 1, 5, 15, 30, 60, 120, 300, 600, 1800))

LOCK_PREFIX = "job_lock:"
# lock outlives the interval so a slow run keeps excluding later firings
LOCK_TTL_INTERVALS = 4


class OverlapPolicy(str, Enum):
    SKIP = "skip"
    QUEUE = "queue"
    CONCURRENT = "concurrent"


@dataclass(frozen=True)
class JobSpec:
    name: str
    task: str
    interval_seconds: int
    overlap: OverlapPolicy = OverlapPolicy.SKIP


def job_specs(settings: Settings | None = None) -> dict[str, JobSpec]:
    s = settings or get_settings()
    specs = [
        JobSpec("collection", "dbmonitor.tasks.collection.collect_query_stats", s.collection_interval_seconds, OverlapPolicy(s.collection_overlap)),
        JobSpec("alerts", "dbmonitor.tasks.alerts.detect_critical_queries", s.alert_interval_seconds, OverlapPolicy(s.alert_overlap)),
        JobSpec("schema", "dbmonitor.tasks.schema.collect_schema_snapshots", s.schema_interval_seconds, OverlapPolicy(s.schema_overlap)),
        JobSpec("suggestions", "dbmonitor.tasks.suggestions.synthesize_suggestions", s.suggestion_interval_seconds, OverlapPolicy(s.suggestion_overlap)),
    ]
    return {spec.name: spec for spec in specs}


def beat_schedule(specs: dict[str, JobSpec]) -> dict:
    return {
        f"{spec.name}-every-{spec.interval_seconds}s": {
            "task": spec.task,
            "schedule": float(spec.interval_seconds),
        }
        for spec in specs.values()
    }


class JobLock:
    def __init__(self, name: str, ttl_seconds: int, client=None):
        self.key = f"{LOCK_PREFIX}{name}"
        self.ttl_seconds = max(int(ttl_seconds), 1)
        self.token = uuid.uuid4().hex
        self._client = client

    @property
    def client(self):
        return self._client if self._client is not None else get_redis()

    def acquire(self, wait_seconds: float = 0, poll_seconds: float = 1.0) -> bool:
        deadline = time.monotonic() + wait_seconds
        while True:
            if self.client.set(self.key, self.token, nx=True, ex=self.ttl_seconds):
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(poll_seconds)

    def release(self) -> None:
        current = self.client.get(self.key)
        if current is not None and (current.decode() if isinstance(current, bytes) else current) == self.token:
            self.client.delete(self.key)


def guarded(job_name: str, *, client=None):
    """Apply the job's overlap policy around a task body."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            spec = job_specs()[job_name]
            if spec.overlap is OverlapPolicy.CONCURRENT:
                return _timed(job_name, fn, *args, **kwargs)
            lock = JobLock(job_name, spec.interval_seconds * LOCK_TTL_INTERVALS, client=client)
            wait = spec.interval_seconds if spec.overlap is OverlapPolicy.QUEUE else 0
            try:
                acquired = lock.acquire(wait_seconds=wait)
            except (redis.RedisError, OSError) as e:
                logger.warning("job lock for %s unavailable, running unguarded: %s", job_name, e)
                return _timed(job_name, fn, *args, **kwargs)
            if not acquired:
                JOB_RUNS.labels(job=job_name, outcome="skipped").inc()
                logger.info("skipping %s firing: previous run still in progress", job_name)
                return {"status": "skipped", "job": job_name, "reason": "previous_run_in_progress"}
            try:
                return _timed(job_name, fn, *args, **kwargs)
            finally:
                try:
                    lock.release()
                except (redis.RedisError, OSError) as e:
                    logger.warning("could not release job lock for %s (expires in %ss): %s", job_name, lock.ttl_seconds, e)

        return wrapper

    return decorator


def _timed(job_name: str, fn, *args, **kwargs):
    start = time.time()
    try:
        result = fn(*args, **kwargs)
    except Exception:
        JOB_RUNS.labels(job=job_name, outcome="failed").inc()
        raise
    finally:
        JOB_DURATION.labels(job=job_name).observe(time.time() - start)
    JOB_RUNS.labels(job=job_name, outcome="ran").inc()
    return result
