"""Manual triggers that run collectors synchronously in the calling process."""
from __future__ import annotations
import logging
from typing import Any, Dict
from dbmonitor.tasks.alerts import detect_critical_queries
from dbmonitor.tasks.collection import collect_query_stats
from dbmonitor.tasks.schema import collect_schema_snapshots
from dbmonitor.tasks.suggestions import synthesize_suggestions

logger = logging.getLogger(__name__)

# schema before suggestions so a fresh target has snapshots to reason about
JOBS = {
    "collection": collect_query_stats,
    "schema": collect_schema_snapshots,
    "alerts": detect_critical_queries,
    "suggestions": synthesize_suggestions,
}


class UnknownJobError(KeyError):
    pass


def run_job(name: str) -> Dict[str, Any]:
    try:
        task = JOBS[name]
    except KeyError:
        raise UnknownJobError(name) from None
    # calling the task object runs it inline, honouring the overlap lock
    return task()


def run_all_jobs() -> Dict[str, Any]:
    results: Dict[str, Any] = {}
    for name in JOBS:
        try:
            results[name] = run_job(name)
        except Exception as e:  # noqa: BLE001
            logger.exception("manual run of %s failed", name)
            results[name] = {"status": "error", "error": str(e)}
    return results
