"""Scheduled engines. Each runs its targets one at a time behind the same isolation boundary."""
from __future__ import annotations
import logging
from typing import Any, Callable, Dict, Iterable, List
from prometheus_client import Counter
from sqlalchemy.orm import Session
from dbmonitor.errors import QueryError, TargetConnectionError

logger = logging.getLogger(__name__)

TARGET_FAILURES = Counter('collector_target_failures_total', 'Targets skipped by a collector', ['job', 'kind'])


def for_each_target(job: str, session: Session, targets: Iterable, body: Callable[[Any], Dict[str, Any]]) -> Dict[str, Any]:
    """Run body per target; a failing target is logged and recorded, never raised."""
    results: List[Dict[str, Any]] = []
    failures: List[Dict[str, Any]] = []
    for target in targets:
        target_id = target.id
        try:
            results.append(body(target))
        except TargetConnectionError as e:
            TARGET_FAILURES.labels(job=job, kind="connection").inc()
            logger.warning("%s skipped target %s: %s", job, target_id, e)
            failures.append({"target_id": target_id, "error": str(e)})
        except QueryError as e:
            TARGET_FAILURES.labels(job=job, kind="query").inc()
            logger.warning("%s query failed for target %s: %s", job, target_id, e)
            failures.append({"target_id": target_id, "error": str(e)})
        except Exception as e:  # noqa: BLE001
            session.rollback()
            TARGET_FAILURES.labels(job=job, kind="unexpected").inc()
            logger.exception("%s failed for target %s", job, target_id)
            failures.append({"target_id": target_id, "error": str(e)})
    return {"status": "ok", "job": job, "targets": len(results), "results": results, "errors": failures}
