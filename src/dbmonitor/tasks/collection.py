"""Query collection engine.

Mirrors pg_stat_statements into QueryRecords: every poll overwrites the
aggregate fields of the record for each statement identity with the
extension's current cumulative counters (no delta accumulation here).
"""
from __future__ import annotations
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List
from celery import shared_task
from prometheus_client import Counter
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from dbmonitor.config import get_settings
from dbmonitor.errors import QueryError, PersistenceError
from dbmonitor.infrastructure.cache import ContextCache
from dbmonitor.infrastructure.db import SessionLocal
from dbmonitor.infrastructure.scheduling import guarded
from dbmonitor.infrastructure.target_connection import open_target, fetch_all
from dbmonitor.models.tables import MonitoredTarget
from dbmonitor.observations import StatementSample
from dbmonitor import repository
from dbmonitor.statements import TOP_STATEMENTS
from dbmonitor.tasks import for_each_target

logger = logging.getLogger(__name__)

QUERY_RECORDS_WRITTEN = Counter('collector_query_records_total', 'QueryRecord writes by the collection engine', ['outcome'])


def collect_target(session: Session, target: MonitoredTarget, *, cache: ContextCache, connect=open_target, now: datetime | None = None) -> Dict[str, Any]:
    settings = get_settings()
    with connect(target) as conn:
        rows = fetch_all(conn, TOP_STATEMENTS, {"limit": settings.collection_limit})
    now = now or datetime.utcnow()
    created = updated = 0
    errors: List[str] = []
    usage: dict[str, int] = defaultdict(int)
    for row in rows:
        try:
            sample = StatementSample.from_row(row)
            _, is_new = repository.upsert_query_record(session, target.id, sample, now)
            repository.commit_or_raise(session, f"query record {sample.identity.digest[:12]}")
        except (QueryError, PersistenceError, SQLAlchemyError) as e:
            session.rollback()
            QUERY_RECORDS_WRITTEN.labels(outcome="failed").inc()
            logger.warning("target %s: skipped statement row: %s", target.id, e)
            errors.append(str(e))
            continue
        if is_new:
            created += 1
        else:
            updated += 1
        QUERY_RECORDS_WRITTEN.labels(outcome="created" if is_new else "updated").inc()
        if sample.table_name:
            usage[sample.table_name] += sample.calls
    for table_name, calls in usage.items():
        try:
            repository.upsert_table_usage(session, target.id, table_name, calls, now)
            repository.commit_or_raise(session, f"table usage {table_name}")
        except (PersistenceError, SQLAlchemyError) as e:
            session.rollback()
            logger.warning("target %s: table usage for %s not recorded: %s", target.id, table_name, e)
            errors.append(str(e))
    cache.invalidate(target.id)
    logger.info("target %s: collected %d statements (%d new, %d updated, %d failed)", target.id, len(rows), created, updated, len(errors))
    return {"target_id": target.id, "rows": len(rows), "created": created, "updated": updated, "errors": errors}


def collect_all(session: Session, *, cache: ContextCache, connect=open_target) -> Dict[str, Any]:
    targets = repository.monitored_targets(session)
    return for_each_target("collection", session, targets, lambda t: collect_target(session, t, cache=cache, connect=connect))


@shared_task
@guarded("collection")
def collect_query_stats() -> Dict[str, Any]:
    session = SessionLocal()
    try:
        return collect_all(session, cache=ContextCache())
    finally:
        session.close()
