"""Schema snapshot collector.

Per table, the five catalog reads (columns, primary keys, foreign keys,
indexes, row count) run concurrently on the target's single connection,
each on its own cursor. Snapshots for dropped tables are left in place.
"""
from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor
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
from dbmonitor import repository
from dbmonitor import statements
from dbmonitor.tasks import for_each_target

logger = logging.getLogger(__name__)

TABLE_SNAPSHOTS = Counter('schema_table_snapshots_total', 'Table snapshot outcomes', ['outcome'])


def row_count(conn, schema: str, table: str) -> int | None:
    """Planner estimate, exact COUNT(*) when the table was never analyzed, None on failure."""
    try:
        rows = fetch_all(conn, statements.TABLE_ROW_ESTIMATE, {"schema": schema, "table": table})
        estimate = rows[0]["estimate"] if rows else None
        if estimate is not None and int(estimate) >= 0:
            return int(estimate)
        rows = fetch_all(conn, statements.exact_row_count(schema, table))
        return int(rows[0]["count"]) if rows else None
    except (QueryError, KeyError, TypeError, ValueError) as e:
        logger.info("row count unavailable for %s.%s: %s", schema, table, e)
        return None


def describe_table(conn, schema: str, table: str, pool: ThreadPoolExecutor) -> Dict[str, Any]:
    params = {"schema": schema, "table": table}
    columns_f = pool.submit(fetch_all, conn, statements.TABLE_COLUMNS, params)
    pks_f = pool.submit(fetch_all, conn, statements.TABLE_PRIMARY_KEYS, params)
    fks_f = pool.submit(fetch_all, conn, statements.TABLE_FOREIGN_KEYS, params)
    indexes_f = pool.submit(fetch_all, conn, statements.TABLE_INDEXES, params)
    count_f = pool.submit(row_count, conn, schema, table)
    return {
        "columns": columns_f.result(),
        "primary_keys": [r["column_name"] for r in pks_f.result()],
        "foreign_keys": fks_f.result(),
        "indexes": indexes_f.result(),
        "row_count": count_f.result(),
    }


def snapshot_target(session: Session, target: MonitoredTarget, *, cache: ContextCache, connect=open_target, now: datetime | None = None) -> Dict[str, Any]:
    settings = get_settings()
    schema = settings.target_schema
    written = 0
    errors: List[Dict[str, str]] = []
    with connect(target) as conn:
        tables = [r["table_name"] for r in fetch_all(conn, statements.LIST_TABLES, {"schema": schema})]
        now = now or datetime.utcnow()
        with ThreadPoolExecutor(max_workers=max(settings.schema_workers, 1), thread_name_prefix=f"schema-{target.id}") as pool:
            for table in tables:
                try:
                    described = describe_table(conn, schema, table, pool)
                    repository.upsert_table_snapshot(session, target.id, schema, table, now=now, **described)
                    repository.commit_or_raise(session, f"table snapshot {schema}.{table}")
                except (QueryError, PersistenceError, SQLAlchemyError, KeyError) as e:
                    session.rollback()
                    TABLE_SNAPSHOTS.labels(outcome="failed").inc()
                    logger.warning("target %s: snapshot of %s.%s failed: %s", target.id, schema, table, e)
                    errors.append({"table": table, "error": str(e)})
                    continue
                TABLE_SNAPSHOTS.labels(outcome="written").inc()
                written += 1
    cache.invalidate(target.id)
    logger.info("target %s: %d/%d table snapshots written", target.id, written, len(tables))
    return {"target_id": target.id, "tables": len(tables), "snapshots": written, "errors": errors}


def snapshot_all(session: Session, *, cache: ContextCache, connect=open_target) -> Dict[str, Any]:
    targets = repository.monitored_targets(session)
    return for_each_target("schema", session, targets, lambda t: snapshot_target(session, t, cache=cache, connect=connect))


@shared_task
@guarded("schema")
def collect_schema_snapshots() -> Dict[str, Any]:
    session = SessionLocal()
    try:
        return snapshot_all(session, cache=ContextCache())
    finally:
        session.close()
