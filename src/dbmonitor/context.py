"""Denormalised per-target database context consumed by synthesis and chat."""
from __future__ import annotations
import logging
import math
from datetime import datetime
from sqlalchemy.orm import Session
from dbmonitor.config import get_settings
from dbmonitor.infrastructure.cache import ContextCache
from dbmonitor.models.tables import QueryRecord, TableSnapshot
from dbmonitor import repository

logger = logging.getLogger(__name__)


def _round_ms(value: float | None) -> int:
    return int(math.floor((value or 0) + 0.5))


def record_to_dict(r: QueryRecord) -> dict:
    return {
        "id": r.id,
        "query": r.query_text,
        "query_hash": r.query_hash,
        "calls": r.calls,
        "total_time_ms": r.total_time_ms,
        "mean_time_ms": r.mean_time_ms,
        "min_time_ms": r.min_time_ms,
        "max_time_ms": r.max_time_ms,
        "rows_returned": r.rows_returned,
        "statement_type": r.statement_type,
        "table_name": r.table_name,
        "alerts_enabled": r.alerts_enabled,
        "collected_at": r.collected_at.isoformat() if r.collected_at else None,
    }


def snapshot_to_dict(s: TableSnapshot) -> dict:
    return {
        "schema_name": s.schema_name,
        "table_name": s.table_name,
        "columns": s.columns or [],
        "primary_keys": s.primary_keys or [],
        "foreign_keys": s.foreign_keys or [],
        "indexes": s.indexes or [],
        "row_count": s.row_count,
        "captured_at": s.captured_at.isoformat() if s.captured_at else None,
    }


def compose_narrative(records: list[dict], tables: list[dict]) -> str:
    if not records and not tables:
        return ""
    lines = ["", "", "=== DATABASE CONTEXT ==="]
    if records:
        lines += ["", "**Recent Query Performance:**"]
        for i, r in enumerate(records, start=1):
            text = r["query"] or ""
            lines.append(f"{i}. Query: {text[:100]}{'...' if len(text) > 100 else ''}")
            lines.append(
                f"   - Calls: {r['calls']}, Mean Time: {_round_ms(r['mean_time_ms'])}ms, "
                f"Total Time: {_round_ms(r['total_time_ms'])}ms"
            )
    if tables:
        lines += ["", "**Table Structures:**"]
        for t in tables:
            rows = t["row_count"] if t["row_count"] is not None else "unknown"
            lines += ["", f"Table: {t['table_name']} ({rows} rows)"]
            cols = ", ".join(f"{c.get('column_name')} ({c.get('data_type')})" for c in t["columns"])
            lines.append(f"Columns: {cols}")
            if t["primary_keys"]:
                lines.append(f"Primary Keys: {', '.join(t['primary_keys'])}")
            if t["indexes"]:
                lines.append(f"Indexes: {', '.join(i.get('indexname', '') for i in t['indexes'])}")
    lines += ["", "=== END DATABASE CONTEXT ===", "", ""]
    return "\n".join(lines)


def build_context(session: Session, target_id: int, record_limit: int | None = None) -> dict:
    limit = record_limit if record_limit is not None else get_settings().context_record_limit
    records = [record_to_dict(r) for r in repository.slowest_query_records(session, target_id, limit=limit)]
    tables = [snapshot_to_dict(s) for s in repository.table_snapshots(session, target_id)]
    return {
        "target_id": target_id,
        "query_records": records,
        "table_snapshots": tables,
        "narrative": compose_narrative(records, tables),
        "cached_at": datetime.utcnow().isoformat(),
    }


def get_or_build_context(session: Session, target_id: int, cache: ContextCache) -> dict:
    cached = cache.get(target_id)
    if cached is not None:
        return cached
    entry = build_context(session, target_id)
    cache.set(target_id, entry)
    return entry
