"""Operator opt-in for per-statement alerting."""
from __future__ import annotations
from datetime import datetime
from sqlalchemy import select
from sqlalchemy.orm import Session
from dbmonitor.classification import performance_category, statement_type, first_table
from dbmonitor.config import get_settings
from dbmonitor.identity import QueryIdentity
from dbmonitor.infrastructure.cache import ContextCache
from dbmonitor.models.tables import QueryRecord
from dbmonitor import repository


def enable_query_alert(session: Session, target_id: int, query_text: str, *, cache: ContextCache) -> tuple[QueryRecord, bool]:
    """Flag the record for this statement; create it with zeroed metrics if never observed."""
    identity = QueryIdentity.of(query_text)
    if not identity.normalized:
        raise ValueError("query text is empty")
    record = repository.find_query_record(session, target_id, identity)
    created = record is None
    if created:
        record = QueryRecord(
            target_id=target_id,
            query_text=query_text,
            query_hash=identity.digest,
            calls=0,
            total_time_ms=0.0,
            mean_time_ms=0.0,
            min_time_ms=0.0,
            max_time_ms=0.0,
            rows_returned=0,
            statement_type=statement_type(query_text),
            table_name=first_table(query_text),
            collected_at=datetime.utcnow(),
        )
        session.add(record)
    record.alerts_enabled = True
    repository.commit_or_raise(session, f"enable alert {identity.digest[:12]}")
    cache.invalidate(target_id)
    return record, created


def disable_query_alert(session: Session, target_id: int, query_hash: str, *, cache: ContextCache) -> QueryRecord | None:
    record = session.scalars(
        select(QueryRecord).where(QueryRecord.target_id == target_id, QueryRecord.query_hash == query_hash)
    ).first()
    if record is None:
        return None
    record.alerts_enabled = False
    repository.commit_or_raise(session, f"disable alert {query_hash[:12]}")
    cache.invalidate(target_id)
    return record


def list_alert_queries(session: Session, target_id: int) -> list[dict]:
    settings = get_settings()
    rows = session.scalars(
        select(QueryRecord)
        .where(QueryRecord.target_id == target_id, QueryRecord.alerts_enabled.is_(True))
        .order_by(QueryRecord.mean_time_ms.desc(), QueryRecord.id)
    )
    out = []
    for r in rows:
        category, severity = performance_category(r.mean_time_ms, settings.critical_threshold_ms, settings.warning_threshold_ms)
        out.append({
            "id": r.id,
            "query": r.query_text,
            "query_hash": r.query_hash,
            "calls": r.calls,
            "mean_time_ms": r.mean_time_ms,
            "total_time_ms": r.total_time_ms,
            "rows_returned": r.rows_returned,
            "collected_at": r.collected_at.isoformat() if r.collected_at else None,
            "category": category,
            "severity": severity,
            "threshold": f"> {int(settings.critical_threshold_ms)}ms",
        })
    return out
