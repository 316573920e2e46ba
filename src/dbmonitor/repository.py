"""Persistent-store operations shared by the collectors and the API.

Writers stage changes on the session; callers decide the commit grain via
commit_or_raise so a failed write never takes sibling writes down with it.
"""
from __future__ import annotations
from collections import defaultdict
from datetime import datetime
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from dbmonitor.errors import PersistenceError
from dbmonitor.identity import QueryIdentity
from dbmonitor.models.tables import (
    MonitoredTarget,
    QueryRecord,
    TableSnapshot,
    TableUsage,
    CriticalQueryEvent,
    SuggestionSet,
)
from dbmonitor.observations import StatementSample


def commit_or_raise(session: Session, what: str) -> None:
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f"{what}: {e.__class__.__name__}: {e}") from e


# --- targets -----------------------------------------------------------------

def monitored_targets(session: Session) -> list[MonitoredTarget]:
    return list(session.scalars(select(MonitoredTarget).where(MonitoredTarget.monitoring_enabled.is_(True)).order_by(MonitoredTarget.id)))


def get_target(session: Session, target_id: int) -> MonitoredTarget | None:
    return session.get(MonitoredTarget, target_id)


def find_target(session: Session, *, owner: str, host: str, port: int, database_name: str) -> MonitoredTarget | None:
    return session.scalars(
        select(MonitoredTarget).where(
            MonitoredTarget.owner == owner,
            MonitoredTarget.host == host,
            MonitoredTarget.port == port,
            MonitoredTarget.database_name == database_name,
        )
    ).first()


# --- query records -----------------------------------------------------------

def find_query_record(session: Session, target_id: int, identity: QueryIdentity) -> QueryRecord | None:
    return session.scalars(
        select(QueryRecord).where(QueryRecord.target_id == target_id, QueryRecord.query_hash == identity.digest)
    ).first()


def apply_sample(record: QueryRecord, sample: StatementSample, now: datetime) -> None:
    record.calls = sample.calls
    record.total_time_ms = sample.total_time_ms
    record.mean_time_ms = sample.mean_time_ms
    record.min_time_ms = sample.min_time_ms
    record.max_time_ms = sample.max_time_ms
    record.rows_returned = sample.rows
    record.statement_type = sample.statement_type
    record.table_name = sample.table_name
    record.collected_at = now


def upsert_query_record(session: Session, target_id: int, sample: StatementSample, now: datetime) -> tuple[QueryRecord, bool]:
    """Overwrite the record for the sample's identity with its metrics; create it if absent."""
    record = find_query_record(session, target_id, sample.identity)
    created = record is None
    if created:
        record = QueryRecord(
            target_id=target_id,
            query_text=sample.query,
            query_hash=sample.identity.digest,
            alerts_enabled=False,
        )
        session.add(record)
    apply_sample(record, sample, now)
    return record, created


def alert_enabled_records(session: Session) -> dict[int, list[QueryRecord]]:
    grouped: dict[int, list[QueryRecord]] = defaultdict(list)
    rows = session.scalars(select(QueryRecord).where(QueryRecord.alerts_enabled.is_(True)).order_by(QueryRecord.target_id, QueryRecord.id))
    for r in rows:
        grouped[r.target_id].append(r)
    return dict(grouped)


def recent_query_records(session: Session, target_id: int, limit: int = 100) -> list[QueryRecord]:
    stmt = (
        select(QueryRecord)
        .where(QueryRecord.target_id == target_id)
        .order_by(QueryRecord.collected_at.desc(), QueryRecord.id.desc())
        .limit(limit)
    )
    return list(session.scalars(stmt))


def slowest_query_records(session: Session, target_id: int, limit: int = 20) -> list[QueryRecord]:
    stmt = (
        select(QueryRecord)
        .where(QueryRecord.target_id == target_id)
        .order_by(QueryRecord.mean_time_ms.desc(), QueryRecord.id)
        .limit(limit)
    )
    return list(session.scalars(stmt))


def significant_query_records(session: Session, target_id: int, threshold_ms: float) -> list[QueryRecord]:
    stmt = (
        select(QueryRecord)
        .where(QueryRecord.target_id == target_id, QueryRecord.mean_time_ms > threshold_ms)
        .order_by(QueryRecord.mean_time_ms.desc(), QueryRecord.id)
    )
    return list(session.scalars(stmt))


# --- schema ------------------------------------------------------------------

def upsert_table_snapshot(
    session: Session,
    target_id: int,
    schema_name: str,
    table_name: str,
    *,
    columns: list,
    primary_keys: list,
    foreign_keys: list,
    indexes: list,
    row_count: int | None,
    now: datetime,
) -> TableSnapshot:
    snap = session.scalars(
        select(TableSnapshot).where(
            TableSnapshot.target_id == target_id,
            TableSnapshot.schema_name == schema_name,
            TableSnapshot.table_name == table_name,
        )
    ).first()
    if snap is None:
        snap = TableSnapshot(target_id=target_id, schema_name=schema_name, table_name=table_name)
        session.add(snap)
    snap.columns = columns
    snap.primary_keys = primary_keys
    snap.foreign_keys = foreign_keys
    snap.indexes = indexes
    snap.row_count = row_count
    snap.captured_at = now
    return snap


def table_snapshots(session: Session, target_id: int) -> list[TableSnapshot]:
    stmt = select(TableSnapshot).where(TableSnapshot.target_id == target_id).order_by(TableSnapshot.schema_name, TableSnapshot.table_name)
    return list(session.scalars(stmt))


def upsert_table_usage(session: Session, target_id: int, table_name: str, call_count: int, now: datetime) -> TableUsage:
    usage = session.scalars(
        select(TableUsage).where(TableUsage.target_id == target_id, TableUsage.table_name == table_name)
    ).first()
    if usage is None:
        usage = TableUsage(target_id=target_id, table_name=table_name)
        session.add(usage)
    usage.call_count = call_count
    usage.last_used = now
    return usage


def table_usage(session: Session, target_id: int) -> list[TableUsage]:
    stmt = select(TableUsage).where(TableUsage.target_id == target_id).order_by(TableUsage.call_count.desc(), TableUsage.table_name)
    return list(session.scalars(stmt))


# --- events & suggestions ----------------------------------------------------

def append_critical_event(session: Session, target_id: int, sample: StatementSample, rank: int, now: datetime) -> CriticalQueryEvent:
    ev = CriticalQueryEvent(
        target_id=target_id,
        query_hash=sample.identity.digest,
        query_text=sample.query,
        calls=sample.calls,
        total_time_ms=sample.total_time_ms,
        mean_time_ms=sample.mean_time_ms,
        rows_returned=sample.rows,
        rank=rank,
        detected_at=now,
    )
    session.add(ev)
    return ev


def recent_critical_events(session: Session, target_id: int, limit: int = 10) -> list[CriticalQueryEvent]:
    stmt = (
        select(CriticalQueryEvent)
        .where(CriticalQueryEvent.target_id == target_id)
        .order_by(CriticalQueryEvent.detected_at.desc(), CriticalQueryEvent.id.desc())
        .limit(limit)
    )
    return list(session.scalars(stmt))


def get_suggestion_set(session: Session, target_id: int) -> SuggestionSet | None:
    return session.scalars(select(SuggestionSet).where(SuggestionSet.target_id == target_id)).first()


def upsert_suggestion_set(session: Session, target_id: int, suggestions: list[dict], source: str, now: datetime) -> SuggestionSet:
    current = get_suggestion_set(session, target_id)
    if current is None:
        current = SuggestionSet(target_id=target_id, created_at=now)
        session.add(current)
    current.suggestions = suggestions
    current.source = source
    current.updated_at = now
    return current
