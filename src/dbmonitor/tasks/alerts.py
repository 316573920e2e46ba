"""Alert detection and dispatch.

Only statements an operator opted into (alerts_enabled) are evaluated. Every
poll that finds watched statements above the critical threshold appends one
CriticalQueryEvent per breaching statement and dispatches the batch once.
Repeat notifications across polls are expected unless ALERT_COOLDOWN_MINUTES
is set.
"""
from __future__ import annotations
import logging
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
from dbmonitor.models.tables import MonitoredTarget, QueryRecord, CriticalQueryEvent
from dbmonitor.notifications import AlertNotifier
from dbmonitor.observations import StatementSample
from dbmonitor import repository
from dbmonitor.statements import TOP_STATEMENTS
from dbmonitor.tasks import for_each_target

logger = logging.getLogger(__name__)

CRITICAL_EVENTS = Counter('alert_critical_events_total', 'CriticalQueryEvents appended')
DISPATCH_FAILURES = Counter('alert_dispatch_failures_total', 'Alert dispatches that raised or reported an error')


def event_to_dict(ev: CriticalQueryEvent) -> dict:
    return {
        "id": ev.id,
        "target_id": ev.target_id,
        "query": ev.query_text,
        "query_hash": ev.query_hash,
        "calls": ev.calls,
        "total_time_ms": ev.total_time_ms,
        "mean_time_ms": ev.mean_time_ms,
        "rows_returned": ev.rows_returned,
        "rank": ev.rank,
        "detected_at": ev.detected_at.isoformat() if ev.detected_at else None,
    }


def check_target(
    session: Session,
    target: MonitoredTarget,
    watched: List[QueryRecord],
    *,
    cache: ContextCache,
    notifier: AlertNotifier,
    connect=open_target,
    now: datetime | None = None,
) -> Dict[str, Any]:
    settings = get_settings()
    by_identity = {r.query_hash: r for r in watched}
    with connect(target) as conn:
        rows = fetch_all(conn, TOP_STATEMENTS, {"limit": settings.alert_limit})
    now = now or datetime.utcnow()
    matched = 0
    events: List[dict] = []
    errors: List[str] = []
    for row in rows:
        try:
            sample = StatementSample.from_row(row)
        except QueryError as e:
            errors.append(str(e))
            continue
        record = by_identity.get(sample.identity.digest)
        if record is None:
            continue
        matched += 1
        try:
            repository.apply_sample(record, sample, now)
            event = None
            if sample.mean_time_ms > settings.critical_threshold_ms:
                event = repository.append_critical_event(session, target.id, sample, len(events) + 1, now)
            repository.commit_or_raise(session, f"alert poll {sample.identity.digest[:12]}")
        except (PersistenceError, SQLAlchemyError) as e:
            session.rollback()
            logger.warning("target %s: alert update for %s not persisted: %s", target.id, sample.identity.digest[:12], e)
            errors.append(str(e))
            continue
        if event is not None:
            CRITICAL_EVENTS.inc()
            events.append(event_to_dict(event))
    if matched:
        cache.invalidate(target.id)

    dispatch = None
    if events:
        target_info = {"target_id": target.id, "host": target.host, "port": target.port, "database_name": target.database_name}
        try:
            dispatch = notifier.send(events, target_info)
        except Exception as e:  # noqa: BLE001 - events are already persisted
            dispatch = {"status": "error", "error": str(e)}
            logger.exception("alert dispatch raised for target %s", target.id)
        if dispatch.get("status") == "error":
            DISPATCH_FAILURES.inc()
    logger.info("target %s: %d watched statements matched, %d critical", target.id, matched, len(events))
    return {"target_id": target.id, "matched": matched, "critical": len(events), "dispatch": dispatch, "errors": errors}


def detect_all(session: Session, *, cache: ContextCache, notifier: AlertNotifier, connect=open_target) -> Dict[str, Any]:
    grouped = repository.alert_enabled_records(session)
    targets = [t for t in (repository.get_target(session, tid) for tid in sorted(grouped)) if t is not None]
    return for_each_target(
        "alerts",
        session,
        targets,
        lambda t: check_target(session, t, grouped[t.id], cache=cache, notifier=notifier, connect=connect),
    )


@shared_task
@guarded("alerts")
def detect_critical_queries() -> Dict[str, Any]:
    session = SessionLocal()
    try:
        return detect_all(session, cache=ContextCache(), notifier=AlertNotifier())
    finally:
        session.close()
