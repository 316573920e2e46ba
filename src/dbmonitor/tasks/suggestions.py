"""Suggestion synthesis engine.

Targets without any statement above the significance threshold are skipped
and keep whatever SuggestionSet they already had. Otherwise the generated
text is interpreted into Parsed or Fallback and the set is replaced.
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict
from celery import shared_task
from prometheus_client import Counter
from sqlalchemy.orm import Session
from dbmonitor.config import get_settings
from dbmonitor.context import build_context, get_or_build_context
from dbmonitor.infrastructure.cache import ContextCache
from dbmonitor.infrastructure.db import SessionLocal
from dbmonitor.infrastructure.scheduling import guarded
from dbmonitor.llm import TextGenerator, TextGenerationError
from dbmonitor.models.tables import MonitoredTarget
from dbmonitor import repository
from dbmonitor.suggestions import SYSTEM_INSTRUCTION, SynthesisInput, Fallback, build_prompt, interpret, fallback_suggestions
from dbmonitor.tasks import for_each_target

logger = logging.getLogger(__name__)

SYNTHESIS_RUNS = Counter('suggestion_synthesis_total', 'Suggestion synthesis outcomes per target', ['outcome'])


def gather_metrics(session: Session, target_id: int, *, cache: ContextCache | None = None) -> SynthesisInput | None:
    """Collect the inputs for one target; None when nothing is significant."""
    settings = get_settings()
    significant = repository.significant_query_records(session, target_id, settings.significance_threshold_ms)
    if not significant:
        return None
    context = get_or_build_context(session, target_id, cache) if cache is not None else build_context(session, target_id)
    records = context["query_records"]
    total_calls = sum(int(r["calls"] or 0) for r in records)
    total_time = sum(float(r["total_time_ms"] or 0) for r in records)
    avg = int(total_time / total_calls + 0.5) if total_calls else 0
    usage = repository.table_usage(session, target_id)
    used_names = {u.table_name for u in usage}
    snapshot_names = [t["table_name"] for t in context["table_snapshots"]]
    events = repository.recent_critical_events(session, target_id, limit=10)
    return SynthesisInput(
        target_id=target_id,
        significant_queries=[
            {
                "query": r.query_text[:500],
                "calls": r.calls,
                "mean_time_ms": round(r.mean_time_ms, 2),
                "total_time_ms": round(r.total_time_ms, 2),
                "rows_returned": r.rows_returned,
                "statement_type": r.statement_type,
                "table_name": r.table_name,
            }
            for r in significant
        ],
        total_calls=total_calls,
        total_time_ms=total_time,
        avg_query_time_ms=avg,
        total_tables=len(snapshot_names),
        most_used_tables=[{"table_name": u.table_name, "call_count": u.call_count} for u in usage[:5]],
        unused_tables=sorted(n for n in snapshot_names if n not in used_names),
        recent_critical_events=[
            {"query": e.query_text[:200], "mean_time_ms": round(e.mean_time_ms, 2), "rank": e.rank, "detected_at": e.detected_at.isoformat()}
            for e in events
        ],
        narrative=context.get("narrative", ""),
    )


def synthesize_target(session: Session, target: MonitoredTarget, *, generator: TextGenerator | None, cache: ContextCache | None = None, now: datetime | None = None) -> Dict[str, Any]:
    settings = get_settings()
    metrics = gather_metrics(session, target.id, cache=cache)
    if metrics is None:
        SYNTHESIS_RUNS.labels(outcome="skipped").inc()
        return {"target_id": target.id, "status": "skipped", "reason": "no_significant_queries"}
    heuristics = {"avg_threshold_ms": settings.fallback_avg_time_ms, "partition_table_count": settings.fallback_partition_table_count}
    if generator is None:
        result = Fallback(fallback_suggestions(metrics, **heuristics), reason="text generation not configured")
    else:
        try:
            text = generator.generate(SYSTEM_INSTRUCTION, build_prompt(metrics))
        except TextGenerationError as e:
            # existing set stays as it was
            SYNTHESIS_RUNS.labels(outcome="failed").inc()
            logger.warning("target %s: text generation failed: %s", target.id, e)
            return {"target_id": target.id, "status": "failed", "error": str(e)}
        result = interpret(text, metrics, **heuristics)
    if isinstance(result, Fallback):
        logger.warning("target %s: using fallback suggestions (%s)", target.id, result.reason)
    repository.upsert_suggestion_set(
        session,
        target.id,
        [s.model_dump() for s in result.suggestions],
        result.source,
        now or datetime.utcnow(),
    )
    repository.commit_or_raise(session, f"suggestion set for target {target.id}")
    SYNTHESIS_RUNS.labels(outcome=result.source).inc()
    return {"target_id": target.id, "status": "updated", "source": result.source}


def synthesize_all(session: Session, *, generator: TextGenerator | None, cache: ContextCache | None = None) -> Dict[str, Any]:
    targets = repository.monitored_targets(session)
    return for_each_target("suggestions", session, targets, lambda t: synthesize_target(session, t, generator=generator, cache=cache))


def _default_generator() -> TextGenerator | None:
    try:
        return TextGenerator()
    except TextGenerationError as e:
        logger.warning("suggestion synthesis will use heuristics only: %s", e)
        return None


@shared_task
@guarded("suggestions")
def synthesize_suggestions() -> Dict[str, Any]:
    session = SessionLocal()
    try:
        return synthesize_all(session, generator=_default_generator(), cache=ContextCache())
    finally:
        session.close()
