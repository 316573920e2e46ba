"""Suggestion synthesis: prompt, response parsing and the heuristic fallback.

The outcome of interpreting generated text is always a tagged result,
Parsed or Fallback, each carrying exactly three suggestions.
"""
from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Literal, Union
from pydantic import BaseModel, Field, ValidationError, field_validator
from dbmonitor.errors import SynthesisParseError

CATEGORIES = (
    "indexing",
    "query_optimization",
    "schema_design",
    "configuration",
    "monitoring",
    "table_optimization",
    "partitioning",
    "maintenance",
    "capacity_planning",
)

SYSTEM_INSTRUCTION = f"""You are a database performance expert. Analyze the provided database metrics and provide exactly 3 specific, actionable recommendations for optimization.
Ignore DDL and system/catalog statements.
Return your response as a JSON array with exactly 3 objects, each containing:
- "title": a brief title for the suggestion
- "description": detailed explanation of the issue and the remedy
- "priority": "high", "medium", or "low"
- "category": one of {", ".join(f'"{c}"' for c in CATEGORIES)}

Focus on missing or redundant indexes, query structure, table usage patterns, schema design, configuration tuning, partitioning, maintenance and capacity planning.
Be specific and reference the tables and statements you were given. Example format:
[
  {{"title": "Add Composite Index on orders", "description": "orders is filtered by (status, created_at) in the slowest statement; a composite index avoids the sequential scan.", "priority": "high", "category": "indexing"}}
]"""


class Suggestion(BaseModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    priority: Literal["high", "medium", "low"]
    category: str = Field(min_length=1)

    @field_validator("priority", mode="before")
    @classmethod
    def _lower_priority(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


@dataclass(frozen=True)
class Parsed:
    suggestions: tuple[Suggestion, Suggestion, Suggestion]
    source: str = "ai"


@dataclass(frozen=True)
class Fallback:
    suggestions: tuple[Suggestion, Suggestion, Suggestion]
    reason: str = ""
    source: str = "fallback"


SynthesisResult = Union[Parsed, Fallback]


@dataclass(frozen=True)
class SynthesisInput:
    """Metrics gathered for one target; the fallback is a pure function of this."""
    target_id: int
    significant_queries: list[dict] = field(default_factory=list)
    total_calls: int = 0
    total_time_ms: float = 0.0
    avg_query_time_ms: int = 0
    total_tables: int = 0
    most_used_tables: list[dict] = field(default_factory=list)
    unused_tables: list[str] = field(default_factory=list)
    recent_critical_events: list[dict] = field(default_factory=list)
    narrative: str = ""


def _first_array(text: str) -> list:
    decoder = json.JSONDecoder()
    start = text.find("[")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except ValueError:
            start = text.find("[", start + 1)
            continue
        return value
    raise SynthesisParseError("no JSON array in response")


def parse_suggestions(text: str) -> tuple[Suggestion, Suggestion, Suggestion]:
    items = _first_array(text or "")
    if len(items) != 3:
        raise SynthesisParseError(f"expected 3 suggestions, got {len(items)}")
    try:
        parsed = tuple(Suggestion.model_validate(item) for item in items)
    except ValidationError as e:
        raise SynthesisParseError(f"malformed suggestion: {e.errors()[0].get('msg')}") from e
    return parsed  # type: ignore[return-value]


def fallback_suggestions(metrics: SynthesisInput, *, avg_threshold_ms: float = 100.0, partition_table_count: int = 10) -> tuple[Suggestion, Suggestion, Suggestion]:
    if metrics.avg_query_time_ms > avg_threshold_ms:
        first = Suggestion(
            title="Optimize Query Performance",
            description=f"Average query time is {metrics.avg_query_time_ms}ms. Consider adding indexes and optimizing query structure.",
            priority="high",
            category="query_optimization",
        )
    else:
        first = Suggestion(
            title="Monitor Query Performance",
            description="Set up comprehensive monitoring to track query performance and identify bottlenecks early.",
            priority="medium",
            category="monitoring",
        )

    if metrics.unused_tables:
        second = Suggestion(
            title="Clean Up Unused Tables",
            description=f"Found {len(metrics.unused_tables)} unused tables that can be removed to reduce storage overhead.",
            priority="low",
            category="maintenance",
        )
    elif metrics.most_used_tables:
        names = ", ".join(t["table_name"] for t in metrics.most_used_tables[:3])
        second = Suggestion(
            title="Optimize Table Access Patterns",
            description=f"Focus on optimizing the most frequently accessed tables: {names}.",
            priority="medium",
            category="table_optimization",
        )
    else:
        second = Suggestion(
            title="Review Database Schema",
            description="Analyze table structures and relationships to identify optimization opportunities.",
            priority="medium",
            category="schema_design",
        )

    if metrics.total_tables > partition_table_count:
        third = Suggestion(
            title="Consider Table Partitioning",
            description=f"With {metrics.total_tables} tables, consider partitioning large tables to improve performance and maintenance.",
            priority="low",
            category="partitioning",
        )
    else:
        third = Suggestion(
            title="Review Database Configuration",
            description="Review and optimize database configuration settings for better performance.",
            priority="low",
            category="configuration",
        )
    return first, second, third


def interpret(text: str, metrics: SynthesisInput, *, avg_threshold_ms: float = 100.0, partition_table_count: int = 10) -> SynthesisResult:
    try:
        return Parsed(parse_suggestions(text))
    except SynthesisParseError as e:
        return Fallback(
            fallback_suggestions(metrics, avg_threshold_ms=avg_threshold_ms, partition_table_count=partition_table_count),
            reason=str(e),
        )


def build_prompt(metrics: SynthesisInput) -> str:
    summary = {
        "performance": {
            "total_calls": metrics.total_calls,
            "total_time_ms": round(metrics.total_time_ms, 2),
            "avg_query_time_ms": metrics.avg_query_time_ms,
        },
        "slow_queries": metrics.significant_queries,
        "tables": {
            "total": metrics.total_tables,
            "most_used": metrics.most_used_tables,
            "unused": metrics.unused_tables,
        },
        "recent_critical_events": metrics.recent_critical_events,
    }
    return (
        "Analyze this PostgreSQL database and return exactly 3 recommendations as a JSON array.\n\n"
        f"Metrics:\n{json.dumps(summary, indent=2, default=str)}\n"
        f"{metrics.narrative}"
    )
