"""Typed view of one pg_stat_statements row."""
from __future__ import annotations
from dataclasses import dataclass
from dbmonitor.classification import statement_type, first_table
from dbmonitor.errors import QueryError
from dbmonitor.identity import QueryIdentity


@dataclass(frozen=True)
class StatementSample:
    query: str
    identity: QueryIdentity
    calls: int
    total_time_ms: float
    mean_time_ms: float
    min_time_ms: float
    max_time_ms: float
    rows: int
    statement_type: str
    table_name: str | None

    @classmethod
    def from_row(cls, row: dict) -> "StatementSample":
        text = row.get("query") or ""
        if not text.strip():
            raise QueryError("statement row without query text")
        try:
            return cls(
                query=text,
                identity=QueryIdentity.of(text),
                calls=int(row.get("calls") or 0),
                total_time_ms=float(row.get("total_exec_time") or 0),
                mean_time_ms=float(row.get("mean_exec_time") or 0),
                min_time_ms=float(row.get("min_exec_time") or 0),
                max_time_ms=float(row.get("max_exec_time") or 0),
                rows=int(row.get("rows") or 0),
                statement_type=statement_type(text),
                table_name=first_table(text),
            )
        except (TypeError, ValueError) as e:
            raise QueryError(f"unusable statistics row: {e}") from e
