from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Integer, BigInteger, DateTime, JSON, ForeignKey, Float, Text, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from dbmonitor.infrastructure.db import Base


class MonitoredTarget(Base):
    """External PostgreSQL instance under observation.

    The pipeline only ever writes monitoring_enabled and updated_at; everything
    else is set once at registration.
    """
    __tablename__ = "monitored_targets"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner: Mapped[str] = mapped_column(String(128), index=True, default="", server_default="")
    host: Mapped[str] = mapped_column(String(255))
    port: Mapped[int] = mapped_column(Integer, default=5432)
    database_name: Mapped[str] = mapped_column(String(128))
    username: Mapped[str] = mapped_column(String(128))
    password_encrypted: Mapped[str] = mapped_column(Text)
    db_type: Mapped[str] = mapped_column(String(32), default="postgresql")
    monitoring_enabled: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    queries: Mapped[list["QueryRecord"]] = relationship(back_populates="target")
    __table_args__ = (
        Index("ix_target_owner_host_db", "owner", "host", "port", "database_name", unique=True),
    )


class QueryRecord(Base):
    """Latest cumulative pg_stat_statements snapshot for one statement identity."""
    __tablename__ = "query_records"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    target_id: Mapped[int] = mapped_column(ForeignKey("monitored_targets.id", ondelete="CASCADE"), index=True)
    query_text: Mapped[str] = mapped_column(Text)
    query_hash: Mapped[str] = mapped_column(String(64))
    calls: Mapped[int] = mapped_column(BigInteger, default=0)
    total_time_ms: Mapped[float] = mapped_column(Float, default=0.0)
    mean_time_ms: Mapped[float] = mapped_column(Float, default=0.0, index=True)
    min_time_ms: Mapped[float] = mapped_column(Float, default=0.0)
    max_time_ms: Mapped[float] = mapped_column(Float, default=0.0)
    rows_returned: Mapped[int] = mapped_column(BigInteger, default=0)
    statement_type: Mapped[str] = mapped_column(String(16), default="OTHER")
    table_name: Mapped[str | None] = mapped_column(String(255), default=None)
    alerts_enabled: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    collected_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    target: Mapped[MonitoredTarget] = relationship(back_populates="queries")
    __table_args__ = (
        Index("ix_query_record_identity", "target_id", "query_hash", unique=True),
    )


class TableSnapshot(Base):
    __tablename__ = "table_snapshots"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    target_id: Mapped[int] = mapped_column(ForeignKey("monitored_targets.id", ondelete="CASCADE"), index=True)
    schema_name: Mapped[str] = mapped_column(String(128), default="public")
    table_name: Mapped[str] = mapped_column(String(255))
    columns: Mapped[list] = mapped_column(JSON, default=list)
    primary_keys: Mapped[list] = mapped_column(JSON, default=list)
    foreign_keys: Mapped[list] = mapped_column(JSON, default=list)
    indexes: Mapped[list] = mapped_column(JSON, default=list)
    row_count: Mapped[int | None] = mapped_column(BigInteger, default=None)
    captured_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    __table_args__ = (
        Index("ix_table_snapshot_identity", "target_id", "schema_name", "table_name", unique=True),
    )


class TableUsage(Base):
    """Call counts per first-referenced table, derived from the latest statement snapshot."""
    __tablename__ = "table_usage"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    target_id: Mapped[int] = mapped_column(ForeignKey("monitored_targets.id", ondelete="CASCADE"), index=True)
    table_name: Mapped[str] = mapped_column(String(255))
    call_count: Mapped[int] = mapped_column(BigInteger, default=0)
    last_used: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    __table_args__ = (
        Index("ix_table_usage_identity", "target_id", "table_name", unique=True),
    )


class CriticalQueryEvent(Base):
    """Append-only record of a watched statement breaching the critical threshold."""
    __tablename__ = "critical_query_events"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    target_id: Mapped[int] = mapped_column(ForeignKey("monitored_targets.id", ondelete="CASCADE"), index=True)
    query_hash: Mapped[str] = mapped_column(String(64), index=True)
    query_text: Mapped[str] = mapped_column(Text)
    calls: Mapped[int] = mapped_column(BigInteger, default=0)
    total_time_ms: Mapped[float] = mapped_column(Float, default=0.0)
    mean_time_ms: Mapped[float] = mapped_column(Float, default=0.0)
    rows_returned: Mapped[int] = mapped_column(BigInteger, default=0)
    rank: Mapped[int] = mapped_column(Integer)
    detected_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    __table_args__ = (
        Index("ix_critical_event_target_ts", "target_id", "detected_at"),
    )


class SuggestionSet(Base):
    """Current three ranked suggestions for a target (source: ai|fallback)."""
    __tablename__ = "suggestion_sets"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    target_id: Mapped[int] = mapped_column(ForeignKey("monitored_targets.id", ondelete="CASCADE"), unique=True, index=True)
    suggestions: Mapped[list] = mapped_column(JSON)
    source: Mapped[str] = mapped_column(String(16), default="ai")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
