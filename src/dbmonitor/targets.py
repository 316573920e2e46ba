"""Target registration and the pg_stat_statements capability probe."""
from __future__ import annotations
import logging
from datetime import datetime
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session
from dbmonitor.errors import QueryError, TargetConnectionError
from dbmonitor.infrastructure.target_connection import open_target, fetch_all
from dbmonitor.models.tables import MonitoredTarget
from dbmonitor import repository
from dbmonitor.security.crypto import encrypt_secret
from dbmonitor.statements import PROBE_STAT_STATEMENTS

logger = logging.getLogger(__name__)


class InvalidTargetError(ValueError):
    pass


class DuplicateTargetError(InvalidTargetError):
    pass


def probe_capability(target: MonitoredTarget, *, connect=open_target) -> bool:
    """True when the target is reachable and has pg_stat_statements installed."""
    try:
        with connect(target) as conn:
            return len(fetch_all(conn, PROBE_STAT_STATEMENTS)) > 0
    except (TargetConnectionError, QueryError) as e:
        logger.warning("capability probe failed for %s:%s/%s: %s", target.host, target.port, target.database_name, e)
        return False


def register_target(
    session: Session,
    *,
    host: str,
    port: int,
    database_name: str,
    username: str,
    password: str,
    owner: str | None = None,
    db_type: str = "postgresql",
    connect=open_target,
) -> MonitoredTarget:
    if not all([host, database_name, username, password]):
        raise InvalidTargetError("host, database_name, username and password are required")
    if db_type != "postgresql":
        raise InvalidTargetError(f"unsupported db_type {db_type!r}")
    owner = owner or ""
    port = int(port or 5432)
    if repository.find_target(session, owner=owner, host=host, port=port, database_name=database_name) is not None:
        raise DuplicateTargetError(f"{host}:{port}/{database_name} is already registered")
    now = datetime.utcnow()
    target = MonitoredTarget(
        owner=owner,
        host=host,
        port=port,
        database_name=database_name,
        username=username,
        password_encrypted=encrypt_secret(password),
        db_type=db_type,
        created_at=now,
        updated_at=now,
    )
    target.monitoring_enabled = probe_capability(target, connect=connect)
    session.add(target)
    repository.commit_or_raise(session, f"register target {host}/{database_name}")
    logger.info("registered target %s (%s/%s), monitoring_enabled=%s", target.id, host, database_name, target.monitoring_enabled)
    return target


def register_target_from_url(session: Session, url: str, *, owner: str | None = None, connect=open_target) -> MonitoredTarget:
    try:
        parsed = make_url(url)
    except ArgumentError as e:
        raise InvalidTargetError(f"invalid database URL: {e}") from e
    if not parsed.drivername.startswith(("postgresql", "postgres")):
        raise InvalidTargetError(f"unsupported scheme {parsed.drivername!r}")
    if not (parsed.host and parsed.database and parsed.username and parsed.password):
        raise InvalidTargetError("database URL must include user, password, host and database")
    return register_target(
        session,
        host=parsed.host,
        port=parsed.port or 5432,
        database_name=parsed.database,
        username=parsed.username,
        password=parsed.password,
        owner=owner,
        connect=connect,
    )


def reprobe_target(session: Session, target_id: int, *, connect=open_target) -> MonitoredTarget | None:
    target = repository.get_target(session, target_id)
    if target is None:
        return None
    target.monitoring_enabled = probe_capability(target, connect=connect)
    target.updated_at = datetime.utcnow()
    repository.commit_or_raise(session, f"reprobe target {target_id}")
    return target
