"""Short-lived connections to monitored targets.

One connection per operation: opened from the stored (encrypted) credential,
set read-only with a server-side statement timeout, and closed on every exit
path. Nothing here is pooled.
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Any, Iterator
import psycopg2
from psycopg2.extras import RealDictCursor
from dbmonitor.config import get_settings
from dbmonitor.errors import TargetConnectionError, QueryError
from dbmonitor.security.crypto import decrypt_secret, EncryptionError

logger = logging.getLogger(__name__)


@contextmanager
def open_target(target) -> Iterator[Any]:
    settings = get_settings()
    try:
        password = decrypt_secret(target.password_encrypted)
    except EncryptionError as e:
        raise TargetConnectionError(target.id, f"credential decryption failed: {e}") from e
    try:
        conn = psycopg2.connect(
            host=target.host,
            port=target.port,
            dbname=target.database_name,
            user=target.username,
            password=password,
            sslmode=settings.target_sslmode,
            connect_timeout=settings.target_connect_timeout_seconds,
            options=f"-c statement_timeout={settings.target_statement_timeout_ms}",
            application_name="dbmonitor",
        )
    except psycopg2.Error as e:
        raise TargetConnectionError(target.id, str(e).strip() or e.__class__.__name__) from e
    try:
        # autocommit keeps one failed statement from aborting the rest of the session
        conn.set_session(readonly=True, autocommit=True)
        yield conn
    finally:
        try:
            conn.close()
        except psycopg2.Error:  # pragma: no cover
            logger.debug("close failed for target %s", target.id)


def fetch_all(conn, statement, params: dict | None = None) -> list[dict]:
    """Run one read-only statement and return rows as dicts."""
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(statement, params or {})
            return [dict(r) for r in cur.fetchall()]
    except psycopg2.Error as e:
        raise QueryError(str(e).strip() or e.__class__.__name__) from e
