"""Pytest fixtures: in-memory store, in-process Redis and scripted targets."""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CREDENTIAL_SECRET_KEY"] = "test-credential-key"
os.environ["APP_ENV"] = "test"
os.environ.pop("ANTHROPIC_API_KEY", None)
os.environ.pop("SMTP_HOST", None)

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from dbmonitor.config import reset_settings

reset_settings()

from dbmonitor.infrastructure.db import Base, SessionLocal, override_engine
from dbmonitor.infrastructure.cache import ContextCache
from dbmonitor.infrastructure.redis_client import set_redis_client
from dbmonitor.models.tables import MonitoredTarget
from dbmonitor.security.crypto import encrypt_secret

from fakes import FakeRedis, FakeConnector


@pytest.fixture
def engine():
    e = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(e)
    override_engine(e)
    yield e
    Base.metadata.drop_all(e)
    e.dispose()


@pytest.fixture
def session(engine):
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def fake_redis():
    client = FakeRedis()
    set_redis_client(client)
    yield client
    set_redis_client(None)


@pytest.fixture
def cache(fake_redis):
    return ContextCache(client=fake_redis, ttl_seconds=3600)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def settings_env(monkeypatch):
    """Set environment-backed settings for one test and restore the cache afterwards."""

    def apply(**values):
        for k, v in values.items():
            monkeypatch.setenv(k, str(v))
        reset_settings()

    yield apply
    monkeypatch.undo()
    reset_settings()


@pytest.fixture
def make_target(session):
    def _make(host="db.internal", database_name="app", monitoring_enabled=True, owner=""):
        t = MonitoredTarget(
            owner=owner,
            host=host,
            port=5432,
            database_name=database_name,
            username="monitor",
            password_encrypted=encrypt_secret("s3cret"),
            monitoring_enabled=monitoring_enabled,
        )
        session.add(t)
        session.commit()
        return t

    return _make
