"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of questline.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine, event  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from questline.config import QuestlineConfig  # noqa: E402
from questline.database.models import Base  # noqa: E402
from questline.engine.cache import TrackingGate  # noqa: E402
from questline.services.collaborators import RewardCollaborators  # noqa: E402

GUILD_ID = 100

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Questline tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` behind ``run_db``).

    pysqlite's own transaction handling breaks SAVEPOINT, which the
    progress and milestone inserts rely on, so BEGIN is emitted by hand.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def make_quest(db_engine: Engine):
    """Factory inserting a quest and returning it detached.

    Defaults to a one-shot ``message_sent`` quest with target 3 and a
    50 coin / 20 XP reward.
    """
    from questline.database.models import Quest

    def _make(**overrides) -> Quest:
        fields = {
            "guild_id": GUILD_ID,
            "name": "Chatterbox",
            "quest_type": "message_sent",
            "requirements": {"target": 3},
            "rewards": {"coins": 50, "xp": 20},
            "reset_type": "never",
        }
        fields.update(overrides)
        with Session(db_engine, expire_on_commit=False) as session:
            quest = Quest(**fields)
            session.add(quest)
            session.commit()
            session.refresh(quest)
            session.expunge(quest)
        return quest

    return _make


@pytest.fixture
def gate(db_engine: Engine) -> TrackingGate:
    return TrackingGate(db_engine, ttl_seconds=300)


@pytest.fixture
def collaborators() -> RewardCollaborators:
    """Every collaborator present, all AsyncMocks; no DMs unless a test adds one."""
    return RewardCollaborators(
        currency=AsyncMock(),
        experience=AsyncMock(),
        roles=AsyncMock(),
        items=AsyncMock(),
        notifier=AsyncMock(),
        reward_timeout_seconds=1.0,
    )


@pytest.fixture
def cfg() -> QuestlineConfig:
    return QuestlineConfig(
        community_name="Test Guild",
        bot_prefix="!",
        guild_id=GUILD_ID,
        admin_role_id=200,
    )


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_admin_token()


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin") -> str:
    """Create an admin JWT.  Usable as both a fixture and a factory function."""
    import jwt

    from questline.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": True},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def client(db_engine, gate, cfg):
    """FastAPI TestClient wired to the SQLite engine and test config."""
    from fastapi.testclient import TestClient

    from questline.api.deps import get_config, get_engine, get_gate
    from questline.api.main import app

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: cfg
    app.dependency_overrides[get_gate] = lambda: gate
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
