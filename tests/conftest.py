"""
conftest.py — Shared Test Fixtures for chain-core

Provides an in-memory SQLite database, a BranchDispatcher wired to
httpx.MockTransport, and a FastAPI TestClient with the app.state
collaborators overridden.

Business Rules:
- All tests run against isolated in-memory DB (no prod data risk)
- No test ever opens a real socket: branch calls go through MockTransport
- Redis is never contacted; caches are disabled or mocked

Called by: all test files via pytest autodiscovery
Depends on: chaincore.models (Base), chaincore.database (get_db), chaincore.dependencies
"""

import os

os.environ["TESTING"] = "1"  # Must be set before importing chaincore modules
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CACHE_BACKEND", "none")

from datetime import datetime, timezone

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from chaincore.cache.state_cache import StateCache
from chaincore.config import Settings
from chaincore.models import Base, Branch, BranchServer
from chaincore.scheduler import SyncScheduler
from chaincore.services.branch_dispatcher import BranchDispatcher

# ── In-memory SQLite engine ──────────────────────────────────────────

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default; turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def session_factory():
    return TestSessionLocal


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        cache_backend="none",
        scheduler_startup_jitter_seconds=0.05,
        branch_request_timeout_ms=2000,
        branch_sync_timeout_ms=2000,
        branch_probe_timeout_ms=1000,
    )


@pytest.fixture()
def test_branch(db_session: Session) -> Branch:
    branch = Branch(id="b1", name="Chilonzor", code="CHL01", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture()
def online_server(db_session: Session, test_branch: Branch) -> BranchServer:
    """An online LAN branch server with inbound and outbound keys."""
    server = BranchServer(
        branch_id=test_branch.id,
        server_name="chilonzor-pos",
        ip_address="10.0.0.5",
        api_port=3000,
        network_type="lan",
        status="online",
        last_ping=datetime.now(timezone.utc),
        api_key="inbound-key-b1",
        outbound_api_key="outbound-key-b1",
    )
    db_session.add(server)
    db_session.commit()
    db_session.refresh(server)
    return server


def make_branch(db: Session, branch_id: str, code: str, status: str = "online", **server_kw) -> BranchServer:
    """Insert a branch plus one server; returns the server."""
    db.add(Branch(id=branch_id, name=f"Branch {code}", code=code))
    server = BranchServer(
        branch_id=branch_id,
        server_name=f"{branch_id}-pos",
        ip_address=server_kw.pop("ip_address", "10.0.1.1"),
        status=status,
        **server_kw,
    )
    db.add(server)
    db.commit()
    db.refresh(server)
    return server


def json_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"ok": True, "path": request.url.path})


@pytest.fixture()
def make_dispatcher(test_settings: Settings):
    """Factory: BranchDispatcher whose HTTP calls are answered by `handler`."""

    def _make(handler=json_ok) -> BranchDispatcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return BranchDispatcher(client=client, session_factory=TestSessionLocal, settings=test_settings)

    return _make


@pytest.fixture()
def disabled_cache() -> StateCache:
    return StateCache(client=None)


@pytest.fixture()
def client(db_session: Session, make_dispatcher, disabled_cache: StateCache, test_settings: Settings):
    """FastAPI TestClient with DB, scheduler, dispatcher and cache overridden."""
    from chaincore.database import get_db
    from chaincore.dependencies import get_app_settings, get_cache, get_dispatcher, get_scheduler
    from chaincore.main import app

    dispatcher = make_dispatcher()
    scheduler = SyncScheduler(
        session_factory=TestSessionLocal,
        cache=disabled_cache,
        dispatcher=dispatcher,
        settings=test_settings,
    )

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_cache] = lambda: disabled_cache
    app.dependency_overrides[get_app_settings] = lambda: test_settings

    with TestClient(app) as c:
        c.scheduler = scheduler
        yield c
        c.portal.call(_close_scheduler, scheduler)

    app.dependency_overrides.clear()


async def _close_scheduler(scheduler: SyncScheduler) -> None:
    # APScheduler's asyncio timer must be cancelled on the loop that owns it
    scheduler.close()
