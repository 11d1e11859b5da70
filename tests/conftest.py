from __future__ import annotations

import os
import pathlib
import sys
import tempfile
import uuid
from typing import Iterator, Sequence

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

ROOT_DIR = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

# Settings are read at import time; point them at a throwaway database first.
_DEFAULT_DB = pathlib.Path(tempfile.mkdtemp(prefix="search-hub-")) / "default.db"
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_DEFAULT_DB}")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

from search_hub.models import Tenant, TenantMembership, User  # noqa: E402
from search_hub.models.base import Base  # noqa: E402
from search_hub.models.memberships import MembershipRole  # noqa: E402
from search_hub.schemas.jobs import INDEX_DOCUMENT, SEND_REMINDER  # noqa: E402
from search_hub.services.context import RequestContext  # noqa: E402
from search_hub.services.queue import JobQueue, QueueUnavailableError  # noqa: E402


def _sqlite_engine(path: pathlib.Path):
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})

    # pysqlite's own transaction handling breaks SAVEPOINT; take over BEGIN.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


class FakeEmbedder:
    """Deterministic vectors; records every batch it was asked to embed."""

    def __init__(self, dimensions: int = 3) -> None:
        self.dimensions = dimensions
        self.calls: list[list[str]] = []

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [[float(len(text))] + [float(i) for i in range(1, self.dimensions)] for text in texts]


class FailingQueue(JobQueue):
    """A queue whose backend is down."""

    def __init__(self, queue_name: str = INDEX_DOCUMENT) -> None:
        super().__init__(session_factory=None, queue_name=queue_name)
        self.attempts = 0

    def add(self, name, payload, options=None):
        self.attempts += 1
        raise QueueUnavailableError("Queue offline", operation="add", queue_name=self.queue_name)


@pytest.fixture()
def engine(tmp_path):
    engine = _sqlite_engine(tmp_path / "app.db")
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db(session_factory) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def queue_session_factory(tmp_path) -> Iterator[sessionmaker]:
    engine = _sqlite_engine(tmp_path / "queue.db")
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture()
def index_queue(queue_session_factory) -> JobQueue:
    return JobQueue(queue_session_factory, INDEX_DOCUMENT)


@pytest.fixture()
def reminder_queue(queue_session_factory) -> JobQueue:
    return JobQueue(queue_session_factory, SEND_REMINDER)


@pytest.fixture()
def failing_queue() -> FailingQueue:
    return FailingQueue()


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


def add_member(db: Session, tenant: Tenant, role: MembershipRole = MembershipRole.MEMBER) -> User:
    # Ends any read transaction so the insert does not run from a stale WAL snapshot.
    db.commit()
    user = User(email=f"user+{uuid.uuid4().hex[:8]}@example.com", name="Test User")
    db.add(user)
    db.flush()
    db.add(TenantMembership(tenant_id=tenant.id, user_id=user.id, role=role))
    db.commit()
    return user


@pytest.fixture()
def tenant(db: Session) -> Tenant:
    tenant = Tenant(name=f"Tenant {uuid.uuid4().hex[:8]}")
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture()
def owner(db: Session, tenant: Tenant) -> User:
    return add_member(db, tenant, MembershipRole.OWNER)


@pytest.fixture()
def make_member(db: Session, tenant: Tenant):
    def _make(role: MembershipRole = MembershipRole.MEMBER, target: Tenant | None = None) -> User:
        return add_member(db, target or tenant, role)

    return _make


@pytest.fixture()
def context(owner: User, tenant: Tenant) -> RequestContext:
    return RequestContext(user_id=owner.id, tenant_id=tenant.id)


@pytest.fixture()
def client(session_factory, index_queue, reminder_queue) -> Iterator[TestClient]:
    """TestClient wired to the per-test databases."""
    from search_hub.dependencies.context import get_index_queue, get_reminder_queue
    from search_hub.dependencies.db import get_db
    from search_hub.main import app

    def _get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_index_queue] = lambda: index_queue
    app.dependency_overrides[get_reminder_queue] = lambda: reminder_queue
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers(context: RequestContext) -> dict[str, str]:
    return {"X-User-Id": str(context.user_id), "X-Tenant-Id": str(context.tenant_id)}
