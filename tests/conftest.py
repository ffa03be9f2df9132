# tests/conftest.py
from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator, Iterator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from gallery_trust.core.security import create_access_token  # noqa: E402
from gallery_trust.db.session import Base  # noqa: E402
from gallery_trust.db.session import get_db as app_get_session  # noqa: E402
from gallery_trust.main import app as fastapi_app  # noqa: E402
from gallery_trust.models import User  # noqa: E402
from gallery_trust.models.user import ROLE_ADMIN, USER_STATUS_ACTIVE  # noqa: E402
from gallery_trust.services.activity import ActivityRecorder  # noqa: E402
from gallery_trust.services.rate_limit import (  # noqa: E402
    InMemoryRateCounterStore,
    RateLimiter,
    get_rate_limiter,
)

TEST_DB_URL = "sqlite://"


class FrozenClock:
    """Controllable UTC clock for time-windowed services."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 14, 15, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def epoch(self) -> float:
        return self.current.timestamp()


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    # Service commits become savepoint releases; the outer transaction is rolled back.
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits escaped.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def rate_limiter() -> RateLimiter:
    """A fresh limiter per test so counters never leak between tests."""
    return RateLimiter(InMemoryRateCounterStore())


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI, db_session: Session, rate_limiter: RateLimiter
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_rate_limiter, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def recorder(db_session: Session, clock: FrozenClock) -> ActivityRecorder:
    return ActivityRecorder(db_session, clock)


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    """Return a factory persisting users with the given attributes."""

    def _make_user(
        *,
        status: str = USER_STATUS_ACTIVE,
        role: str = "user",
        created_at: datetime | None = None,
        username: str | None = None,
    ) -> User:
        user_id = str(uuid.uuid4())
        user = User(
            id=user_id,
            email=f"{user_id[:8]}@example.com",
            username=username or f"artist-{user_id[:8]}",
            role=role,
            status=status,
            created_at=created_at or datetime(2025, 1, 1, tzinfo=UTC),
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def test_user(make_user: Callable[..., User]) -> User:
    """Create and return a persisted active user."""
    return make_user(username="Test User")


@pytest.fixture()
def other_user(make_user: Callable[..., User]) -> User:
    """Create and return a second persisted active user."""
    return make_user(username="Other User")


@pytest.fixture()
def admin_user(make_user: Callable[..., User]) -> User:
    """Create and return a persisted administrator."""
    return make_user(role=ROLE_ADMIN, username="Admin")


@pytest.fixture()
def auth_token(test_user: User) -> dict[str, str]:
    """Return authorization headers for the primary test user."""
    return {"Authorization": f"Bearer {create_access_token(test_user.id)}"}


@pytest.fixture()
def admin_token(admin_user: User) -> dict[str, str]:
    """Return authorization headers for the administrator."""
    return {"Authorization": f"Bearer {create_access_token(admin_user.id)}"}
