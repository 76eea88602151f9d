# tests/conftest.py
from __future__ import annotations

import os
import time
from collections.abc import Callable, Generator, Iterator
from datetime import datetime

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from countboard.core.calendar import PeriodCalendar
from countboard.core.security import create_access_token, create_share_token
from countboard.db.session import Base
from countboard.db.session import get_db as app_get_session
from countboard.main import app as fastapi_app
from countboard.models import Counter, CounterHistory
from countboard.services.permissions import CallerContext

TEST_DB_URL = "sqlite://"

OWNER_ID = 101
OTHER_USER_ID = 202


@pytest.fixture(scope="session")
def db_engine() -> Generator[Engine, None, None]:
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
def db_session(db_engine: Engine) -> Iterator[Session]:
    connection = db_engine.connect()
    transaction = connection.begin()
    # Service commits and rollbacks only touch a savepoint inside the outer
    # transaction, which is discarded after each test.
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

        with db_engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def nyc() -> PeriodCalendar:
    """Calendar pinned to the default reference timezone."""
    return PeriodCalendar.for_timezone("America/New_York")


@pytest.fixture()
def host_timezone(monkeypatch: pytest.MonkeyPatch) -> Iterator[Callable[[str], None]]:
    """Switch the process-local timezone for the duration of a test."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")

    def _set(name: str) -> None:
        monkeypatch.setenv("TZ", name)
        time.tzset()

    yield _set
    monkeypatch.undo()
    time.tzset()


@pytest.fixture()
def owner_caller() -> CallerContext:
    return CallerContext(session_user_id=OWNER_ID)


@pytest.fixture()
def stranger_caller() -> CallerContext:
    return CallerContext(session_user_id=OTHER_USER_ID)


@pytest.fixture()
def owner_headers() -> dict[str, str]:
    """Return authorization headers for the counter owner."""
    return {"Authorization": f"Bearer {create_access_token(OWNER_ID)}"}


@pytest.fixture()
def other_headers() -> dict[str, str]:
    """Return authorization headers for an unrelated user."""
    return {"Authorization": f"Bearer {create_access_token(OTHER_USER_ID)}"}


@pytest.fixture()
def share_token_factory() -> Callable[..., str]:
    def _make(
        permissions: list[str],
        resource_id: int | None = None,
        owner_user_id: int = OWNER_ID,
        expires_minutes: int | None = None,
    ) -> str:
        return create_share_token(
            owner_user_id,
            [
                {
                    "resourceType": "counters",
                    "resourceId": resource_id,
                    "permissions": permissions,
                }
            ],
            expires_minutes=expires_minutes,
        )

    return _make


@pytest.fixture()
def counter(db_session: Session) -> Iterator[Counter]:
    """Create a counter owned by ``OWNER_ID``."""
    counter = Counter(user_id=OWNER_ID, name="Push-ups", value=0.0)
    db_session.add(counter)
    db_session.flush()
    db_session.refresh(counter)
    yield counter


@pytest.fixture()
def add_history(db_session: Session) -> Callable[[Counter, float, str], CounterHistory]:
    """Insert a history row at an ISO-8601 instant and move the counter to it."""

    def _add(counter: Counter, value: float, when: str) -> CounterHistory:
        entry = CounterHistory(
            counter_id=counter.id,
            user_id=counter.user_id,
            value=value,
            timestamp=datetime.fromisoformat(when),
        )
        counter.value = value
        db_session.add(entry)
        db_session.flush()
        return entry

    return _add
