from __future__ import annotations

import datetime as dt
import os
import sqlite3
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

_TEST_DIR = tempfile.mkdtemp(prefix="projecttrack-tests-")
os.environ.setdefault("TT_SQLITE_PATH", str(Path(_TEST_DIR) / "app.db"))
os.environ["TT_SWEEP_ENABLED"] = "false"
os.environ["TT_TIMEZONE"] = "UTC"
os.environ["TT_MANUAL_ANCHOR"] = "09:00"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from projecttrack import models
from projecttrack.clock import FixedClock
from projecttrack.database import get_db
from projecttrack.deps import get_clock, get_sweeper
from projecttrack.main import app
from projecttrack.sweeper import IdleSweeper, SweepConfig

UTC = dt.timezone.utc

EMPLOYEE = {"X-User-Id": "emp-1"}
REVIEWER = {"X-User-Id": "lead-1", "X-User-Role": "admin"}


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)
    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def connection(engine):
    connection = engine.connect()
    transaction = connection.begin()
    try:
        yield connection
    finally:
        transaction.rollback()
        connection.close()


@pytest.fixture(scope="function")
def session_factory(connection):
    return sessionmaker(bind=connection, autoflush=False, autocommit=False, future=True)


@pytest.fixture(scope="function")
def session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def isolated_factory(tmp_path: Path):
    """A throwaway database whose sessions really commit and roll back."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'isolated.db'}",
        connect_args={"check_same_thread": False, "timeout": 0.2},
        future=True,
    )
    models.Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    engine.dispose()


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(dt.datetime(2024, 3, 4, 9, 0, tzinfo=UTC))


@pytest.fixture()
def sweeper(session_factory, clock: FixedClock) -> IdleSweeper:
    return IdleSweeper(session_factory, SweepConfig(), clock)


@pytest.fixture()
def project(session: Session) -> models.Project:
    record = models.Project(name="Onboarding Course", company="Acme", category="eLearning")
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


@pytest.fixture(scope="function")
def client(session: Session, clock: FixedClock, sweeper: IdleSweeper) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_sweeper] = lambda: sweeper
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def locked_store(isolated_factory):
    """Hold an exclusive lock on the isolated database while the block runs."""

    @contextmanager
    def hold():
        holder = sqlite3.connect(isolated_factory.kw["bind"].url.database, isolation_level=None)
        holder.execute("BEGIN EXCLUSIVE")
        try:
            yield
        finally:
            holder.execute("ROLLBACK")
            holder.close()

    return hold
