import pytest
import os
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REPORTING_TIMEZONE", "UTC")

import pharmaflow.models  # noqa: F401
from pharmaflow.core.deps import get_db, get_session_factory
from pharmaflow.db.base import Base
from pharmaflow.main import app


def _memory_session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    return engine, session_local


def _file_session_factory(path, *, immediate: bool = False):
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    if immediate:
        # Writers queue on the database lock instead of failing with "database is locked".
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=engine)
    return engine, sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def file_session_local(tmp_path):
    """Separate connections per session, so committed work crosses sessions."""
    engine, factory = _file_session_factory(tmp_path / "ledger.db")
    yield factory
    engine.dispose()


@pytest.fixture()
def threaded_session_local(tmp_path):
    engine, factory = _file_session_factory(tmp_path / "ledger.db", immediate=True)
    yield factory
    engine.dispose()


@pytest.fixture()
def test_context():
    engine, session_local = _memory_session_factory()

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_local

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def session_local():
    engine, factory = _memory_session_factory()
    yield factory
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db(session_local):
    session = session_local()
    try:
        yield session
    finally:
        session.close()
