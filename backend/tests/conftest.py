"""
Shared pytest fixtures.

Each test gets its own SQLite file (foreign keys on) so that separate
sessions, as used by the trace step writer, see each other's commits.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("ENV", "dev")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from vaultflow.core.db import Base, enable_sqlite_foreign_keys
# Register every table on Base.metadata
from vaultflow.models import artifact, concept, document, flashcard, run, run_step, saved_topic  # noqa: F401

from tests.fixtures.fakes import FakeLLM, FakeSearch, RecordingSink


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'vault.db'}",
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(eng)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def search():
    return FakeSearch()
