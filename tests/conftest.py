"""
Pytest configuration and fixtures for CSV import tests.

Every test gets its own in-memory SQLite database with the import, ledger and
item tables created, so tests never need a running database server.
"""
import csv

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from csv_import.db.models import Import
from csv_import.db.session import Base
from csv_import.domain.imports.controller import ImportController
from tests.utils.record_store import FakeRecordStore
from tests.utils.rows import DEFAULT_MAPS, HEADER


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def write_csv(tmp_path):
    """Write rows (header included) to a CSV file and return its path."""
    def _write(rows, name="items.csv", delimiter=","):
        path = tmp_path / name
        with open(path, "w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle, delimiter=delimiter)
            writer.writerows(rows)
        return str(path)

    return _write


@pytest.fixture
def store():
    return FakeRecordStore()


@pytest.fixture
def make_import(session, write_csv):
    """Persist an unstarted import over the given data rows."""
    def _make(rows, batch_size=0, maps=None, **config):
        path = write_csv([HEADER] + rows)
        import_ = Import(original_filename="items.csv", file_path=path, batch_size=batch_size, **config)
        import_.set_column_maps(maps if maps is not None else DEFAULT_MAPS)
        session.add(import_)
        session.commit()
        return import_

    return _make


@pytest.fixture
def make_controller(session, store):
    def _make(import_, **kwargs):
        return ImportController(session, import_, store, **kwargs)

    return _make
