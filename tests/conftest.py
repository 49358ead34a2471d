"""Pytest configuration and fixtures."""
import os

os.environ.setdefault("PUBLISH_PROGRESS", "false")
os.environ.setdefault("WRITE_MAX_ATTEMPTS", "1")

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from site_importer.api.upload import get_controller
from site_importer.database import Base, get_db
from site_importer.exceptions import WriteError
from site_importer.main import app
from site_importer.services.bulk_writer import SiteBulkWriter
from site_importer.services.job_controller import UploadJobController


class SimulatedCrash(BaseException):
    """Stands in for the process dying mid-upload."""


class FlakySiteWriter(SiteBulkWriter):
    """
    SiteBulkWriter that records every chunk and misbehaves on chosen calls.

    Call numbers are 1-based and count every upsert on this writer.
    """

    def __init__(self, db, fail_on=(), crash_before=(), crash_after=(), before_write=None):
        super().__init__(db, max_attempts=1)
        self.fail_on = set(fail_on)
        self.crash_before = set(crash_before)
        self.crash_after = set(crash_after)
        self.before_write = before_write
        self.calls = []

    def upsert(self, records, job_id):
        call = len(self.calls) + 1
        self.calls.append([record.site_id for record in records])
        if self.before_write:
            self.before_write(call)
        if call in self.crash_before:
            raise SimulatedCrash(f"crash before chunk call {call}")
        if call in self.fail_on:
            raise WriteError(f"upstream rejected chunk call {call}", job_id=job_id)
        super().upsert(records, job_id)
        if call in self.crash_after:
            raise SimulatedCrash(f"crash after chunk call {call}")


def make_rows(count, prefix="SITE", start=1):
    """Spreadsheet rows with unique SITE IDs and amounts derived from the index."""
    return [
        {
            "SITE ID": f"{prefix}-{i:06d}",
            "EXP DATE": "31/12/2026",
            "TOTAL RENTAL (RM)": f"RM {i:,}.00",
            "TOTAL PAYMENT TO PAY (RM)": f"RM {i * 12:,}.00",
            "DEPOSIT (RM)": str(i * 2),
            "STATE": "Selangor",
        }
        for i in range(start, start + count)
    ]


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so independent sessions see each other's commits."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def dispatched():
    """Job ids handed to the background dispatcher."""
    return []


@pytest.fixture
def make_controller(db, dispatched):
    """Build a controller on the test session without Redis or Celery."""

    def factory(session=None, **kwargs):
        kwargs.setdefault("dispatcher", dispatched.append)
        kwargs.setdefault("listeners", [])
        kwargs.setdefault("chunk_size", 250)
        return UploadJobController(session or db, **kwargs)

    return factory


@pytest.fixture
def client(session_factory, dispatched):
    """API client bound to the test database."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def override_get_controller(db=Depends(override_get_db)):
        return UploadJobController(db, dispatcher=dispatched.append, listeners=[], chunk_size=3)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_controller] = override_get_controller
    yield TestClient(app)
    app.dependency_overrides.clear()
