"""Tests for the background upload task."""
import pytest

from site_importer.models.site import Site
from site_importer.models.upload_job import JobStatus
from site_importer.tasks import upload_tasks
from site_importer.tasks.upload_tasks import run_upload_job

from conftest import make_rows


@pytest.fixture(autouse=True)
def task_sessions(session_factory, monkeypatch):
    monkeypatch.setattr(upload_tasks, "SessionLocal", session_factory)


def test_run_upload_job_drains_queued_job(db, make_controller):
    job_id = make_controller(chunk_size=4).start_in_background(make_rows(10), "sites.csv")

    result = run_upload_job(job_id)

    assert result["status"] == "complete"
    assert result["chunks_completed"] == 3
    assert result["records_processed"] == 10
    assert db.query(Site).count() == 10
    assert make_controller().get_status(job_id).status == JobStatus.COMPLETE


def test_run_upload_job_unknown_job():
    result = run_upload_job("missing")

    assert result["status"] == "not_started"
    assert "not found" in result["error"]


def test_run_upload_job_twice(make_controller):
    job_id = make_controller().start_in_background(make_rows(3), "sites.csv")
    run_upload_job(job_id)

    result = run_upload_job(job_id)

    assert result["status"] == "not_started"
