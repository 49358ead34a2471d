"""End-to-end tests for starting, resuming and cancelling uploads."""
import pytest

from site_importer.exceptions import (
    JobAlreadyActive,
    JobNotFound,
    JobNotResumable,
    LedgerWriteError,
    MissingScratchData,
    PlanMismatch,
    WriteError,
)
from site_importer.models.site import Site
from site_importer.models.upload_job import JobStatus
from site_importer.services import progress
from site_importer.services.scratch_store import DatabaseScratchStore

from conftest import FlakySiteWriter, SimulatedCrash, make_rows


def _site_count(db, cancelled=None):
    query = db.query(Site)
    if cancelled is not None:
        query = query.filter(Site.cancelled.is_(cancelled))
    return query.count()


def test_start_uploads_every_chunk(db, make_controller):
    writer = FlakySiteWriter(db)
    events = []

    outcome = make_controller(writer=writer).start(
        make_rows(530), "sites.csv", on_progress=lambda event, snapshot: events.append((event, snapshot.chunks_completed))
    )

    assert outcome.succeeded
    assert (outcome.chunks_completed, outcome.total_chunks) == (3, 3)
    assert outcome.records_processed == 530
    assert [len(call) for call in writer.calls] == [250, 250, 30]
    assert events == [
        (progress.STARTED, 0),
        (progress.PROGRESS, 1),
        (progress.PROGRESS, 2),
        (progress.PROGRESS, 3),
        (progress.COMPLETE, 3),
    ]
    assert _site_count(db) == 530

    job = make_controller().get_status(outcome.job_id)
    assert job.status == JobStatus.COMPLETE
    assert job.completed_at is not None
    assert DatabaseScratchStore(db).get(job.id) is None


def test_duplicate_site_ids_keep_later_row(db, make_controller):
    rows = [
        {"SITE ID": "SITE-1", "TOTAL RENTAL (RM)": "RM 100"},
        {"SITE ID": "SITE-2", "TOTAL RENTAL (RM)": "RM 200"},
        {"SITE ID": "SITE-1", "TOTAL RENTAL (RM)": "RM 150"},
    ]

    outcome = make_controller(chunk_size=2).start(rows, "sites.csv")

    assert outcome.record_count == 2
    assert outcome.total_chunks == 1
    site = db.query(Site).filter(Site.site_id == "SITE-1").one()
    assert site.total_rental == 150.0


def test_failed_chunk_then_resume(db, make_controller):
    writer = FlakySiteWriter(db, fail_on={2})
    controller = make_controller(writer=writer)

    with pytest.raises(WriteError) as exc_info:
        controller.start(make_rows(530), "sites.csv")

    job_id = exc_info.value.job_id
    assert exc_info.value.chunk_index == 1
    job = controller.get_status(job_id)
    assert job.status == JobStatus.ERROR
    assert (job.chunks_completed, job.records_processed) == (1, 250)
    assert "upstream rejected" in job.error_message
    assert _site_count(db) == 250

    outcome = controller.resume(job_id)

    assert outcome.succeeded
    assert outcome.resumed
    assert (outcome.chunks_completed, outcome.records_processed) == (3, 530)
    resumed_calls = writer.calls[2:]
    assert [len(call) for call in resumed_calls] == [250, 30]
    assert resumed_calls[0][0] == "SITE-000251"
    assert _site_count(db) == 530
    assert controller.get_status(job_id).error_message is None


def test_resume_after_crash_between_chunks(db, make_controller):
    writer = FlakySiteWriter(db, crash_before={3})
    with pytest.raises(SimulatedCrash):
        make_controller(writer=writer, chunk_size=4).start(make_rows(10), "sites.csv")

    job = make_controller().list_incomplete()[0]
    assert job.status == JobStatus.UPLOADING
    assert (job.chunks_completed, job.records_processed) == (2, 8)

    resumed_writer = FlakySiteWriter(db)
    outcome = make_controller(writer=resumed_writer, stale_job_seconds=0).resume(job.id)

    assert outcome.succeeded
    assert resumed_writer.calls == [["SITE-000009", "SITE-000010"]]
    assert _site_count(db) == 10


def test_resume_replays_chunk_whose_progress_was_lost(db, make_controller):
    writer = FlakySiteWriter(db, crash_after={2})
    with pytest.raises(SimulatedCrash):
        make_controller(writer=writer, chunk_size=4).start(make_rows(10), "sites.csv")

    job = make_controller().list_incomplete()[0]
    assert job.chunks_completed == 1
    before = {site.site_id: site.total_rental for site in db.query(Site).all()}
    assert len(before) == 8

    resumed_writer = FlakySiteWriter(db)
    outcome = make_controller(writer=resumed_writer, stale_job_seconds=0).resume(job.id)

    assert outcome.succeeded
    assert [call[0] for call in resumed_writer.calls] == ["SITE-000005", "SITE-000009"]
    db.expire_all()
    after = {site.site_id: site.total_rental for site in db.query(Site).all()}
    assert len(after) == 10
    assert all(after[site_id] == value for site_id, value in before.items())


def test_resume_refuses_job_with_live_executor(db, make_controller):
    writer = FlakySiteWriter(db, crash_before={2})
    with pytest.raises(SimulatedCrash):
        make_controller(writer=writer, chunk_size=4).start(make_rows(10), "sites.csv")
    job = make_controller().list_incomplete()[0]

    with pytest.raises(JobAlreadyActive):
        make_controller(stale_job_seconds=300).resume(job.id)


def test_cancel_mid_flight(db, session_factory, make_controller):
    other_session = session_factory()
    job_ids = []

    def cancel_during_second_chunk(call):
        if call == 2:
            result = make_controller(session=other_session).cancel(job_ids[0])
            assert result.cancelled

    def capture_job_id(event, snapshot):
        if event == progress.STARTED:
            job_ids.append(snapshot.job_id)

    writer = FlakySiteWriter(db, before_write=cancel_during_second_chunk)
    try:
        outcome = make_controller(writer=writer, chunk_size=3).start(
            make_rows(10), "sites.csv", on_progress=capture_job_id
        )
    finally:
        other_session.close()

    assert outcome.status == JobStatus.CANCELLED
    assert len(writer.calls) == 2
    job = make_controller().get_status(outcome.job_id)
    assert job.status == JobStatus.CANCELLED
    assert job.cancel_requested
    assert (job.chunks_completed, job.records_processed) == (2, 6)
    assert _site_count(db) == 6
    assert _site_count(db, cancelled=True) == 6
    assert DatabaseScratchStore(db).get(job.id) is None

    with pytest.raises(JobNotResumable):
        make_controller().resume(job.id)


def test_cancel_inactive_job_is_a_conflict(db, make_controller):
    controller = make_controller()
    outcome = controller.start(make_rows(3), "sites.csv")

    result = controller.cancel(outcome.job_id)

    assert result.cancelled is False
    assert result.status == JobStatus.COMPLETE
    assert controller.get_status(outcome.job_id).status == JobStatus.COMPLETE
    assert _site_count(db, cancelled=True) == 0


def test_cancel_unknown_job(make_controller):
    with pytest.raises(JobNotFound):
        make_controller().cancel("missing")


def test_background_start_then_worker_run(db, make_controller, dispatched):
    controller = make_controller(chunk_size=4)

    job_id = controller.start_in_background(make_rows(10), "sites.csv")

    assert dispatched == [job_id]
    job = controller.get_status(job_id)
    assert job.status == JobStatus.QUEUED
    assert job.total_chunks == 3
    assert _site_count(db) == 0

    outcome = controller.run_job(job_id)

    assert outcome.succeeded
    assert _site_count(db) == 10


def test_background_dispatch_failure_marks_error(make_controller):
    def broken_dispatcher(job_id):
        raise ConnectionError("broker unavailable")

    controller = make_controller(dispatcher=broken_dispatcher)
    with pytest.raises(ConnectionError):
        controller.start_in_background(make_rows(3), "sites.csv")

    job = controller.ledger.list_by_status([JobStatus.ERROR])[0]
    assert "broker unavailable" in job.error_message


def test_background_failure_is_recorded_not_raised(db, make_controller):
    controller = make_controller(writer=FlakySiteWriter(db, fail_on={1}))
    job_id = controller.start_in_background(make_rows(3), "sites.csv")

    outcome = controller.run_job(job_id)

    assert outcome.status == JobStatus.ERROR
    assert controller.get_status(job_id).status == JobStatus.ERROR


def test_run_job_without_plan(db, make_controller):
    controller = make_controller()
    job_id = controller.start_in_background(make_rows(3), "sites.csv")
    DatabaseScratchStore(db).delete(job_id)

    with pytest.raises(MissingScratchData):
        controller.run_job(job_id)
    assert controller.get_status(job_id).status == JobStatus.QUEUED


def test_resume_rebuilds_missing_plan_from_rows(db, make_controller):
    rows = make_rows(10)
    controller = make_controller(writer=FlakySiteWriter(db, fail_on={2}), chunk_size=4)
    with pytest.raises(WriteError) as exc_info:
        controller.start(rows, "sites.csv")
    job_id = exc_info.value.job_id
    DatabaseScratchStore(db).delete(job_id)

    with pytest.raises(MissingScratchData):
        controller.resume(job_id)
    assert controller.get_status(job_id).status == JobStatus.ERROR

    with pytest.raises(PlanMismatch):
        controller.resume(job_id, make_rows(11))

    outcome = controller.resume(job_id, rows)
    assert outcome.succeeded
    assert outcome.records_processed == 10


def test_resume_checks_rows_against_stored_plan(db, make_controller):
    controller = make_controller(writer=FlakySiteWriter(db, fail_on={1}))
    with pytest.raises(WriteError) as exc_info:
        controller.start(make_rows(5), "sites.csv")

    with pytest.raises(PlanMismatch):
        controller.resume(exc_info.value.job_id, make_rows(5, start=2))


def test_resume_finished_or_unknown_job(make_controller):
    controller = make_controller()
    outcome = controller.start(make_rows(3), "sites.csv")

    with pytest.raises(JobNotResumable):
        controller.resume(outcome.job_id)
    with pytest.raises(JobNotFound):
        controller.resume("missing")


def test_lost_progress_write_does_not_stop_upload(db, make_controller, monkeypatch):
    controller = make_controller(chunk_size=2)
    real_advance = controller.ledger.advance
    failures = []

    def flaky_advance(job_id, chunks_completed, records_processed):
        if not failures:
            failures.append(chunks_completed)
            raise LedgerWriteError("database is locked")
        real_advance(job_id, chunks_completed, records_processed)

    monkeypatch.setattr(controller.ledger, "advance", flaky_advance)
    outcome = controller.start(make_rows(5), "sites.csv")

    assert failures == [1]
    assert outcome.succeeded
    assert controller.get_status(outcome.job_id).chunks_completed == 3


def test_unreadable_cancel_flag_does_not_stop_background_run(make_controller, monkeypatch):
    controller = make_controller(chunk_size=2)
    job_id = controller.start_in_background(make_rows(5), "sites.csv")
    real_read = controller.ledger.is_cancel_requested
    reads = []

    def flaky_read(job_id):
        reads.append(job_id)
        if len(reads) == 2:
            raise LedgerWriteError("server closed the connection unexpectedly")
        return real_read(job_id)

    monkeypatch.setattr(controller.ledger, "is_cancel_requested", flaky_read)
    outcome = controller.run_job(job_id)

    assert outcome.succeeded
    assert outcome.records_processed == 5
    assert controller.get_status(job_id).status == JobStatus.COMPLETE


def test_lost_completion_write_keeps_plan_for_resume(db, make_controller, monkeypatch):
    controller = make_controller(chunk_size=2)
    job_id = controller.start_in_background(make_rows(5), "sites.csv")

    def broken_complete(job_id, chunks_completed, records_processed):
        raise LedgerWriteError("database is locked")

    with monkeypatch.context() as patch:
        patch.setattr(controller.ledger, "mark_complete", broken_complete)
        outcome = controller.run_job(job_id)

    assert outcome.succeeded
    assert (outcome.chunks_completed, outcome.records_processed) == (3, 5)
    job = controller.get_status(job_id)
    assert job.status == JobStatus.PROCESSING
    assert job.chunks_completed == 3
    assert DatabaseScratchStore(db).get(job_id) is not None

    resumed = make_controller(stale_job_seconds=0).resume(job_id)

    assert resumed.succeeded
    assert controller.get_status(job_id).status == JobStatus.COMPLETE
    assert _site_count(db) == 5


def test_failing_listener_does_not_stop_upload(make_controller):
    def broken_listener(event, snapshot):
        raise RuntimeError("listener down")

    outcome = make_controller(listeners=[broken_listener]).start(make_rows(3), "sites.csv")

    assert outcome.succeeded


def test_list_incomplete(db, make_controller):
    crashed = []
    for name in ["a.csv", "b.csv"]:
        writer = FlakySiteWriter(db, crash_before={1})
        with pytest.raises(SimulatedCrash):
            make_controller(writer=writer).start(make_rows(3), name)
        crashed.append(make_controller().list_incomplete(source_name=name)[0].id)
    make_controller().start(make_rows(3), "a.csv")
    make_controller().start_in_background(make_rows(3), "a.csv")

    jobs = make_controller().list_incomplete()
    assert {job.id for job in jobs} == set(crashed)
    assert all(job.status == JobStatus.UPLOADING for job in jobs)
    assert [job.id for job in make_controller().list_incomplete(source_name="a.csv")] == [crashed[0]]
    assert len(make_controller().list_incomplete(limit=1)) == 1
