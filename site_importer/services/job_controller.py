"""Job controller: start, resume, cancel and inspect site uploads."""
import logging
from typing import Any, Callable, Iterable, List, Mapping, Optional

import redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from site_importer.config import get_settings
from site_importer.exceptions import (
    JobNotResumable,
    MissingScratchData,
    PlanMismatch,
    WriteError,
)
from site_importer.models.upload_job import INCOMPLETE_STATUSES, JobStatus, UploadJob
from site_importer.schemas.upload import CancelResult, ChunkPlan, UploadOutcome
from site_importer.services.bulk_writer import BulkWriter, SiteBulkWriter
from site_importer.services.chunking import build_plan, compute_plan_digest
from site_importer.services.ledger import JobLedger
from site_importer.services.progress import ProgressListener, ProgressPublisher
from site_importer.services.scratch_store import ScratchStore, get_scratch_store
from site_importer.services.upload_executor import UploadExecutor
from site_importer.services.webhook_service import WebhookNotifier

settings = get_settings()
logger = logging.getLogger(__name__)

Rows = Iterable[Mapping[str, Any]]


def dispatch_with_celery(job_id: str) -> None:
    """Queue the background run of a job on the Celery worker."""
    from site_importer.tasks.upload_tasks import run_upload_job

    run_upload_job.delay(job_id)


class UploadJobController:
    """
    Entry points for site uploads, one instance per database session.

    Every operation is addressed by job id; the ledger row is the only
    record of how far a job got, and the scratch store the only record of
    what it is uploading.
    """

    def __init__(
        self,
        db: Session,
        writer: Optional[BulkWriter] = None,
        scratch: Optional[ScratchStore] = None,
        dispatcher: Optional[Callable[[str], None]] = None,
        listeners: Optional[List[ProgressListener]] = None,
        chunk_size: Optional[int] = None,
        stale_job_seconds: Optional[int] = None,
    ):
        self.db = db
        self.ledger = JobLedger(db)
        self.writer = writer or SiteBulkWriter(db)
        self.scratch = scratch or get_scratch_store(db)
        self.dispatcher = dispatcher or dispatch_with_celery
        self.chunk_size = chunk_size or settings.chunk_size
        self.stale_job_seconds = (
            settings.stale_job_seconds if stale_job_seconds is None else stale_job_seconds
        )
        if listeners is None:
            listeners = [WebhookNotifier(db)]
            if settings.publish_progress:
                listeners.append(ProgressPublisher())
        self.listeners = listeners

    def _executor(self, on_progress: Optional[ProgressListener] = None) -> UploadExecutor:
        listeners = list(self.listeners)
        if on_progress is not None:
            listeners.append(on_progress)
        return UploadExecutor(
            self.ledger,
            self.writer,
            self.scratch,
            listeners=listeners,
            stale_job_seconds=self.stale_job_seconds,
        )

    def _prepare(self, rows: Rows, source_name: str) -> tuple[UploadJob, ChunkPlan]:
        """Plan the rows and persist ledger entry and chunk plan together."""
        plan = build_plan(rows, source_name, self.chunk_size)
        job = self.ledger.create(plan, compute_plan_digest(plan.records, plan.chunk_size))

        try:
            self.scratch.set(job.id, plan)
        except (SQLAlchemyError, redis.RedisError) as e:
            logger.error(f"💥 Could not store chunk plan for job {job.id}: {e}", exc_info=True)
            self.db.rollback()
            self.ledger.mark_error(job.id, f"Could not store chunk plan: {e}", from_statuses=[JobStatus.CREATED])
            raise

        self.ledger.mark_queued(job.id)
        return job, plan

    def start(
        self,
        rows: Rows,
        source_name: str,
        on_progress: Optional[ProgressListener] = None,
    ) -> UploadOutcome:
        """
        Upload rows synchronously, reporting progress to ``on_progress``.

        Raises:
            WriteError: A chunk failed; the ledger already shows ``error``
        """
        job, plan = self._prepare(rows, source_name)
        outcome = self._executor(on_progress).run(job.id, plan, status=JobStatus.UPLOADING)
        if outcome.status == JobStatus.ERROR:
            raise WriteError(outcome.error or "Chunk write failed", chunk_index=outcome.chunks_completed, job_id=job.id)
        return outcome

    def start_in_background(self, rows: Rows, source_name: str) -> str:
        """
        Plan and persist the upload, then hand it to the background worker.

        The returned job may not have started yet; poll get_status.
        """
        job, _ = self._prepare(rows, source_name)
        try:
            self.dispatcher(job.id)
        except Exception as e:
            logger.error(f"💥 Could not dispatch job {job.id}: {e}", exc_info=True)
            self.ledger.mark_error(job.id, f"Could not dispatch job: {e}", from_statuses=[JobStatus.QUEUED])
            raise
        logger.info(f"📨 Job {job.id} queued for background processing")
        return job.id

    def run_job(self, job_id: str, status: JobStatus = JobStatus.PROCESSING) -> UploadOutcome:
        """
        Drain a queued job from its stored chunk plan (background entry point).

        Raises:
            MissingScratchData: The chunk plan is gone; the ledger is unchanged
        """
        plan = self.scratch.get(job_id)
        if plan is None:
            self.ledger.get(job_id)
            raise MissingScratchData(job_id)
        return self._executor().run(job_id, plan, status=status)

    def resume(self, job_id: str, rows: Optional[Rows] = None) -> UploadOutcome:
        """
        Continue a job from its first unfinished chunk.

        The stored chunk plan is authoritative. Rows passed by the caller
        are only accepted if they reproduce that plan exactly; they rebuild
        it when the scratch entry is gone. Chunk failures come back as an
        ``error`` outcome and are never raised.

        Raises:
            JobNotFound, JobNotResumable, JobAlreadyActive
            MissingScratchData: No stored plan and no rows to rebuild it
            PlanMismatch: The rows differ from the ones the job was planned with
        """
        job = self.ledger.get(job_id)
        if job.status in (JobStatus.COMPLETE, JobStatus.CANCELLED):
            raise JobNotResumable(f"Upload job {job_id} is {job.status} and cannot be resumed")

        plan = self.scratch.get(job_id)
        if rows is not None:
            replanned = build_plan(rows, job.source_name, job.chunk_size)
            if compute_plan_digest(replanned.records, replanned.chunk_size) != job.plan_digest:
                raise PlanMismatch(
                    f"Rows for job {job_id} do not match its original upload "
                    f"({replanned.record_count} sites vs {job.record_count})"
                )
            if plan is None:
                logger.info(f"♻️ Rebuilt chunk plan for job {job_id} from re-submitted rows")
                self.scratch.set(job_id, replanned)
                plan = replanned
        if plan is None:
            raise MissingScratchData(job_id)

        return self._executor().run(job_id, plan, status=JobStatus.UPLOADING, resumed=True)

    def cancel(self, job_id: str) -> CancelResult:
        """
        Request cancellation of an active job.

        The executor stops at the next chunk boundary. Sites already written
        by the job are soft-tagged as cancelled, best-effort. A job that is
        not active is left alone and reported as a conflict.
        """
        job = self.ledger.get(job_id)
        if not self.ledger.request_cancel(job_id):
            job = self.ledger.get(job_id)
            logger.info(f"ℹ️ Cancel ignored for job {job_id}: status is {job.status}")
            return CancelResult(
                job_id=job_id,
                cancelled=False,
                status=job.status,
                message=f"Only active jobs can be cancelled; job is {job.status}",
            )

        tagged = 0
        try:
            tagged = self.writer.tag_cancelled(job_id)
        except WriteError as e:
            logger.warning(f"⚠️ Could not tag sites of cancelled job {job_id}: {e}")

        logger.info(f"🛑 Cancellation requested for job {job_id} ({job.source_name})")
        return CancelResult(
            job_id=job_id,
            cancelled=True,
            status=JobStatus.CANCELLED.value,
            message="Cancellation requested; the in-flight chunk will finish first",
            records_tagged=tagged,
        )

    def get_status(self, job_id: str) -> UploadJob:
        return self.ledger.get(job_id)

    def list_incomplete(self, source_name: Optional[str] = None, limit: int = 5) -> List[UploadJob]:
        """Jobs left in ``created`` or ``uploading``, newest first."""
        return self.ledger.list_by_status(INCOMPLETE_STATUSES, source_name=source_name, limit=limit)
