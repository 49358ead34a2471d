"""Job ledger: durable progress and status of upload jobs."""
import logging
from datetime import timedelta
from typing import Iterable, List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from site_importer.database import utcnow
from site_importer.exceptions import (
    JobAlreadyActive,
    JobNotFound,
    JobNotResumable,
    LedgerWriteError,
)
from site_importer.models.upload_job import (
    ACTIVE_STATUSES,
    CLAIMABLE_STATUSES,
    JobStatus,
    UploadJob,
)
from site_importer.schemas.upload import ChunkPlan

logger = logging.getLogger(__name__)


def _values(statuses: Iterable[JobStatus]) -> List[str]:
    return [status.value for status in statuses]


class JobLedger:
    """
    Reads and writes upload_jobs rows by job id.

    Every state change is a single conditional UPDATE committed immediately,
    so a concurrent cancel and an executor never overwrite each other's
    status.
    """

    def __init__(self, db: Session):
        self.db = db

    def _update(self, job_id: str, *conditions, **values) -> int:
        values.setdefault("updated_at", utcnow())
        try:
            result = self.db.execute(
                update(UploadJob)
                .where(UploadJob.id == job_id, *conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LedgerWriteError(f"Could not update upload job {job_id}: {e}") from e
        return result.rowcount

    def create(self, plan: ChunkPlan, plan_digest: str) -> UploadJob:
        """Insert a job in ``created`` for a freshly computed chunk plan."""
        job = UploadJob(
            source_name=plan.source_name,
            status=JobStatus.CREATED.value,
            record_count=plan.record_count,
            chunk_size=plan.chunk_size,
            total_chunks=plan.total_chunks,
            plan_digest=plan_digest,
        )
        try:
            self.db.add(job)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LedgerWriteError(f"Could not create upload job: {e}") from e
        self.db.refresh(job)
        logger.info(f"🆔 Created upload job {job.id} for {job.source_name}: {job.total_chunks} chunks")
        return job

    def get(self, job_id: str) -> UploadJob:
        """Fresh snapshot of a job, bypassing the session identity map."""
        job = self.db.get(UploadJob, job_id, populate_existing=True)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def mark_queued(self, job_id: str) -> None:
        self._update(
            job_id,
            UploadJob.status == JobStatus.CREATED.value,
            status=JobStatus.QUEUED.value,
        )

    def claim(self, job_id: str, status: JobStatus, stale_after_seconds: int) -> UploadJob:
        """
        Move a job into an active status for exactly one executor.

        Jobs in CLAIMABLE_STATUSES are taken directly. A job already active
        is taken only when its last progress write is older than
        ``stale_after_seconds``, meaning the executor that owned it died.

        Raises:
            JobNotFound: No such job
            JobNotResumable: The job is complete or cancelled
            JobAlreadyActive: A live executor owns the job
        """
        cutoff = utcnow() - timedelta(seconds=stale_after_seconds)
        claimed = self._update(
            job_id,
            UploadJob.cancel_requested.is_(False),
            or_(
                UploadJob.status.in_(_values(CLAIMABLE_STATUSES)),
                (UploadJob.status.in_(_values(ACTIVE_STATUSES)) & (UploadJob.updated_at <= cutoff)),
            ),
            status=status.value,
            error_message=None,
        )
        job = self.get(job_id)
        if not claimed:
            if job.status in (JobStatus.COMPLETE, JobStatus.CANCELLED) or job.cancel_requested:
                raise JobNotResumable(f"Upload job {job_id} is {job.status} and cannot be run again")
            raise JobAlreadyActive(f"Upload job {job_id} is already {job.status}")
        logger.info(f"🔒 Claimed job {job_id} at chunk {job.chunks_completed}/{job.total_chunks}")
        return job

    def advance(self, job_id: str, chunks_completed: int, records_processed: int) -> None:
        """Record progress after a chunk is written. Never touches status."""
        self._update(
            job_id,
            chunks_completed=chunks_completed,
            records_processed=records_processed,
        )

    def is_cancel_requested(self, job_id: str) -> bool:
        """Read the cancellation token straight from the database."""
        try:
            flag = self.db.execute(
                select(UploadJob.cancel_requested).where(UploadJob.id == job_id)
            ).scalar_one_or_none()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LedgerWriteError(f"Could not read cancel flag of upload job {job_id}: {e}") from e
        return bool(flag)

    def request_cancel(self, job_id: str) -> bool:
        """Set the cancellation token on an active job; False on a conflict."""
        return bool(
            self._update(
                job_id,
                UploadJob.status.in_(_values(ACTIVE_STATUSES)),
                cancel_requested=True,
                status=JobStatus.CANCELLED.value,
            )
        )

    def mark_cancelled(self, job_id: str) -> None:
        self._update(
            job_id,
            UploadJob.status != JobStatus.COMPLETE.value,
            status=JobStatus.CANCELLED.value,
        )

    def mark_complete(self, job_id: str, chunks_completed: int, records_processed: int) -> bool:
        """Finish a job unless a cancel was requested; False means cancelled."""
        now = utcnow()
        return bool(
            self._update(
                job_id,
                UploadJob.status.in_(_values(ACTIVE_STATUSES)),
                UploadJob.cancel_requested.is_(False),
                status=JobStatus.COMPLETE.value,
                chunks_completed=chunks_completed,
                records_processed=records_processed,
                completed_at=now,
                updated_at=now,
            )
        )

    def mark_error(
        self,
        job_id: str,
        message: str,
        from_statuses: Iterable[JobStatus] = ACTIVE_STATUSES,
    ) -> bool:
        """Record a failure; a job cancelled meanwhile stays cancelled."""
        return bool(
            self._update(
                job_id,
                UploadJob.status.in_(_values(from_statuses)),
                status=JobStatus.ERROR.value,
                error_message=message,
            )
        )

    def list_by_status(
        self,
        statuses: Iterable[JobStatus],
        source_name: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[UploadJob]:
        """Jobs in any of ``statuses``, most recently created first."""
        query = (
            self.db.query(UploadJob)
            .populate_existing()
            .filter(UploadJob.status.in_(_values(statuses)))
        )
        if source_name:
            query = query.filter(UploadJob.source_name == source_name)
        query = query.order_by(UploadJob.created_at.desc())
        if limit:
            query = query.limit(limit)
        return query.all()
