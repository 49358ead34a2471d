"""Upload executor: drains a job's chunk plan through the bulk writer."""
import logging
from typing import Iterable, List, Optional

from site_importer.exceptions import LedgerWriteError, WriteError
from site_importer.models.upload_job import JobStatus
from site_importer.schemas.upload import ChunkPlan, UploadOutcome
from site_importer.services import progress
from site_importer.services.bulk_writer import BulkWriter
from site_importer.services.ledger import JobLedger
from site_importer.services.progress import ProgressListener
from site_importer.services.scratch_store import ScratchStore

logger = logging.getLogger(__name__)


class UploadExecutor:
    """
    Sequential chunk loop of one upload job.

    Chunks are written strictly in index order starting at the job's
    ``chunks_completed``. Progress for chunk i is committed to the ledger
    before chunk i+1 is sent, so a restarted executor resumes at the first
    unfinished chunk; the chunk in flight at a crash is simply sent again.
    Cancellation is cooperative and checked between chunks.
    """

    def __init__(
        self,
        ledger: JobLedger,
        writer: BulkWriter,
        scratch: ScratchStore,
        listeners: Iterable[ProgressListener] = (),
        stale_job_seconds: int = 300,
    ):
        self.ledger = ledger
        self.writer = writer
        self.scratch = scratch
        self.listeners: List[ProgressListener] = list(listeners)
        self.stale_job_seconds = stale_job_seconds

    def run(
        self,
        job_id: str,
        plan: ChunkPlan,
        status: JobStatus = JobStatus.UPLOADING,
        resumed: bool = False,
    ) -> UploadOutcome:
        """
        Claim the job and write its remaining chunks.

        Chunk failures are recorded in the ledger and returned as an ``error``
        outcome, never raised.

        Raises:
            JobNotFound, JobNotResumable, JobAlreadyActive: The job could not
                be claimed; the ledger is unchanged
        """
        job = self.ledger.claim(job_id, status, self.stale_job_seconds)
        chunks_completed = job.chunks_completed
        records_processed = job.records_processed

        def snapshot(current: str, error: Optional[str] = None) -> UploadOutcome:
            return UploadOutcome(
                job_id=job_id,
                status=current,
                chunks_completed=chunks_completed,
                total_chunks=plan.total_chunks,
                records_processed=records_processed,
                record_count=plan.record_count,
                resumed=resumed,
                error=error,
            )

        logger.info(
            f"🚀 {'Resuming' if resumed else 'Starting'} job {job_id} ({plan.source_name}) "
            f"at chunk {chunks_completed + 1}/{plan.total_chunks}"
        )
        self._notify(progress.STARTED, snapshot(status.value))

        for index in range(chunks_completed, plan.total_chunks):
            if self._cancel_requested(job_id):
                return self._stop_cancelled(job_id, snapshot(JobStatus.CANCELLED.value))

            chunk = plan.chunk(index)
            logger.info(f"📦 Job {job_id}: writing chunk {index + 1}/{plan.total_chunks} ({len(chunk)} sites)")
            try:
                self.writer.upsert(chunk, job_id)
            except Exception as e:
                return self._stop_failed(job_id, index, e, snapshot)

            chunks_completed = index + 1
            records_processed += len(chunk)
            try:
                self.ledger.advance(job_id, chunks_completed, records_processed)
            except LedgerWriteError as e:
                # The chunk is written; a lost progress write only means it is replayed on resume
                logger.warning(f"⚠️ Progress for job {job_id} not recorded after chunk {index + 1}: {e}")

            self._notify(progress.PROGRESS, snapshot(status.value))

        if self._cancel_requested(job_id):
            return self._stop_cancelled(job_id, snapshot(JobStatus.CANCELLED.value))

        try:
            completed = self.ledger.mark_complete(job_id, chunks_completed, records_processed)
        except LedgerWriteError as e:
            # Plan is kept so a resume after the stale lease can finish the ledger
            logger.error(f"❌ Could not record completion of job {job_id}: {e}")
        else:
            if not completed:
                return self._stop_cancelled(job_id, snapshot(JobStatus.CANCELLED.value))
            self._discard_plan(job_id)

        outcome = snapshot(JobStatus.COMPLETE.value)
        logger.info(f"🏁 Job {job_id} complete: {records_processed} sites in {chunks_completed} chunks")
        self._notify(progress.COMPLETE, outcome)
        return outcome

    def _stop_failed(self, job_id: str, index: int, error: Exception, snapshot) -> UploadOutcome:
        message = str(error) or error.__class__.__name__
        logger.error(f"💥 Job {job_id}: chunk {index + 1} failed: {message}", exc_info=True)

        try:
            recorded = self.ledger.mark_error(job_id, message)
        except LedgerWriteError as e:
            logger.error(f"❌ Could not record failure of job {job_id}: {e}")
            recorded = True

        if not recorded:
            # Cancelled while the failing chunk was in flight
            return self._stop_cancelled(job_id, snapshot(JobStatus.CANCELLED.value))

        outcome = snapshot(JobStatus.ERROR.value, error=message)
        self._notify(progress.ERROR, outcome)
        return outcome

    def _stop_cancelled(self, job_id: str, outcome: UploadOutcome) -> UploadOutcome:
        logger.info(f"🛑 Job {job_id} cancelled after {outcome.chunks_completed}/{outcome.total_chunks} chunks")
        try:
            self.ledger.mark_cancelled(job_id)
        except LedgerWriteError as e:
            logger.error(f"❌ Could not record cancellation of job {job_id}: {e}")

        # Covers the chunk that was in flight when the cancel arrived
        try:
            self.writer.tag_cancelled(job_id)
        except WriteError as e:
            logger.warning(f"⚠️ Could not tag sites of cancelled job {job_id}: {e}")

        self._discard_plan(job_id)
        self._notify(progress.CANCELLED, outcome)
        return outcome

    def _cancel_requested(self, job_id: str) -> bool:
        try:
            return self.ledger.is_cancel_requested(job_id)
        except LedgerWriteError as e:
            logger.warning(f"⚠️ Could not read cancel flag of job {job_id}, continuing: {e}")
            return False

    def _discard_plan(self, job_id: str) -> None:
        try:
            self.scratch.delete(job_id)
        except Exception as e:
            logger.warning(f"⚠️ Could not remove chunk plan of job {job_id}: {e}")

    def _notify(self, event: str, snapshot: UploadOutcome) -> None:
        for listener in self.listeners:
            try:
                listener(event, snapshot)
            except Exception as e:
                logger.warning(f"⚠️ Progress listener failed on {event} for job {snapshot.job_id}: {e}")
