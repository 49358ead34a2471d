"""Celery tasks for background site uploads."""
import logging

from site_importer.database import SessionLocal
from site_importer.exceptions import SiteImporterError
from site_importer.services.job_controller import UploadJobController
from site_importer.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True)
def run_upload_job(self, job_id: str) -> dict:
    """
    Drain a queued upload job from its stored chunk plan.

    This runs in the Celery worker, not in the web request. Job failures
    are recorded in the ledger and returned, never raised, so callers learn
    about them by polling the job status.

    Args:
        self: Celery task instance
        job_id: Upload job ID

    Returns:
        Dict with the job outcome
    """
    logger.info(f"🚀 Background run of upload job {job_id}")
    db = SessionLocal()

    try:
        outcome = UploadJobController(db).run_job(job_id)
        logger.info(f"🎉 Background run finished: job={job_id} status={outcome.status}")
        return outcome.model_dump()
    except SiteImporterError as e:
        logger.error(f"💥 Background run of job {job_id} did not start: {e}", exc_info=True)
        return {"job_id": job_id, "status": "not_started", "error": str(e)}
    finally:
        db.close()
