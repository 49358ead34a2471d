"""Site upload API endpoints."""
import asyncio
import json
import logging
from typing import List, Optional

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from site_importer.config import get_settings
from site_importer.database import get_db
from site_importer.exceptions import (
    JobAlreadyActive,
    JobNotFound,
    JobNotResumable,
    MissingScratchData,
    PlanMismatch,
    SiteImporterError,
    WriteError,
)
from site_importer.models.upload_job import TERMINAL_STATUSES
from site_importer.schemas.upload import (
    CancelResult,
    UploadJobResponse,
    UploadOutcome,
    UploadResponse,
)
from site_importer.services.csv_reader import decode_upload, read_csv_rows
from site_importer.services.job_controller import UploadJobController
from site_importer.services.ledger import JobLedger
from site_importer.services.progress import TERMINAL_EVENTS, channel_name

router = APIRouter(prefix="/api/upload", tags=["upload"])

settings = get_settings()
logger = logging.getLogger(__name__)

_STATUS_CODES = {
    JobNotFound: 404,
    JobAlreadyActive: 409,
    JobNotResumable: 409,
    PlanMismatch: 409,
    MissingScratchData: 410,
}


def get_controller(db: Session = Depends(get_db)) -> UploadJobController:
    """Dependency for a controller bound to the request's session."""
    return UploadJobController(db)


def _http_error(error: SiteImporterError) -> HTTPException:
    for error_type, status_code in _STATUS_CODES.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


def _read_rows(file: UploadFile) -> List[dict]:
    """Validate an uploaded CSV and parse it into rows."""
    if not file.filename or not file.filename.lower().endswith(".csv"):
        logger.warning(f"❌ Invalid file type: {file.filename}")
        raise HTTPException(status_code=400, detail="Only CSV files are allowed")

    content = file.file.read(settings.max_upload_bytes + 1)
    if len(content) > settings.max_upload_bytes:
        logger.warning(f"❌ File too large: {file.filename}")
        raise HTTPException(
            status_code=413,
            detail=f"File too large (max {settings.max_upload_bytes // (1024 * 1024)}MB)",
        )

    rows = read_csv_rows(decode_upload(content))
    logger.info(f"📁 Parsed {len(rows)} rows from {file.filename} ({len(content)} bytes)")
    return rows


@router.post("", response_model=UploadResponse)
def upload_csv(
    file: UploadFile = File(...),
    controller: UploadJobController = Depends(get_controller),
):
    """
    Accept a site CSV and process it in the background.

    Returns the job id immediately; poll ``GET /api/upload/{job_id}`` or
    subscribe to the stream for progress.
    """
    rows = _read_rows(file)
    job_id = controller.start_in_background(rows, file.filename)
    return UploadResponse(job_id=job_id, status="queued")


@router.post("/sync", response_model=UploadOutcome)
def upload_csv_sync(
    file: UploadFile = File(...),
    controller: UploadJobController = Depends(get_controller),
):
    """Upload a site CSV within the request and return the final outcome."""
    rows = _read_rows(file)
    try:
        return controller.start(rows, file.filename)
    except WriteError as e:
        raise HTTPException(
            status_code=502,
            detail={"job_id": e.job_id, "error": str(e), "chunk_index": e.chunk_index},
        )


@router.get("/incomplete", response_model=List[UploadJobResponse])
def list_incomplete_uploads(
    source_name: Optional[str] = Query(None, description="Only jobs for this file name"),
    limit: int = Query(5, ge=1, le=50),
    controller: UploadJobController = Depends(get_controller),
):
    """Jobs that were created or interrupted mid-upload and can be resumed."""
    return controller.list_incomplete(source_name=source_name, limit=limit)


@router.get("/{job_id}", response_model=UploadJobResponse)
def get_upload_status(job_id: str, controller: UploadJobController = Depends(get_controller)):
    """Get upload job status and progress."""
    try:
        return controller.get_status(job_id)
    except JobNotFound as e:
        raise _http_error(e)


@router.post("/{job_id}/resume", response_model=UploadOutcome)
def resume_upload(
    job_id: str,
    file: Optional[UploadFile] = File(None),
    controller: UploadJobController = Depends(get_controller),
):
    """
    Resume a job from its first unfinished chunk.

    The stored chunk plan is used; an optional CSV must contain the same
    rows as the original upload. A failing chunk is reported in the
    outcome, not as an HTTP error.
    """
    rows = _read_rows(file) if file is not None else None
    try:
        return controller.resume(job_id, rows)
    except SiteImporterError as e:
        raise _http_error(e)


@router.post("/{job_id}/cancel", response_model=CancelResult)
def cancel_upload(job_id: str, controller: UploadJobController = Depends(get_controller)):
    """Cancel an active job at its next chunk boundary."""
    try:
        result = controller.cancel(job_id)
    except JobNotFound as e:
        raise _http_error(e)

    if not result.cancelled:
        raise HTTPException(status_code=409, detail=result.message)
    return result


@router.get("/{job_id}/stream")
async def stream_progress(job_id: str, db: Session = Depends(get_db)):
    """
    Server-Sent Events endpoint for real-time progress streaming.

    Sends the current ledger snapshot first, then relays the job's Redis
    channel until the job reaches a terminal status.
    """
    try:
        job = JobLedger(db).get(job_id)
    except JobNotFound as e:
        raise _http_error(e)

    snapshot = UploadJobResponse.model_validate(job).model_dump(mode="json")

    async def event_generator():
        yield f"data: {json.dumps(snapshot)}\n\n"
        if snapshot["status"] in TERMINAL_STATUSES:
            return

        redis_client = aioredis.Redis.from_url(settings.redis_url, decode_responses=True)
        pubsub = redis_client.pubsub()

        try:
            await pubsub.subscribe(channel_name(job_id))
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message["type"] == "message":
                    data = json.loads(message["data"])
                    yield f"data: {json.dumps(data)}\n\n"
                    if data.get("event") in TERMINAL_EVENTS:
                        break
                await asyncio.sleep(0.1)
        except RedisError as e:
            logger.warning(f"SSE stream error for job {job_id}: {e}")
            yield f"data: {json.dumps({'status': 'error', 'error': 'Stream error'})}\n\n"
        finally:
            await pubsub.aclose()
            await redis_client.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
