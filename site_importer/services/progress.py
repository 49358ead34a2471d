"""Progress events of upload jobs and their Redis pub/sub channel."""
import json
import logging
from typing import Callable, Optional

import redis

from site_importer.config import get_settings
from site_importer.schemas.upload import UploadOutcome

settings = get_settings()
logger = logging.getLogger(__name__)

# Events emitted by the upload executor
STARTED = "started"
PROGRESS = "progress"
COMPLETE = "complete"
ERROR = "error"
CANCELLED = "cancelled"

TERMINAL_EVENTS = (COMPLETE, ERROR, CANCELLED)

ProgressListener = Callable[[str, UploadOutcome], None]


def channel_name(job_id: str) -> str:
    return f"upload:{job_id}"


def progress_message(event: str, snapshot: UploadOutcome) -> dict:
    """Payload published on the job channel and streamed over SSE."""
    message = {
        "job_id": snapshot.job_id,
        "event": event,
        "status": snapshot.status,
        "chunks_completed": snapshot.chunks_completed,
        "total_chunks": snapshot.total_chunks,
        "records_processed": snapshot.records_processed,
        "record_count": snapshot.record_count,
    }
    if snapshot.error:
        message["error"] = snapshot.error
    return message


class ProgressPublisher:
    """
    Publishes executor events to Redis for real-time SSE streaming.

    Publishing is best-effort: an unavailable Redis never fails an upload.
    """

    def __init__(self, client: Optional[redis.Redis] = None):
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return self._client

    def __call__(self, event: str, snapshot: UploadOutcome) -> None:
        try:
            self.client.publish(
                channel_name(snapshot.job_id),
                json.dumps(progress_message(event, snapshot)),
            )
        except redis.RedisError as e:
            logger.warning(f"⚠️ Failed to publish progress for job {snapshot.job_id}: {e}")
