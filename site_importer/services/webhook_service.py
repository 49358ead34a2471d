"""Webhook service for upload lifecycle notifications."""
import asyncio
import logging
import time
from typing import Any, Dict

import httpx
from sqlalchemy.orm import Session

from site_importer.models.webhook import Webhook
from site_importer.schemas.upload import UploadOutcome
from site_importer.services import progress

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = [
    "upload.started",
    "upload.completed",
    "upload.failed",
    "upload.cancelled",
]

# Executor events that are announced to webhooks
EXECUTOR_EVENTS = {
    progress.STARTED: "upload.started",
    progress.COMPLETE: "upload.completed",
    progress.ERROR: "upload.failed",
    progress.CANCELLED: "upload.cancelled",
}

WEBHOOK_TIMEOUT_SECONDS = 5.0


async def trigger_webhooks(event_type: str, payload: Dict[str, Any], db: Session) -> None:
    """
    Send the payload to every enabled webhook registered for the event.

    Delivery failures are logged and never raised.
    """
    webhooks = (
        db.query(Webhook)
        .filter(Webhook.event_type == event_type, Webhook.enabled.is_(True))
        .all()
    )
    if not webhooks:
        return

    async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS) as client:
        await asyncio.gather(
            *[_send_webhook(client, webhook.url, payload) for webhook in webhooks],
            return_exceptions=True,
        )


async def _send_webhook(client: httpx.AsyncClient, url: str, payload: Dict[str, Any]) -> None:
    try:
        await client.post(url, json=payload)
    except httpx.HTTPError as e:
        logger.warning(f"⚠️ Failed to send webhook to {url}: {e}")


class WebhookNotifier:
    """Executor listener that announces lifecycle events to webhooks."""

    def __init__(self, db: Session):
        self.db = db

    def __call__(self, event: str, snapshot: UploadOutcome) -> None:
        event_type = EXECUTOR_EVENTS.get(event)
        if event_type is None:
            return
        payload = {"event": event_type, "data": snapshot.model_dump()}
        try:
            asyncio.run(trigger_webhooks(event_type, payload, self.db))
        except RuntimeError as e:
            # asyncio.run refuses to nest inside a running event loop
            logger.warning(f"⚠️ Skipped {event_type} webhooks for job {snapshot.job_id}: {e}")


async def test_webhook(url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Send a sample payload to a webhook and measure the response.

    Returns:
        Dict with success flag, status code or error, and response time
    """
    start_time = time.time()

    try:
        async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS) as client:
            response = await client.post(url, json=payload)
    except httpx.TimeoutException:
        return {
            "success": False,
            "error": f"Request timeout (> {WEBHOOK_TIMEOUT_SECONDS:.0f} seconds)",
            "response_time": WEBHOOK_TIMEOUT_SECONDS,
        }
    except httpx.HTTPError as e:
        return {
            "success": False,
            "error": str(e),
            "response_time": round(time.time() - start_time, 3),
        }

    return {
        "success": response.is_success,
        "status_code": response.status_code,
        "response_time": round(time.time() - start_time, 3),
    }
