"""Webhook registration API endpoints."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from site_importer.database import get_db
from site_importer.models.webhook import Webhook
from site_importer.schemas.webhook import (
    WebhookCreate,
    WebhookResponse,
    WebhookTestResponse,
)
from site_importer.services.webhook_service import test_webhook

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _get_webhook_or_404(webhook_id: int, db: Session) -> Webhook:
    webhook = db.get(Webhook, webhook_id)
    if not webhook:
        raise HTTPException(status_code=404, detail="Webhook not found")
    return webhook


@router.get("", response_model=List[WebhookResponse])
def list_webhooks(db: Session = Depends(get_db)):
    """List registered webhooks, newest first."""
    return db.query(Webhook).order_by(Webhook.created_at.desc()).all()


@router.post("", response_model=WebhookResponse, status_code=201)
def create_webhook(webhook: WebhookCreate, db: Session = Depends(get_db)):
    """Register a URL to be notified of an upload lifecycle event."""
    db_webhook = Webhook(url=webhook.url, event_type=webhook.event_type, enabled=webhook.enabled)
    db.add(db_webhook)
    db.commit()
    db.refresh(db_webhook)
    return db_webhook


@router.delete("/{webhook_id}", status_code=204)
def delete_webhook(webhook_id: int, db: Session = Depends(get_db)):
    """Remove a webhook."""
    db.delete(_get_webhook_or_404(webhook_id, db))
    db.commit()
    return None


@router.post("/{webhook_id}/test", response_model=WebhookTestResponse)
async def test_webhook_endpoint(webhook_id: int, db: Session = Depends(get_db)):
    """Send a sample event to the webhook URL and report how it answered."""
    webhook = _get_webhook_or_404(webhook_id, db)

    sample_payload = {
        "event": webhook.event_type,
        "test": True,
        "data": {
            "job_id": "00000000-0000-0000-0000-000000000000",
            "status": "complete",
            "chunks_completed": 3,
            "total_chunks": 3,
            "records_processed": 530,
            "record_count": 530,
        },
    }

    result = await test_webhook(webhook.url, sample_payload)
    return WebhookTestResponse(**result)
