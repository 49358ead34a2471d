"""Webhook model for upload lifecycle notifications."""
from sqlalchemy import Boolean, Column, DateTime, Integer, String

from site_importer.database import Base, utcnow


class Webhook(Base):
    """Endpoint notified when an upload job reaches a lifecycle event."""

    __tablename__ = "webhooks"

    id = Column(Integer, primary_key=True, index=True)
    url = Column(String(2048), nullable=False)
    event_type = Column(String(100), nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
