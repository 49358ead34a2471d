"""Scratch payload model holding serialized chunk plans."""
from sqlalchemy import Column, DateTime, String, Text

from site_importer.database import Base, utcnow


class ScratchPayload(Base):
    """Serialized chunk plan of one upload job, removed once the job completes."""

    __tablename__ = "scratch_payloads"

    job_id = Column(String(36), primary_key=True)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
