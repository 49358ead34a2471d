"""Upload job model: the ledger of chunked site imports."""
import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from site_importer.database import Base, utcnow


class JobStatus(str, enum.Enum):
    """Lifecycle of an upload job."""

    CREATED = "created"
    QUEUED = "queued"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


# Chunk N of total in flight; the two are interchangeable (sync vs background)
ACTIVE_STATUSES = (JobStatus.UPLOADING, JobStatus.PROCESSING)
TERMINAL_STATUSES = (JobStatus.COMPLETE, JobStatus.ERROR, JobStatus.CANCELLED)
# Statuses a fresh executor may claim without waiting for a stale lease
CLAIMABLE_STATUSES = (JobStatus.CREATED, JobStatus.QUEUED, JobStatus.ERROR)
INCOMPLETE_STATUSES = (JobStatus.CREATED, JobStatus.UPLOADING)


class UploadJob(Base):
    """Progress and status of one end-to-end upload run."""

    __tablename__ = "upload_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    source_name = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False, default=JobStatus.CREATED.value)
    record_count = Column(Integer, default=0, nullable=False)
    chunk_size = Column(Integer, nullable=False)
    total_chunks = Column(Integer, default=0, nullable=False)
    chunks_completed = Column(Integer, default=0, nullable=False)
    records_processed = Column(Integer, default=0, nullable=False)
    cancel_requested = Column(Boolean, default=False, nullable=False)
    plan_digest = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_upload_jobs_status_created", "status", "created_at"),
    )

    @property
    def progress(self) -> int:
        """Percentage of chunks written."""
        if not self.total_chunks:
            return 100 if self.status == JobStatus.COMPLETE else 0
        return round(self.chunks_completed / self.total_chunks * 100)

    def __repr__(self):
        return (
            f"<UploadJob(id='{self.id}', status='{self.status}', "
            f"chunks={self.chunks_completed}/{self.total_chunks})>"
        )
