"""Upload schemas: chunk plans, outcomes and job responses."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from site_importer.schemas.site import NormalizedRecord


class ChunkPlan(BaseModel):
    """
    Deduplicated records of one job and the chunk size they are cut with.

    Persisted in the scratch store so a resumed or background run reproduces
    exactly the same chunk boundaries without the source file.
    """

    records: List[NormalizedRecord]
    chunk_size: int = Field(..., gt=0)
    total_chunks: int = Field(..., ge=0)
    source_name: str

    @property
    def record_count(self) -> int:
        return len(self.records)

    def chunk(self, index: int) -> List[NormalizedRecord]:
        """Records of the chunk at ``index`` (0-based)."""
        if index < 0 or index >= self.total_chunks:
            raise IndexError(f"Chunk {index} out of range (total {self.total_chunks})")
        start = index * self.chunk_size
        return self.records[start:start + self.chunk_size]


class UploadOutcome(BaseModel):
    """Result of driving an upload job until it stops."""

    job_id: str
    status: str
    chunks_completed: int
    total_chunks: int
    records_processed: int
    record_count: int
    resumed: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "complete"


class CancelResult(BaseModel):
    """Result of a cancel request; ``cancelled`` is False on a conflict."""

    job_id: str
    cancelled: bool
    status: str
    message: str
    records_tagged: int = 0


class UploadResponse(BaseModel):
    """Response after queuing a background upload."""

    job_id: str
    status: str
    message: str = "File accepted, processing in background"


class UploadJobResponse(BaseModel):
    """Upload job status response."""

    id: str
    source_name: str
    status: str
    record_count: int
    chunk_size: int
    total_chunks: int
    chunks_completed: int
    records_processed: int
    progress: int
    cancel_requested: bool
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
