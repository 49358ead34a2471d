"""Exceptions raised by the upload pipeline."""
from typing import Optional


class SiteImporterError(Exception):
    """Base exception for the site importer."""


class JobNotFound(SiteImporterError):
    """Raised when no upload job exists for the given id."""

    def __init__(self, job_id: str):
        super().__init__(f"Upload job {job_id} not found")
        self.job_id = job_id


class JobAlreadyActive(SiteImporterError):
    """Raised when an executor is already draining the job."""


class JobNotResumable(SiteImporterError):
    """Raised when a job is in a status that cannot be resumed."""


class WriteError(SiteImporterError):
    """Raised when a chunk could not be written to the sites table."""

    def __init__(
        self,
        message: str,
        chunk_index: Optional[int] = None,
        job_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.chunk_index = chunk_index
        self.job_id = job_id


class LedgerWriteError(SiteImporterError):
    """Raised when the upload job ledger could not be updated."""


class MissingScratchData(SiteImporterError):
    """Raised when the persisted chunk plan for a job is gone."""

    def __init__(self, job_id: str):
        super().__init__(f"No chunk plan stored for upload job {job_id}")
        self.job_id = job_id


class PlanMismatch(SiteImporterError):
    """Raised when re-submitted rows do not reproduce the stored chunk plan."""
