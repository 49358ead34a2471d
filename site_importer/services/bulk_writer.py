"""Bulk writer: idempotent chunk upserts into the sites table."""
import logging
from typing import List, Optional, Protocol, Sequence

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from site_importer.config import get_settings
from site_importer.database import utcnow
from site_importer.exceptions import WriteError
from site_importer.models.site import Site
from site_importer.schemas.site import NormalizedRecord

settings = get_settings()
logger = logging.getLogger(__name__)

# Columns overwritten when a site_id already exists; created_at is kept
UPSERT_COLUMNS = [
    "exp_date",
    "total_rental",
    "total_payment_to_pay",
    "deposit",
    "raw_data",
    "upload_job_id",
    "cancelled",
    "updated_at",
]

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class BulkWriter(Protocol):
    """Target store of the upload executor."""

    def upsert(self, records: Sequence[NormalizedRecord], job_id: str) -> None: ...

    def tag_cancelled(self, job_id: str) -> int: ...


class SiteBulkWriter:
    """
    Upserts chunks with INSERT ... ON CONFLICT (site_id) DO UPDATE.

    Re-sending a chunk rewrites the same values, so the chunk in flight when
    a run crashed can be replayed safely on resume. Transient database
    errors are retried before the chunk is reported as failed.
    """

    def __init__(self, db: Session, max_attempts: Optional[int] = None):
        self.db = db
        self.max_attempts = max_attempts or settings.write_max_attempts

        dialect = db.get_bind().dialect.name
        if dialect not in _INSERTS:
            raise ValueError(f"Bulk upsert is not supported on {dialect}")
        self._insert = _INSERTS[dialect]

    def upsert(self, records: Sequence[NormalizedRecord], job_id: str) -> None:
        """
        Write one chunk.

        Args:
            records: Deduplicated records of the chunk
            job_id: Upload job the rows are attributed to

        Raises:
            WriteError: The chunk failed after all retry attempts
        """
        if not records:
            logger.debug("Empty chunk, skipping upsert")
            return

        now = utcnow()
        rows: List[dict] = []
        for record in records:
            row = record.to_row(job_id)
            row["created_at"] = now
            row["updated_at"] = now
            rows.append(row)

        retryer = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.1, min=0.1, max=5),
            retry=retry_if_exception_type(OperationalError),
            reraise=True,
        )

        try:
            retryer(self._execute_upsert, rows)
        except SQLAlchemyError as e:
            logger.error(f"❌ Upsert of {len(rows)} sites failed for job {job_id}: {e}")
            raise WriteError(str(e), job_id=job_id) from e

        logger.debug(f"✅ Upserted {len(rows)} sites for job {job_id}")

    def _execute_upsert(self, rows: List[dict]) -> None:
        stmt = self._insert(Site).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["site_id"],
            set_={column: stmt.excluded[column] for column in UPSERT_COLUMNS},
        )
        try:
            self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def tag_cancelled(self, job_id: str) -> int:
        """
        Soft-tag the sites last written by a cancelled job.

        Rows are kept; ``cancelled`` marks them for review. Returns the
        number of rows tagged.
        """
        try:
            result = self.db.execute(
                update(Site)
                .where(Site.upload_job_id == job_id, Site.cancelled.is_(False))
                .values(cancelled=True, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise WriteError(f"Could not tag sites of cancelled job: {e}", job_id=job_id) from e

        logger.info(f"🏷️ Tagged {result.rowcount} sites as cancelled for job {job_id}")
        return result.rowcount
