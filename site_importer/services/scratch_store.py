"""Scratch payload store: durable chunk plans keyed by upload job id."""
import logging
from typing import Optional, Protocol

import redis
from sqlalchemy.orm import Session

from site_importer.config import get_settings
from site_importer.models.scratch_payload import ScratchPayload
from site_importer.schemas.upload import ChunkPlan

settings = get_settings()
logger = logging.getLogger(__name__)


class ScratchStore(Protocol):
    """Where a job's chunk plan lives between setup and completion."""

    def set(self, job_id: str, plan: ChunkPlan) -> None: ...

    def get(self, job_id: str) -> Optional[ChunkPlan]: ...

    def delete(self, job_id: str) -> None: ...


class DatabaseScratchStore:
    """Chunk plans stored as JSON in the scratch_payloads table."""

    def __init__(self, db: Session):
        self.db = db

    def set(self, job_id: str, plan: ChunkPlan) -> None:
        self.db.merge(ScratchPayload(job_id=job_id, payload=plan.model_dump_json()))
        self.db.commit()
        logger.debug(f"💾 Stored chunk plan for job {job_id} ({plan.record_count} records)")

    def get(self, job_id: str) -> Optional[ChunkPlan]:
        entry = self.db.get(ScratchPayload, job_id, populate_existing=True)
        if entry is None:
            return None
        return ChunkPlan.model_validate_json(entry.payload)

    def delete(self, job_id: str) -> None:
        self.db.query(ScratchPayload).filter(ScratchPayload.job_id == job_id).delete()
        self.db.commit()
        logger.debug(f"🧹 Removed chunk plan for job {job_id}")


class RedisScratchStore:
    """Chunk plans stored as JSON strings under ``upload_plan:{job_id}``."""

    key_prefix = "upload_plan:"

    def __init__(self, client: redis.Redis, ttl_seconds: Optional[int] = None):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def _key(self, job_id: str) -> str:
        return f"{self.key_prefix}{job_id}"

    def set(self, job_id: str, plan: ChunkPlan) -> None:
        self.client.set(self._key(job_id), plan.model_dump_json(), ex=self.ttl_seconds)
        logger.debug(f"💾 Stored chunk plan for job {job_id} in Redis")

    def get(self, job_id: str) -> Optional[ChunkPlan]:
        payload = self.client.get(self._key(job_id))
        if payload is None:
            return None
        return ChunkPlan.model_validate_json(payload)

    def delete(self, job_id: str) -> None:
        self.client.delete(self._key(job_id))


def get_scratch_store(db: Session) -> ScratchStore:
    """Scratch store selected by the ``scratch_backend`` setting."""
    if settings.scratch_backend == "redis":
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return RedisScratchStore(client, ttl_seconds=settings.scratch_ttl_seconds)
    if settings.scratch_backend != "database":
        raise ValueError(f"Unknown scratch backend: {settings.scratch_backend}")
    return DatabaseScratchStore(db)
