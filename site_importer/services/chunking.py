"""Deduplication and chunk planning for site uploads."""
import hashlib
import json
import logging
import math
from typing import Any, Iterable, List, Mapping, Sequence

from site_importer.schemas.site import NormalizedRecord
from site_importer.schemas.upload import ChunkPlan
from site_importer.services.transformer import transform_rows

DEFAULT_CHUNK_SIZE = 250

logger = logging.getLogger(__name__)


def deduplicate(records: Iterable[NormalizedRecord]) -> List[NormalizedRecord]:
    """
    Collapse records by site_id, keeping the last occurrence.

    A single upsert statement cannot touch the same conflict key twice, and
    later rows in a spreadsheet override earlier ones. Each key keeps the
    position where it was first seen.
    """
    unique: dict[str, NormalizedRecord] = {}
    for record in records:
        unique[record.site_id] = record
    return list(unique.values())


def plan_chunks(records: Sequence[NormalizedRecord], chunk_size: int) -> List[List[NormalizedRecord]]:
    """Split records into ceil(n / chunk_size) contiguous slices, in order."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    total_chunks = math.ceil(len(records) / chunk_size)
    return [
        list(records[index * chunk_size:(index + 1) * chunk_size])
        for index in range(total_chunks)
    ]


def compute_plan_digest(records: Sequence[NormalizedRecord], chunk_size: int) -> str:
    """SHA-256 over the canonical JSON of the records and the chunk size."""
    canonical = json.dumps(
        {
            "chunk_size": chunk_size,
            "records": [record.model_dump(mode="json") for record in records],
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_plan(
    rows: Iterable[Mapping[str, Any]],
    source_name: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> ChunkPlan:
    """Transform, deduplicate and cut raw rows into a ChunkPlan."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    transformed = transform_rows(rows)
    records = deduplicate(transformed)

    duplicates_removed = len(transformed) - len(records)
    if duplicates_removed > 0:
        logger.warning(f"⚠️ Removed {duplicates_removed} duplicate site ids from {source_name}")

    plan = ChunkPlan(
        records=records,
        chunk_size=chunk_size,
        total_chunks=math.ceil(len(records) / chunk_size),
        source_name=source_name,
    )
    logger.info(
        f"📦 Planned {plan.total_chunks} chunks of up to {chunk_size} "
        f"for {plan.record_count} sites from {source_name}"
    )
    return plan
