from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import AppError, ErrorKind
from ..repositories.documents import DocumentRepository
from ..schemas.documents import DocumentStaleRecord
from .indexing import IndexJobDispatcher
from .metrics import STALE_DOCUMENTS_QUEUED_COUNTER
from .queue import JobQueue

logger = logging.getLogger(__name__)


def find_stale_documents(
    db: Session,
    limit: int = 100,
    tenant_id: str | uuid.UUID | None = None,
    *,
    tolerance: Optional[timedelta] = None,
) -> list[DocumentStaleRecord]:
    """Documents needing a reindex, newest ``updated_at`` first.

    Stale means any of: content but never indexed; content changed after the
    last index (beyond the configured tolerance); chunks present without an
    index state row.
    """
    if tolerance is None:
        tolerance = timedelta(seconds=settings.staleness_tolerance_seconds)
    return DocumentRepository(db).find_stale_documents(limit, tenant_id, tolerance=tolerance)


def sync_stale_documents(
    db: Session,
    queue: JobQueue,
    *,
    limit: Optional[int] = None,
    tenant_id: str | uuid.UUID | None = None,
) -> dict[str, int]:
    """Sweep stale documents into the index queue."""
    stats = {"found": 0, "queued": 0, "errors": 0}
    try:
        stale = find_stale_documents(db, limit or settings.stale_sweep_limit, tenant_id)
    except AppError as exc:
        if exc.kind == ErrorKind.TRANSIENT:
            raise
        logger.error("stale_sweep.query_failed tenant_id=%s: %s", tenant_id, exc)
        stats["errors"] += 1
        return stats

    stats["found"] = len(stale)
    dispatcher = IndexJobDispatcher(db, queue)
    for record in stale:
        try:
            dispatcher.enqueue_index(record.tenant_id, record.id)
            stats["queued"] += 1
            STALE_DOCUMENTS_QUEUED_COUNTER.labels(result="queued").inc()
        except AppError as exc:
            stats["errors"] += 1
            STALE_DOCUMENTS_QUEUED_COUNTER.labels(result="error").inc()
            logger.warning(
                "stale_sweep.enqueue_failed document_id=%s reason=%s: %s", record.id, record.reason, exc
            )
    if stale:
        logger.info("stale_sweep.completed %s", stats)
    return stats
