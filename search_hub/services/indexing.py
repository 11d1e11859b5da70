from __future__ import annotations

import hashlib
import logging
import time
import uuid
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import AppError, ErrorContext
from ..repositories.base import as_uuid
from ..repositories.documents import ChunkInput, DocumentRepository
from ..repositories.index_state import DocumentIndexStateRepository
from ..repositories.jobs import JobRepository
from ..schemas.jobs import INDEX_DOCUMENT, IndexDocumentJob
from .chunking import chunk_markdown
from .embeddings import EmbeddingClient, get_embedding_client
from .metrics import ACTIVE_JOBS, record_job_finished
from .queue import Backoff, JobHandle, JobOptions, JobQueue

logger = logging.getLogger(__name__)

INDEX_JOB_OPTIONS = JobOptions(
    attempts=3,
    backoff=Backoff(type="exponential", delay_ms=1000),
    remove_on_complete=True,
    remove_on_fail=False,
)


def index_job_id(tenant_id: str, document_id: str) -> str:
    return f"{tenant_id}-{document_id}"


def content_checksum(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _validate_index_payload(tenant_id: Any, document_id: Any, reindex: bool = False) -> IndexDocumentJob:
    try:
        return IndexDocumentJob(
            tenant_id=str(tenant_id) if tenant_id is not None else None,
            document_id=str(document_id) if document_id is not None else None,
            reindex=reindex,
        )
    except ValidationError as exc:
        raise AppError.validation(
            "INVALID_JOB_PAYLOAD",
            "Invalid index-document job payload",
            context=ErrorContext(
                domain="indexing",
                resource="IndexDocumentJob",
                operation="enqueue_index",
                metadata={"errors": exc.errors(include_url=False, include_context=False)},
            ),
        ) from exc


class IndexJobDispatcher:
    """Queues re-embedding of a document, queue first and database record second.

    The queue submission must succeed before ``index_jobs`` is touched, so a
    database row never claims ``queued`` for work the queue never accepted.
    A failure writing that row afterwards is logged and swallowed: the
    queued job still runs and refreshes the record when it does.
    """

    def __init__(self, db: Session, queue: JobQueue) -> None:
        self.db = db
        self.queue = queue

    def enqueue_index(
        self, tenant_id: str | uuid.UUID, document_id: str | uuid.UUID, *, reindex: bool = False
    ) -> JobHandle:
        job = _validate_index_payload(tenant_id, document_id, reindex)
        job_id = index_job_id(job.tenant_id, job.document_id)

        handle = self.queue.add(
            INDEX_DOCUMENT,
            job.to_payload(),
            JobOptions(
                job_id=job_id,
                attempts=INDEX_JOB_OPTIONS.attempts,
                backoff=INDEX_JOB_OPTIONS.backoff,
                remove_on_complete=INDEX_JOB_OPTIONS.remove_on_complete,
                remove_on_fail=INDEX_JOB_OPTIONS.remove_on_fail,
            ),
        )
        logger.info(
            "queue.enqueue.succeeded job_id=%s tenant_id=%s document_id=%s created=%s",
            handle.id,
            job.tenant_id,
            job.document_id,
            handle.created,
        )

        try:
            with self.db.begin_nested():
                JobRepository(self.db).enqueue_index(as_uuid(job.tenant_id), as_uuid(job.document_id))
        except (AppError, ValueError) as exc:
            logger.warning(
                "queue.enqueue.db_record_failed job_id=%s document_id=%s: %s",
                handle.id,
                job.document_id,
                exc,
            )

        return handle


def process_index_document(
    db: Session,
    payload: dict[str, Any],
    *,
    embedder: Optional[EmbeddingClient] = None,
    attempt: int = 1,
) -> dict[str, Any]:
    """Chunk, embed and store one document; raises so the queue can retry."""
    started = time.perf_counter()
    try:
        job = IndexDocumentJob.model_validate(payload)
    except ValidationError as exc:
        raise AppError.validation("INVALID_JOB_PAYLOAD", "Invalid index-document job payload") from exc

    tenant_id = as_uuid(job.tenant_id)
    document_id = as_uuid(job.document_id)
    jobs = JobRepository(db)
    documents = DocumentRepository(db)
    index_state = DocumentIndexStateRepository(db)

    try:
        ACTIVE_JOBS.labels(job_type="index_document", tenant_id=job.tenant_id).inc()
        jobs.start_processing(tenant_id, document_id)
        db.commit()

        document = documents.find_unique(document_id)
        if document is None or document.tenant_id != tenant_id:
            raise AppError.not_found(
                "DOCUMENT_NOT_FOUND",
                f"Document {document_id} not found for tenant {tenant_id}",
                context=ErrorContext(
                    domain="indexing",
                    resource="Document",
                    resource_id=str(document_id),
                    operation="process_index_document",
                    tenant_id=str(tenant_id),
                ),
            )

        raw_markdown = (document.content or "").strip()
        if not raw_markdown:
            # Index state stays untouched; empty documents are never stale.
            jobs.mark_indexed(tenant_id, document_id)
            db.commit()
            logger.info("job.skipped.empty_content document_id=%s", document_id)
            return {"ok": True, "reason": "empty-content"}

        checksum = content_checksum(raw_markdown)
        previous = index_state.find_unique(document_id)
        if not job.reindex and previous is not None and previous.last_checksum == checksum:
            index_state.upsert(document_id, last_checksum=checksum)
            jobs.mark_indexed(tenant_id, document_id)
            db.commit()
            logger.info("job.skipped.already_indexed document_id=%s checksum=%s", document_id, checksum)
            return {"ok": True, "reason": "already-indexed"}

        chunks = [
            chunk
            for chunk in chunk_markdown(raw_markdown, chunk_size=settings.chunk_size)
            if chunk.search_text.strip()
        ]
        if not chunks:
            index_state.upsert(document_id, last_checksum=checksum)
            jobs.mark_indexed(tenant_id, document_id)
            db.commit()
            logger.info("job.skipped.no_chunks document_id=%s", document_id)
            return {"ok": True, "reason": "no-chunks"}

        if len(chunks) > settings.worker_max_chunk_limit:
            logger.error(
                "job.failed.chunk_limit_exceeded document_id=%s chunks=%s limit=%s",
                document_id,
                len(chunks),
                settings.worker_max_chunk_limit,
            )
            raise AppError.validation(
                "CHUNK_LIMIT_EXCEEDED",
                f"Chunk count {len(chunks)} exceeds limit {settings.worker_max_chunk_limit}",
            )

        vectors = (embedder or get_embedding_client()).embed([chunk.search_text for chunk in chunks])

        documents.replace_chunks_with_embeddings(
            tenant_id=tenant_id,
            document_id=document_id,
            chunks=[ChunkInput(idx=chunk.idx, text=chunk.search_text) for chunk in chunks],
            vectors=vectors,
            checksum=checksum,
        )
        jobs.mark_indexed(tenant_id, document_id)
        db.commit()

        duration = time.perf_counter() - started
        record_job_finished("index_document", job.tenant_id, "success", duration)
        logger.info(
            "job.completed document_id=%s chunks=%s attempt=%s duration_ms=%d",
            document_id,
            len(chunks),
            attempt,
            duration * 1000,
        )
        return {"ok": True, "document_id": str(document_id), "chunks": len(chunks)}
    except Exception as exc:
        db.rollback()
        jobs.mark_failed(tenant_id, document_id, str(exc))
        db.commit()
        record_job_finished("index_document", job.tenant_id, "failure", time.perf_counter() - started)
        logger.error("job.failed document_id=%s attempt=%s: %s", document_id, attempt, exc)
        raise
    finally:
        ACTIVE_JOBS.labels(job_type="index_document", tenant_id=job.tenant_id).dec()
