from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from ..models.documents import Document
from ..models.index_jobs import IndexJob, IndexJobStatusEnum
from .base import db_errors, utcnow

ACTIVE_JOB_STATUSES = (
    IndexJobStatusEnum.QUEUED,
    IndexJobStatusEnum.PROCESSING,
    IndexJobStatusEnum.FAILED,
)


class JobRepository:
    """Persisted per-document indexing status (``index_jobs``)."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def enqueue_index(self, tenant_id: uuid.UUID, document_id: uuid.UUID) -> IndexJob:
        """Reset the latest job for the document to ``queued``, or create one."""
        with db_errors("indexing", "IndexJob", "enqueue", resource_id=str(document_id)):
            job = self.db.execute(
                select(IndexJob)
                .where(IndexJob.tenant_id == tenant_id, IndexJob.document_id == document_id)
                .order_by(IndexJob.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            if job is None:
                job = IndexJob(tenant_id=tenant_id, document_id=document_id)
                self.db.add(job)
            job.status = IndexJobStatusEnum.QUEUED
            job.error = None
            self.db.flush()
        return job

    def _transition(
        self,
        tenant_id: uuid.UUID,
        document_id: uuid.UUID,
        from_statuses: tuple[IndexJobStatusEnum, ...],
        operation: str,
        **values,
    ) -> int:
        with db_errors("indexing", "IndexJob", operation, resource_id=str(document_id)):
            result = self.db.execute(
                update(IndexJob)
                .where(
                    IndexJob.tenant_id == tenant_id,
                    IndexJob.document_id == document_id,
                    IndexJob.status.in_(from_statuses),
                )
                .values(updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount or 0

    def start_processing(self, tenant_id: uuid.UUID, document_id: uuid.UUID) -> int:
        # failed -> processing covers queue retries of the same job
        return self._transition(
            tenant_id,
            document_id,
            (IndexJobStatusEnum.QUEUED, IndexJobStatusEnum.FAILED),
            "start_processing",
            status=IndexJobStatusEnum.PROCESSING,
        )

    def mark_indexed(self, tenant_id: uuid.UUID, document_id: uuid.UUID) -> int:
        return self._transition(
            tenant_id,
            document_id,
            (IndexJobStatusEnum.PROCESSING,),
            "mark_indexed",
            status=IndexJobStatusEnum.INDEXED,
            error=None,
        )

    def mark_failed(self, tenant_id: uuid.UUID, document_id: uuid.UUID, error: str) -> int:
        return self._transition(
            tenant_id,
            document_id,
            (IndexJobStatusEnum.PROCESSING,),
            "mark_failed",
            status=IndexJobStatusEnum.FAILED,
            error=error[:2000],
        )

    def find_by_document_id(self, document_id: uuid.UUID) -> Optional[IndexJob]:
        with db_errors("indexing", "IndexJob", "find_by_document_id", resource_id=str(document_id)):
            return self.db.execute(
                select(IndexJob)
                .where(IndexJob.document_id == document_id)
                .order_by(IndexJob.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()

    def get_active_status_counts(self, tenant_id: uuid.UUID) -> dict[str, int]:
        """Counts of queued/processing/failed jobs; indexed jobs are history, not work."""
        with db_errors("indexing", "IndexJob", "active_status_counts"):
            rows = self.db.execute(
                select(IndexJob.status, func.count())
                .where(IndexJob.tenant_id == tenant_id, IndexJob.status.in_(ACTIVE_JOB_STATUSES))
                .group_by(IndexJob.status)
            ).all()
        counts = {status.value: 0 for status in ACTIVE_JOB_STATUSES}
        for status, count in rows:
            counts[IndexJobStatusEnum(status).value] = count
        return counts

    def delete_old_indexed_jobs(self, older_than_days: int) -> int:
        cutoff = utcnow() - timedelta(days=older_than_days)
        with db_errors("indexing", "IndexJob", "delete_old_indexed"):
            result = self.db.execute(
                delete(IndexJob)
                .where(IndexJob.status == IndexJobStatusEnum.INDEXED, IndexJob.updated_at < cutoff)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount or 0

    def find_recent_jobs(self, tenant_id: uuid.UUID, limit: int = 50) -> list[dict]:
        with db_errors("indexing", "IndexJob", "find_recent"):
            rows = self.db.execute(
                select(IndexJob, Document.title)
                .join(Document, Document.id == IndexJob.document_id)
                .where(IndexJob.tenant_id == tenant_id)
                .order_by(IndexJob.updated_at.desc())
                .limit(limit)
            ).all()
        return [
            {
                "id": str(job.id),
                "document_id": str(job.document_id),
                "document_title": title,
                "status": job.status.value,
                "error": job.error,
                "created_at": job.created_at,
                "updated_at": job.updated_at,
            }
            for job, title in rows
        ]
