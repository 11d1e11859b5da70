from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from ..errors import AppError, Err, ErrorContext, Ok, Result
from ..models.memberships import MembershipRole
from ..repositories.documents import DocumentRepository
from ..repositories.jobs import JobRepository
from ..repositories.memberships import MembershipRepository
from ..schemas.documents import DocumentStaleRecord
from .context import RequestContext
from .queue import JobQueue
from .staleness import find_stale_documents, sync_stale_documents

logger = logging.getLogger(__name__)

ADMIN_ROLES = (MembershipRole.OWNER, MembershipRole.ADMIN)


class AdminService:
    """Indexing health for a tenant: counts, queue state, recent jobs, stale documents."""

    def __init__(self, db: Session, index_queue: JobQueue) -> None:
        self.db = db
        self.index_queue = index_queue

    def _require_admin(self, context: RequestContext, operation: str) -> Result[None]:
        membership = MembershipRepository(self.db).find_membership(context.tenant_id, context.user_id)
        if membership is None or membership.role not in ADMIN_ROLES:
            return Err(
                AppError.authorization(
                    "ADMIN_ACCESS_REQUIRED",
                    "Only owners and admins can view indexing status",
                    context=ErrorContext(
                        domain="admin",
                        operation=operation,
                        user_id=str(context.user_id),
                        tenant_id=str(context.tenant_id),
                    ),
                )
            )
        return Ok(None)

    def get_indexing_status(self, context: RequestContext) -> Result[dict[str, Any]]:
        guard = self._require_admin(context, "indexing_status")
        if not guard.ok:
            return guard

        jobs = JobRepository(self.db)
        stats = DocumentRepository(self.db).count_indexing_stats(context.tenant_id)
        stats.update(jobs.get_active_status_counts(context.tenant_id))
        queue_counts = self.index_queue.counts()
        return Ok(
            {
                "stats": stats,
                "queue": {
                    "name": self.index_queue.queue_name,
                    "depth": queue_counts["waiting"] + queue_counts["delayed"],
                    "active": queue_counts["active"],
                    "failed": queue_counts["failed"],
                },
                "recent_jobs": jobs.find_recent_jobs(context.tenant_id),
            }
        )

    def list_stale_documents(self, context: RequestContext, limit: int = 100) -> Result[list[DocumentStaleRecord]]:
        guard = self._require_admin(context, "stale_documents")
        if not guard.ok:
            return guard
        records = find_stale_documents(self.db, limit, context.tenant_id)
        # Orphaned chunks of other tenants surface in the query but are not listed here.
        return Ok([record for record in records if record.tenant_id == str(context.tenant_id)])

    def sweep_stale_documents(self, context: RequestContext, limit: int = 100) -> Result[dict[str, int]]:
        guard = self._require_admin(context, "stale_sweep")
        if not guard.ok:
            return guard
        stats = sync_stale_documents(self.db, self.index_queue, limit=limit, tenant_id=context.tenant_id)
        self.db.commit()
        logger.info("admin.stale_sweep tenant_id=%s stats=%s", context.tenant_id, stats)
        return Ok(stats)
