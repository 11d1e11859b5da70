from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from ..errors import AppError, Err, ErrorContext, ErrorKind, Ok, Result
from ..models.documents import Document
from ..models.memberships import MembershipRole, TenantMembership
from ..repositories.documents import DocumentRepository
from ..repositories.memberships import MembershipRepository
from ..schemas.documents import (
    ContentUpdated,
    CreateDocumentRequest,
    CreatedDocument,
    DocumentCommandOut,
    DocumentDetails,
)
from ..schemas.jobs import INDEX_DOCUMENT
from .context import RequestContext
from .indexing import IndexJobDispatcher, index_job_id
from .metrics import record_document_created
from .queue import JobQueue
from .reminder_extractor import extract_remind_commands
from .reminders import ReminderService

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled document"
MANAGER_ROLES = (MembershipRole.OWNER, MembershipRole.ADMIN)


def _error_context(operation: str, context: RequestContext, document_id: Any = None, **metadata) -> ErrorContext:
    return ErrorContext(
        domain="documents",
        resource="Document",
        resource_id=str(document_id) if document_id is not None else None,
        operation=operation,
        user_id=str(context.user_id),
        tenant_id=str(context.tenant_id),
        metadata=metadata,
    )


def to_document_details(document: Document) -> DocumentDetails:
    return DocumentDetails(
        id=str(document.id),
        tenant_id=str(document.tenant_id),
        title=document.title,
        content=document.content,
        source=document.source,
        source_url=document.source_url,
        metadata=document.meta.to_raw(),
        created_by_id=str(document.created_by_id) if document.created_by_id else None,
        updated_by_id=str(document.updated_by_id) if document.updated_by_id else None,
        created_at=document.created_at,
        updated_at=document.updated_at,
        commands=[
            DocumentCommandOut(
                id=str(command.id),
                body=dict(command.body or {}),
                user_id=str(command.user_id),
                created_at=command.created_at,
            )
            for command in document.commands
        ],
    )


class DocumentService:
    """Document mutations and the indexing/reminder work they trigger.

    Entry points return ``Ok``/``Err``; authorization and not-found checks
    run before any write, so a rejected call leaves nothing behind.
    """

    def __init__(self, db: Session, index_queue: JobQueue, reminder_queue: JobQueue) -> None:
        self.db = db
        self.index_queue = index_queue
        self.documents = DocumentRepository(db)
        self.memberships = MembershipRepository(db)
        self.dispatcher = IndexJobDispatcher(db, index_queue)
        self.reminders = ReminderService(db, reminder_queue)

    # --- guards ------------------------------------------------------------
    def _membership(
        self,
        context: RequestContext,
        operation: str,
        document_id: Any = None,
        *,
        roles: Optional[Iterable[MembershipRole]] = None,
        code: str = "DOCUMENT_UPDATE_FORBIDDEN",
        message: str = "You do not have permission to update this document",
    ) -> Result[TenantMembership]:
        membership = self.memberships.find_membership(context.tenant_id, context.user_id)
        allowed = membership is not None and (roles is None or membership.role in tuple(roles))
        if not allowed:
            logger.warning(
                "document.%s.forbidden document_id=%s user_id=%s tenant_id=%s role=%s",
                operation,
                document_id,
                context.user_id,
                context.tenant_id,
                membership.role.value if membership else None,
            )
            return Err(AppError.authorization(code, message, context=_error_context(operation, context, document_id)))
        return Ok(membership)

    def _document(self, document_id: Any, context: RequestContext, operation: str) -> Result[Document]:
        document = self.documents.get_for_tenant(document_id, context.tenant_id)
        if document is None:
            logger.warning("document.%s.not_found document_id=%s", operation, document_id)
            return Err(
                AppError.not_found(
                    "DOCUMENT_NOT_FOUND", "Document not found", context=_error_context(operation, context, document_id)
                )
            )
        return Ok(document)

    def _enqueue(self, document: Document, *, reindex: bool = False) -> Optional[str]:
        """Queue indexing; a transient queue outage is left for the stale sweep."""
        try:
            handle = self.dispatcher.enqueue_index(document.tenant_id, document.id, reindex=reindex)
        except AppError as exc:
            if exc.kind != ErrorKind.TRANSIENT:
                raise
            logger.warning("document.enqueue.deferred document_id=%s: %s", document.id, exc)
            return None
        self.db.commit()
        return handle.id

    def _sync_reminders(self, document: Document, context: RequestContext) -> int:
        reminders = extract_remind_commands(document.content or "")
        result = self.reminders.sync_document_reminders(document.id, context, reminders)
        if not result.ok:
            logger.warning("document.reminders.sync_failed document_id=%s: %s", document.id, result.error)
            return 0
        return len(result.value)

    # --- entry points ------------------------------------------------------
    def create_and_queue_document(
        self, body: CreateDocumentRequest, context: RequestContext
    ) -> Result[CreatedDocument]:
        guard = self._membership(
            context,
            "create",
            code="DOCUMENT_CREATE_FORBIDDEN",
            message="You do not have permission to create documents",
        )
        if not guard.ok:
            return guard

        title = (body.title or "").strip() or DEFAULT_TITLE
        document = self.documents.create(
            tenant_id=context.tenant_id,
            title=title,
            content=body.content,
            source=body.source,
            source_url=body.source_url,
            metadata=body.metadata,
            created_by_id=context.user_id,
        )
        self.db.commit()
        record_document_created(context.tenant_id, document.source)
        logger.info("document.create.succeeded document_id=%s tenant_id=%s", document.id, context.tenant_id)

        job_id = self._enqueue(document)
        if document.content:
            self._sync_reminders(document, context)

        return Ok(CreatedDocument(document_id=str(document.id), job_id=job_id, tenant_id=str(context.tenant_id)))

    def get_document_details(self, document_id: str | uuid.UUID, context: RequestContext) -> Result[DocumentDetails]:
        document = self.documents.get_for_tenant(document_id, context.tenant_id, with_commands=True)
        if document is None:
            return Err(
                AppError.not_found(
                    "DOCUMENT_NOT_FOUND", "Document not found", context=_error_context("get", context, document_id)
                )
            )
        return Ok(to_document_details(document))

    def update_document_title(
        self, document_id: str | uuid.UUID, context: RequestContext, title: str
    ) -> Result[dict[str, str]]:
        guard = self._membership(context, "update_title", document_id)
        if not guard.ok:
            return guard
        found = self._document(document_id, context, "update_title")
        if not found.ok:
            return found
        document = found.value

        new_title = (title or "").strip()
        if not new_title:
            return Err(
                AppError.validation(
                    "INVALID_DOCUMENT_TITLE",
                    "Document title cannot be empty",
                    context=_error_context("update_title", context, document_id, field="title"),
                )
            )

        old_title = document.title
        updated = self.documents.update_title(document.id, new_title)
        self.db.commit()
        logger.info(
            "document.update_title.succeeded document_id=%s old_title=%r new_title=%r",
            document.id,
            old_title,
            updated.title,
        )
        return Ok({"id": str(updated.id), "title": updated.title})

    def update_document_content(
        self, document_id: str | uuid.UUID, context: RequestContext, content: str
    ) -> Result[ContentUpdated]:
        guard = self._membership(context, "update_content", document_id)
        if not guard.ok:
            return guard
        found = self._document(document_id, context, "update_content")
        if not found.ok:
            return found

        document = self.documents.update_content(found.value.id, content, updated_by_id=context.user_id)
        self.db.commit()
        logger.info(
            "document.update_content.succeeded document_id=%s content_length=%s", document.id, len(content)
        )

        job_id = self._enqueue(document)
        scheduled = self._sync_reminders(document, context)
        return Ok(
            ContentUpdated(
                id=str(document.id),
                updated_at=document.updated_at,
                job_id=job_id,
                reminders_scheduled=scheduled,
            )
        )

    def update_document_icon(
        self, document_id: str | uuid.UUID, context: RequestContext, icon_emoji: Optional[str]
    ) -> Result[dict[str, Optional[str]]]:
        guard = self._membership(context, "update_icon", document_id)
        if not guard.ok:
            return guard
        found = self._document(document_id, context, "update_icon")
        if not found.ok:
            return found

        document = self.documents.update_icon_emoji(found.value.id, (icon_emoji or "").strip() or None)
        self.db.commit()
        return Ok({"id": str(document.id), "icon_emoji": document.meta.icon_emoji})

    def delete_document(self, document_id: str | uuid.UUID, context: RequestContext) -> Result[None]:
        guard = self._membership(
            context,
            "delete",
            document_id,
            roles=MANAGER_ROLES,
            code="DOCUMENT_DELETE_FORBIDDEN",
            message="Only owners and admins can delete documents",
        )
        if not guard.ok:
            return guard
        found = self._document(document_id, context, "delete")
        if not found.ok:
            return found
        document = found.value

        title = document.title
        self.documents.delete(document.id, context.tenant_id)
        self.db.commit()

        try:
            self.index_queue.remove(index_job_id(str(context.tenant_id), str(document.id)))
        except AppError as exc:
            logger.warning("document.delete.queue_cleanup_failed document_id=%s: %s", document.id, exc)

        logger.info("document.delete.succeeded document_id=%s title=%r", document.id, title)
        return Ok(None)

    def queue_document_reindexing(self, document_id: str | uuid.UUID, context: RequestContext) -> Result[str]:
        guard = self._membership(
            context,
            "reindex",
            document_id,
            code="DOCUMENT_REINDEX_FORBIDDEN",
            message="You do not have permission to reindex this document",
        )
        if not guard.ok:
            return guard
        found = self._document(document_id, context, "reindex")
        if not found.ok:
            return found

        try:
            handle = self.dispatcher.enqueue_index(context.tenant_id, found.value.id, reindex=True)
        except AppError as exc:
            return Err(exc)
        self.db.commit()
        logger.info("document.reindex.queued document_id=%s job_id=%s queue=%s", found.value.id, handle.id, INDEX_DOCUMENT)
        return Ok(handle.id)
