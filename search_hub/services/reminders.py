from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..errors import AppError, Err, ErrorContext, ErrorKind, Ok, Result
from ..models.document_commands import DocumentCommand
from ..repositories.base import try_uuid, utcnow
from ..repositories.document_commands import DocumentCommandRepository
from ..repositories.documents import DocumentRepository
from ..schemas.jobs import SEND_REMINDER, SendReminderJob
from ..schemas.reminders import (
    PENDING_REMINDER_STATUSES,
    RemindCommandPayload,
    ReminderOut,
    ReminderStatus,
)
from .context import RequestContext
from .metrics import record_reminder_scheduled
from .queue import JobHandle, JobOptions, JobQueue

logger = logging.getLogger(__name__)


def reminder_job_id(command_id: uuid.UUID | str) -> str:
    return f"reminder-{command_id}"


def to_reminder_out(command: DocumentCommand) -> ReminderOut:
    document = command.document
    return ReminderOut(
        id=str(command.id),
        document_id=str(command.document_id),
        document_title=document.title if document is not None else None,
        user_id=str(command.user_id),
        body=dict(command.body or {}),
        created_at=command.created_at,
    )


def _context(operation: str, context: RequestContext, resource_id: Any = None) -> ErrorContext:
    return ErrorContext(
        domain="reminders",
        resource="DocumentCommand",
        resource_id=str(resource_id) if resource_id is not None else None,
        operation=operation,
        user_id=str(context.user_id),
        tenant_id=str(context.tenant_id),
    )


class ReminderService:
    """Keeps stored reminder commands and their delayed delivery jobs in step with document content."""

    def __init__(self, db: Session, queue: JobQueue) -> None:
        self.db = db
        self.queue = queue
        self.commands = DocumentCommandRepository(db)
        self.documents = DocumentRepository(db)

    def sync_document_reminders(
        self,
        document_id: str | uuid.UUID,
        context: RequestContext,
        reminders: Iterable[RemindCommandPayload],
    ) -> Result[list[JobHandle]]:
        document = self.documents.get_for_tenant(document_id, context.tenant_id)
        if document is None:
            return Err(
                AppError.not_found(
                    "DOCUMENT_NOT_FOUND",
                    "Document not found",
                    context=_context("sync_reminders", context, document_id),
                )
            )

        try:
            self.commands.sync_document_reminders(
                document_id=document.id, user_id=context.user_id, reminders=reminders
            )
        except AppError as exc:
            self.db.rollback()
            if exc.kind in (ErrorKind.VALIDATION, ErrorKind.NOT_FOUND):
                return Err(exc)
            raise
        self.db.commit()

        commands = [
            command
            for command in self.commands.get_user_reminders(context.user_id)
            if command.document_id == document.id
        ]

        scheduled: list[JobHandle] = []
        for command in commands:
            handle = self._schedule(command, context)
            if handle is not None:
                scheduled.append(handle)
        return Ok(scheduled)

    def _schedule(self, command: DocumentCommand, context: RequestContext) -> Optional[JobHandle]:
        try:
            payload = RemindCommandPayload.model_validate(command.body or {})
        except ValidationError:
            logger.warning("reminder.schedule.skipped command_id=%s reason=invalid_body", command.id)
            return None
        if payload.status != ReminderStatus.SCHEDULED:
            return None

        target = payload.target_time()
        if target is None:
            logger.warning(
                "reminder.schedule.skipped command_id=%s when_text=%r reason=unresolved_time",
                command.id,
                payload.when_text,
            )
            return None

        delay_ms = max(0, int((target - utcnow()).total_seconds() * 1000))
        job = SendReminderJob(tenant_id=str(context.tenant_id), document_command_id=str(command.id))
        try:
            handle = self.queue.add(
                SEND_REMINDER,
                job.to_payload(),
                JobOptions(
                    job_id=reminder_job_id(command.id),
                    delay_ms=delay_ms,
                    remove_on_complete=True,
                    remove_on_fail=False,
                    replace_existing=True,
                ),
            )
        except AppError as exc:
            logger.warning("reminder.schedule.failed command_id=%s: %s", command.id, exc)
            return None

        if handle.created and not handle.replaced:
            record_reminder_scheduled(context.tenant_id)
        logger.info(
            "reminder.schedule.succeeded command_id=%s job_id=%s delay_ms=%s",
            command.id,
            handle.id,
            delay_ms,
        )
        return handle

    def dismiss_reminder(self, reminder_id: str | uuid.UUID, context: RequestContext) -> Result[ReminderOut]:
        command = self.commands.get_by_id(reminder_id)
        if command is None or command.document.tenant_id != context.tenant_id:
            return Err(
                AppError.not_found(
                    "REMINDER_NOT_FOUND", "Reminder not found", context=_context("dismiss", context, reminder_id)
                )
            )
        if command.user_id != context.user_id:
            logger.warning("reminder.dismiss.forbidden reminder_id=%s user_id=%s", reminder_id, context.user_id)
            return Err(
                AppError.authorization(
                    "UNAUTHORIZED_REMINDER_ACCESS",
                    "You do not have permission to dismiss this reminder",
                    context=_context("dismiss", context, reminder_id),
                )
            )

        command = self.commands.update_to_done(command.id)
        self.db.commit()
        logger.info("reminder.dismiss.succeeded reminder_id=%s", reminder_id)
        return Ok(to_reminder_out(command))

    def list_user_reminders(self, context: RequestContext) -> Result[list[ReminderOut]]:
        commands = self.commands.get_user_reminders(context.user_id)
        return Ok([to_reminder_out(c) for c in commands if c.document.tenant_id == context.tenant_id])

    def list_pending_reminders(self, context: RequestContext) -> Result[list[ReminderOut]]:
        result = self.list_user_reminders(context)
        return Ok([r for r in result.value if r.body.get("status") in PENDING_REMINDER_STATUSES])

    def list_tenant_reminders(self, context: RequestContext) -> Result[list[ReminderOut]]:
        return Ok([to_reminder_out(c) for c in self.commands.get_tenant_reminders(context.tenant_id)])

    def list_document_reminders(
        self, document_id: str | uuid.UUID, context: RequestContext
    ) -> Result[list[ReminderOut]]:
        document = self.documents.get_for_tenant(document_id, context.tenant_id)
        if document is None:
            return Err(
                AppError.not_found(
                    "DOCUMENT_NOT_FOUND", "Document not found", context=_context("list", context, document_id)
                )
            )
        return Ok([to_reminder_out(c) for c in self.commands.get_reminders_for_document(document.id)])

    def delete_document_reminders(self, document_id: str | uuid.UUID, context: RequestContext) -> Result[int]:
        """Delete a document's reminders; queued deliveries are left to no-op in the consumer."""
        document = self.documents.get_for_tenant(document_id, context.tenant_id)
        if document is None:
            return Err(
                AppError.not_found(
                    "DOCUMENT_NOT_FOUND", "Document not found", context=_context("delete", context, document_id)
                )
            )
        deleted = self.commands.delete_document_reminders(document.id)
        self.db.commit()
        return Ok(deleted)


def process_send_reminder(db: Session, payload: dict[str, Any]) -> dict[str, Any]:
    """Deliver a due reminder: mark it notified unless it was dismissed or removed meanwhile."""
    try:
        job = SendReminderJob.model_validate(payload)
    except ValidationError as exc:
        raise AppError.validation("INVALID_JOB_PAYLOAD", "Invalid send-reminder job payload") from exc

    commands = DocumentCommandRepository(db)
    command = commands.get_by_id(job.document_command_id)
    tenant_id = try_uuid(job.tenant_id)
    if command is None or command.document.tenant_id != tenant_id:
        logger.info("reminder.deliver.skipped command_id=%s reason=missing", job.document_command_id)
        return {"ok": True, "reason": "missing"}

    body = dict(command.body or {})
    if body.get("status") != ReminderStatus.SCHEDULED.value:
        logger.info(
            "reminder.deliver.skipped command_id=%s reason=status status=%s",
            command.id,
            body.get("status"),
        )
        return {"ok": True, "reason": "not-scheduled"}

    body["status"] = ReminderStatus.NOTIFIED.value
    body["notifiedAt"] = utcnow().isoformat()
    commands.update_body(command.id, body)
    db.commit()
    logger.info("reminder.deliver.notified command_id=%s user_id=%s", command.id, command.user_id)
    return {"ok": True, "reason": "notified", "command_id": str(command.id)}
