from __future__ import annotations

import logging
import uuid
from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, joinedload

from ..errors import AppError, ErrorContext
from ..models.document_commands import DocumentCommand
from ..models.documents import Document
from ..schemas.reminders import RemindCommandPayload, ReminderStatus
from .base import db_errors, try_uuid, utcnow

logger = logging.getLogger(__name__)

REMIND_KIND = "remind"


def _is_reminder():
    return DocumentCommand.body["kind"].as_string() == REMIND_KIND


def _reminder_key(command: DocumentCommand) -> str:
    reminder_id = (command.body or {}).get("id")
    if isinstance(reminder_id, str) and reminder_id:
        return reminder_id
    return str(command.id)


def _merge_body(existing: dict, incoming: dict) -> dict:
    """Incoming directive body, keeping a terminal/notified status the content cannot express.

    A directive re-extracted from unchanged content comes back as
    ``scheduled``; if the stored command was dismissed or already delivered
    for the same target time, that state wins. Changing the time re-arms it.
    """
    stored_status = existing.get("status")
    if (
        stored_status
        and stored_status != ReminderStatus.SCHEDULED.value
        and incoming.get("status") == ReminderStatus.SCHEDULED.value
        and existing.get("whenISO") == incoming.get("whenISO")
    ):
        merged = dict(incoming)
        merged["status"] = stored_status
        for key in ("dismissedAt", "notifiedAt"):
            if key in existing:
                merged[key] = existing[key]
        return merged
    return dict(incoming)


class DocumentCommandRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_by_id(self, command_id: str | uuid.UUID) -> Optional[DocumentCommand]:
        command_uuid = try_uuid(command_id)
        if command_uuid is None:
            return None
        with db_errors("documentCommands", "DocumentCommand", "get_by_id", resource_id=str(command_id)):
            return self.db.execute(
                select(DocumentCommand)
                .options(joinedload(DocumentCommand.document))
                .where(DocumentCommand.id == command_uuid)
            ).scalar_one_or_none()

    def update_body(self, command_id: uuid.UUID, body: dict) -> DocumentCommand:
        with db_errors("documentCommands", "DocumentCommand", "update_body", resource_id=str(command_id)):
            command = self.db.execute(
                select(DocumentCommand).where(DocumentCommand.id == command_id)
            ).scalar_one()
            # JSON columns are not mutation-tracked; always assign a new dict.
            command.body = dict(body)
            self.db.flush()
        return command

    def update_to_done(self, command_id: uuid.UUID) -> DocumentCommand:
        with db_errors("documentCommands", "DocumentCommand", "update_to_done", resource_id=str(command_id)):
            command = self.db.get(DocumentCommand, command_id)
            if command is None:
                raise AppError.not_found(
                    "REMINDER_NOT_FOUND",
                    "Reminder not found",
                    context=ErrorContext(
                        origin="database",
                        domain="documentCommands",
                        resource="DocumentCommand",
                        resource_id=str(command_id),
                        operation="update_to_done",
                    ),
                )
            body = dict(command.body or {})
            body["status"] = ReminderStatus.DONE.value
            body["dismissedAt"] = utcnow().isoformat()
            command.body = body
            self.db.flush()
        return command

    def sync_document_reminders(
        self,
        *,
        document_id: uuid.UUID,
        user_id: uuid.UUID,
        reminders: Iterable[RemindCommandPayload],
    ) -> list[DocumentCommand]:
        """Make the stored reminder commands of a document match ``reminders``.

        Commands are matched on the stable reminder id carried in the body
        (falling back to the row id). Unmatched incoming reminders are
        inserted, matched ones updated, and stored ones no longer present
        are deleted, all inside one savepoint.
        """
        context = ErrorContext(
            origin="database",
            domain="documentCommands",
            resource="DocumentCommand",
            resource_id=str(document_id),
            operation="sync_document_reminders",
        )
        incoming = list(reminders)
        for reminder in incoming:
            if not reminder.id or not reminder.id.strip():
                raise AppError.validation("REMINDER_ID_REQUIRED", "Reminder id is required", context=context)

        with db_errors("documentCommands", "DocumentCommand", "sync_document_reminders", resource_id=str(document_id)):
            with self.db.begin_nested():
                existing = self.db.execute(
                    select(DocumentCommand).where(DocumentCommand.document_id == document_id, _is_reminder())
                ).scalars().all()
                by_key = {_reminder_key(command): command for command in existing}

                seen: set[str] = set()
                synced: list[DocumentCommand] = []
                for reminder in incoming:
                    key = reminder.id
                    if key in seen:
                        logger.warning("reminder.sync.duplicate_id document_id=%s reminder_id=%s", document_id, key)
                        continue
                    seen.add(key)
                    body = reminder.to_body()
                    command = by_key.get(key)
                    if command is None:
                        command = DocumentCommand(document_id=document_id, user_id=user_id, body=body)
                        self.db.add(command)
                    else:
                        command.body = _merge_body(command.body or {}, body)
                    synced.append(command)

                for key, command in by_key.items():
                    if key not in seen:
                        self.db.delete(command)

                self.db.flush()
        return synced

    def _reminder_query(self):
        return (
            select(DocumentCommand)
            .options(joinedload(DocumentCommand.document))
            .where(_is_reminder())
            .order_by(DocumentCommand.created_at.desc(), DocumentCommand.id)
        )

    def get_user_reminders(self, user_id: uuid.UUID) -> list[DocumentCommand]:
        with db_errors("documentCommands", "DocumentCommand", "get_user_reminders"):
            return list(
                self.db.execute(self._reminder_query().where(DocumentCommand.user_id == user_id)).scalars().all()
            )

    def get_tenant_reminders(self, tenant_id: uuid.UUID) -> list[DocumentCommand]:
        with db_errors("documentCommands", "DocumentCommand", "get_tenant_reminders"):
            return list(
                self.db.execute(
                    self._reminder_query()
                    .join(Document, Document.id == DocumentCommand.document_id)
                    .where(Document.tenant_id == tenant_id)
                ).scalars().all()
            )

    def get_reminders_for_document(
        self, document_id: uuid.UUID, user_id: Optional[uuid.UUID] = None
    ) -> list[DocumentCommand]:
        stmt = self._reminder_query().where(DocumentCommand.document_id == document_id)
        if user_id is not None:
            stmt = stmt.where(DocumentCommand.user_id == user_id)
        with db_errors("documentCommands", "DocumentCommand", "get_reminders_for_document", resource_id=str(document_id)):
            return list(self.db.execute(stmt).scalars().all())

    def delete_document_reminders(self, document_id: uuid.UUID) -> int:
        with db_errors("documentCommands", "DocumentCommand", "delete_document_reminders", resource_id=str(document_id)):
            result = self.db.execute(
                delete(DocumentCommand)
                .where(DocumentCommand.document_id == document_id, _is_reminder())
                .execution_options(synchronize_session=False)
            )
        return result.rowcount or 0
