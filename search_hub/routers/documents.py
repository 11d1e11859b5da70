from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from ..dependencies.context import get_index_queue, get_reminder_queue, require_context
from ..dependencies.db import get_db
from ..schemas.documents import (
    ContentUpdated,
    CreateDocumentRequest,
    CreatedDocument,
    DocumentDetails,
    UpdateContentRequest,
    UpdateIconRequest,
    UpdateTitleRequest,
)
from ..services.context import RequestContext
from ..services.documents import DocumentService
from ..services.queue import JobQueue
from ..services.reminders import ReminderService

router = APIRouter(prefix="/documents")


def get_document_service(
    db: Session = Depends(get_db),
    index_queue: JobQueue = Depends(get_index_queue),
    reminder_queue: JobQueue = Depends(get_reminder_queue),
) -> DocumentService:
    return DocumentService(db, index_queue, reminder_queue)


def get_reminder_service(
    db: Session = Depends(get_db),
    reminder_queue: JobQueue = Depends(get_reminder_queue),
) -> ReminderService:
    return ReminderService(db, reminder_queue)


@router.post("", response_model=CreatedDocument, status_code=status.HTTP_201_CREATED)
def create_document(
    payload: CreateDocumentRequest,
    context: RequestContext = Depends(require_context),
    service: DocumentService = Depends(get_document_service),
) -> CreatedDocument:
    return service.create_and_queue_document(payload, context).unwrap()


@router.get("/{document_id}", response_model=DocumentDetails)
def get_document(
    document_id: str,
    context: RequestContext = Depends(require_context),
    service: DocumentService = Depends(get_document_service),
) -> DocumentDetails:
    return service.get_document_details(document_id, context).unwrap()


@router.patch("/{document_id}/title")
def update_title(
    document_id: str,
    payload: UpdateTitleRequest,
    context: RequestContext = Depends(require_context),
    service: DocumentService = Depends(get_document_service),
) -> dict[str, str]:
    return service.update_document_title(document_id, context, payload.title).unwrap()


@router.patch("/{document_id}/content", response_model=ContentUpdated)
def update_content(
    document_id: str,
    payload: UpdateContentRequest,
    context: RequestContext = Depends(require_context),
    service: DocumentService = Depends(get_document_service),
) -> ContentUpdated:
    return service.update_document_content(document_id, context, payload.content).unwrap()


@router.patch("/{document_id}/icon")
def update_icon(
    document_id: str,
    payload: UpdateIconRequest,
    context: RequestContext = Depends(require_context),
    service: DocumentService = Depends(get_document_service),
) -> dict:
    return service.update_document_icon(document_id, context, payload.icon_emoji).unwrap()


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_document(
    document_id: str,
    context: RequestContext = Depends(require_context),
    service: DocumentService = Depends(get_document_service),
) -> Response:
    service.delete_document(document_id, context).unwrap()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{document_id}/reindex", status_code=status.HTTP_202_ACCEPTED)
def reindex_document(
    document_id: str,
    context: RequestContext = Depends(require_context),
    service: DocumentService = Depends(get_document_service),
) -> dict[str, str]:
    job_id = service.queue_document_reindexing(document_id, context).unwrap()
    return {"job_id": job_id}


@router.get("/{document_id}/reminders")
def list_document_reminders(
    document_id: str,
    context: RequestContext = Depends(require_context),
    service: ReminderService = Depends(get_reminder_service),
) -> dict:
    reminders = service.list_document_reminders(document_id, context).unwrap()
    return {"reminders": [reminder.model_dump(mode="json") for reminder in reminders]}


@router.delete("/{document_id}/reminders")
def delete_document_reminders(
    document_id: str,
    context: RequestContext = Depends(require_context),
    service: ReminderService = Depends(get_reminder_service),
) -> dict[str, int]:
    return {"deleted": service.delete_document_reminders(document_id, context).unwrap()}
