from __future__ import annotations

import uuid

import pytest

from search_hub.errors import ErrorKind
from search_hub.models.memberships import MembershipRole
from search_hub.repositories import DocumentCommandRepository, DocumentRepository, JobRepository
from search_hub.schemas.documents import CreateDocumentRequest
from search_hub.services.context import RequestContext
from search_hub.services.documents import DEFAULT_TITLE, DocumentService
from search_hub.services.indexing import index_job_id
from search_hub.services.reminders import ReminderService
from search_hub.workers.queue_worker import QueueWorker, default_processors

REMINDER_CONTENT = "Ship it\n\n[[remind: tomorrow 9am | iso=2025-01-02T09:00:00Z]]"


@pytest.fixture()
def service(db, index_queue, reminder_queue) -> DocumentService:
    return DocumentService(db, index_queue, reminder_queue)


@pytest.fixture()
def member_context(tenant, make_member) -> RequestContext:
    return RequestContext(user_id=make_member(MembershipRole.MEMBER).id, tenant_id=tenant.id)


def _create(service, context, **fields):
    return service.create_and_queue_document(CreateDocumentRequest(**fields), context).unwrap()


def test_create_queues_indexing(service, context, index_queue, db) -> None:
    created = _create(service, context, title="  Plan  ", content="# Plan\n\nDo things.")

    assert created.job_id == index_job_id(created.tenant_id, created.document_id)
    assert index_queue.get_job(created.job_id).status == "waiting"
    document = DocumentRepository(db).find_unique(created.document_id)
    assert document.title == "Plan"
    assert JobRepository(db).find_by_document_id(document.id) is not None


def test_create_defaults_title(service, member_context, db) -> None:
    created = _create(service, member_context)
    assert DocumentRepository(db).find_unique(created.document_id).title == DEFAULT_TITLE


def test_create_requires_membership(service, tenant, db) -> None:
    stranger = RequestContext(user_id=uuid.uuid4(), tenant_id=tenant.id)

    result = service.create_and_queue_document(CreateDocumentRequest(title="x"), stranger)

    assert result.kind == ErrorKind.AUTHORIZATION
    assert result.error.code == "DOCUMENT_CREATE_FORBIDDEN"


def test_create_survives_queue_outage(db, context, failing_queue, reminder_queue) -> None:
    service = DocumentService(db, failing_queue, reminder_queue)

    created = _create(service, context, content="Body")

    assert created.job_id is None
    assert DocumentRepository(db).find_unique(created.document_id) is not None
    assert JobRepository(db).find_by_document_id(uuid.UUID(created.document_id)) is None


def test_update_content_requeues_and_syncs_reminders(service, context, index_queue, reminder_queue) -> None:
    created = _create(service, context, content="Draft")

    updated = service.update_document_content(
        created.document_id, context, "Draft\n\n%%remind: later | iso=2099-01-01T00:00:00Z, id=r_later%%"
    ).unwrap()

    assert updated.job_id == created.job_id
    assert updated.reminders_scheduled == 1
    assert reminder_queue.counts()["delayed"] == 1
    assert index_queue.counts()["waiting"] == 1


def test_update_title_validates_and_scopes(service, context, member_context) -> None:
    created = _create(service, context)

    renamed = service.update_document_title(created.document_id, member_context, " Renamed ").unwrap()
    assert renamed == {"id": created.document_id, "title": "Renamed"}

    empty = service.update_document_title(created.document_id, context, "   ")
    assert empty.kind == ErrorKind.VALIDATION

    missing = service.update_document_title(str(uuid.uuid4()), context, "x")
    assert missing.kind == ErrorKind.NOT_FOUND


def test_update_icon(service, context) -> None:
    created = _create(service, context, metadata={"iconEmoji": "📄", "custom": 1})

    result = service.update_document_icon(created.document_id, context, "🚀").unwrap()
    details = service.get_document_details(created.document_id, context).unwrap()

    assert result["icon_emoji"] == "🚀"
    assert details.metadata["iconEmoji"] == "🚀"
    assert details.metadata["custom"] == 1


def test_get_document_is_tenant_scoped(service, context, owner) -> None:
    created = _create(service, context, content="Secret")
    other = RequestContext(user_id=owner.id, tenant_id=uuid.uuid4())

    assert service.get_document_details(created.document_id, other).kind == ErrorKind.NOT_FOUND
    assert service.get_document_details("not-a-uuid", context).kind == ErrorKind.NOT_FOUND


def test_delete_is_limited_to_owners_and_admins(service, context, member_context, index_queue, db) -> None:
    created = _create(service, context, content="Body")

    denied = service.delete_document(created.document_id, member_context)
    assert denied.error.code == "DOCUMENT_DELETE_FORBIDDEN"

    assert service.delete_document(created.document_id, context).ok
    assert DocumentRepository(db).find_unique(created.document_id) is None
    assert index_queue.get_job(created.job_id) is None


def test_reindex_returns_stable_job_id(service, context, index_queue) -> None:
    created = _create(service, context, content="Body")

    job_id = service.queue_document_reindexing(created.document_id, context).unwrap()

    assert job_id == created.job_id
    assert index_queue.counts()["waiting"] == 1


def test_reindex_reports_queue_outage(db, context, failing_queue, reminder_queue, service) -> None:
    created = _create(service, context, content="Body")

    result = DocumentService(db, failing_queue, reminder_queue).queue_document_reindexing(
        created.document_id, context
    )

    assert result.kind == ErrorKind.TRANSIENT


def test_end_to_end_reminder_lifecycle(
    db, session_factory, context, service, index_queue, reminder_queue, embedder
) -> None:
    created = _create(service, context, title="Launch", content=REMINDER_CONTENT)

    [command] = DocumentCommandRepository(db).get_reminders_for_document(uuid.UUID(created.document_id))
    assert command.body["whenISO"] == "2025-01-02T09:00:00Z"
    assert command.body["status"] == "scheduled"
    job = reminder_queue.get_job(f"reminder-{command.id}")
    assert job.status == "waiting"
    assert job.delay_ms == 0

    worker = QueueWorker(
        [index_queue, reminder_queue], default_processors(embedder), session_factory=session_factory
    )
    assert worker.run_once() == {"completed": 2}

    db.rollback()
    assert DocumentCommandRepository(db).get_by_id(command.id).body["status"] == "notified"

    dismissed = ReminderService(db, reminder_queue).dismiss_reminder(command.id, context).unwrap()
    assert dismissed.body["status"] == "done"

    updated = service.update_document_content(created.document_id, context, REMINDER_CONTENT).unwrap()

    assert updated.reminders_scheduled == 0
    assert reminder_queue.get_job(f"reminder-{command.id}") is None
    [after] = DocumentCommandRepository(db).get_reminders_for_document(uuid.UUID(created.document_id))
    assert after.id == command.id
    assert after.body["status"] == "done"
