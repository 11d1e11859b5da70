from __future__ import annotations

import uuid

from search_hub.models.memberships import MembershipRole


def _create(client, headers, **body):
    response = client.post("/documents", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_requests_without_identity_are_rejected(client):
    response = client.post("/documents", json={"title": "x"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Authentication required"


def test_requests_without_tenant_are_rejected(client, context):
    response = client.get("/reminders", headers={"X-User-Id": str(context.user_id)})
    assert response.status_code == 400
    assert response.json()["detail"] == "No active tenant selected"


def test_create_and_fetch_document(client, auth_headers, index_queue):
    created = _create(client, auth_headers, title="Runbook", content="# Steps\n\nRestart the service.")

    assert created["job_id"] == f"{created['tenant_id']}-{created['document_id']}"
    assert index_queue.get_job(created["job_id"]) is not None

    response = client.get(f"/documents/{created['document_id']}", headers=auth_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Runbook"
    assert body["metadata"] == {"version": 1}


def test_unknown_document_returns_error_envelope(client, auth_headers):
    response = client.get(f"/documents/{uuid.uuid4()}", headers=auth_headers)

    assert response.status_code == 404
    error = response.json()["error"]
    assert error["code"] == "DOCUMENT_NOT_FOUND"
    assert error["kind"] == "not_found"
    assert response.headers.get("x-request-id")


def test_update_title_content_and_icon(client, auth_headers, reminder_queue):
    created = _create(client, auth_headers, title="Draft")
    document_id = created["document_id"]

    title = client.patch(f"/documents/{document_id}/title", json={"title": "Final"}, headers=auth_headers)
    assert title.json() == {"id": document_id, "title": "Final"}

    empty = client.patch(f"/documents/{document_id}/title", json={"title": " "}, headers=auth_headers)
    assert empty.status_code == 422
    assert empty.json()["error"]["code"] == "INVALID_DOCUMENT_TITLE"

    content = client.patch(
        f"/documents/{document_id}/content",
        json={"content": "Call the vendor [[remind: friday | iso=2099-05-01T10:00:00Z, id=r_vendor]]"},
        headers=auth_headers,
    )
    assert content.status_code == 200
    assert content.json()["reminders_scheduled"] == 1
    assert reminder_queue.counts()["delayed"] == 1

    icon = client.patch(f"/documents/{document_id}/icon", json={"iconEmoji": "📌"}, headers=auth_headers)
    assert icon.json() == {"id": document_id, "icon_emoji": "📌"}


def test_reminder_endpoints(client, auth_headers):
    created = _create(
        client,
        auth_headers,
        content="[[remind: soon | iso=2099-05-01T10:00:00Z, id=r_one]] [[remind: never | status=done, id=r_two]]",
    )
    document_id = created["document_id"]

    pending = client.get("/reminders/pending", headers=auth_headers).json()["reminders"]
    assert [reminder["body"]["id"] for reminder in pending] == ["r_one"]

    listed = client.get(f"/documents/{document_id}/reminders", headers=auth_headers).json()["reminders"]
    assert len(listed) == 2

    dismissed = client.patch(f"/reminders/{pending[0]['id']}/dismiss", headers=auth_headers)
    assert dismissed.status_code == 200
    assert dismissed.json()["body"]["status"] == "done"
    assert client.get("/reminders/pending", headers=auth_headers).json()["reminders"] == []
    assert len(client.get("/reminders/tenant", headers=auth_headers).json()["reminders"]) == 2

    deleted = client.delete(f"/documents/{document_id}/reminders", headers=auth_headers)
    assert deleted.json() == {"deleted": 2}


def test_reindex_and_delete(client, auth_headers, index_queue):
    created = _create(client, auth_headers, content="Body")
    document_id = created["document_id"]

    reindex = client.post(f"/documents/{document_id}/reindex", headers=auth_headers)
    assert reindex.status_code == 202
    assert reindex.json() == {"job_id": created["job_id"]}

    deleted = client.delete(f"/documents/{document_id}", headers=auth_headers)
    assert deleted.status_code == 204
    assert index_queue.get_job(created["job_id"]) is None
    assert client.get(f"/documents/{document_id}", headers=auth_headers).status_code == 404


def test_members_cannot_delete_or_read_admin(client, auth_headers, tenant, make_member):
    created = _create(client, auth_headers, content="Body")
    member = make_member(MembershipRole.MEMBER)
    member_headers = {"X-User-Id": str(member.id), "X-Tenant-Id": str(tenant.id)}

    response = client.delete(f"/documents/{created['document_id']}", headers=member_headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "DOCUMENT_DELETE_FORBIDDEN"

    assert client.get("/admin/indexing", headers=member_headers).status_code == 403


def test_admin_indexing_endpoints(client, auth_headers):
    created = _create(client, auth_headers, title="Notes", content="Body")

    status = client.get("/admin/indexing", headers=auth_headers).json()
    assert status["stats"]["total_documents"] == 1
    assert status["queue"]["depth"] == 1

    stale = client.get("/admin/indexing/stale", params={"limit": 10}, headers=auth_headers).json()
    assert [document["id"] for document in stale["documents"]] == [created["document_id"]]

    swept = client.post("/admin/indexing/sweep", headers=auth_headers).json()
    assert swept == {"found": 1, "queued": 1, "errors": 0}
