from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from ..repositories.base import try_uuid
from ..schemas.jobs import INDEX_DOCUMENT, SEND_REMINDER
from ..services.context import RequestContext
from ..services.queue import JobQueue, build_job_queue


def require_context(
    request: Request,
    x_user_id: str | None = Header(default=None),
    x_tenant_id: str | None = Header(default=None),
) -> RequestContext:
    """Caller identity forwarded by the gateway after it authenticated the session."""
    user_id = try_uuid(x_user_id)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    tenant_id = try_uuid(x_tenant_id)
    if tenant_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No active tenant selected")

    request.state.user_id = str(user_id)
    request.state.tenant_id = str(tenant_id)
    return RequestContext(user_id=user_id, tenant_id=tenant_id)


def _queue(request: Request, name: str) -> JobQueue:
    queues = getattr(request.app.state, "queues", None)
    if queues is None:
        queues = request.app.state.queues = {}
    if name not in queues:
        queues[name] = build_job_queue(name)
    return queues[name]


def get_index_queue(request: Request) -> JobQueue:
    return _queue(request, INDEX_DOCUMENT)


def get_reminder_queue(request: Request) -> JobQueue:
    return _queue(request, SEND_REMINDER)
