from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..dependencies.context import get_index_queue, require_context
from ..dependencies.db import get_db
from ..services.admin import AdminService
from ..services.context import RequestContext
from ..services.queue import JobQueue

router = APIRouter(prefix="/admin")


def get_admin_service(
    db: Session = Depends(get_db),
    index_queue: JobQueue = Depends(get_index_queue),
) -> AdminService:
    return AdminService(db, index_queue)


@router.get("/indexing")
def indexing_status(
    context: RequestContext = Depends(require_context),
    service: AdminService = Depends(get_admin_service),
) -> dict:
    return service.get_indexing_status(context).unwrap()


@router.get("/indexing/stale")
def stale_documents(
    limit: int = Query(100, ge=1, le=1000),
    context: RequestContext = Depends(require_context),
    service: AdminService = Depends(get_admin_service),
) -> dict:
    records = service.list_stale_documents(context, limit).unwrap()
    return {"documents": [record.model_dump(mode="json") for record in records]}


@router.post("/indexing/sweep")
def sweep_stale_documents(
    limit: int = Query(100, ge=1, le=1000),
    context: RequestContext = Depends(require_context),
    service: AdminService = Depends(get_admin_service),
) -> dict[str, int]:
    return service.sweep_stale_documents(context, limit).unwrap()
