from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..dependencies.context import get_index_queue, get_reminder_queue
from ..dependencies.db import get_db
from ..services.queue import JobQueue

router = APIRouter()


@router.get("/health")
def health() -> dict[str, bool]:
    return {"ok": True}


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
def readyz(
    db: Session = Depends(get_db),
    index_queue: JobQueue = Depends(get_index_queue),
    reminder_queue: JobQueue = Depends(get_reminder_queue),
) -> dict[str, object]:
    """Ready once the document store answers and both queues can be counted."""
    db.execute(text("SELECT 1"))
    return {
        "status": "ready",
        "queues": {queue.queue_name: queue.counts() for queue in (index_queue, reminder_queue)},
    }
