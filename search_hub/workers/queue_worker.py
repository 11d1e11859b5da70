from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Iterable, Mapping, Optional

from sqlalchemy.orm import Session

from ..db.session import SessionLocal, session_scope
from ..schemas.jobs import INDEX_DOCUMENT, SEND_REMINDER
from ..services.embeddings import EmbeddingClient
from ..services.indexing import process_index_document
from ..services.queue import JobHandle, JobQueue
from ..services.reminders import process_send_reminder

logger = logging.getLogger(__name__)

Processor = Callable[[Session, JobHandle], Any]


def default_processors(embedder: Optional[EmbeddingClient] = None) -> dict[str, Processor]:
    def index_document(db: Session, job: JobHandle) -> Any:
        return process_index_document(db, job.payload, embedder=embedder, attempt=job.attempts_made)

    def send_reminder(db: Session, job: JobHandle) -> Any:
        return process_send_reminder(db, job.payload)

    return {INDEX_DOCUMENT: index_document, SEND_REMINDER: send_reminder}


class QueueWorker:
    """Claims due jobs from each queue and runs the processor registered for the job name."""

    def __init__(
        self,
        queues: Iterable[JobQueue],
        processors: Mapping[str, Processor],
        *,
        session_factory=SessionLocal,
        batch_size: int = 20,
    ) -> None:
        self.queues = list(queues)
        self.processors = dict(processors)
        self.session_factory = session_factory
        self.batch_size = batch_size

    def run_once(self, *, now=None) -> dict[str, int]:
        stats: dict[str, int] = defaultdict(int)
        for queue in self.queues:
            jobs = queue.claim_due(self.batch_size, names=self.processors.keys(), now=now)
            for job in jobs:
                stats[self._run(queue, job)] += 1
        return dict(stats)

    def _run(self, queue: JobQueue, job: JobHandle) -> str:
        processor = self.processors[job.name]
        try:
            with session_scope(self.session_factory) as session:
                result = processor(session, job)
        except Exception as exc:
            logger.exception("worker.job.failed queue=%s job_id=%s attempt=%s", queue.queue_name, job.id, job.attempts_made)
            retrying = queue.fail(job.id, str(exc))
            return "retrying" if retrying else "failed"

        queue.complete(job.id)
        logger.info("worker.job.completed queue=%s job_id=%s result=%s", queue.queue_name, job.id, result)
        return "completed"
