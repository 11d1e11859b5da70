from __future__ import annotations

import logging
import sys

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..db.session import session_scope
from ..repositories.jobs import JobRepository
from ..schemas.jobs import INDEX_DOCUMENT, SEND_REMINDER, SYNC_STALE_DOCUMENTS, SyncStaleDocumentsJob
from ..services.queue import build_job_queue
from ..services.staleness import sync_stale_documents
from .queue_worker import QueueWorker, default_processors


logger = logging.getLogger(__name__)


def build_worker() -> QueueWorker:
    return QueueWorker(
        [build_job_queue(INDEX_DOCUMENT), build_job_queue(SEND_REMINDER)],
        default_processors(),
        batch_size=settings.worker_batch_size,
    )


def run_queue_job(worker: QueueWorker | None = None) -> None:
    stats = (worker or build_worker()).run_once()
    if stats:
        logger.info("Processed queue jobs: %s", stats)


def run_stale_sweep_job(job: SyncStaleDocumentsJob | None = None) -> None:
    job = job or SyncStaleDocumentsJob(limit=settings.stale_sweep_limit)
    queue = build_job_queue(INDEX_DOCUMENT)
    with session_scope() as session:
        stats = sync_stale_documents(session, queue, limit=job.limit)
    if stats.get("found"):
        logger.info("%s: %s", SYNC_STALE_DOCUMENTS, stats)


def run_cleanup_job() -> None:
    with session_scope() as session:
        deleted = JobRepository(session).delete_old_indexed_jobs(settings.index_job_retention_days)
    if deleted:
        logger.info("Deleted %s indexed job records", deleted)


def run_once() -> None:
    run_stale_sweep_job()
    run_queue_job()
    run_cleanup_job()


def configure_scheduler() -> BlockingScheduler:
    worker = build_worker()
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        run_queue_job,
        IntervalTrigger(seconds=settings.worker_poll_seconds),
        args=[worker],
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(run_stale_sweep_job, IntervalTrigger(minutes=settings.stale_sweep_interval_minutes))
    scheduler.add_job(run_cleanup_job, CronTrigger(hour=3, minute=0))
    return scheduler


def main() -> None:
    logging.basicConfig(level=logging.INFO, handlers=[logging.StreamHandler(sys.stdout)])

    if len(sys.argv) > 1 and sys.argv[1] == "run-once":
        logger.info("Running indexing worker once")
        run_once()
        return

    scheduler = configure_scheduler()
    logger.info("Starting indexing worker scheduler")
    scheduler.start()


if __name__ == "__main__":
    main()
