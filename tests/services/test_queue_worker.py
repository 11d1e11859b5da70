from __future__ import annotations

from datetime import timedelta

from search_hub.repositories.base import utcnow
from search_hub.schemas.jobs import INDEX_DOCUMENT
from search_hub.services.indexing import INDEX_JOB_OPTIONS
from search_hub.services.queue import JobOptions
from search_hub.workers.queue_worker import QueueWorker

PAYLOAD = {"tenantId": "tenant", "documentId": "document", "reindex": False}


def _options(job_id: str) -> JobOptions:
    return JobOptions(
        job_id=job_id,
        attempts=INDEX_JOB_OPTIONS.attempts,
        backoff=INDEX_JOB_OPTIONS.backoff,
        remove_on_complete=INDEX_JOB_OPTIONS.remove_on_complete,
        remove_on_fail=INDEX_JOB_OPTIONS.remove_on_fail,
    )


def test_run_once_completes_and_removes_jobs(session_factory, index_queue) -> None:
    seen = []
    index_queue.add(INDEX_DOCUMENT, PAYLOAD, _options("job-1"))
    worker = QueueWorker(
        [index_queue],
        {INDEX_DOCUMENT: lambda db, job: seen.append(job.id)},
        session_factory=session_factory,
    )

    assert worker.run_once() == {"completed": 1}
    assert seen == ["job-1"]
    assert index_queue.get_job("job-1") is None
    assert worker.run_once() == {}


def test_failing_job_is_retried_then_kept_as_failed(session_factory, index_queue) -> None:
    index_queue.add(INDEX_DOCUMENT, PAYLOAD, _options("job-1"))

    def explode(db, job):
        raise RuntimeError(f"attempt {job.attempts_made} failed")

    worker = QueueWorker([index_queue], {INDEX_DOCUMENT: explode}, session_factory=session_factory)

    assert worker.run_once() == {"retrying": 1}
    assert index_queue.get_job("job-1").status == "delayed"
    assert worker.run_once() == {}

    later = utcnow() + timedelta(minutes=1)
    assert worker.run_once(now=later) == {"retrying": 1}
    assert worker.run_once(now=later + timedelta(minutes=1)) == {"failed": 1}

    failed = index_queue.get_job("job-1")
    assert failed.status == "failed"
    assert failed.attempts_made == 3
    assert failed.last_error == "attempt 3 failed"


def test_jobs_without_processor_are_left_in_queue(session_factory, index_queue) -> None:
    index_queue.add("unknown-job", PAYLOAD, JobOptions(job_id="job-x"))
    worker = QueueWorker([index_queue], {INDEX_DOCUMENT: lambda db, job: None}, session_factory=session_factory)

    assert worker.run_once() == {}
    assert index_queue.get_job("job-x").status == "waiting"
