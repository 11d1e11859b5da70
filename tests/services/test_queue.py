from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.exc import OperationalError

from search_hub.errors import ErrorKind
from search_hub.repositories.base import utcnow
from search_hub.schemas.jobs import INDEX_DOCUMENT
from search_hub.services.queue import Backoff, JobOptions, JobQueue, QueueUnavailableError

PAYLOAD = {"tenantId": "t1", "documentId": "d1", "reindex": False}


def test_backoff_exponential_doubles_per_attempt() -> None:
    backoff = Backoff(type="exponential", delay_ms=1000)
    assert backoff.delay_for(1) == timedelta(seconds=1)
    assert backoff.delay_for(2) == timedelta(seconds=2)
    assert backoff.delay_for(3) == timedelta(seconds=4)
    assert Backoff(type="fixed", delay_ms=500).delay_for(3) == timedelta(milliseconds=500)


def test_queue_unavailable_is_transient() -> None:
    error = QueueUnavailableError("down", operation="add", queue_name="index-document")
    assert error.kind == ErrorKind.TRANSIENT
    assert error.retryable is True
    assert error.status_code == 503
    assert error.to_dict()["details"]["resource"] == "index-document"


def test_add_deduplicates_pending_job_ids(index_queue) -> None:
    first = index_queue.add("index-document", PAYLOAD, JobOptions(job_id="t1-d1"))
    second = index_queue.add("index-document", {**PAYLOAD, "reindex": True}, JobOptions(job_id="t1-d1"))

    assert first.created is True
    assert second.created is False
    assert second.id == first.id == "t1-d1"
    assert second.payload["reindex"] is False
    assert index_queue.counts()["waiting"] == 1


def test_delayed_job_is_not_claimed_before_run_at(index_queue) -> None:
    handle = index_queue.add("send-reminder", {"x": 1}, JobOptions(job_id="r1", delay_ms=60_000))
    assert handle.status == "delayed"
    assert handle.delay_ms == 60_000

    assert index_queue.claim_due() == []
    claimed = index_queue.claim_due(now=utcnow() + timedelta(minutes=2))
    assert [job.id for job in claimed] == ["r1"]
    assert claimed[0].status == "active"
    assert claimed[0].attempts_made == 1


def test_claim_due_filters_by_job_name(index_queue) -> None:
    index_queue.add("index-document", PAYLOAD, JobOptions(job_id="a"))
    index_queue.add("other", PAYLOAD, JobOptions(job_id="b"))

    claimed = index_queue.claim_due(names=["index-document"])
    assert [job.id for job in claimed] == ["a"]
    assert index_queue.get_job("b").status == "waiting"


def test_fail_retries_with_backoff_then_retains_failed_job(index_queue) -> None:
    options = JobOptions(job_id="t1-d1", attempts=3, backoff=Backoff("exponential", 1000))
    index_queue.add("index-document", PAYLOAD, options)

    now = utcnow()
    job = index_queue.claim_due(now=now)[0]
    assert index_queue.fail(job.id, "boom", now=now) is True
    retried = index_queue.get_job(job.id)
    assert retried.status == "delayed"
    assert retried.last_error == "boom"
    assert retried.run_at == now + timedelta(seconds=1)

    later = now + timedelta(seconds=5)
    job = index_queue.claim_due(now=later)[0]
    assert job.attempts_made == 2
    assert index_queue.fail(job.id, "boom again", now=later) is True
    assert index_queue.get_job(job.id).run_at == later + timedelta(seconds=2)

    latest = later + timedelta(seconds=10)
    job = index_queue.claim_due(now=latest)[0]
    assert job.attempts_made == 3
    assert index_queue.fail(job.id, "final", now=latest) is False
    failed = index_queue.get_job(job.id)
    assert failed.status == "failed"
    assert failed.last_error == "final"


def test_failed_job_is_reset_when_added_again(index_queue) -> None:
    index_queue.add("index-document", PAYLOAD, JobOptions(job_id="t1-d1", attempts=1))
    job = index_queue.claim_due()[0]
    index_queue.fail(job.id, "broken")

    handle = index_queue.add("index-document", PAYLOAD, JobOptions(job_id="t1-d1", attempts=1))
    assert handle.created is True
    assert handle.status == "waiting"
    assert handle.attempts_made == 0
    assert handle.last_error is None


def test_complete_removes_job_when_configured(index_queue) -> None:
    index_queue.add("index-document", PAYLOAD, JobOptions(job_id="keep", remove_on_complete=False))
    index_queue.add("index-document", PAYLOAD, JobOptions(job_id="drop"))
    for job in index_queue.claim_due():
        index_queue.complete(job.id)

    assert index_queue.get_job("drop") is None
    assert index_queue.get_job("keep").status == "completed"


def test_replace_existing_swaps_delayed_job(reminder_queue) -> None:
    reminder_queue.add("send-reminder", {"v": 1}, JobOptions(job_id="reminder-1", delay_ms=60_000))
    replaced = reminder_queue.add(
        "send-reminder", {"v": 2}, JobOptions(job_id="reminder-1", delay_ms=0, replace_existing=True)
    )

    assert replaced.created is True
    assert replaced.status == "waiting"
    assert replaced.payload == {"v": 2}
    counts = reminder_queue.counts()
    assert counts["waiting"] == 1
    assert counts["delayed"] == 0


def test_replace_existing_leaves_active_job_alone(reminder_queue) -> None:
    reminder_queue.add("send-reminder", {"v": 1}, JobOptions(job_id="reminder-1"))
    reminder_queue.claim_due()

    handle = reminder_queue.add("send-reminder", {"v": 2}, JobOptions(job_id="reminder-1", replace_existing=True))
    assert handle.created is False
    assert handle.status == "active"
    assert handle.payload == {"v": 1}


def test_remove_skips_active_jobs(index_queue) -> None:
    index_queue.add("index-document", PAYLOAD, JobOptions(job_id="waiting"))
    assert index_queue.remove("waiting") is True
    assert index_queue.get_job("waiting") is None

    index_queue.add("index-document", PAYLOAD, JobOptions(job_id="busy"))
    index_queue.claim_due()
    assert index_queue.remove("busy") is False


def test_queues_sharing_a_table_are_isolated(index_queue, reminder_queue) -> None:
    index_queue.add("index-document", PAYLOAD, JobOptions(job_id="shared"))
    assert reminder_queue.get_job("shared") is None
    assert reminder_queue.claim_due() == []



def _depth(queue, tenant_id) -> float:
    value = REGISTRY.get_sample_value("sh_queue_depth", {"queue_name": queue.queue_name, "tenant_id": tenant_id})
    return value or 0.0


def test_stalled_active_job_is_reclaimed_once_lock_expires(queue_session_factory) -> None:
    queue = JobQueue(queue_session_factory, INDEX_DOCUMENT, lock_seconds=60)
    queue.add("index-document", PAYLOAD, JobOptions(job_id="t1-d1", attempts=3))

    now = utcnow()
    assert [job.id for job in queue.claim_due(now=now)] == ["t1-d1"]
    assert queue.claim_due(now=now + timedelta(seconds=30)) == []

    [reclaimed] = queue.claim_due(now=now + timedelta(seconds=61))
    assert reclaimed.id == "t1-d1"
    assert reclaimed.status == "active"
    assert reclaimed.attempts_made == 2
    assert reclaimed.last_error == "Job stalled: worker lock expired"


def test_stalled_job_without_attempts_left_is_failed(queue_session_factory) -> None:
    queue = JobQueue(queue_session_factory, INDEX_DOCUMENT, lock_seconds=60)
    queue.add("index-document", PAYLOAD, JobOptions(job_id="t1-d1", attempts=1))

    now = utcnow()
    queue.claim_due(now=now)
    assert queue.claim_due(now=now + timedelta(days=7)) == []
    assert queue.get_job("t1-d1").status == "failed"

    handle = queue.add("index-document", PAYLOAD, JobOptions(job_id="t1-d1", attempts=1))
    assert handle.created is True
    assert handle.status == "waiting"


def test_add_resets_active_job_whose_lock_expired(queue_session_factory) -> None:
    queue = JobQueue(queue_session_factory, INDEX_DOCUMENT, lock_seconds=0)
    queue.add("index-document", PAYLOAD, JobOptions(job_id="t1-d1", attempts=3))
    queue.claim_due()

    handle = queue.add("index-document", PAYLOAD, JobOptions(job_id="t1-d1", attempts=3))

    assert handle.created is True
    assert handle.replaced is True
    assert handle.status == "waiting"
    assert handle.attempts_made == 0
    assert [job.id for job in queue.claim_due()] == ["t1-d1"]


def test_queue_depth_tracks_jobs_entering_and_leaving(index_queue, reminder_queue) -> None:
    tenant_id = str(uuid.uuid4())
    payload = {**PAYLOAD, "tenantId": tenant_id}

    index_queue.add("index-document", payload, JobOptions(job_id="a"))
    index_queue.add("index-document", payload, JobOptions(job_id="a"))
    index_queue.add("index-document", payload, JobOptions(job_id="b"))
    assert _depth(index_queue, tenant_id) == 2

    assert index_queue.remove("b") is True
    assert _depth(index_queue, tenant_id) == 1

    [job] = index_queue.claim_due()
    index_queue.complete(job.id)
    assert _depth(index_queue, tenant_id) == 0

    for delay_ms in (60_000, 120_000, 180_000):
        reminder_queue.add(
            "send-reminder", payload, JobOptions(job_id="reminder-1", delay_ms=delay_ms, replace_existing=True)
        )
    assert _depth(reminder_queue, tenant_id) == 1
    assert reminder_queue.counts()["delayed"] == 1

class _BrokenSession:
    def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    def rollback(self) -> None:
        pass

    def close(self) -> None:
        pass


def test_database_failure_surfaces_as_queue_unavailable(index_queue, monkeypatch) -> None:
    monkeypatch.setattr(index_queue, "_session", _BrokenSession)

    with pytest.raises(QueueUnavailableError):
        index_queue.add("index-document", PAYLOAD, JobOptions(job_id="t1-d1"))
    with pytest.raises(QueueUnavailableError):
        index_queue.counts()
