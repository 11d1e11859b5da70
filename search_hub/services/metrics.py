from __future__ import annotations

import uuid

from prometheus_client import Counter, Gauge, Histogram


QUEUE_DEPTH = Gauge(
    "sh_queue_depth",
    "Jobs submitted to a queue and not yet finished",
    ["queue_name", "tenant_id"],
)

ACTIVE_JOBS = Gauge(
    "sh_active_jobs",
    "Jobs currently being processed by a worker",
    ["job_type", "tenant_id"],
)

JOBS_PROCESSED_COUNTER = Counter(
    "sh_jobs_processed_total",
    "Jobs processed by result",
    ["job_type", "result"],
)

JOB_DURATION = Histogram(
    "sh_job_duration_seconds",
    "Job processing duration",
    ["job_type", "tenant_id", "result"],
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120),
)

AI_REQUEST_DURATION = Histogram(
    "sh_ai_request_duration_seconds",
    "Latency of calls to AI providers",
    ["provider", "operation"],
)

DOCUMENTS_CREATED_COUNTER = Counter(
    "sh_documents_created_total",
    "Documents created per tenant",
    ["tenant_id", "source_type"],
)

REMINDERS_SCHEDULED_COUNTER = Counter(
    "sh_reminders_scheduled_total",
    "Reminder deliveries submitted to the queue per tenant",
    ["tenant_id"],
)

STALE_DOCUMENTS_QUEUED_COUNTER = Counter(
    "sh_stale_documents_queued_total",
    "Stale documents re-queued by the sweep",
    ["result"],
)


def _tenant_label(tenant_id: uuid.UUID | str | None) -> str:
    return str(tenant_id) if tenant_id else "unknown"


def record_enqueued(queue_name: str, tenant_id: uuid.UUID | str | None) -> None:
    QUEUE_DEPTH.labels(queue_name=queue_name, tenant_id=_tenant_label(tenant_id)).inc()


def record_dequeued(queue_name: str, tenant_id: uuid.UUID | str | None) -> None:
    QUEUE_DEPTH.labels(queue_name=queue_name, tenant_id=_tenant_label(tenant_id)).dec()


def record_document_created(tenant_id: uuid.UUID | str | None, source_type: str) -> None:
    DOCUMENTS_CREATED_COUNTER.labels(tenant_id=_tenant_label(tenant_id), source_type=source_type).inc()


def record_reminder_scheduled(tenant_id: uuid.UUID | str | None) -> None:
    REMINDERS_SCHEDULED_COUNTER.labels(tenant_id=_tenant_label(tenant_id)).inc()


def record_job_finished(job_type: str, tenant_id: uuid.UUID | str | None, result: str, duration: float) -> None:
    JOBS_PROCESSED_COUNTER.labels(job_type=job_type, result=result).inc()
    JOB_DURATION.labels(job_type=job_type, tenant_id=_tenant_label(tenant_id), result=result).observe(duration)
