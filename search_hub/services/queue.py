"""Database-backed job queue.

Jobs live in ``queue_jobs`` and are keyed by a caller-supplied stable id:
adding a job whose id is already waiting, delayed or active is a no-op, so
repeated submissions for the same work collapse onto one entry. A claim
holds a lock deadline; an active job past it belongs to a dead worker and
is claimed again or reset by the next submission. The queue also keeps the
``sh_queue_depth`` gauge in step with every job that enters or leaves it. The queue
owns its session factory (its own connection lifecycle), separate from the
request session, so a submission commits independently of the caller.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Iterable, Optional

from sqlalchemy import and_, create_engine, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..config import settings
from ..errors import AppError, ErrorContext, ErrorKind
from ..models.queue_jobs import QUEUED_STATUSES, QueueJob, QueueJobStatusEnum
from ..repositories.base import ensure_utc, utcnow
from .metrics import record_dequeued, record_enqueued

logger = logging.getLogger(__name__)


class QueueUnavailableError(AppError):
    def __init__(self, message: str, *, operation: str, queue_name: str) -> None:
        super().__init__(
            message,
            ErrorKind.TRANSIENT,
            "QUEUE_UNAVAILABLE",
            retryable=True,
            retry_after_ms=5000,
            context=ErrorContext(
                origin="queue",
                domain="queue",
                resource=queue_name,
                operation=operation,
            ),
        )


@dataclass(frozen=True)
class Backoff:
    type: str = "exponential"  # exponential | fixed
    delay_ms: int = 1000

    def delay_for(self, attempts_made: int) -> timedelta:
        if self.type == "exponential":
            return timedelta(milliseconds=self.delay_ms * 2 ** max(attempts_made - 1, 0))
        return timedelta(milliseconds=self.delay_ms)


@dataclass(frozen=True)
class JobOptions:
    job_id: Optional[str] = None
    delay_ms: int = 0
    attempts: int = 1
    backoff: Optional[Backoff] = None
    remove_on_complete: bool = True
    remove_on_fail: bool = False
    # Cancel a waiting/delayed job with the same id and insert this one in its place.
    replace_existing: bool = False


@dataclass(frozen=True)
class JobHandle:
    id: str
    name: str
    queue_name: str
    status: str
    payload: dict[str, Any] = field(default_factory=dict)
    attempts_made: int = 0
    max_attempts: int = 1
    delay_ms: int = 0
    run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created: bool = False
    replaced: bool = False

    @classmethod
    def from_row(cls, row: QueueJob, *, created: bool = False, replaced: bool = False) -> "JobHandle":
        return cls(
            id=row.id,
            name=row.name,
            queue_name=row.queue_name,
            status=QueueJobStatusEnum(row.status).value,
            payload=dict(row.payload or {}),
            attempts_made=row.attempts_made or 0,
            max_attempts=row.max_attempts or 1,
            delay_ms=row.delay_ms or 0,
            run_at=ensure_utc(row.run_at) if row.run_at else None,
            last_error=row.last_error,
            created=created,
            replaced=replaced,
        )


class JobQueue:
    def __init__(self, session_factory: sessionmaker, queue_name: str, *, lock_seconds: int | None = None) -> None:
        self.session_factory = session_factory
        self.queue_name = queue_name
        self.lock_duration = timedelta(
            seconds=settings.queue_lock_seconds if lock_seconds is None else lock_seconds
        )

    def _session(self) -> Session:
        return self.session_factory()

    def _unavailable(self, operation: str, exc: Exception) -> QueueUnavailableError:
        logger.error("queue.%s.failed queue=%s: %s", operation, self.queue_name, exc)
        return QueueUnavailableError(
            f"Queue {self.queue_name} unavailable", operation=operation, queue_name=self.queue_name
        )

    @staticmethod
    def _is_live(row: QueueJob, now: datetime) -> bool:
        """Queued, or claimed by a worker whose lock has not yet expired."""
        if row.status in QUEUED_STATUSES:
            return True
        if row.status == QueueJobStatusEnum.ACTIVE:
            return row.locked_until is None or ensure_utc(row.locked_until) > now
        return False

    def _apply(self, row: QueueJob, name: str, payload: dict, options: JobOptions, now: datetime) -> None:
        delay_ms = max(0, int(options.delay_ms))
        row.queue_name = self.queue_name
        row.name = name
        row.payload = dict(payload)
        row.status = QueueJobStatusEnum.DELAYED if delay_ms > 0 else QueueJobStatusEnum.WAITING
        row.attempts_made = 0
        row.max_attempts = max(1, options.attempts)
        row.backoff_type = options.backoff.type if options.backoff else None
        row.backoff_delay_ms = options.backoff.delay_ms if options.backoff else 0
        row.delay_ms = delay_ms
        row.remove_on_complete = options.remove_on_complete
        row.remove_on_fail = options.remove_on_fail
        row.run_at = now + timedelta(milliseconds=delay_ms)
        row.locked_until = None
        row.last_error = None
        row.finished_at = None

    def _finish_failed(self, session: Session, row: QueueJob, now: datetime) -> None:
        if row.remove_on_fail:
            session.delete(row)
        else:
            row.status = QueueJobStatusEnum.FAILED
            row.locked_until = None
            row.finished_at = now

    def _dequeued(self, payload: dict | None) -> None:
        record_dequeued(self.queue_name, (payload or {}).get("tenantId"))

    def add(self, name: str, payload: dict[str, Any], options: JobOptions | None = None) -> JobHandle:
        """Submit a job; returns the accepted entry (``created=False`` when deduplicated).

        ``replaced=True`` marks a submission that took the place of a job still
        counted in the queue depth: a cancelled queued job under
        ``replace_existing``, or an active job whose worker lock expired.
        """
        options = options or JobOptions()
        job_id = options.job_id or uuid.uuid4().hex
        now = utcnow()
        replaced = False
        session = self._session()
        try:
            existing = session.execute(
                select(QueueJob)
                .where(QueueJob.id == job_id)
                .with_for_update()
            ).scalar_one_or_none()

            if existing is not None and self._is_live(existing, now):
                replaceable = options.replace_existing and existing.status != QueueJobStatusEnum.ACTIVE
                if not replaceable:
                    logger.debug("queue.add.deduplicated queue=%s job_id=%s", self.queue_name, job_id)
                    handle = JobHandle.from_row(existing)
                    session.commit()
                    return handle
                session.delete(existing)
                session.flush()
                existing = None
                replaced = True
                logger.debug("queue.add.replaced queue=%s job_id=%s", self.queue_name, job_id)
            elif existing is not None and existing.status == QueueJobStatusEnum.ACTIVE:
                replaced = True
                logger.warning(
                    "queue.add.stalled_reset queue=%s job_id=%s locked_until=%s",
                    self.queue_name,
                    job_id,
                    existing.locked_until,
                )

            row = existing
            if row is None:
                row = QueueJob(id=job_id)
                session.add(row)
            # Retained completed/failed entries are reset and run again.
            self._apply(row, name, payload, options, now)
            session.flush()
            handle = JobHandle.from_row(row, created=True, replaced=replaced)
            session.commit()
        except IntegrityError:
            # Lost a race with a concurrent add() for the same id.
            session.rollback()
            row = session.get(QueueJob, job_id)
            if row is None:
                raise
            return JobHandle.from_row(row)
        except SQLAlchemyError as exc:
            session.rollback()
            raise self._unavailable("add", exc) from exc
        finally:
            session.close()

        if not replaced:
            record_enqueued(self.queue_name, payload.get("tenantId"))
        return handle

    def get_job(self, job_id: str) -> Optional[JobHandle]:
        session = self._session()
        try:
            row = session.get(QueueJob, job_id)
            return JobHandle.from_row(row) if row is not None and row.queue_name == self.queue_name else None
        except SQLAlchemyError as exc:
            raise self._unavailable("get_job", exc) from exc
        finally:
            session.close()

    def remove(self, job_id: str) -> bool:
        """Drop a job that is not currently being processed."""
        session = self._session()
        try:
            row = session.execute(
                select(QueueJob)
                .where(
                    QueueJob.id == job_id,
                    QueueJob.queue_name == self.queue_name,
                    QueueJob.status != QueueJobStatusEnum.ACTIVE,
                )
                .with_for_update()
            ).scalar_one_or_none()
            if row is None:
                session.commit()
                return False
            was_queued = row.status in QUEUED_STATUSES
            payload = dict(row.payload or {})
            session.delete(row)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise self._unavailable("remove", exc) from exc
        finally:
            session.close()

        if was_queued:
            self._dequeued(payload)
        return True

    def claim_due(
        self,
        limit: int = 20,
        *,
        names: Iterable[str] | None = None,
        now: datetime | None = None,
    ) -> list[JobHandle]:
        """Move up to ``limit`` due jobs to ``active`` and hand them to the caller.

        Active jobs whose lock expired (the worker died mid-job) are claimed
        again; the lost run counts as an attempt, and a stalled job with no
        attempts left is failed instead.
        """
        now = now or utcnow()
        session = self._session()
        exhausted: list[dict] = []
        try:
            stmt = (
                select(QueueJob)
                .where(
                    QueueJob.queue_name == self.queue_name,
                    or_(
                        and_(QueueJob.status.in_(QUEUED_STATUSES), QueueJob.run_at <= now),
                        and_(
                            QueueJob.status == QueueJobStatusEnum.ACTIVE,
                            QueueJob.locked_until.is_not(None),
                            QueueJob.locked_until <= now,
                        ),
                    ),
                )
                .order_by(QueueJob.run_at.asc(), QueueJob.created_at.asc())
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            if names is not None:
                stmt = stmt.where(QueueJob.name.in_(list(names)))
            rows = session.execute(stmt).scalars().all()

            claimed: list[QueueJob] = []
            for row in rows:
                if row.status == QueueJobStatusEnum.ACTIVE:
                    row.last_error = "Job stalled: worker lock expired"
                    if (row.attempts_made or 0) >= (row.max_attempts or 1):
                        logger.warning("queue.claim.stalled_failed queue=%s job_id=%s", self.queue_name, row.id)
                        exhausted.append(dict(row.payload or {}))
                        self._finish_failed(session, row, now)
                        continue
                    logger.warning(
                        "queue.claim.stalled_reclaimed queue=%s job_id=%s attempt=%s",
                        self.queue_name,
                        row.id,
                        (row.attempts_made or 0) + 1,
                    )
                row.status = QueueJobStatusEnum.ACTIVE
                row.attempts_made = (row.attempts_made or 0) + 1
                row.locked_until = now + self.lock_duration
                claimed.append(row)
            session.flush()
            handles = [JobHandle.from_row(row) for row in claimed]
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise self._unavailable("claim_due", exc) from exc
        finally:
            session.close()

        for payload in exhausted:
            self._dequeued(payload)
        return handles

    def complete(self, job_id: str) -> None:
        session = self._session()
        try:
            row = session.get(QueueJob, job_id)
            if row is None or row.status != QueueJobStatusEnum.ACTIVE:
                session.commit()
                return
            payload = dict(row.payload or {})
            if row.remove_on_complete:
                session.delete(row)
            else:
                row.status = QueueJobStatusEnum.COMPLETED
                row.locked_until = None
                row.finished_at = utcnow()
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise self._unavailable("complete", exc) from exc
        finally:
            session.close()

        self._dequeued(payload)

    def fail(self, job_id: str, error: str, *, now: datetime | None = None) -> bool:
        """Record a failed attempt. Returns ``True`` when the job will be retried."""
        now = now or utcnow()
        session = self._session()
        try:
            row = session.get(QueueJob, job_id)
            if row is None or row.status != QueueJobStatusEnum.ACTIVE:
                session.commit()
                return False
            row.last_error = error[:2000]
            if (row.attempts_made or 0) < (row.max_attempts or 1):
                backoff = Backoff(row.backoff_type, row.backoff_delay_ms) if row.backoff_type else None
                delay = backoff.delay_for(row.attempts_made) if backoff else timedelta(0)
                row.status = QueueJobStatusEnum.DELAYED if delay else QueueJobStatusEnum.WAITING
                row.run_at = now + delay
                row.locked_until = None
                session.commit()
                return True
            payload = dict(row.payload or {})
            self._finish_failed(session, row, now)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise self._unavailable("fail", exc) from exc
        finally:
            session.close()

        self._dequeued(payload)
        return False

    def counts(self) -> dict[str, int]:
        session = self._session()
        try:
            rows = session.execute(
                select(QueueJob.status, func.count())
                .where(QueueJob.queue_name == self.queue_name)
                .group_by(QueueJob.status)
            ).all()
        except SQLAlchemyError as exc:
            raise self._unavailable("counts", exc) from exc
        finally:
            session.close()
        counts = {status.value: 0 for status in QueueJobStatusEnum}
        for status, count in rows:
            counts[QueueJobStatusEnum(status).value] = count
        return counts


@lru_cache(maxsize=1)
def get_queue_session_factory() -> sessionmaker:
    engine = create_engine(settings.queue_database_url, pool_pre_ping=True)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def build_job_queue(queue_name: str, session_factory: sessionmaker | None = None) -> JobQueue:
    return JobQueue(session_factory or get_queue_session_factory(), queue_name)
