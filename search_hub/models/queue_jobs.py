from __future__ import annotations

from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.sql import func

from .base import Base, JSONType


class QueueJobStatusEnum(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


QUEUED_STATUSES = (
    QueueJobStatusEnum.WAITING,
    QueueJobStatusEnum.DELAYED,
)


class QueueJob(Base):
    __tablename__ = "queue_jobs"
    __table_args__ = (
        Index("ix_queue_jobs_queue_status_run_at", "queue_name", "status", "run_at"),
    )

    # Caller-supplied stable id; a second add() with the same id collapses onto this row.
    id = Column(String, primary_key=True)
    queue_name = Column(String, nullable=False)
    name = Column(String, nullable=False)
    payload = Column(JSONType, nullable=False, default=dict, server_default=text("'{}'"))
    status = Column(
        SAEnum(
            QueueJobStatusEnum,
            name="queue_job_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=QueueJobStatusEnum.WAITING,
    )
    attempts_made = Column(Integer, nullable=False, default=0, server_default=text("0"))
    max_attempts = Column(Integer, nullable=False, default=1, server_default=text("1"))
    backoff_type = Column(String, nullable=True)  # "exponential" | "fixed"
    backoff_delay_ms = Column(Integer, nullable=False, default=0, server_default=text("0"))
    delay_ms = Column(BigInteger, nullable=False, default=0, server_default=text("0"))
    remove_on_complete = Column(Boolean, nullable=False, default=True)
    remove_on_fail = Column(Boolean, nullable=False, default=False)
    run_at = Column(DateTime(timezone=True), nullable=False, index=True)
    # Set on claim; an active job past this deadline is treated as stalled.
    locked_until = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(String, nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
