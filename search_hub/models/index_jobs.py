from __future__ import annotations

import uuid
from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SAEnum, ForeignKey, Index, String, Uuid
from sqlalchemy.sql import func

from .base import Base


class IndexJobStatusEnum(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    INDEXED = "indexed"
    FAILED = "failed"


class IndexJob(Base):
    __tablename__ = "index_jobs"
    __table_args__ = (
        Index("ix_index_jobs_tenant_document", "tenant_id", "document_id"),
        Index("ix_index_jobs_status_updated_at", "status", "updated_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    document_id = Column(
        Uuid(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    status = Column(
        SAEnum(
            IndexJobStatusEnum,
            name="index_job_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=IndexJobStatusEnum.QUEUED,
    )
    error = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
