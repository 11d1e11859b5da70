from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..schemas.documents import DocumentMetadata
from .base import Base, JSONType, SearchVectorType


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("ix_documents_tenant_updated_at", "tenant_id", "updated_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(
        Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String, nullable=False)
    source = Column(String, nullable=False, server_default="editor", default="editor")  # "editor" | "url"
    source_url = Column(String, nullable=True)
    content = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSONType, nullable=False, default=dict, server_default=text("'{}'"))
    search_vector = Column(SearchVectorType, nullable=True)
    created_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    chunks = relationship(
        "DocumentChunk",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DocumentChunk.idx",
    )
    index_state = relationship(
        "DocumentIndexState",
        back_populates="document",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    commands = relationship(
        "DocumentCommand",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DocumentCommand.created_at",
    )

    @property
    def meta(self) -> DocumentMetadata:
        return DocumentMetadata.from_raw(self.metadata_)

    @meta.setter
    def meta(self, value: DocumentMetadata) -> None:
        self.metadata_ = value.to_raw()
