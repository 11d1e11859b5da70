from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import relationship

from .base import Base


class DocumentIndexState(Base):
    __tablename__ = "document_index_state"

    document_id = Column(
        Uuid(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True
    )
    last_checksum = Column(String, nullable=True)
    last_indexed_at = Column(DateTime(timezone=True), nullable=True)

    document = relationship("Document", back_populates="index_state")
