from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Uuid, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .base import Base, JSONType


class DocumentCommand(Base):
    """An inline command parsed out of a document; ``body["kind"]`` names it (e.g. ``remind``)."""

    __tablename__ = "document_commands"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id = Column(
        Uuid(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    body = Column(JSONType, nullable=False, default=dict, server_default=text("'{}'"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    document = relationship("Document", back_populates="commands")

    @property
    def kind(self) -> str | None:
        return (self.body or {}).get("kind")

    @property
    def status(self) -> str | None:
        return (self.body or {}).get("status")
