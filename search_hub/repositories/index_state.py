from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..models.document_index_state import DocumentIndexState
from .base import db_errors, utcnow


class DocumentIndexStateRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def find_unique(self, document_id: uuid.UUID) -> Optional[DocumentIndexState]:
        with db_errors("indexing", "DocumentIndexState", "find_unique", resource_id=str(document_id)):
            return self.db.get(DocumentIndexState, document_id)

    def upsert(
        self,
        document_id: uuid.UUID,
        *,
        last_checksum: Optional[str] = None,
        last_indexed_at: Optional[datetime] = None,
    ) -> DocumentIndexState:
        """Create or refresh the index state; ``last_checksum=None`` keeps the stored one."""
        with db_errors("indexing", "DocumentIndexState", "upsert", resource_id=str(document_id)):
            state = self.db.get(DocumentIndexState, document_id)
            if state is None:
                state = DocumentIndexState(document_id=document_id)
                self.db.add(state)
            if last_checksum is not None:
                state.last_checksum = last_checksum
            state.last_indexed_at = last_indexed_at or utcnow()
            self.db.flush()
        return state
