from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from sqlalchemy import and_, delete, exists, func, or_, select, text, update
from sqlalchemy.orm import Session, selectinload

from ..errors import AppError, ErrorContext
from ..models.document_chunks import DocumentChunk
from ..models.document_index_state import DocumentIndexState
from ..models.documents import Document
from ..schemas.documents import DocumentMetadata, DocumentStaleRecord
from .base import db_errors, ensure_utc, try_uuid, utcnow
from .index_state import DocumentIndexStateRepository

logger = logging.getLogger(__name__)

# Title weighted above body; body prefers the chunk text the embeddings were built from.
_SEARCH_VECTOR_SQL = text(
    """
    UPDATE documents d
    SET search_vector =
        setweight(to_tsvector('english', d.title), 'A') ||
        setweight(
            to_tsvector(
                'english',
                COALESCE(
                    (
                        SELECT string_agg(dc.content, ' ' ORDER BY dc.idx)
                        FROM document_chunks dc
                        WHERE dc.document_id = d.id
                    ),
                    d.content,
                    ''
                )
            ),
            'B'
        )
    WHERE d.id = :document_id
    """
)


@dataclass(frozen=True)
class ChunkInput:
    idx: int
    text: str


class DocumentRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    # --- reads -------------------------------------------------------------
    def find_unique(self, document_id: str | uuid.UUID) -> Optional[Document]:
        doc_uuid = try_uuid(document_id)
        if doc_uuid is None:
            return None
        with db_errors("documents", "Document", "find_unique", resource_id=str(document_id)):
            return self.db.get(Document, doc_uuid)

    def get_for_tenant(
        self, document_id: str | uuid.UUID, tenant_id: str | uuid.UUID, *, with_commands: bool = False
    ) -> Optional[Document]:
        doc_uuid = try_uuid(document_id)
        tenant_uuid = try_uuid(tenant_id)
        if doc_uuid is None or tenant_uuid is None:
            return None
        stmt = select(Document).where(Document.id == doc_uuid, Document.tenant_id == tenant_uuid)
        if with_commands:
            stmt = stmt.options(selectinload(Document.commands))
        with db_errors("documents", "Document", "get", resource_id=str(document_id)):
            return self.db.execute(stmt).scalar_one_or_none()

    # --- writes ------------------------------------------------------------
    def create(
        self,
        *,
        tenant_id: uuid.UUID,
        title: str,
        created_by_id: Optional[uuid.UUID],
        content: Optional[str] = None,
        source: str = "editor",
        source_url: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Document:
        document = Document(
            tenant_id=tenant_id,
            title=title,
            content=content,
            source=source,
            source_url=source_url,
            metadata_=DocumentMetadata.from_raw(metadata).to_raw(),
            created_by_id=created_by_id,
            updated_by_id=created_by_id,
        )
        with db_errors("documents", "Document", "create"):
            self.db.add(document)
            self.db.flush()
        return document

    def update_content(
        self, document_id: uuid.UUID, content: str, *, updated_by_id: Optional[uuid.UUID] = None
    ) -> Document:
        with db_errors("documents", "Document", "update_content", resource_id=str(document_id)):
            document = self.db.execute(select(Document).where(Document.id == document_id)).scalar_one()
            document.content = content
            document.updated_at = utcnow()
            if updated_by_id is not None:
                document.updated_by_id = updated_by_id
            self.db.flush()
        return document

    def update_title(self, document_id: uuid.UUID, title: str) -> Document:
        with db_errors("documents", "Document", "update_title", resource_id=str(document_id)):
            with self.db.begin_nested():
                document = self.db.execute(select(Document).where(Document.id == document_id)).scalar_one()
                document.title = title
                self.db.flush()
                self.reindex_search_vector(document_id)
        return document

    def update_icon_emoji(self, document_id: uuid.UUID, icon_emoji: Optional[str]) -> Document:
        with db_errors("documents", "Document", "update_icon", resource_id=str(document_id)):
            document = self.db.execute(select(Document).where(Document.id == document_id)).scalar_one()
            meta = document.meta
            meta.icon_emoji = icon_emoji or None
            document.meta = meta
            self.db.flush()
        return document

    def delete(self, document_id: uuid.UUID, tenant_id: uuid.UUID) -> int:
        with db_errors("documents", "Document", "delete", resource_id=str(document_id)):
            result = self.db.execute(
                delete(Document).where(Document.id == document_id, Document.tenant_id == tenant_id)
            )
        return result.rowcount or 0

    def reindex_search_vector(self, document_id: uuid.UUID) -> None:
        """Refresh the full-text search column from title and chunk text."""
        if self.db.get_bind().dialect.name != "postgresql":
            logger.debug("search_vector.skipped dialect=%s", self.db.get_bind().dialect.name)
            return
        self.db.execute(_SEARCH_VECTOR_SQL, {"document_id": document_id})

    def replace_chunks_with_embeddings(
        self,
        *,
        tenant_id: uuid.UUID,
        document_id: uuid.UUID,
        chunks: Sequence[ChunkInput],
        vectors: Sequence[Sequence[float]],
        checksum: str,
    ) -> None:
        """Swap the document's chunk set for a new one in a single transaction.

        Deletes every existing chunk, inserts the new ones, refreshes the
        search vector and upserts the index state. Any failure rolls the
        savepoint back, leaving the previous chunks and index state intact.
        """
        context = ErrorContext(
            domain="documents",
            resource="DocumentChunk",
            resource_id=str(document_id),
            operation="replace_chunks",
        )
        if len(chunks) != len(vectors):
            raise AppError.validation(
                "CHUNK_VECTOR_MISMATCH", "Chunk count and vector count must match", context=context
            )

        with db_errors("documents", "DocumentChunk", "replace_chunks", resource_id=str(document_id)):
            with self.db.begin_nested():
                self.db.execute(delete(DocumentChunk).where(DocumentChunk.document_id == document_id))

                for position, (chunk, vector) in enumerate(zip(chunks, vectors)):
                    if chunk is None or vector is None:
                        raise AppError.validation(
                            "CHUNK_VECTOR_MISMATCH",
                            f"Chunk/vector mismatch at index {position}",
                            context=context,
                        )
                    self.db.add(
                        DocumentChunk(
                            tenant_id=tenant_id,
                            document_id=document_id,
                            idx=chunk.idx,
                            content=chunk.text,
                            embedding=[float(value) for value in vector],
                        )
                    )
                self.db.flush()

                self.reindex_search_vector(document_id)

                DocumentIndexStateRepository(self.db).upsert(document_id, last_checksum=checksum)

        # The ORM collection was bypassed by the bulk delete above.
        document = self.db.get(Document, document_id)
        if document is not None:
            self.db.expire(document, ["chunks", "index_state"])

    # --- staleness ---------------------------------------------------------
    def find_stale_documents(
        self,
        limit: int = 100,
        tenant_id: str | uuid.UUID | None = None,
        *,
        tolerance: timedelta = timedelta(seconds=1),
    ) -> list[DocumentStaleRecord]:
        """Documents whose chunks/embeddings no longer reflect their content.

        Newest ``updated_at`` first, at most ``limit`` rows. The
        ``updated_at > last_indexed_at`` comparison is narrowed in Python by
        ``tolerance`` so that a content write and its index landing in the
        same instant do not bounce the document back into the queue.
        """
        if limit <= 0:
            return []

        has_content = and_(Document.content.is_not(None), Document.content != "")
        has_chunks = exists().where(DocumentChunk.document_id == Document.id)

        stmt = (
            select(
                Document.id,
                Document.tenant_id,
                Document.title,
                Document.updated_at,
                DocumentIndexState.document_id.label("state_document_id"),
                DocumentIndexState.last_indexed_at,
                has_content.label("has_content"),
                has_chunks.label("has_chunks"),
            )
            .outerjoin(DocumentIndexState, DocumentIndexState.document_id == Document.id)
            .order_by(Document.updated_at.desc())
        )

        content_changed = and_(
            has_content,
            or_(
                DocumentIndexState.last_indexed_at.is_(None),
                Document.updated_at > DocumentIndexState.last_indexed_at,
            ),
        )
        # Chunks with no index state are inconsistent and surface for every tenant filter.
        orphaned = and_(DocumentIndexState.document_id.is_(None), has_chunks)

        if tenant_id is not None:
            tenant_uuid = try_uuid(tenant_id)
            if tenant_uuid is None:
                stmt = stmt.where(orphaned)
            else:
                stmt = stmt.where(or_(and_(Document.tenant_id == tenant_uuid, content_changed), orphaned))
        else:
            stmt = stmt.where(or_(content_changed, orphaned))

        records: list[DocumentStaleRecord] = []
        with db_errors("documents", "Document", "find_stale_documents"):
            for row in self.db.execute(stmt.execution_options(yield_per=max(limit, 50))):
                reason = self._stale_reason(row, tolerance)
                if reason is None:
                    continue
                records.append(
                    DocumentStaleRecord(
                        id=str(row.id),
                        tenant_id=str(row.tenant_id),
                        title=row.title,
                        updated_at=ensure_utc(row.updated_at),
                        last_indexed_at=ensure_utc(row.last_indexed_at) if row.last_indexed_at else None,
                        reason=reason,
                    )
                )
                if len(records) >= limit:
                    break
        return records

    @staticmethod
    def _stale_reason(row, tolerance: timedelta) -> Optional[str]:
        if row.state_document_id is None and row.has_chunks:
            return "missing_index_state"
        if not row.has_content:
            return None
        if row.last_indexed_at is None:
            return "never_indexed"
        if ensure_utc(row.updated_at) - ensure_utc(row.last_indexed_at) > tolerance:
            return "content_changed"
        return None

    # --- admin stats -------------------------------------------------------
    def count_indexing_stats(self, tenant_id: uuid.UUID) -> dict[str, int]:
        with db_errors("documents", "Document", "count_indexing_stats"):
            total = self.db.scalar(select(func.count()).select_from(Document).where(Document.tenant_id == tenant_id))
            indexed = self.db.scalar(
                select(func.count())
                .select_from(DocumentIndexState)
                .join(Document, Document.id == DocumentIndexState.document_id)
                .where(Document.tenant_id == tenant_id)
            )
            without_chunks = self.db.scalar(
                select(func.count())
                .select_from(Document)
                .where(
                    Document.tenant_id == tenant_id,
                    Document.content.is_not(None),
                    Document.content != "",
                    ~exists().where(DocumentChunk.document_id == Document.id),
                )
            )
            chunk_count = self.db.scalar(
                select(func.count()).select_from(DocumentChunk).where(DocumentChunk.tenant_id == tenant_id)
            )
        return {
            "total_documents": total or 0,
            "indexed_documents": indexed or 0,
            "with_content_but_no_chunks": without_chunks or 0,
            "total_chunks": chunk_count or 0,
        }

    def touch_updated_at(self, document_id: uuid.UUID, when: datetime) -> None:
        self.db.execute(update(Document).where(Document.id == document_id).values(updated_at=when))
