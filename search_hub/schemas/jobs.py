from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

# Queue names shared by producers and the worker.
INDEX_DOCUMENT = "index-document"
SEND_REMINDER = "send-reminder"
SYNC_STALE_DOCUMENTS = "sync-stale-documents"

JobId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=128)]


class IndexDocumentJob(BaseModel):
    """Minimal payload identifying the document to (re-)embed."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    tenant_id: JobId = Field(alias="tenantId")
    document_id: JobId = Field(alias="documentId")
    reindex: bool = False

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)


class SendReminderJob(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    tenant_id: JobId = Field(alias="tenantId")
    document_command_id: JobId = Field(alias="documentCommandId")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)


class SyncStaleDocumentsJob(BaseModel):
    model_config = ConfigDict(extra="forbid")

    limit: int = Field(default=100, gt=0, le=10_000)
