from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

METADATA_VERSION = 1


class DocumentMetadata(BaseModel):
    """Typed view over the document's JSON metadata column.

    Unknown keys written by older clients are preserved in ``extra`` so a
    round trip through this model never drops data.
    """

    model_config = ConfigDict(populate_by_name=True)

    version: int = METADATA_VERSION
    icon_emoji: Optional[str] = Field(default=None, alias="iconEmoji")
    summary: Optional[str] = None
    extra: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | None) -> "DocumentMetadata":
        if not isinstance(raw, Mapping):
            return cls()
        known = {"version", "iconEmoji", "icon_emoji", "summary"}
        return cls(
            version=raw.get("version") or METADATA_VERSION,
            icon_emoji=raw.get("iconEmoji") or raw.get("icon_emoji") or None,
            summary=raw.get("summary"),
            extra={key: value for key, value in raw.items() if key not in known},
        )

    def to_raw(self) -> dict[str, Any]:
        raw: dict[str, Any] = dict(self.extra)
        raw["version"] = self.version
        if self.icon_emoji:
            raw["iconEmoji"] = self.icon_emoji
        if self.summary:
            raw["summary"] = self.summary
        return raw


class CreateDocumentRequest(BaseModel):
    title: Optional[str] = None
    source: Literal["editor", "url"] = "editor"
    source_url: Optional[str] = None
    content: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class UpdateTitleRequest(BaseModel):
    title: str


class UpdateContentRequest(BaseModel):
    content: str


class UpdateIconRequest(BaseModel):
    icon_emoji: Optional[str] = Field(default=None, alias="iconEmoji")

    model_config = ConfigDict(populate_by_name=True)


class CreatedDocument(BaseModel):
    document_id: str
    # None when the queue was unreachable; the stale sweep picks the document up later.
    job_id: Optional[str] = None
    tenant_id: str


class ContentUpdated(BaseModel):
    id: str
    updated_at: datetime
    job_id: Optional[str] = None
    reminders_scheduled: int = 0


class DocumentCommandOut(BaseModel):
    id: str
    body: dict
    user_id: str
    created_at: datetime


class DocumentDetails(BaseModel):
    id: str
    tenant_id: str
    title: str
    content: Optional[str]
    source: str
    source_url: Optional[str]
    metadata: dict[str, Any]
    created_by_id: Optional[str]
    updated_by_id: Optional[str]
    created_at: datetime
    updated_at: datetime
    commands: list[DocumentCommandOut] = Field(default_factory=list)


class DocumentStaleRecord(BaseModel):
    id: str
    tenant_id: str
    title: str
    updated_at: datetime
    last_indexed_at: Optional[datetime] = None
    reason: Literal["never_indexed", "content_changed", "missing_index_state"]
