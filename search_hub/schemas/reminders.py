from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ReminderStatus(str, Enum):
    SCHEDULED = "scheduled"
    NOTIFIED = "notified"
    OVERDUE = "overdue"
    DONE = "done"
    DISMISSED = "dismissed"


PENDING_REMINDER_STATUSES = (ReminderStatus.SCHEDULED.value, ReminderStatus.NOTIFIED.value)


class RemindCommandPayload(BaseModel):
    """One reminder directive as stored in ``DocumentCommand.body``."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    kind: Literal["remind"] = "remind"
    id: Optional[str] = None
    status: ReminderStatus = ReminderStatus.SCHEDULED
    when_text: str = Field(default="", alias="whenText")
    when_iso: Optional[str] = Field(default=None, alias="whenISO")

    def to_body(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")

    def target_time(self) -> Optional[datetime]:
        """Parse ``whenISO``; ``None`` when absent or not a valid timestamp."""
        if not self.when_iso:
            return None
        try:
            parsed = datetime.fromisoformat(self.when_iso.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


class ReminderOut(BaseModel):
    id: str
    document_id: str
    document_title: Optional[str] = None
    user_id: str
    body: dict
    created_at: datetime
