from __future__ import annotations

import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class RequestContext:
    """Caller identity resolved for a request or job."""

    user_id: uuid.UUID
    tenant_id: uuid.UUID
