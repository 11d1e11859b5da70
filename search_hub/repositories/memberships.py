from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models.memberships import TenantMembership
from .base import db_errors


class MembershipRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def find_membership(self, tenant_id: uuid.UUID, user_id: uuid.UUID) -> Optional[TenantMembership]:
        with db_errors("tenants", "TenantMembership", "find_membership"):
            return self.db.execute(
                select(TenantMembership).where(
                    TenantMembership.tenant_id == tenant_id,
                    TenantMembership.user_id == user_id,
                )
            ).scalar_one_or_none()
