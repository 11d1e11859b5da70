from .document_chunks import DocumentChunk
from .document_commands import DocumentCommand
from .document_index_state import DocumentIndexState
from .documents import Document
from .index_jobs import IndexJob, IndexJobStatusEnum
from .memberships import MembershipRole, TenantMembership
from .queue_jobs import QueueJob, QueueJobStatusEnum
from .tenants import Tenant
from .users import User

__all__ = [
    "Document",
    "DocumentChunk",
    "DocumentCommand",
    "DocumentIndexState",
    "IndexJob",
    "IndexJobStatusEnum",
    "MembershipRole",
    "QueueJob",
    "QueueJobStatusEnum",
    "Tenant",
    "TenantMembership",
    "User",
]
