from .document_commands import DocumentCommandRepository
from .documents import ChunkInput, DocumentRepository
from .index_state import DocumentIndexStateRepository
from .jobs import JobRepository
from .memberships import MembershipRepository

__all__ = [
    "ChunkInput",
    "DocumentCommandRepository",
    "DocumentIndexStateRepository",
    "DocumentRepository",
    "JobRepository",
    "MembershipRepository",
]
