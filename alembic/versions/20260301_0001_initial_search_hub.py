"""Initial search hub schema"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "20260301_0001_initial_search_hub"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    membership_role = postgresql.ENUM("owner", "admin", "member", name="membership_role", create_type=False)
    index_job_status = postgresql.ENUM(
        "queued", "processing", "indexed", "failed", name="index_job_status", create_type=False
    )
    queue_job_status = postgresql.ENUM(
        "waiting", "delayed", "active", "completed", "failed", name="queue_job_status", create_type=False
    )
    bind = op.get_bind()
    membership_role.create(bind, checkfirst=True)
    index_job_status.create(bind, checkfirst=True)
    queue_job_status.create(bind, checkfirst=True)

    op.create_table(
        "tenants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        *_timestamps(),
    )

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "tenant_memberships",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", membership_role, nullable=False, server_default="member"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_tenant_memberships_tenant_user"),
    )

    op.create_table(
        "documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=False, server_default="editor"),
        sa.Column("source_url", sa.String(), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column("search_vector", postgresql.TSVECTOR(), nullable=True),
        sa.Column("created_by_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("updated_by_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_documents_tenant_id", "documents", ["tenant_id"])
    op.create_index("ix_documents_tenant_updated_at", "documents", ["tenant_id", "updated_at"])
    op.create_index("ix_documents_search_vector", "documents", ["search_vector"], postgresql_using="gin")

    op.create_table(
        "document_chunks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("document_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("idx", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("document_id", "idx", name="uq_document_chunks_document_idx"),
    )
    op.create_index("ix_document_chunks_tenant_id", "document_chunks", ["tenant_id"])
    op.create_index("ix_document_chunks_document_id", "document_chunks", ["document_id"])

    op.create_table(
        "document_index_state",
        sa.Column("document_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True, nullable=False),
        sa.Column("last_checksum", sa.String(), nullable=True),
        sa.Column("last_indexed_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "document_commands",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("document_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("body", postgresql.JSONB(), server_default=sa.text("'{}'::jsonb"), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_document_commands_document_id", "document_commands", ["document_id"])
    op.create_index("ix_document_commands_user_id", "document_commands", ["user_id"])

    op.create_table(
        "index_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("document_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", index_job_status, nullable=False, server_default="queued"),
        sa.Column("error", sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_index_jobs_tenant_document", "index_jobs", ["tenant_id", "document_id"])
    op.create_index("ix_index_jobs_status_updated_at", "index_jobs", ["status", "updated_at"])

    op.create_table(
        "queue_jobs",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("queue_name", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column("status", queue_job_status, nullable=False, server_default="waiting"),
        sa.Column("attempts_made", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("backoff_type", sa.String(), nullable=True),
        sa.Column("backoff_delay_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("delay_ms", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("remove_on_complete", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("remove_on_fail", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.String(), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_queue_jobs_run_at", "queue_jobs", ["run_at"])
    op.create_index("ix_queue_jobs_queue_status_run_at", "queue_jobs", ["queue_name", "status", "run_at"])


def downgrade() -> None:
    op.drop_index("ix_queue_jobs_queue_status_run_at", table_name="queue_jobs")
    op.drop_index("ix_queue_jobs_run_at", table_name="queue_jobs")
    op.drop_table("queue_jobs")
    op.drop_index("ix_index_jobs_status_updated_at", table_name="index_jobs")
    op.drop_index("ix_index_jobs_tenant_document", table_name="index_jobs")
    op.drop_table("index_jobs")
    op.drop_index("ix_document_commands_user_id", table_name="document_commands")
    op.drop_index("ix_document_commands_document_id", table_name="document_commands")
    op.drop_table("document_commands")
    op.drop_table("document_index_state")
    op.drop_index("ix_document_chunks_document_id", table_name="document_chunks")
    op.drop_index("ix_document_chunks_tenant_id", table_name="document_chunks")
    op.drop_table("document_chunks")
    op.drop_index("ix_documents_search_vector", table_name="documents")
    op.drop_index("ix_documents_tenant_updated_at", table_name="documents")
    op.drop_index("ix_documents_tenant_id", table_name="documents")
    op.drop_table("documents")
    op.drop_table("tenant_memberships")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_table("tenants")

    bind = op.get_bind()
    for enum_name in ("queue_job_status", "index_job_status", "membership_role"):
        postgresql.ENUM(name=enum_name).drop(bind, checkfirst=True)
