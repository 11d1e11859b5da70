from __future__ import annotations

import json
from typing import Optional

import typer

from .config import settings
from .db.session import SessionLocal
from .repositories.base import try_uuid
from .repositories.documents import DocumentRepository
from .repositories.jobs import JobRepository
from .schemas.jobs import INDEX_DOCUMENT, SEND_REMINDER
from .services.indexing import IndexJobDispatcher
from .services.queue import build_job_queue
from .services.staleness import find_stale_documents, sync_stale_documents

app = typer.Typer(help="Search Hub administrative CLI")


@app.command()
def stale_documents(
    tenant_id: Optional[str] = typer.Option(None, "--tenant", "-t", help="Restrict to one tenant"),
    limit: int = typer.Option(100, "--limit", "-n", show_default=True),
) -> None:
    """List documents whose search index is out of date."""
    db = SessionLocal()
    try:
        for record in find_stale_documents(db, limit, tenant_id):
            typer.echo(f"{record.id}\t{record.tenant_id}\t{record.reason}\t{record.title}")
    finally:
        db.close()


@app.command()
def sweep_stale(
    tenant_id: Optional[str] = typer.Option(None, "--tenant", "-t", help="Restrict to one tenant"),
    limit: int = typer.Option(settings.stale_sweep_limit, "--limit", "-n", show_default=True),
) -> None:
    """Queue every stale document for reindexing."""
    db = SessionLocal()
    try:
        stats = sync_stale_documents(db, build_job_queue(INDEX_DOCUMENT), limit=limit, tenant_id=tenant_id)
        db.commit()
        typer.echo(f"Found {stats['found']}, queued {stats['queued']}, errors {stats['errors']}")
    finally:
        db.close()


@app.command()
def reindex(
    document_id: str = typer.Argument(..., help="Document id"),
    tenant_id: str = typer.Argument(..., help="Tenant owning the document"),
) -> None:
    """Force a reindex of one document, even when its content is unchanged."""
    db = SessionLocal()
    try:
        document = DocumentRepository(db).get_for_tenant(document_id, tenant_id)
        if document is None:
            typer.echo(f"Document {document_id} not found in tenant {tenant_id}", err=True)
            raise typer.Exit(code=1)
        handle = IndexJobDispatcher(db, build_job_queue(INDEX_DOCUMENT)).enqueue_index(
            try_uuid(tenant_id), document.id, reindex=True
        )
        db.commit()
        typer.echo(f"Queued {handle.id} ({handle.status})")
    finally:
        db.close()


@app.command()
def cleanup_jobs(
    older_than_days: int = typer.Option(settings.index_job_retention_days, "--days", "-d", show_default=True),
) -> None:
    """Delete indexed job records older than the retention window."""
    db = SessionLocal()
    try:
        deleted = JobRepository(db).delete_old_indexed_jobs(older_than_days)
        db.commit()
        typer.echo(f"Deleted {deleted} indexed job records")
    finally:
        db.close()


@app.command()
def queue_stats() -> None:
    """Print job counts per queue state."""
    counts = {name: build_job_queue(name).counts() for name in (INDEX_DOCUMENT, SEND_REMINDER)}
    typer.echo(json.dumps(counts, indent=2))


if __name__ == "__main__":
    app()
