from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy.exc import (
    DataError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    NoResultFound,
    OperationalError,
)

from ..errors import AppError, ErrorContext

logger = logging.getLogger(__name__)

UTC = timezone.utc

_UNIQUE_MARKERS = ("unique", "duplicate key")


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def as_uuid(value: str | uuid.UUID) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def try_uuid(value: str | uuid.UUID | None) -> Optional[uuid.UUID]:
    if value is None:
        return None
    try:
        return as_uuid(value)
    except (TypeError, ValueError):
        return None


@contextmanager
def db_errors(
    domain: str,
    resource: str,
    operation: str,
    *,
    resource_id: Optional[str] = None,
) -> Iterator[None]:
    """Re-raise SQLAlchemy failures as classified :class:`AppError` instances."""

    def _context(**metadata) -> ErrorContext:
        return ErrorContext(
            origin="database",
            domain=domain,
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            operation=operation,
            metadata=metadata,
        )

    try:
        yield
    except AppError:
        raise
    except NoResultFound as exc:
        raise AppError.not_found(
            f"{resource.upper()}_NOT_FOUND", f"{resource} not found", context=_context()
        ) from exc
    except IntegrityError as exc:
        message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
        if any(marker in message for marker in _UNIQUE_MARKERS):
            raise AppError.conflict(
                f"{resource.upper()}_CONFLICT", f"{resource} already exists", context=_context()
            ) from exc
        raise AppError.internal(
            "DB_CONSTRAINT_VIOLATION",
            f"Invalid reference in {resource} {operation}",
            context=_context(message=str(exc.orig)),
        ) from exc
    except (OperationalError, DisconnectionError, InterfaceError) as exc:
        logger.warning("db.connection_failed domain=%s operation=%s: %s", domain, operation, exc)
        raise AppError.transient(
            "DB_CONNECTION_FAILED",
            "Database connection failed",
            retry_after_ms=5000,
            context=_context(),
        ) from exc
    except DataError as exc:
        raise AppError.internal(
            "DB_OPERATION_FAILED",
            f"Failed to {operation} {resource}",
            context=_context(message=str(exc.orig)),
        ) from exc
