"""Typed application errors and the ``Ok | Err`` result returned by service entry points.

Repositories translate database failures into :class:`AppError`; services
return :class:`Err` for the outcomes callers are expected to handle
(validation, authorization, not found) and let anything unexpected raise.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"
    INTERNAL = "internal"


DEFAULT_STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.TRANSIENT: 503,
    ErrorKind.INTERNAL: 500,
}


@dataclass(frozen=True)
class ErrorContext:
    origin: str = "app"  # app | server | database | queue | external_service
    domain: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    operation: Optional[str] = None
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in self.__dict__.items() if value not in (None, {})}


class AppError(Exception):
    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        code: str,
        *,
        status_code: Optional[int] = None,
        retryable: bool = False,
        retry_after_ms: Optional[int] = None,
        context: Optional[ErrorContext] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.code = code
        self.status_code = status_code or DEFAULT_STATUS[kind]
        self.retryable = retryable
        self.retry_after_ms = retry_after_ms
        self.context = context or ErrorContext()

    def __repr__(self) -> str:
        return f"AppError(kind={self.kind.value!r}, code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "message": self.message,
            "code": self.code,
            "kind": self.kind.value,
        }
        details = self.context.to_dict()
        if self.retry_after_ms is not None:
            details["retry_after_ms"] = self.retry_after_ms
        if details:
            payload["details"] = details
        return payload

    @classmethod
    def validation(cls, code: str, message: str, *, context: Optional[ErrorContext] = None) -> "AppError":
        return cls(message, ErrorKind.VALIDATION, code, context=context)

    @classmethod
    def authorization(cls, code: str, message: str, *, context: Optional[ErrorContext] = None) -> "AppError":
        return cls(message, ErrorKind.AUTHORIZATION, code, context=context)

    @classmethod
    def not_found(cls, code: str, message: str, *, context: Optional[ErrorContext] = None) -> "AppError":
        return cls(message, ErrorKind.NOT_FOUND, code, context=context)

    @classmethod
    def conflict(cls, code: str, message: str, *, context: Optional[ErrorContext] = None) -> "AppError":
        return cls(message, ErrorKind.CONFLICT, code, context=context)

    @classmethod
    def transient(
        cls,
        code: str,
        message: str,
        *,
        retry_after_ms: Optional[int] = None,
        context: Optional[ErrorContext] = None,
    ) -> "AppError":
        return cls(
            message,
            ErrorKind.TRANSIENT,
            code,
            retryable=True,
            retry_after_ms=retry_after_ms,
            context=context,
        )

    @classmethod
    def internal(cls, code: str, message: str, *, context: Optional[ErrorContext] = None) -> "AppError":
        return cls(message, ErrorKind.INTERNAL, code, context=context)


T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: AppError

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    def unwrap(self):
        raise self.error


Result = Union[Ok[T], Err]
