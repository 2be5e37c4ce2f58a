from __future__ import annotations

import traceback
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import status
from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_PRESENTATION = "INVALID_PRESENTATION"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    SERVICE_ERROR = "SERVICE_ERROR"

    @property
    def http_status(self) -> int:
        return _STATUS_BY_KIND[self]

    @property
    def is_server_side(self) -> bool:
        return self.http_status >= 500


_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.AUTHENTICATION_ERROR: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.SESSION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.SESSION_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_PRESENTATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CONFIGURATION_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.SERVICE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class ErrorResponse(BaseModel):
    """
    Standard error payload returned by every route:

    {
        "code": "SESSION_EXPIRED",
        "message": "Session has expired",
        "status": 401,
        "context": {...}
    }
    """

    code: str = Field(..., description="Machine-readable error kind")
    message: str = Field(..., description="Human-readable error message")
    status: int = Field(..., description="HTTP status code for this error")
    context: Dict[str, Any] = Field(
        default_factory=dict, description="Structured error details"
    )
    stack: Optional[List[str]] = Field(
        default=None, description="Stack trace, only for server-side errors when enabled"
    )


class AppError(Exception):
    """
    The one error type raised by the service. The `kind` selects the
    HTTP status and the wire code; `context` carries structured details.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    @property
    def status_code(self) -> int:
        return self.kind.http_status

    def to_response(self, *, include_stack_trace: bool = False) -> ErrorResponse:
        stack = None
        if include_stack_trace and self.kind.is_server_side:
            stack = traceback.format_exception(type(self), self, self.__traceback__)
        return ErrorResponse(
            code=self.kind.value,
            message=self.message,
            status=self.status_code,
            context=self.context,
            stack=stack,
        )

    def __repr__(self) -> str:
        return f"AppError(kind={self.kind.value}, message={self.message!r})"


def authentication_error(
    message: str = "Authentication required", *, context: Optional[Dict[str, Any]] = None
) -> AppError:
    return AppError(ErrorKind.AUTHENTICATION_ERROR, message, context=context)


def session_not_found(
    message: str = "Session not found", *, context: Optional[Dict[str, Any]] = None
) -> AppError:
    return AppError(ErrorKind.SESSION_NOT_FOUND, message, context=context)


def session_expired(
    message: str = "Session has expired", *, context: Optional[Dict[str, Any]] = None
) -> AppError:
    return AppError(ErrorKind.SESSION_EXPIRED, message, context=context)


def validation_error(message: str, *, context: Optional[Dict[str, Any]] = None) -> AppError:
    return AppError(ErrorKind.VALIDATION_ERROR, message, context=context)


def invalid_presentation(
    message: str = "Presentation verification failed",
    *,
    context: Optional[Dict[str, Any]] = None,
) -> AppError:
    return AppError(ErrorKind.INVALID_PRESENTATION, message, context=context)


def configuration_error(
    message: str, *, context: Optional[Dict[str, Any]] = None
) -> AppError:
    return AppError(ErrorKind.CONFIGURATION_ERROR, message, context=context)


def service_error(message: str, *, context: Optional[Dict[str, Any]] = None) -> AppError:
    return AppError(ErrorKind.SERVICE_ERROR, message, context=context)


__all__ = [
    "AppError",
    "ErrorKind",
    "ErrorResponse",
    "authentication_error",
    "configuration_error",
    "invalid_presentation",
    "service_error",
    "session_expired",
    "session_not_found",
    "validation_error",
]
