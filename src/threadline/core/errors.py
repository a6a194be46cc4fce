"""Error taxonomy shared by every layer of the ingestion core.

Each error carries a machine-readable ``code`` so the surrounding
application can branch on failures without parsing messages. Callers that
cross a process or API boundary convert errors with :meth:`ThreadlineError.to_response`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class ErrorResponse:
    """Serializable error payload handed to callers."""

    code: str
    message: str
    details: dict[str, Any] | None = field(default=None)

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly mapping, omitting empty details."""
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ThreadlineError(RuntimeError):
    """Base class for all domain errors; doubles as the generic catch-all."""

    code = "GENERIC_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def details(self) -> dict[str, Any] | None:
        return None

    def to_response(self) -> ErrorResponse:
        """Convert the error into a caller-facing :class:`ErrorResponse`."""
        return ErrorResponse(code=self.code, message=str(self), details=self.details)


class NetworkError(ThreadlineError):
    """Connection, TLS, or timeout failure talking to the mail server."""

    code = "NET_ERROR"


class AuthError(ThreadlineError):
    """Login, OAuth exchange, or token refresh failure."""

    code = "AUTH_ERROR"


class ParseError(ThreadlineError):
    """Raised when a raw message cannot be decoded."""

    code = "PARSE_ERROR"


class StorageError(ThreadlineError):
    """Persistence failure in the database or attachment store."""

    code = "DB_ERROR"


class ValidationError(ThreadlineError):
    """Malformed or unsupported input."""

    code = "VAL_ERROR"


class NotFoundError(ThreadlineError):
    """A referenced record does not exist."""

    code = "NOT_FOUND"
    resource = "record"

    def __init__(self, identifier: object, message: str | None = None) -> None:
        self.identifier = identifier
        super().__init__(message or f"{self.resource.capitalize()} {identifier} not found")

    @property
    def details(self) -> dict[str, Any] | None:
        return {f"{self.resource}_id": self.identifier}


class AccountNotFoundError(NotFoundError):
    code = "ACCOUNT_NOT_FOUND"
    resource = "account"


class MessageNotFoundError(NotFoundError):
    code = "MESSAGE_NOT_FOUND"
    resource = "message"


class ProjectNotFoundError(NotFoundError):
    code = "PROJECT_NOT_FOUND"
    resource = "project"


__all__ = [
    "AccountNotFoundError",
    "AuthError",
    "ErrorResponse",
    "MessageNotFoundError",
    "NetworkError",
    "NotFoundError",
    "ParseError",
    "ProjectNotFoundError",
    "StorageError",
    "ThreadlineError",
    "ValidationError",
]
