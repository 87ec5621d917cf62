"""Error taxonomy for the contact core.

Every error carries an HTTP-style ``status_code`` and an
:class:`ExceptionCause` so the transport layer can choose a response without
inspecting messages.
"""

from __future__ import annotations

import enum


class ExceptionCause(enum.StrEnum):
    """Who is to blame for a failure."""

    USER_ERROR = "user_error"
    SERVER_ERROR = "server_error"


class ContactBookError(Exception):
    """Base class for all errors raised by the contact core.

    Attributes:
        message: Human-readable description.
        status_code: Suggested response code for the transport layer.
        cause: Whether the caller or the deployment is at fault.
    """

    status_code: int = 500
    cause: ExceptionCause = ExceptionCause.SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        cause: ExceptionCause | None = None,
    ) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if cause is not None:
            self.cause = cause
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        return {
            "message": self.message,
            "status_code": self.status_code,
            "cause": str(self.cause),
        }


class ValidationError(ContactBookError):
    """A required field is empty or an identifier is malformed."""

    status_code = 400
    cause = ExceptionCause.USER_ERROR


class NotFoundError(ContactBookError):
    """The requested record is not in the collection that was searched."""

    status_code = 404
    cause = ExceptionCause.USER_ERROR


class AlreadyExistsError(ContactBookError):
    """A client-supplied identifier collides with an active record."""

    status_code = 409
    cause = ExceptionCause.USER_ERROR


class AccessDeniedError(ContactBookError):
    """The verified identity may not act on the tenant."""

    status_code = 403
    cause = ExceptionCause.USER_ERROR


class SchemaMissingError(ContactBookError):
    """A tenant collection has not been provisioned.

    This is an operational defect, not bad input.
    """

    status_code = 500
    cause = ExceptionCause.SERVER_ERROR

    def __init__(self, tenant: str, kind: str) -> None:
        self.tenant = tenant
        self.kind = kind
        super().__init__(f"Collection {kind!r} does not exist for tenant {tenant!r}")
