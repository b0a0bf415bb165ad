"""Domain error taxonomy.

Services raise these; the API layer maps each to an HTTP status in one
exception handler (see courseflow/main.py).  Every error carries a
human-readable message and a stable machine code.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for business-rule violations surfaced to callers."""

    status_code = 400
    default_code = "domain_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


class Conflict(DomainError):
    status_code = 409
    default_code = "conflict"


class InvalidState(DomainError):
    status_code = 409
    default_code = "invalid_state"


class ResourceExhausted(DomainError):
    status_code = 429
    default_code = "resource_exhausted"


class Forbidden(DomainError):
    status_code = 403
    default_code = "forbidden"


class NotFound(DomainError):
    status_code = 404
    default_code = "not_found"


class InvalidInput(DomainError):
    status_code = 422
    default_code = "invalid_input"


class RenderingFailed(DomainError):
    """The certificate renderer did not return a durable URL."""

    status_code = 502
    default_code = "rendering_failed"
