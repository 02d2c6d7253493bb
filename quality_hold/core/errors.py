"""
Domain error taxonomy.

Services raise these; the API layer renders them with the standard error
envelope. All of them are expected, user-visible outcomes.
"""

from __future__ import annotations

from typing import Any, Optional


class QualityHoldError(Exception):
    """Base class for expected workflow errors."""

    status_code: int = 400
    error_type: str = "error"

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidArgument(QualityHoldError):
    """Malformed input, measurement invariant violation or unmet precondition."""

    status_code = 400
    error_type = "invalid_argument"


class Forbidden(QualityHoldError):
    """Actor's role does not permit the operation."""

    status_code = 403
    error_type = "forbidden"


class NotFound(QualityHoldError):
    status_code = 404
    error_type = "not_found"


class Conflict(QualityHoldError):
    """Current status does not permit the requested transition."""

    status_code = 409
    error_type = "conflict"
