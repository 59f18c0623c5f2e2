"""Typed error hierarchy for the filing core.

Every failure the services raise carries a stable machine-readable ``code``
(e.g. ``FILING_EXISTS``) and a human message. The exception class encodes the
error *kind*, which the HTTP layer maps to a status code:

    TaxFilingError (base)
    +-- NotFoundError       404  FILING_NOT_FOUND, NO_ACTIVE_RULES, ...
    +-- AccessDeniedError   403  ACCESS_DENIED
    +-- ConflictError       409  FILING_EXISTS, ALREADY_SUBMITTED, ...
    +-- InvalidStateError   400  INVALID_STATUS, RULE_NOT_EDITABLE, ...
    +-- ValidationError     400  INCOMPLETE_FILING, MISSING_BRACKETS, ...

None of these are retried by the core.
"""

from __future__ import annotations

from typing import Any


class TaxFilingError(Exception):
    """Base class for all domain errors raised by the filing core."""

    kind: str = "INTERNAL"
    status_code: int = 500

    def __init__(self, code: str, message: str, **details: Any) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Render the error as a transport-neutral payload."""
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class NotFoundError(TaxFilingError):
    """A filing, rule version, item or submission does not exist."""

    kind = "NOT_FOUND"
    status_code = 404


class AccessDeniedError(TaxFilingError):
    """The actor does not own the filing."""

    kind = "ACCESS_DENIED"
    status_code = 403

    def __init__(self, message: str = "You do not have access to this filing") -> None:
        super().__init__("ACCESS_DENIED", message)


class ConflictError(TaxFilingError):
    """The operation collides with existing state (uniqueness, idempotency)."""

    kind = "CONFLICT"
    status_code = 409


class InvalidStateError(TaxFilingError):
    """The entity is in the wrong lifecycle state for the requested action."""

    kind = "INVALID_STATE"
    status_code = 400


class ValidationError(TaxFilingError):
    """Input or aggregate content fails a business validation rule."""

    kind = "VALIDATION"
    status_code = 400


__all__ = [
    "TaxFilingError",
    "NotFoundError",
    "AccessDeniedError",
    "ConflictError",
    "InvalidStateError",
    "ValidationError",
]
