"""Typed errors raised by the lottery core.

Every error carries a stable machine-readable ``code`` plus a human-readable
``message``. Call sites refine the default code of a class (for example a
``NotFoundError`` with code ``PACK_NOT_FOUND``) so API clients can branch on
the code without parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class AppError(Exception):
    """Base application error."""

    code: str
    message: str
    status_code: int
    details: Any | None = None

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class FormatError(AppError):
    """Malformed input that the request boundary should already have rejected."""

    def __init__(self, message: str = "Malformed input", code: str = "FORMAT_ERROR", details: Any | None = None) -> None:
        super().__init__(code=code, message=message, status_code=400, details=details)


class ValidationError(AppError):
    """Business-level rule violation (ranges, ownership, authorization fields)."""

    def __init__(self, message: str = "Validation error", code: str = "VALIDATION_ERROR", details: Any | None = None) -> None:
        super().__init__(code=code, message=message, status_code=400, details=details)


class NotFoundError(AppError):
    """Resource missing or outside the caller's tenant scope."""

    def __init__(self, message: str = "Not found", code: str = "NOT_FOUND", details: Any | None = None) -> None:
        super().__init__(code=code, message=message, status_code=404, details=details)


class ConflictError(AppError):
    """Uniqueness violation or a lost compare-and-swap race."""

    def __init__(self, message: str = "Conflict", code: str = "CONFLICT", details: Any | None = None) -> None:
        super().__init__(code=code, message=message, status_code=409, details=details)


class IllegalStateTransition(AppError):
    """Transition not allowed from the entity's current status."""

    def __init__(
        self,
        message: str = "Illegal state transition",
        code: str = "ILLEGAL_STATE_TRANSITION",
        details: Any | None = None,
    ) -> None:
        super().__init__(code=code, message=message, status_code=409, details=details)


class UnexpectedError(AppError):
    """Infrastructure failure. The enclosing transaction is always rolled back."""

    def __init__(self, message: str = "Internal server error", code: str = "INTERNAL_ERROR", details: Any | None = None) -> None:
        super().__init__(code=code, message=message, status_code=500, details=details)
