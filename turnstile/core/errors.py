"""Error taxonomy shared by the reconciliation engine, the validation gate and the HTTP layer.

Conflict and Transient are expected outcomes that callers branch on; they must
never be confused with Fatal, which means a ledger write failed after every
check passed (and was rolled back).
"""
from __future__ import annotations

from typing import Any

ALREADY_USED = "ALREADY_USED"
PAYMENT_PENDING = "PAYMENT_PENDING"
ALREADY_PROCESSED = "ALREADY_PROCESSED"
CANCELLED = "CANCELLED"


class TurnstileError(Exception):
    code = "ERROR"
    status_code = 500

    def __init__(self, message: str = "", details: dict[str, Any] | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"ok": False, "error": self.code, "message": self.message, **self.details}


class NotFoundError(TurnstileError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(TurnstileError):
    status_code = 409

    def __init__(self, reason: str, message: str = "", details: dict[str, Any] | None = None):
        super().__init__(message or reason, details)
        self.reason = reason

    @property
    def code(self) -> str:  # type: ignore[override]
        return self.reason


class TransientError(TurnstileError):
    code = "TRANSIENT"
    status_code = 503


class InvalidError(TurnstileError):
    code = "INVALID"
    status_code = 400


class FatalError(TurnstileError):
    code = "FATAL"
    status_code = 500


class RateLimitedError(TurnstileError):
    code = "RATE_LIMITED"
    status_code = 429


class UnauthorizedError(TurnstileError):
    code = "UNAUTHORIZED"
    status_code = 401
