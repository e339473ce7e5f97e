# schemas/results.py
# ============================================================================
# STOREFRONT CHECKOUT — ERROR TAXONOMY + SERVICE RESULTS
# ============================================================================
# Exceptions are raised inside transactions (so the store rolls back) and are
# converted to a tagged ServiceResult at every public service boundary.
# ============================================================================

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    GATEWAY_ERROR = "GATEWAY_ERROR"


HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.INVALID_SIGNATURE: 400,
    ErrorKind.AMOUNT_MISMATCH: 400,
    ErrorKind.INSUFFICIENT_STOCK: 400,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.GATEWAY_ERROR: 502,
}


# ============================================================================
# EXCEPTIONS
# ============================================================================

class CommerceError(Exception):
    """Base class for every checkout failure with a taxonomy kind."""

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationFailed(CommerceError):
    kind = ErrorKind.VALIDATION_ERROR


class NotFound(CommerceError):
    kind = ErrorKind.NOT_FOUND


class Unauthenticated(CommerceError):
    """No caller identity on a request that needs one."""
    kind = ErrorKind.UNAUTHENTICATED


class Unauthorized(CommerceError):
    kind = ErrorKind.UNAUTHORIZED


class InvalidSignature(CommerceError):
    kind = ErrorKind.INVALID_SIGNATURE


class AmountMismatch(CommerceError):
    kind = ErrorKind.AMOUNT_MISMATCH


class InsufficientStock(CommerceError):
    kind = ErrorKind.INSUFFICIENT_STOCK


class GatewayError(CommerceError):
    kind = ErrorKind.GATEWAY_ERROR


class TransientError(Exception):
    """Infrastructure hiccup (store/cache unavailable). Safe to retry."""


# ============================================================================
# TAGGED RESULT
# ============================================================================

class ServiceResult(BaseModel):
    """Outcome of a public checkout operation."""
    success: bool
    error: Optional[ErrorKind] = None
    message: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "", **data) -> "ServiceResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, **data) -> "ServiceResult":
        return cls(success=False, error=kind, message=message, data=data)

    @classmethod
    def from_error(cls, exc: CommerceError) -> "ServiceResult":
        return cls.fail(exc.kind, exc.message)

    @property
    def http_status(self) -> int:
        if self.success:
            return 200
        return HTTP_STATUS_BY_KIND.get(self.error, 400)
