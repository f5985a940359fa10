"""
Typed failures raised by the sale engine and till session manager.

Every error carries a human-readable message (surfaced verbatim by the POS
client) and an optional details dict. Routes map `http_status` and `code`
onto the JSON response.
"""

from __future__ import annotations


class PosError(Exception):
    """Base class for engine failures. Always fatal to the enclosing transaction."""

    code = "POS_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class NotFoundError(PosError):
    """Referenced product, session, till or customer does not exist."""
    code = "NOT_FOUND"
    http_status = 404


class InsufficientStockError(PosError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, product_id: int, product_name: str, available: int, requested: int):
        super().__init__(
            f'Insufficient stock for "{product_name}". Available: {available}, Requested: {requested}',
            details={
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.available = available
        self.requested = requested


class InvalidTillSessionError(PosError):
    """Session id given but not found, or not OPEN."""
    code = "INVALID_TILL_SESSION"


class StoreMismatchError(PosError):
    code = "STORE_MISMATCH"


class InsufficientPointsError(PosError):
    code = "INSUFFICIENT_POINTS"


class InsufficientPaymentError(PosError):
    code = "INSUFFICIENT_PAYMENT"


class TillAlreadyOpenError(PosError):
    code = "TILL_ALREADY_OPEN"
    http_status = 409


class UserAlreadySessionOpenError(PosError):
    code = "USER_ALREADY_SESSION_OPEN"
    http_status = 409


class TillInUseError(PosError):
    """Till has session history and cannot be deleted."""
    code = "TILL_IN_USE"
    http_status = 409


class DuplicateTillNameError(PosError):
    code = "DUPLICATE_TILL_NAME"
    http_status = 409
