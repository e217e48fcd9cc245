"""Typed failures raised by the order engine.

Every error carries a stable ``code`` (e.g. ``InsufficientStock``) plus
optional details. They are recoverable by the caller: the operation that
raised rolls its transaction back first, and the HTTP layer renders them
with ``status_code``.
"""
from typing import Any


class OrderServiceError(Exception):
    status_code = 400

    def __init__(self, code: str, message: str | None = None, /, **details: Any):
        super().__init__(message or code)
        self.code = code
        self.message = message or code
        self.details = details

    def to_dict(self) -> dict:
        return {**self.details, "detail": self.message, "code": self.code}


class ValidationError(OrderServiceError):
    """Malformed input, detected before any transaction opens."""
    status_code = 400


class NotFoundError(OrderServiceError):
    status_code = 404


class ConflictError(OrderServiceError):
    """Stock, voucher or state-machine conflicts."""
    status_code = 409
