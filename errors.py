"""Exceptions raised by the shop services and mapped to HTTP responses in main."""

from typing import Optional


class ShopError(Exception):
    """Base exception for all shop errors."""

    status_code = 500

    def __init__(self, message: str, error: Optional[str] = None):
        self.message = message
        self.error = error
        super().__init__(message)


class InvalidRequest(ShopError):
    """Raised for malformed or missing fields and bad enum values."""

    status_code = 400


class Conflict(ShopError):
    """Raised when an email address is already taken."""

    status_code = 400


class InvalidCredentials(ShopError):
    """Raised when an email/password pair does not match an account."""

    status_code = 400


class Unauthenticated(ShopError):
    """Raised when the bearer token is missing, invalid, expired or orphaned."""

    status_code = 401


class Forbidden(ShopError):
    """Raised when the caller's role is not allowed on a route."""

    status_code = 403


class NotFound(ShopError):
    status_code = 404


class InsufficientStock(ShopError):
    status_code = 400

    def __init__(self, product_name: str, requested: int):
        self.product_name = product_name
        self.requested = requested
        super().__init__(f"Insufficient stock for {product_name}", error=f"requested {requested}")


class InvalidTransition(ShopError):
    """Raised when an order cannot move from its current status."""

    status_code = 400
