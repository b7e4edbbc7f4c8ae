# -*- coding: utf-8 -*-
"""Exception classes for the payment service.

Each class carries the HTTP status it maps to; the Flask error handlers in
parkpay.middleware.errors render them as ``{"error": message}``.
"""


class PaymentError(Exception):
    """Base exception for all payment service errors."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(PaymentError):
    """Raised when request validation fails (400)."""
    status_code = 400


class AuthError(PaymentError):
    """Raised when authentication fails (401)."""
    status_code = 401


class SignatureError(PaymentError):
    """Raised when a webhook signature cannot be verified (400)."""
    status_code = 400


class NotFoundError(PaymentError):
    """Raised when a user, customer or session is not found (404)."""
    status_code = 404


class ConflictError(PaymentError):
    """Raised when the customer already holds a live subscription (409)."""
    status_code = 409


class GatewayError(PaymentError):
    """Raised when the payment gateway or the store fails (500)."""
    status_code = 500
