"""
auth/errors.py -- Error taxonomy for the authentication flows.

Every failure the service can produce is one of these classes. The API layer
maps them to HTTP with a single exception handler (api/main.py), so route
handlers never build error responses by hand.

  ValidationError      400  malformed or missing input (field-level detail)
  ConflictError        409  duplicate identity on signup
  AuthenticationError  401  wrong credentials or invalid/expired/used OTP
  AuthorizationError   401  missing/expired/malformed bearer token
  InfrastructureError  500  store failure; detail is logged, never returned

AuthenticationError messages are generic: they must not reveal
whether the email exists or which part of the OTP check failed.

Layer rule: no imports from api/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. Carries a machine-readable code and a client-safe message."""

    status_code: int = 400
    code: str = "auth_error"
    message: str = "Authentication error."

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        super().__init__(self.message)


class ValidationError(AuthError):
    """Input failed validation. fields maps field name -> message."""

    status_code = 400
    code = "validation_error"
    message = "Validation error."

    def __init__(self, fields: dict[str, str] | None = None, message: str | None = None) -> None:
        self.fields: dict[str, str] = dict(fields or {})
        super().__init__(message)


class ConflictError(AuthError):
    status_code = 409
    code = "email_taken"
    message = "Email already registered. Please use another email or login."


class DuplicateIdentityError(ConflictError):
    """Raised by UserStore.create when the UNIQUE(email) constraint fires."""


class AuthenticationError(AuthError):
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid credentials. Email or password is incorrect."


class AuthorizationError(AuthError):
    status_code = 401
    code = "invalid_token"
    message = "Invalid token."


class InfrastructureError(AuthError):
    status_code = 500
    code = "internal_error"
    message = "An unexpected error occurred."


INVALID_OTP = "Invalid or expired OTP. Please request a new OTP."
