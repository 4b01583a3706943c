"""
auth/validation.py -- Input rules for user identity and passwords.

Both the service (before hashing) and UserStore.create (before insert) call
these. Each check_* function returns an error message or None so callers can
collect every problem in one pass and report them together.

Email syntax is delegated to email-validator (no DNS lookups). Canonical form
is our own rule: trim + lowercase, applied before every lookup and write.
"""

from __future__ import annotations

import re

from email_validator import EmailNotValidError, validate_email

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
EMAIL_MAX_LENGTH = 254
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 64

_NAME_RE = re.compile(r"^[a-zA-Z\s'-]+$")
_PASSWORD_RE = re.compile(r"(?=.*[a-z])(?=.*[A-Z])(?=.*[0-9])(?=.*[@$!%*?&])[A-Za-z0-9@$!%*?&]{8,64}")


def canonicalize_email(email: str) -> str:
    """Return the comparable form of an email address (trimmed, lowercase)."""
    return email.strip().lower()


def check_name(name: str | None) -> str | None:
    if not name or not name.strip():
        return "Name is required"
    name = name.strip()
    if len(name) < NAME_MIN_LENGTH:
        return f"Name must be at least {NAME_MIN_LENGTH} characters long"
    if len(name) > NAME_MAX_LENGTH:
        return f"Name cannot exceed {NAME_MAX_LENGTH} characters"
    if not _NAME_RE.match(name):
        return "Name can only contain letters, spaces, hyphens, and apostrophes"
    return None


def check_email(email: str | None) -> str | None:
    if not email or not email.strip():
        return "Email is required"
    email = canonicalize_email(email)
    if len(email) > EMAIL_MAX_LENGTH:
        return "Email is too long"
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return "Please enter a valid email"
    return None


def check_password(password: str | None) -> str | None:
    """Apply the password policy.

    8-64 characters drawn from ASCII letters, ASCII digits and @$!%*?&, with
    at least one lowercase letter, uppercase letter, digit and special
    character. The whole string must match, so a trailing newline or a
    non-ASCII digit fails. The 64 cap also keeps inputs below bcrypt's
    72-byte truncation point.
    """
    if not password:
        return "Password is required"
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters long"
    if len(password) > PASSWORD_MAX_LENGTH:
        return f"Password must be less than {PASSWORD_MAX_LENGTH} characters"
    if not _PASSWORD_RE.fullmatch(password):
        return "Password must include uppercase, lowercase, number and special character"
    return None


def check_new_password(password: str | None, confirm_password: str | None, field: str = "password") -> dict[str, str]:
    """Validate a password plus its confirmation. Returns {field: message} for each failure."""
    errors: dict[str, str] = {}
    problem = check_password(password)
    if problem:
        errors[field] = problem
    if not confirm_password:
        errors["confirmPassword"] = "Confirm Password is required"
    elif password and password != confirm_password:
        errors["confirmPassword"] = "Password and Confirm Password do not match"
    return errors


def mask_email(email: str) -> str:
    """Return a log-safe rendering of an address: 'jane@x.com' -> 'j***@x.com'."""
    local, sep, domain = email.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"
