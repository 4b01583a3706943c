"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
service do the work; these only own the domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass
class User:
    """A registered PayFlow account.

    email is always the canonical form (trimmed, lowercase) -- the store
    canonicalizes on every write and lookup.

    password_hash is None unless the record was fetched with
    include_secret=True. Only credential verification needs it; everything
    that reaches a caller is built from a secret-free projection.
    """

    name: str
    email: str
    id: int | None = None
    password_hash: str | None = None
    password_changed_at: str | None = None  # ISO 8601, None until first change
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class OtpRecord:
    """A one-time passcode issued at login step 1.

    used flips to True exactly once (on successful verification or when a
    newer code for the same email invalidates it) and never flips back.
    """

    email: str
    code: str  # 6 ASCII digits
    expires_at: str  # ISO 8601 UTC
    used: bool = False
    id: int | None = None
    created_at: str | None = None


class LoginState(str, Enum):
    """Progress of a single login attempt through the two-step flow."""

    CREDENTIALS_PENDING = "credentials_pending"
    OTP_ISSUED = "otp_issued"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


@dataclass
class OtpChallenge:
    """Outcome of login step 1.

    code is None when the configured delivery channel does not hand the code
    back to the caller (e.g. LogDelivery).
    """

    email: str
    expires_in: str  # human-readable window, e.g. "10 minutes"
    expires_at: datetime
    code: str | None = None
    state: LoginState = LoginState.OTP_ISSUED


@dataclass
class AuthResult:
    """Outcome of signup or login step 2: the public user plus a bearer token."""

    user: User
    token: str
    state: LoginState = LoginState.AUTHENTICATED
