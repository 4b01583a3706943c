"""
auth/tokens.py -- Password hashing and JWT bearer tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       only the user id (sub), issue time (iat) and expiry (exp). They are
       stateless -- nothing is persisted -- so validity is signature + expiry.
       decode_access_token() raises AuthorizationError with a code that tells
       the client whether to re-login (token_expired) or give up
       (invalid_token). That distinction is not sensitive.

  Passwords: bcrypt directly (no passlib wrapper). Cost comes from
       BCRYPT_ROUNDS so tests can run at the minimum cost of 4. The
       _DUMMY_HASH constant enables timing equalization in the service so
       response time does not reveal whether an email is registered.

  SECRET_KEY: sourced from core.config.get_settings(), which validates it at
       startup (dev mode auto-generates, production refuses to start without
       one, short keys are rejected).

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import AuthorizationError
from core.config import get_settings

logger = logging.getLogger("payflow.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt silently truncates input beyond 72 bytes. The password policy caps
    length at 64 characters, which keeps accepted passwords under that limit.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch rather than an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first failed login is not measurably
# faster than later ones. The service verifies against it when the email is
# unknown, so both failure paths pay the same bcrypt cost.
_DUMMY_HASH: str = hash_password("payflow_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Spend one bcrypt verification's worth of time and discard the result."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for user_id.

    Args:
        user_id:        Numeric user ID stored in the DB; carried as the sub claim.
        expire_seconds: Token lifetime. If 0 (default), uses
                        Settings.token_expire_seconds. Negative values produce an
                        already-expired token (used by tests).
    """
    duration = expire_seconds if expire_seconds != 0 else _settings.token_expire_seconds
    issued = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": issued,
        "exp": issued + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> int:
    """Verify a JWT and return the user id it was issued for.

    Raises AuthorizationError:
        token_expired -- signature fine, exp in the past.
        invalid_token -- bad signature, malformed token, or a sub that is not a user id.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise AuthorizationError("Token expired. Please login again.", code="token_expired") from exc
    except JWTError as exc:
        raise AuthorizationError("Invalid token.", code="invalid_token") from exc

    subject = payload.get("sub")
    if not isinstance(subject, str) or not (subject.isascii() and subject.isdigit()):
        raise AuthorizationError("Invalid token.", code="invalid_token")
    return int(subject)
