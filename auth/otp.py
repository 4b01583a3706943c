"""
auth/otp.py -- One-time passcode primitives.

Codes come from the secrets CSPRNG, never from random: an attacker who can
predict the generator's state could predict the next code for any account.
"""

from __future__ import annotations

import re
import secrets
from datetime import datetime, timedelta, timezone

OTP_LENGTH = 6
_OTP_MIN = 100_000
_OTP_MAX = 999_999

_OTP_RE = re.compile(r"[0-9]{6}")


def generate_otp() -> str:
    """Return a code drawn uniformly from [100000, 999999].

    The lower bound keeps every code exactly six digits, so the zero-padding
    below is a formality rather than something clients must cope with.
    """
    value = _OTP_MIN + secrets.randbelow(_OTP_MAX - _OTP_MIN + 1)
    return f"{value:0{OTP_LENGTH}d}"


def otp_expiration(minutes: int, now: datetime | None = None) -> datetime:
    """Return the UTC instant a code issued at now stops being valid."""
    start = now or datetime.now(timezone.utc)
    return start + timedelta(minutes=minutes)


def is_valid_otp_format(code: str | None) -> bool:
    return bool(code) and _OTP_RE.fullmatch(code) is not None


def describe_validity(minutes: int) -> str:
    """'10 minutes', '1 minute' -- the window shown to the user next to the code."""
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
