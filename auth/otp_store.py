"""
auth/otp_store.py -- SQLAlchemy Core persistence for one-time passcodes.

Pattern: Repository + Data Mapper, same as auth/store.py.

Invariants this store helps the service keep:
  Single use -- mark_used() is a compare-and-set
      (UPDATE ... WHERE id = :id AND used = 0). Two verifications racing on the
      same code both reach the UPDATE, but only one sees rowcount == 1. The
      service treats rowcount == 0 exactly like an already-used code.

  One active code per email -- invalidate_all_unused() marks every unused code
      for the address as used. The service calls it immediately before create().
      The pair is not wrapped in a transaction or row lock; two concurrent logins
      may briefly leave two valid codes, which the next login cleans up.

  Expiry -- find_valid() compares expires_at against now in SQL, so an expired
      code is invisible whether or not the sweep has deleted it yet.

Security: all queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.engine import Engine

from auth.db import now_iso, otps, to_iso
from auth.models import OtpRecord
from auth.validation import canonicalize_email


class OtpStore:
    """Repository for OtpRecord entities.

    Usage:
        store = OtpStore(engine)
        store.invalidate_all_unused("jane@x.com")
        record = store.create("jane@x.com", "493817", otp_expiration(10))
        hit = store.find_valid("jane@x.com", "493817")
        store.mark_used(hit.id)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def find_valid(self, email: str, code: str, now: datetime | None = None) -> OtpRecord | None:
        """Return the newest unused, unexpired record matching email + code, or None."""
        cutoff = to_iso(now or datetime.now(timezone.utc))
        stmt = (
            select(otps)
            .where(
                (otps.c.email == canonicalize_email(email))
                & (otps.c.code == code)
                & (otps.c.used == 0)
                & (otps.c.expires_at > cutoff)
            )
            .order_by(otps.c.created_at.desc(), otps.c.id.desc())
            .limit(1)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_otp(row) if row is not None else None

    def create(self, email: str, code: str, expires_at: datetime) -> OtpRecord:
        """Insert a fresh, unused code and return it."""
        record = OtpRecord(
            email=canonicalize_email(email),
            code=code,
            expires_at=to_iso(expires_at),
            used=False,
            created_at=now_iso(),
        )
        with self.engine.connect() as conn:
            result = conn.execute(
                otps.insert().values(
                    email=record.email,
                    code=record.code,
                    expires_at=record.expires_at,
                    used=0,
                    created_at=record.created_at,
                )
            )
            conn.commit()
        record.id = result.inserted_primary_key[0]
        return record

    def mark_used(self, otp_id: int) -> bool:
        """Consume a code. Returns True only for the call that flipped used 0 -> 1.

        A second call for the same id (or a call for an unknown id) changes
        nothing, returns False and does not raise.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                otps.update().where((otps.c.id == otp_id) & (otps.c.used == 0)).values(used=1)
            )
            conn.commit()
        return result.rowcount == 1

    def invalidate_all_unused(self, email: str) -> int:
        """Mark every unused code for email as used. Returns rows affected."""
        with self.engine.connect() as conn:
            result = conn.execute(
                otps.update()
                .where((otps.c.email == canonicalize_email(email)) & (otps.c.used == 0))
                .values(used=1)
            )
            conn.commit()
        return result.rowcount

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Delete records whose expiry has passed. Returns rows removed.

        Only touches rows find_valid() would already ignore, so it is safe to
        run alongside logins and verifications.
        """
        cutoff = to_iso(now or datetime.now(timezone.utc))
        with self.engine.connect() as conn:
            result = conn.execute(otps.delete().where(otps.c.expires_at <= cutoff))
            conn.commit()
        return result.rowcount


def _row_to_otp(row) -> OtpRecord:
    return OtpRecord(
        id=row.id,
        email=row.email,
        code=row.code,
        expires_at=row.expires_at,
        used=bool(row.used),
        created_at=row.created_at,
    )
