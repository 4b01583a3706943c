"""
auth/store.py -- SQLAlchemy Core persistence for user accounts (the credential store).

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user is
the mapper. Route and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  The password hash is excluded from the selected columns unless the caller
  asks for it with include_secret=True. Only credential verification does.

  create() re-validates name, email and hash presence even though the service
  validated them already -- the store is also reachable from scripts and tests,
  and it must never persist a malformed identity.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.db import now_iso, users
from auth.errors import DuplicateIdentityError, ValidationError
from auth.models import User
from auth.validation import canonicalize_email, check_email, check_name

# Every column except password_hash.
_PUBLIC_COLUMNS = [c for c in users.c if c.name != "password_hash"]


class UserStore:
    """Repository for User entities.

    Usage:
        engine = create_db_engine("sqlite:///payflow.db")
        store = UserStore(engine)
        user = store.create("Jane Doe", "jane@x.com", hash_password("Abcd12!@"))
        found = store.find_by_email("JANE@x.com")  # canonicalized lookup
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str, include_secret: bool = False) -> User | None:
        """Look up a user by canonical email. Returns None if not found."""
        stmt = _select_user(include_secret).where(users.c.email == canonicalize_email(email))
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: int, include_secret: bool = False) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        stmt = _select_user(include_secret).where(users.c.id == user_id)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_user(row) if row is not None else None

    def count(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(users)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, name: str, email: str, password_hash: str) -> User:
        """Insert a new user and return it (without the hash).

        Raises ValidationError for a malformed name/email or an empty hash,
        and DuplicateIdentityError if the canonical email already exists.
        The UNIQUE constraint is the source of truth, so two concurrent
        signups for one address cannot both succeed.
        """
        errors: dict[str, str] = {}
        for field, problem in (("name", check_name(name)), ("email", check_email(email))):
            if problem:
                errors[field] = problem
        if not password_hash:
            errors["password"] = "Password hash is required"
        if errors:
            raise ValidationError(errors)

        now = now_iso()
        user = User(name=name.strip(), email=canonicalize_email(email), created_at=now, updated_at=now)
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    users.insert().values(
                        name=user.name,
                        email=user.email,
                        password_hash=password_hash,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateIdentityError() from exc
        user.id = result.inserted_primary_key[0]
        return user

    def update_secret(self, user_id: int, new_hash: str) -> bool:
        """Replace the password hash and stamp password_changed_at.

        Returns True if a row was updated, False if user_id was not found.
        """
        if not new_hash:
            raise ValidationError({"password": "Password hash is required"})
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                users.update()
                .where(users.c.id == user_id)
                .values(password_hash=new_hash, password_changed_at=now, updated_at=now)
            )
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _select_user(include_secret: bool):
    return select(users) if include_secret else select(*_PUBLIC_COLUMNS)


def _row_to_user(row) -> User:
    # password_hash is only present when the query selected it.
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=getattr(row, "password_hash", None),
        password_changed_at=row.password_changed_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
