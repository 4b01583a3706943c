"""
auth/db.py -- Schema and connection-pool handle shared by the auth stores.

Uses SQLAlchemy Core (not ORM) so the dataclasses in auth/models.py remain the
authoritative domain representation. Swapping SQLite for PostgreSQL or MySQL is
a connection string change, not a rewrite.

One Engine (and therefore one connection pool) exists per process. The FastAPI
lifespan creates it at startup, hands it to UserStore and OtpStore, and disposes
it at shutdown. Stores never create engines of their own.

Timestamps are stored as fixed-precision ISO 8601 UTC strings. Fixed precision
(always microseconds, always +00:00) makes string order equal time order, so
"expires_at > :now" is correct on every backend without native datetime types.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(254), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("password_changed_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

otps = Table(
    "otps",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(254), nullable=False, index=True),
    Column("code", String(6), nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("used", Integer, nullable=False, server_default="0", index=True),  # boolean stored as 0/1
    Column("created_at", String(32), nullable=False),
    # Hot path: find_valid and invalidate_all_unused both filter on (email, used).
    Index("ix_otps_email_used", "email", "used"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases silently keep "memory".
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Engine lifecycle
# ---------------------------------------------------------------------------


def create_db_engine(db_url: str) -> Engine:
    """Create the process-wide Engine and make sure both tables exist.

    SQLite needs check_same_thread=False because FastAPI runs sync route
    handlers in a threadpool and pooled connections move between threads.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


def ping(engine: Engine) -> bool:
    """Return True if a trivial query succeeds. Used by the health endpoint."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    """Render an aware datetime as a fixed-precision UTC ISO 8601 string."""
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))
