"""
auth/db.py -- SQLAlchemy Core schema and engine construction for auth entities.

All three stores (AccountStore, SessionStore, LoginAuditLogger) share one
Engine and the tables declared here. Each store method opens its own
connection, so the database is the only synchronization point between
concurrent requests.

Timestamps are stored as ISO 8601 text in UTC with fixed microsecond
precision. Fixed precision keeps lexicographic order equal to chronological
order, so expiry comparisons can run in SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("account_status", String(20), nullable=False, server_default="active"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
    Column("last_login_at", String(32)),
    Column("last_activity_at", String(32)),
)

role_assignments = Table(
    "role_assignments",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("role_type", String(20), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
    Index("ix_role_assignments_user_role", "user_id", "role_type"),
)

sessions = Table(
    "sessions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("role_type", String(20), nullable=False),
    Column("access_token_hash", String(64), nullable=False, index=True),  # HMAC-SHA256 hex
    Column("ip", String(45)),
    Column("device", String(255)),
    Column("browser", String(255)),
    Column("location", String(255)),
    Column("user_agent", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("expires_at", String(32), nullable=False),
    Column("last_activity_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
)

refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("session_id", String(36), nullable=False, unique=True),  # 1:1 with sessions
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("is_revoked", Integer, nullable=False, server_default="0"),
    Column("revoked_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

login_audits = Table(
    "login_audits",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), index=True),  # NULL when the account was not found
    Column("email_attempted", String(255), nullable=False, index=True),
    Column("role_type", String(20)),
    Column("is_successful", Integer, nullable=False),
    Column("failure_reason", String(40)),
    Column("ip", String(45)),
    Column("device", String(255)),
    Column("browser", String(255)),
    Column("location", String(255)),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and a busy timeout on every new SQLite connection.

    WAL lets readers proceed during writes. The busy timeout makes concurrent
    writers (two logins for the same user) wait for the lock instead of
    failing immediately. PRAGMAs are per-connection, so this runs on connect.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA busy_timeout=5000")


def create_db_engine(db_url: str) -> Engine:
    """Create an Engine for db_url and make sure every auth table exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime | None) -> str | None:
    """Serialize to UTC ISO text. Naive datetimes are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
