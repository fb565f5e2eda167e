"""
auth/store.py -- Account/role repository (SQLAlchemy Core).

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_user / _row_to_role are the mappers. Service code never touches SQL.

Soft deletes: users and role assignments are never removed. Lookups used by
the auth flows ("live" lookups) exclude rows with deleted_at set; callers
that need the full history pass include_deleted=True.

Email addresses are lower-cased and stripped on write and on lookup, so the
UNIQUE(email) constraint is case-insensitive in practice.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid

from sqlalchemy import and_, select
from sqlalchemy.engine import Connection, Engine

from auth.db import from_db_time, role_assignments, to_db_time, users, utcnow
from auth.models import AccountStatus, RoleAssignment, RoleType, User

# Columns update_user() accepts. Anything else is rejected before any SQL is built.
_MUTABLE_USER_FIELDS = frozenset(
    {"password_hash", "email_verified", "account_status", "is_active", "last_login_at", "last_activity_at"}
)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountStore:
    """Repository for User and RoleAssignment entities.

    Usage:
        engine = create_db_engine("sqlite:///tokenward.db")
        accounts = AccountStore(engine)
        user_id = accounts.create_user(User(email="a@example.com", password_hash=hash_password("pw")))
        accounts.grant_role(user_id, RoleType.member)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated id.

        Raises sqlalchemy.exc.IntegrityError if the email is already taken.
        """
        with self.engine.begin() as conn:
            return self.insert_user(conn, user)

    def insert_user(self, conn: Connection, user: User) -> str:
        """Insert user on a caller-owned transaction and return its id."""
        user_id = user.id or str(uuid.uuid4())
        now = to_db_time(utcnow())
        conn.execute(
            users.insert().values(
                id=user_id,
                email=normalize_email(user.email),
                password_hash=user.password_hash,
                email_verified=1 if user.email_verified else 0,
                account_status=AccountStatus(user.account_status).value,
                is_active=1 if user.is_active else 0,
                created_at=now,
                updated_at=now,
            )
        )
        return user_id

    def get_user(self, user_id: str, include_deleted: bool = False) -> User | None:
        """Look up a user by id. Soft-deleted users are hidden unless include_deleted."""
        query = users.select().where(users.c.id == user_id)
        if not include_deleted:
            query = query.where(users.c.deleted_at.is_(None))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str, include_deleted: bool = False) -> User | None:
        query = users.select().where(users.c.email == normalize_email(email))
        if not include_deleted:
            query = query.where(users.c.deleted_at.is_(None))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on a live user. Returns True if a row changed.

        Accepted fields: password_hash, email_verified, account_status,
        is_active, last_login_at, last_activity_at. Unknown fields raise
        ValueError.
        """
        unknown = set(fields) - _MUTABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        values = dict(fields)
        for flag in ("email_verified", "is_active"):
            if flag in values:
                values[flag] = 1 if values[flag] else 0
        if "account_status" in values:
            values["account_status"] = AccountStatus(values["account_status"]).value
        for stamp in ("last_login_at", "last_activity_at"):
            if stamp in values:
                values[stamp] = to_db_time(values[stamp])
        values["updated_at"] = to_db_time(utcnow())
        with self.engine.begin() as conn:
            result = conn.execute(
                users.update().where(and_(users.c.id == user_id, users.c.deleted_at.is_(None))).values(**values)
            )
        return result.rowcount > 0

    def mark_login(self, user_id: str) -> None:
        """Stamp last_login_at and last_activity_at after a successful login."""
        now = utcnow()
        self.update_user(user_id, last_login_at=now, last_activity_at=now)

    def mark_activity(self, user_id: str) -> None:
        self.update_user(user_id, last_activity_at=utcnow())

    def soft_delete_user(self, user_id: str) -> bool:
        """Set deleted_at on the user. Sessions are left to the caller to revoke."""
        now = to_db_time(utcnow())
        with self.engine.begin() as conn:
            result = conn.execute(
                users.update()
                .where(and_(users.c.id == user_id, users.c.deleted_at.is_(None)))
                .values(deleted_at=now, updated_at=now)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Role assignments
    # ------------------------------------------------------------------

    def grant_role(self, user_id: str, role: RoleType, is_active: bool = True) -> RoleAssignment:
        """Give user_id the role. Returns the existing live assignment if there is one."""
        existing = self.get_role_assignment(user_id, role)
        if existing is not None:
            return existing
        with self.engine.begin() as conn:
            return self.insert_role_assignment(conn, user_id, role, is_active)

    def insert_role_assignment(
        self, conn: Connection, user_id: str, role: RoleType, is_active: bool = True
    ) -> RoleAssignment:
        """Insert a new assignment on a caller-owned transaction."""
        assignment = RoleAssignment(
            id=str(uuid.uuid4()),
            user_id=user_id,
            role_type=RoleType(role),
            is_active=is_active,
            created_at=utcnow(),
        )
        conn.execute(
            role_assignments.insert().values(
                id=assignment.id,
                user_id=user_id,
                role_type=assignment.role_type.value,
                is_active=1 if is_active else 0,
                created_at=to_db_time(assignment.created_at),
            )
        )
        return assignment

    def get_role_assignment(self, user_id: str, role: RoleType) -> RoleAssignment | None:
        """Return the live (non-deleted) assignment of role to user_id, if any."""
        with self.engine.connect() as conn:
            row = conn.execute(
                role_assignments.select().where(
                    and_(
                        role_assignments.c.user_id == user_id,
                        role_assignments.c.role_type == RoleType(role).value,
                        role_assignments.c.deleted_at.is_(None),
                    )
                )
            ).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self, user_id: str) -> list[RoleAssignment]:
        """Return every live assignment held by user_id, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(role_assignments)
                .where(and_(role_assignments.c.user_id == user_id, role_assignments.c.deleted_at.is_(None)))
                .order_by(role_assignments.c.created_at)
            ).fetchall()
        return [_row_to_role(r) for r in rows]

    def set_role_active(self, user_id: str, role: RoleType, is_active: bool) -> bool:
        """Toggle the role-specific enable flag checked at login."""
        with self.engine.begin() as conn:
            result = conn.execute(
                role_assignments.update()
                .where(
                    and_(
                        role_assignments.c.user_id == user_id,
                        role_assignments.c.role_type == RoleType(role).value,
                        role_assignments.c.deleted_at.is_(None),
                    )
                )
                .values(is_active=1 if is_active else 0)
            )
        return result.rowcount > 0

    def revoke_role(self, user_id: str, role: RoleType) -> bool:
        """Soft-delete the live assignment. Tokens for the role stop authorizing immediately."""
        with self.engine.begin() as conn:
            result = conn.execute(
                role_assignments.update()
                .where(
                    and_(
                        role_assignments.c.user_id == user_id,
                        role_assignments.c.role_type == RoleType(role).value,
                        role_assignments.c.deleted_at.is_(None),
                    )
                )
                .values(deleted_at=to_db_time(utcnow()))
            )
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        email_verified=bool(row.email_verified),
        account_status=AccountStatus(row.account_status),
        is_active=bool(row.is_active),
        created_at=from_db_time(row.created_at),
        updated_at=from_db_time(row.updated_at),
        deleted_at=from_db_time(row.deleted_at),
        last_login_at=from_db_time(row.last_login_at),
        last_activity_at=from_db_time(row.last_activity_at),
    )


def _row_to_role(row) -> RoleAssignment:
    return RoleAssignment(
        id=row.id,
        user_id=row.user_id,
        role_type=RoleType(row.role_type),
        is_active=bool(row.is_active),
        created_at=from_db_time(row.created_at),
        deleted_at=from_db_time(row.deleted_at),
    )
