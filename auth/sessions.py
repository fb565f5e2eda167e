"""
auth/sessions.py -- Session and RefreshToken persistence.

Each successful login produces exactly one new Session and one RefreshToken
bound to it; a user may hold any number of sessions at once (one per device
or login). Revocation flips flags and stamps revoked_at on both rows. Nothing
is deleted here except by purge_expired(), which only touches rows whose
refresh token has already expired.

Lookups by token hash only return live sessions: is_active, not revoked,
not expired, and (for refresh lookups) a non-revoked, non-expired refresh
token. A revoked session therefore can never be "found" again.

Invariants enforced on insert (ValueError otherwise):
  Session.expires_at > Session.created_at
  RefreshToken.expires_at > Session.expires_at
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import and_, delete, select
from sqlalchemy.engine import Connection, Engine

from auth.db import from_db_time, refresh_tokens, sessions, to_db_time, utcnow
from auth.models import RefreshToken, RequestMetadata, RoleType, Session, TokenPair
from auth.tokens import hash_token

if TYPE_CHECKING:
    from core.config import Settings


class SessionStore:
    """Repository for Session and RefreshToken rows.

    Raw tokens go in; only their HMAC digests are written.
    """

    def __init__(self, engine: Engine, settings: Settings, now: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self._secret_key = settings.secret_key
        self._now = now

    def _digest(self, token: str) -> str:
        return hash_token(self._secret_key, token)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_session(
        self,
        user_id: str,
        role: RoleType,
        metadata: RequestMetadata,
        access_token: str,
        access_expires_at: datetime,
    ) -> Session:
        with self.engine.begin() as conn:
            return self._insert_session(conn, user_id, role, metadata, access_token, access_expires_at)

    def create_refresh_token(self, session_id: str, token: str, refresh_expires_at: datetime) -> RefreshToken:
        with self.engine.begin() as conn:
            session_row = conn.execute(select(sessions.c.expires_at).where(sessions.c.id == session_id)).fetchone()
            if session_row is None:
                raise ValueError(f"Unknown session {session_id!r}")
            return self._insert_refresh_token(
                conn, session_id, from_db_time(session_row.expires_at), token, refresh_expires_at
            )

    def open_session(
        self,
        user_id: str,
        role: RoleType,
        metadata: RequestMetadata,
        pair: TokenPair,
    ) -> tuple[Session, RefreshToken]:
        """Persist a Session and its RefreshToken in a single transaction."""
        with self.engine.begin() as conn:
            return self.open_session_in(conn, user_id, role, metadata, pair)

    def open_session_in(
        self,
        conn: Connection,
        user_id: str,
        role: RoleType,
        metadata: RequestMetadata,
        pair: TokenPair,
    ) -> tuple[Session, RefreshToken]:
        """Insert a Session and its RefreshToken on a caller-owned transaction."""
        session = self._insert_session(conn, user_id, role, metadata, pair.access.token, pair.access.expires_at)
        refresh = self._insert_refresh_token(
            conn, session.id, session.expires_at, pair.refresh.token, pair.refresh.expires_at
        )
        return session, refresh

    def rotate(
        self,
        old_session_id: str,
        user_id: str,
        role: RoleType,
        metadata: RequestMetadata,
        pair: TokenPair,
    ) -> tuple[Session, RefreshToken] | None:
        """Revoke old_session_id and open its successor in one transaction.

        Returns None, with nothing written, if the old session was no longer
        live. If either insert fails the revocation rolls back with it, so the
        presented refresh token stays usable.
        """
        with self.engine.begin() as conn:
            if not self._revoke_in(conn, old_session_id, to_db_time(self._now())):
                return None
            return self.open_session_in(conn, user_id, role, metadata, pair)

    def _insert_session(
        self,
        conn: Connection,
        user_id: str,
        role: RoleType,
        metadata: RequestMetadata,
        access_token: str,
        access_expires_at: datetime,
    ) -> Session:
        now = self._now()
        if access_expires_at <= now:
            raise ValueError("Session expires_at must be later than created_at.")
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user_id,
            role_type=RoleType(role),
            access_token_hash=self._digest(access_token),
            expires_at=access_expires_at,
            ip=metadata.ip,
            device=metadata.device,
            browser=metadata.browser,
            location=metadata.location,
            user_agent=metadata.user_agent,
            is_active=True,
            last_activity_at=now,
            created_at=now,
        )
        conn.execute(
            sessions.insert().values(
                id=session.id,
                user_id=session.user_id,
                role_type=session.role_type.value,
                access_token_hash=session.access_token_hash,
                ip=session.ip,
                device=session.device,
                browser=session.browser,
                location=session.location,
                user_agent=session.user_agent,
                is_active=1,
                expires_at=to_db_time(session.expires_at),
                last_activity_at=to_db_time(now),
                created_at=to_db_time(now),
            )
        )
        return session

    def _insert_refresh_token(
        self,
        conn: Connection,
        session_id: str,
        session_expires_at: datetime,
        token: str,
        refresh_expires_at: datetime,
    ) -> RefreshToken:
        if refresh_expires_at <= session_expires_at:
            raise ValueError("RefreshToken expires_at must be later than its session's expires_at.")
        refresh = RefreshToken(
            id=str(uuid.uuid4()),
            session_id=session_id,
            token_hash=self._digest(token),
            expires_at=refresh_expires_at,
            created_at=self._now(),
        )
        conn.execute(
            refresh_tokens.insert().values(
                id=refresh.id,
                session_id=session_id,
                token_hash=refresh.token_hash,
                expires_at=to_db_time(refresh.expires_at),
                is_revoked=0,
                created_at=to_db_time(refresh.created_at),
            )
        )
        return refresh

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Session | None:
        """Return the session row regardless of state."""
        with self.engine.connect() as conn:
            row = conn.execute(sessions.select().where(sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_refresh_token(self, session_id: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(refresh_tokens.select().where(refresh_tokens.c.session_id == session_id)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def find_active_session_by_refresh_token(self, token: str) -> Session | None:
        """Return the live session owning token, or None if revoked, expired, or unknown."""
        now = to_db_time(self._now())
        query = (
            select(sessions)
            .join(refresh_tokens, refresh_tokens.c.session_id == sessions.c.id)
            .where(
                and_(
                    refresh_tokens.c.token_hash == self._digest(token),
                    refresh_tokens.c.is_revoked == 0,
                    refresh_tokens.c.expires_at > now,
                    sessions.c.is_active == 1,
                    sessions.c.revoked_at.is_(None),
                )
            )
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_session(row) if row is not None else None

    def find_active_session_by_access_token(self, token: str) -> Session | None:
        """Return the live, unexpired session the access token was issued for."""
        now = to_db_time(self._now())
        query = sessions.select().where(
            and_(
                sessions.c.access_token_hash == self._digest(token),
                sessions.c.is_active == 1,
                sessions.c.revoked_at.is_(None),
                sessions.c.expires_at > now,
            )
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_session(row) if row is not None else None

    def list_active_sessions(self, user_id: str) -> list[Session]:
        """Sessions of user_id whose refresh token is still usable, newest first."""
        now = to_db_time(self._now())
        query = (
            select(sessions)
            .join(refresh_tokens, refresh_tokens.c.session_id == sessions.c.id)
            .where(
                and_(
                    sessions.c.user_id == user_id,
                    sessions.c.is_active == 1,
                    sessions.c.revoked_at.is_(None),
                    refresh_tokens.c.is_revoked == 0,
                    refresh_tokens.c.expires_at > now,
                )
            )
            .order_by(sessions.c.created_at.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_session(r) for r in rows]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def touch(self, session_id: str) -> None:
        """Stamp last_activity_at on a live session."""
        with self.engine.begin() as conn:
            conn.execute(
                sessions.update()
                .where(and_(sessions.c.id == session_id, sessions.c.is_active == 1))
                .values(last_activity_at=to_db_time(self._now()))
            )

    def revoke(self, session_id: str) -> bool:
        """Revoke a session and its refresh token. Returns False if it was not live."""
        with self.engine.begin() as conn:
            return self._revoke_in(conn, session_id, to_db_time(self._now()))

    def _revoke_in(self, conn: Connection, session_id: str, now: str) -> bool:
        # Conditional on revoked_at IS NULL: of two concurrent revokers only one sees True.
        result = conn.execute(
            sessions.update()
            .where(and_(sessions.c.id == session_id, sessions.c.revoked_at.is_(None)))
            .values(is_active=0, revoked_at=now)
        )
        if result.rowcount == 0:
            return False
        conn.execute(
            refresh_tokens.update()
            .where(and_(refresh_tokens.c.session_id == session_id, refresh_tokens.c.is_revoked == 0))
            .values(is_revoked=1, revoked_at=now)
        )
        return True

    def revoke_all_for_user(self, user_id: str, except_session_id: str | None = None) -> int:
        """Revoke every live session of user_id, optionally keeping one. Returns the count revoked."""
        now = to_db_time(self._now())
        condition = and_(sessions.c.user_id == user_id, sessions.c.revoked_at.is_(None))
        if except_session_id is not None:
            condition = and_(condition, sessions.c.id != except_session_id)
        with self.engine.begin() as conn:
            ids = [row.id for row in conn.execute(select(sessions.c.id).where(condition)).fetchall()]
            if not ids:
                return 0
            conn.execute(sessions.update().where(sessions.c.id.in_(ids)).values(is_active=0, revoked_at=now))
            conn.execute(
                refresh_tokens.update()
                .where(and_(refresh_tokens.c.session_id.in_(ids), refresh_tokens.c.is_revoked == 0))
                .values(is_revoked=1, revoked_at=now)
            )
        return len(ids)

    def purge_expired(self, before: datetime | None = None) -> int:
        """Delete sessions whose refresh token expired before `before` (default: now)."""
        cutoff = to_db_time(before or self._now())
        with self.engine.begin() as conn:
            ids = [
                row.session_id
                for row in conn.execute(
                    select(refresh_tokens.c.session_id).where(refresh_tokens.c.expires_at < cutoff)
                ).fetchall()
            ]
            if not ids:
                return 0
            conn.execute(delete(refresh_tokens).where(refresh_tokens.c.session_id.in_(ids)))
            conn.execute(delete(sessions).where(sessions.c.id.in_(ids)))
        return len(ids)


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        role_type=RoleType(row.role_type),
        access_token_hash=row.access_token_hash,
        expires_at=from_db_time(row.expires_at),
        ip=row.ip,
        device=row.device,
        browser=row.browser,
        location=row.location,
        user_agent=row.user_agent,
        is_active=bool(row.is_active),
        last_activity_at=from_db_time(row.last_activity_at),
        created_at=from_db_time(row.created_at),
        revoked_at=from_db_time(row.revoked_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        session_id=row.session_id,
        token_hash=row.token_hash,
        expires_at=from_db_time(row.expires_at),
        is_revoked=bool(row.is_revoked),
        revoked_at=from_db_time(row.revoked_at),
        created_at=from_db_time(row.created_at),
    )
