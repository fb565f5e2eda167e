"""
auth/registration.py -- Self-registration ("join") for a role.

join() creates the User, its RoleAssignment for the requested role, and a
first Session/RefreshToken pair, all in one transaction, then returns the
same AuthorizedPrincipal a login would. Either everything is written or
nothing is: a failed session insert leaves no half-created account behind.

New accounts start with email_verified = false. The pair returned here is
usable straight away, but a later password login is refused with
EMAIL_NOT_VERIFIED until an operator (or a verification flow) sets the flag.

An email that already belongs to a user, deleted or not, yields
EMAIL_TAKEN. Registration is not a login attempt and writes no LoginAudit
row; it is logged on "tokenward.auth" at INFO.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import AuthFailure, ErrorKind
from auth.models import AuthorizedPrincipal, RequestMetadata, RoleType, User, principal_for
from auth.passwords import hash_password
from auth.sessions import SessionStore
from auth.store import AccountStore, normalize_email
from auth.tokens import TokenIssuer

logger = logging.getLogger("tokenward.auth")


class AccountRegistrar:
    def __init__(
        self,
        accounts: AccountStore,
        sessions: SessionStore,
        issuer: TokenIssuer,
        hasher: Callable[[str], str] = hash_password,
    ) -> None:
        self._accounts = accounts
        self._sessions = sessions
        self._issuer = issuer
        self._hash = hasher

    def join(
        self,
        email: str,
        password: str,
        metadata: RequestMetadata | None = None,
        role: RoleType = RoleType.member,
    ) -> AuthorizedPrincipal | AuthFailure:
        """Register email/password for role and open the first session."""
        metadata = metadata or RequestMetadata()
        role = RoleType(role)
        try:
            return self._join(email, password, metadata, role)
        except SQLAlchemyError:
            logger.exception("Datastore error during registration for role=%s", role.value)
            return AuthFailure.of(ErrorKind.DATASTORE_UNAVAILABLE)

    def _join(
        self,
        email: str,
        password: str,
        metadata: RequestMetadata,
        role: RoleType,
    ) -> AuthorizedPrincipal | AuthFailure:
        if self._accounts.get_user_by_email(email, include_deleted=True) is not None:
            return AuthFailure.of(ErrorKind.EMAIL_TAKEN)

        user = User(email=normalize_email(email), password_hash=self._hash(password))
        try:
            with self._accounts.engine.begin() as conn:
                user_id = self._accounts.insert_user(conn, user)
                self._accounts.insert_role_assignment(conn, user_id, role)
                pair = self._issuer.issue_pair(user_id, role)
                session, _refresh = self._sessions.open_session_in(conn, user_id, role, metadata, pair)
        except IntegrityError:
            # Lost a race with a concurrent join for the same email.
            return AuthFailure.of(ErrorKind.EMAIL_TAKEN)

        logger.info("Account registered user_id=%s role=%s ip=%s", user_id, role.value, metadata.ip)
        return AuthorizedPrincipal(principal=principal_for(role, user_id), tokens=pair, session_id=session.id)
