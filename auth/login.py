"""
auth/login.py -- Credential verification: the ordered login state machine.

login() runs these checks in order and stops at the first failure:

  1. account lookup     -> ACCOUNT_NOT_FOUND    audit "account_not_found"
  2. password           -> INVALID_CREDENTIALS  audit "incorrect_password"
  3. email verification -> EMAIL_NOT_VERIFIED   audit "email_not_verified"
  4. account status     -> ACCOUNT_SUSPENDED    audit "account_suspended"
  5. role enabled       -> ROLE_DISABLED        audit "account_suspended"
  6. success: issue a token pair, open a session, audit, stamp last login

Every attempt writes exactly one LoginAudit row. Every failure returns an
AuthFailure whose message is the same generic "Invalid credentials.", so the
response does not reveal which step rejected the attempt. The audit row and
the WARNING log line keep the real reason.

Timing equalization [C1]: an unknown account still runs bcrypt against the
dummy hash, so response time does not reveal whether the email exists.

A datastore error anywhere in the flow fails closed with
DATASTORE_UNAVAILABLE; no token is returned.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy.exc import SQLAlchemyError

from auth.audit import LoginAuditLogger
from auth.errors import AuthFailure, ErrorKind
from auth.models import (
    AccountStatus,
    AuthorizedPrincipal,
    FailureReason,
    RequestMetadata,
    RoleType,
    principal_for,
)
from auth.passwords import DUMMY_HASH, verify_password
from auth.sessions import SessionStore
from auth.store import AccountStore
from auth.tokens import TokenIssuer

logger = logging.getLogger("tokenward.auth")

_REASON_BY_KIND = {
    ErrorKind.ACCOUNT_NOT_FOUND: FailureReason.account_not_found,
    ErrorKind.INVALID_CREDENTIALS: FailureReason.incorrect_password,
    ErrorKind.EMAIL_NOT_VERIFIED: FailureReason.email_not_verified,
    ErrorKind.ACCOUNT_SUSPENDED: FailureReason.account_suspended,
    # Role-level disablement is audited under the account suspension code.
    ErrorKind.ROLE_DISABLED: FailureReason.account_suspended,
}


class CredentialVerifier:
    def __init__(
        self,
        accounts: AccountStore,
        sessions: SessionStore,
        issuer: TokenIssuer,
        audit: LoginAuditLogger,
        verify: Callable[[str, str], bool] = verify_password,
    ) -> None:
        self._accounts = accounts
        self._sessions = sessions
        self._issuer = issuer
        self._audit = audit
        self._verify = verify

    def login(
        self,
        email: str,
        password: str,
        metadata: RequestMetadata | None = None,
        role: RoleType = RoleType.member,
    ) -> AuthorizedPrincipal | AuthFailure:
        """Authenticate email/password for role. Returns the token pair or an AuthFailure."""
        metadata = metadata or RequestMetadata()
        role = RoleType(role)
        try:
            return self._login(email, password, metadata, role)
        except SQLAlchemyError:
            logger.exception("Datastore error during login for role=%s", role.value)
            return AuthFailure.of(ErrorKind.DATASTORE_UNAVAILABLE)

    def _login(
        self,
        email: str,
        password: str,
        metadata: RequestMetadata,
        role: RoleType,
    ) -> AuthorizedPrincipal | AuthFailure:
        user = self._accounts.get_user_by_email(email)
        assignment = self._accounts.get_role_assignment(user.id, role) if user is not None else None

        # 1. Account lookup
        if user is None or assignment is None:
            self._verify(password, DUMMY_HASH)  # [C1]
            return self._fail(ErrorKind.ACCOUNT_NOT_FOUND, email, metadata, role, user.id if user else None)

        # 2. Password
        if not self._verify(password, user.password_hash):
            return self._fail(ErrorKind.INVALID_CREDENTIALS, email, metadata, role, user.id)

        # 3. Email verification
        if not user.email_verified:
            return self._fail(ErrorKind.EMAIL_NOT_VERIFIED, email, metadata, role, user.id)

        # 4. Account status
        if user.account_status != AccountStatus.active:
            return self._fail(ErrorKind.ACCOUNT_SUSPENDED, email, metadata, role, user.id)

        # 5. Role-specific enable flag
        if not (assignment.is_active and user.is_active):
            return self._fail(ErrorKind.ROLE_DISABLED, email, metadata, role, user.id)

        # 6. Success
        pair = self._issuer.issue_pair(user.id, role)
        session, _refresh = self._sessions.open_session(user.id, role, metadata, pair)
        self._audit.record(email, metadata, role=role, user_id=user.id)
        self._accounts.mark_login(user.id)
        return AuthorizedPrincipal(principal=principal_for(role, user.id), tokens=pair, session_id=session.id)

    def _fail(
        self,
        kind: ErrorKind,
        email: str,
        metadata: RequestMetadata,
        role: RoleType,
        user_id: str | None,
    ) -> AuthFailure:
        self._audit.record(email, metadata, role=role, user_id=user_id, failure_reason=_REASON_BY_KIND[kind])
        return AuthFailure.of(kind)
