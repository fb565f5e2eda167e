"""
auth/refresh.py -- Refresh-token rotation.

refresh() exchanges a refresh token for a fresh access/refresh pair:

  1. verify signature, issuer, expiry   -> TOKEN_INVALID / TOKEN_EXPIRED
  2. token_type must be "refresh"       -> TOKEN_TYPE_MISMATCH
  3. caller (if any) must be the token's subject and role -> SUBJECT_MISMATCH
  4. user must exist and not be deleted -> USER_DEACTIVATED
  5. role assignment must be live       -> ROLE_ASSIGNMENT_REVOKED
  6. issue a new pair and persist it as a new session

Step 6 depends on Settings.refresh_rotation:

  rotate (default): the presented token must still map to a live session,
      otherwise SESSION_REVOKED. That session is revoked and the new one is
      opened in the same transaction. Each refresh token is single-use, and a
      failed insert rolls the revocation back so the old token still works.
  reuse: the presented token is not revoked; it stays valid alongside the
      new pair until it expires.

Refresh failures are not login attempts and are never written to LoginAudit.
Datastore errors fail closed with DATASTORE_UNAVAILABLE.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import AuthFailure, ErrorKind
from auth.models import AuthorizedPrincipal, Principal, RequestMetadata, RoleType, TokenClaims, principal_for
from auth.sessions import SessionStore
from auth.store import AccountStore
from auth.tokens import REFRESH, TokenIssuer

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("tokenward.auth")


class RefreshTokenRotator:
    def __init__(
        self,
        accounts: AccountStore,
        sessions: SessionStore,
        issuer: TokenIssuer,
        settings: Settings,
    ) -> None:
        self._accounts = accounts
        self._sessions = sessions
        self._issuer = issuer
        self._revoke_previous = settings.refresh_rotation == "rotate"

    def refresh(
        self,
        presented_token: str,
        caller: Principal | None = None,
        metadata: RequestMetadata | None = None,
        expected_role: RoleType | None = None,
    ) -> AuthorizedPrincipal | AuthFailure:
        """Exchange presented_token for a new pair.

        caller is the principal of an access token sent with the request, if
        any. expected_role restricts the exchange to one role family (the HTTP
        layer passes the role from the path).
        """
        claims = self._issuer.decode(presented_token)
        if isinstance(claims, AuthFailure):
            return claims
        if claims.token_type != REFRESH or (expected_role is not None and claims.role != RoleType(expected_role)):
            return AuthFailure.of(ErrorKind.TOKEN_TYPE_MISMATCH)
        if caller is not None and (caller.id != claims.user_id or caller.role != claims.role):
            logger.warning(
                "Refresh subject mismatch caller=%s/%s token=%s/%s",
                caller.id,
                caller.role.value,
                claims.user_id,
                claims.role.value,
            )
            return AuthFailure.of(ErrorKind.SUBJECT_MISMATCH)
        try:
            return self._rotate(presented_token, claims, metadata)
        except SQLAlchemyError:
            logger.exception("Datastore error during token refresh")
            return AuthFailure.of(ErrorKind.DATASTORE_UNAVAILABLE)

    def _rotate(
        self,
        presented_token: str,
        claims: TokenClaims,
        metadata: RequestMetadata | None,
    ) -> AuthorizedPrincipal | AuthFailure:
        user = self._accounts.get_user(claims.user_id)
        if user is None:
            return AuthFailure.of(ErrorKind.USER_DEACTIVATED)
        if self._accounts.get_role_assignment(claims.user_id, claims.role) is None:
            return AuthFailure.of(ErrorKind.ROLE_ASSIGNMENT_REVOKED)

        previous = self._sessions.find_active_session_by_refresh_token(presented_token)
        if self._revoke_previous and previous is None:
            return AuthFailure.of(ErrorKind.SESSION_REVOKED)

        if metadata is None:
            metadata = _metadata_of(previous)
        pair = self._issuer.issue_pair(claims.user_id, claims.role)
        self._accounts.mark_activity(claims.user_id)
        if self._revoke_previous:
            # Revoke and reopen commit together. rotate() returns None when a
            # concurrent refresh with the same token already won.
            opened = self._sessions.rotate(previous.id, claims.user_id, claims.role, metadata, pair)
            if opened is None:
                return AuthFailure.of(ErrorKind.SESSION_REVOKED)
        else:
            opened = self._sessions.open_session(claims.user_id, claims.role, metadata, pair)
        session, _refresh = opened
        return AuthorizedPrincipal(
            principal=principal_for(claims.role, claims.user_id),
            tokens=pair,
            session_id=session.id,
        )


def _metadata_of(session) -> RequestMetadata:
    if session is None:
        return RequestMetadata()
    return RequestMetadata(
        ip=session.ip,
        device=session.device,
        browser=session.browser,
        location=session.location,
        user_agent=session.user_agent,
    )
