"""
auth/guard.py -- Per-request authorization.

authorize() turns an Authorization header into a typed principal:

  1. extract and verify the token       -> TOKEN_INVALID / TOKEN_EXPIRED
  2. must be an access token for the required role -> TOKEN_TYPE_MISMATCH
  3. role assignment must be live       -> ROLE_ASSIGNMENT_REVOKED
  4. user must exist and not be deleted -> USER_DEACTIVATED
  5. return the principal variant for the role

The signature alone is never enough: steps 3 and 4 re-read live state on
every call, so revoking a role or deleting a user takes effect on the next
request rather than when the token expires. The guard never writes.

Header convention: "Bearer <token>" is the documented form. A bare token is
also accepted, since some clients send the token as the whole header value.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import AuthFailure, ErrorKind
from auth.models import Principal, RoleType, principal_for
from auth.store import AccountStore
from auth.tokens import ACCESS, TokenIssuer

logger = logging.getLogger("tokenward.auth")


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an Authorization header value, or None if there is none."""
    if not authorization:
        return None
    value = authorization.strip()
    scheme, _, rest = value.partition(" ")
    if rest and scheme.lower() == "bearer":
        value = rest.strip()
    elif rest:
        # Some other scheme ("Basic ...") -- not a bearer token.
        return None
    if not value or value.lower() == "bearer":
        return None
    return value


class AuthorizationGuard:
    def __init__(self, accounts: AccountStore, issuer: TokenIssuer) -> None:
        self._accounts = accounts
        self._issuer = issuer

    def authorize(self, authorization: str | None, required_role: RoleType) -> Principal | AuthFailure:
        token = extract_bearer_token(authorization)
        if token is None:
            return AuthFailure.of(ErrorKind.TOKEN_INVALID)
        claims = self._issuer.decode(token)
        if isinstance(claims, AuthFailure):
            return claims
        if claims.token_type != ACCESS or claims.role != RoleType(required_role):
            return AuthFailure.of(ErrorKind.TOKEN_TYPE_MISMATCH)
        try:
            if self._accounts.get_role_assignment(claims.user_id, claims.role) is None:
                return AuthFailure.of(ErrorKind.ROLE_ASSIGNMENT_REVOKED)
            if self._accounts.get_user(claims.user_id) is None:
                return AuthFailure.of(ErrorKind.USER_DEACTIVATED)
        except SQLAlchemyError:
            logger.exception("Datastore error during authorization")
            return AuthFailure.of(ErrorKind.DATASTORE_UNAVAILABLE)
        return principal_for(claims.role, claims.user_id)
