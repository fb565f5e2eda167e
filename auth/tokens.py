"""
auth/tokens.py -- JWT issuance/verification and token hashing.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY, carry a
       fixed issuer claim, and hold the user id and role discriminator:

         access:  {id, type, token_type: "access",  iss, iat, exp, jti}
         refresh: {id, type, token_type: "refresh", iss, iat, exp, jti}

       jti makes every token unique, even two minted for the same user in the
       same second. SessionStore relies on that for its UNIQUE(token_hash).

  Expiry: both lifetimes come from Settings. issue_pair() computes both
       expiries from one instant, and Settings refuses an access lifetime
       that is not shorter than the refresh lifetime, so
       expires_at(access) < expires_at(refresh) for every pair.

  Token hashes: Sessions and RefreshTokens persist HMAC-SHA256(SECRET_KEY,
       token), never the raw value. The hash is deterministic, which gives an
       O(1) indexed lookup, and a leaked DB row cannot be replayed as a bearer
       credential without also knowing SECRET_KEY.

  Verification: decode() is the single primitive shared by the refresh
       rotator and the authorization guard. It returns TokenClaims or an
       AuthFailure with TOKEN_EXPIRED / TOKEN_INVALID; it never raises for a
       bad token.

Layer rule: no imports from api/. Settings arrive through the constructor.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import AuthFailure, ErrorKind
from auth.models import IssuedToken, RoleType, TokenClaims, TokenPair

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("tokenward.auth")

ALGORITHM = "HS256"
ACCESS = "access"
REFRESH = "refresh"


def hash_token(secret_key: str, token: str) -> str:
    """Return HMAC-SHA256(secret_key, token) as a hex string."""
    return hmac.new(secret_key.encode(), token.encode(), hashlib.sha256).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Mints and verifies signed access/refresh tokens.

    now is injectable so tests can mint tokens "in the past" and watch them
    expire without sleeping.
    """

    def __init__(self, settings: Settings, now: Callable[[], datetime] = _utcnow) -> None:
        self._secret_key = settings.secret_key
        self._issuer = settings.token_issuer
        self._access_lifetime = settings.access_token_lifetime
        self._refresh_lifetime = settings.refresh_token_lifetime
        self._now = now

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, user_id: str, role: RoleType) -> IssuedToken:
        return self._issue(user_id, role, ACCESS, self._now(), self._access_lifetime)

    def issue_refresh_token(self, user_id: str, role: RoleType) -> IssuedToken:
        return self._issue(user_id, role, REFRESH, self._now(), self._refresh_lifetime)

    def issue_pair(self, user_id: str, role: RoleType) -> TokenPair:
        """Issue an access and a refresh token whose expiries share one reference instant."""
        issued_at = self._now()
        return TokenPair(
            access=self._issue(user_id, role, ACCESS, issued_at, self._access_lifetime),
            refresh=self._issue(user_id, role, REFRESH, issued_at, self._refresh_lifetime),
        )

    def _issue(
        self,
        user_id: str,
        role: RoleType,
        token_type: str,
        issued_at: datetime,
        lifetime: timedelta,
    ) -> IssuedToken:
        expires_at = issued_at + lifetime
        jti = str(uuid.uuid4())
        payload = {
            "id": user_id,
            "type": RoleType(role).value,
            "token_type": token_type,
            "iss": self._issuer,
            "iat": issued_at,
            "exp": expires_at,
            "jti": jti,
        }
        token = jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)
        return IssuedToken(token=token, expires_at=expires_at, jti=jti)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def decode(self, token: str) -> TokenClaims | AuthFailure:
        """Verify signature, issuer and expiry, then return the typed claims.

        Expired -> TOKEN_EXPIRED. Anything else wrong (bad signature, other
        issuer, missing claims, unknown role) -> TOKEN_INVALID.
        """
        if not token:
            return AuthFailure.of(ErrorKind.TOKEN_INVALID)
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM], issuer=self._issuer)
        except ExpiredSignatureError:
            return AuthFailure.of(ErrorKind.TOKEN_EXPIRED)
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            return AuthFailure.of(ErrorKind.TOKEN_INVALID)

        user_id = payload.get("id")
        token_type = payload.get("token_type")
        exp = payload.get("exp")
        if not isinstance(user_id, str) or token_type not in (ACCESS, REFRESH) or exp is None:
            return AuthFailure.of(ErrorKind.TOKEN_INVALID)
        try:
            role = RoleType(payload.get("type"))
        except ValueError:
            return AuthFailure.of(ErrorKind.TOKEN_INVALID)
        return TokenClaims(
            user_id=user_id,
            role=role,
            token_type=token_type,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
            jti=payload.get("jti"),
        )
