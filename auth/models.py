"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data containers, zero logic beyond trivial
predicates). Stores map rows to these; services do the work.

Principal is a closed sum type over the four role variants. Code that needs
a principal for a role calls principal_for(), which looks the variant up in
a table keyed by RoleType. Adding a role without a principal class fails at
import time rather than at the first request that uses it.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar, Union


class RoleType(str, Enum):
    member = "member"
    moderator = "moderator"
    administrator = "administrator"
    visitor = "visitor"


class AccountStatus(str, Enum):
    active = "active"
    suspended = "suspended"
    banned = "banned"
    pending = "pending"


class FailureReason(str, Enum):
    """Internal login failure codes recorded on LoginAudit rows."""

    account_not_found = "account_not_found"
    incorrect_password = "incorrect_password"  # noqa: S105 # nosec B105 -- audit code, not a password
    email_not_verified = "email_not_verified"
    account_suspended = "account_suspended"


@dataclass
class User:
    """A base account. Roles are granted separately through RoleAssignment.

    deleted_at is set by a soft delete; the row itself is never removed.
    """

    email: str
    password_hash: str
    id: str | None = None
    email_verified: bool = False
    account_status: AccountStatus = AccountStatus.active
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None
    last_login_at: datetime | None = None
    last_activity_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class RoleAssignment:
    """States that user_id currently holds role_type.

    is_active is the role-specific enable flag checked at login. A role is
    usable only while both this row and the owning User are non-deleted.
    """

    user_id: str
    role_type: RoleType
    id: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    deleted_at: datetime | None = None


@dataclass
class RequestMetadata:
    """Client details captured by the HTTP layer for sessions and audit rows."""

    ip: str | None = None
    device: str | None = None
    browser: str | None = None
    location: str | None = None
    user_agent: str | None = None


@dataclass
class Session:
    """One authenticated login instance (one device / login event).

    access_token_hash holds HMAC-SHA256(SECRET_KEY, access_token); the raw
    token is never persisted.
    """

    user_id: str
    role_type: RoleType
    access_token_hash: str
    expires_at: datetime
    id: str | None = None
    ip: str | None = None
    device: str | None = None
    browser: str | None = None
    location: str | None = None
    user_agent: str | None = None
    is_active: bool = True
    last_activity_at: datetime | None = None
    created_at: datetime | None = None
    revoked_at: datetime | None = None


@dataclass
class RefreshToken:
    """The single refresh credential owned by a Session."""

    session_id: str
    token_hash: str
    expires_at: datetime
    id: str | None = None
    is_revoked: bool = False
    revoked_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class LoginAudit:
    """Append-only record of one login attempt and its outcome."""

    email_attempted: str
    is_successful: bool
    id: str | None = None
    user_id: str | None = None
    role_type: RoleType | None = None
    failure_reason: FailureReason | None = None
    ip: str | None = None
    device: str | None = None
    browser: str | None = None
    location: str | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _PrincipalBase:
    id: str

    role: ClassVar[RoleType]


@dataclass(frozen=True)
class MemberPrincipal(_PrincipalBase):
    role: ClassVar[RoleType] = RoleType.member


@dataclass(frozen=True)
class ModeratorPrincipal(_PrincipalBase):
    role: ClassVar[RoleType] = RoleType.moderator


@dataclass(frozen=True)
class AdministratorPrincipal(_PrincipalBase):
    role: ClassVar[RoleType] = RoleType.administrator


@dataclass(frozen=True)
class VisitorPrincipal(_PrincipalBase):
    role: ClassVar[RoleType] = RoleType.visitor


Principal = Union[MemberPrincipal, ModeratorPrincipal, AdministratorPrincipal, VisitorPrincipal]

_PRINCIPAL_BY_ROLE: dict[RoleType, type] = {
    RoleType.member: MemberPrincipal,
    RoleType.moderator: ModeratorPrincipal,
    RoleType.administrator: AdministratorPrincipal,
    RoleType.visitor: VisitorPrincipal,
}

_missing = set(RoleType) - set(_PRINCIPAL_BY_ROLE)
if _missing:
    raise RuntimeError(f"No principal class for roles: {sorted(r.value for r in _missing)}")


def principal_for(role: RoleType, user_id: str) -> Principal:
    """Build the principal variant for role."""
    return _PRINCIPAL_BY_ROLE[role](id=user_id)


# ---------------------------------------------------------------------------
# Issued credentials
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime
    jti: str


@dataclass(frozen=True)
class TokenPair:
    access: IssuedToken
    refresh: IssuedToken


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of a decoded token."""

    user_id: str
    role: RoleType
    token_type: str  # "access" | "refresh"
    expires_at: datetime
    jti: str | None = None


@dataclass(frozen=True)
class AuthorizedPrincipal:
    """Result of a successful login or refresh: who, plus the credentials to present."""

    principal: Principal
    tokens: TokenPair
    session_id: str | None = None
