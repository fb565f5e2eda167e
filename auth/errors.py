"""
auth/errors.py -- Error taxonomy for login, refresh, and authorization.

Every auth operation returns either its success value or an AuthFailure.
Failures are values, not exceptions: the login state machine threads one
through its checks and returns on the first failure, and the HTTP layer
decides how each kind maps to a status code.

Login failures all carry the same public message so a caller cannot tell
which check failed (account enumeration). The specific reason lives on the
LoginAudit row only. Token failures carry their own message because they are
authorization failures, not credential attempts.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

GENERIC_LOGIN_MESSAGE = "Invalid credentials."


class ErrorKind(str, Enum):
    ACCOUNT_NOT_FOUND = "account_not_found"
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_NOT_VERIFIED = "email_not_verified"
    ACCOUNT_SUSPENDED = "account_suspended"
    ROLE_DISABLED = "role_disabled"
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_TYPE_MISMATCH = "token_type_mismatch"
    SUBJECT_MISMATCH = "subject_mismatch"
    ROLE_ASSIGNMENT_REVOKED = "role_assignment_revoked"
    USER_DEACTIVATED = "user_deactivated"
    SESSION_REVOKED = "session_revoked"
    EMAIL_TAKEN = "email_taken"
    DATASTORE_UNAVAILABLE = "datastore_unavailable"


LOGIN_KINDS = frozenset(
    {
        ErrorKind.ACCOUNT_NOT_FOUND,
        ErrorKind.INVALID_CREDENTIALS,
        ErrorKind.EMAIL_NOT_VERIFIED,
        ErrorKind.ACCOUNT_SUSPENDED,
        ErrorKind.ROLE_DISABLED,
    }
)

_MESSAGES = {
    ErrorKind.TOKEN_INVALID: "Token is invalid.",
    ErrorKind.TOKEN_EXPIRED: "Token has expired.",
    ErrorKind.TOKEN_TYPE_MISMATCH: "Token is not valid for this endpoint.",
    ErrorKind.SUBJECT_MISMATCH: "Token subject does not match the authenticated caller.",
    ErrorKind.ROLE_ASSIGNMENT_REVOKED: "Role assignment is no longer active.",
    ErrorKind.USER_DEACTIVATED: "Account is no longer active.",
    ErrorKind.SESSION_REVOKED: "Session has been revoked.",
    ErrorKind.EMAIL_TAKEN: "An account with this email already exists.",
    ErrorKind.DATASTORE_UNAVAILABLE: "Authentication is temporarily unavailable.",
}


@dataclass(frozen=True)
class AuthFailure:
    """A terminal failure of one auth call. Never retried automatically."""

    kind: ErrorKind
    message: str

    @classmethod
    def of(cls, kind: ErrorKind) -> AuthFailure:
        if kind in LOGIN_KINDS:
            return cls(kind, GENERIC_LOGIN_MESSAGE)
        return cls(kind, _MESSAGES[kind])

    @property
    def is_login_failure(self) -> bool:
        return self.kind in LOGIN_KINDS
