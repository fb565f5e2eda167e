"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Every protected route lives under /api/v1/auth/{role}/..., so the required
role comes from the path. require_principal() runs the AuthorizationGuard
against the Authorization header and either returns the typed principal or
raises an HTTPException carrying the error kind as its code.

optional_principal() is the soft variant used by /refresh: a caller that
still holds a valid access token is cross-checked against the refresh
token's subject; a caller without one (the usual case, its access token
having expired) simply has no principal.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the FastAPI dependency injection system. Nothing else in auth/ does.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import AuthFailure, ErrorKind
from auth.models import Principal, RoleType
from auth.services import AuthServices

# Login failures share one public code so the response never says which check failed.
_LOGIN_CODE = "bad_credentials"

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.ACCOUNT_NOT_FOUND: 401,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.EMAIL_NOT_VERIFIED: 401,
    ErrorKind.ACCOUNT_SUSPENDED: 401,
    ErrorKind.ROLE_DISABLED: 401,
    ErrorKind.TOKEN_INVALID: 401,
    ErrorKind.TOKEN_EXPIRED: 401,
    ErrorKind.TOKEN_TYPE_MISMATCH: 403,
    ErrorKind.SUBJECT_MISMATCH: 401,
    ErrorKind.ROLE_ASSIGNMENT_REVOKED: 401,
    ErrorKind.USER_DEACTIVATED: 401,
    ErrorKind.SESSION_REVOKED: 401,
    ErrorKind.EMAIL_TAKEN: 409,
    ErrorKind.DATASTORE_UNAVAILABLE: 503,
}


def failure_to_http(failure: AuthFailure) -> HTTPException:
    """Map an AuthFailure to the HTTPException the error envelope handler renders."""
    code = _LOGIN_CODE if failure.is_login_failure else failure.kind.value
    headers = {"WWW-Authenticate": "Bearer"} if STATUS_BY_KIND[failure.kind] == 401 else None
    return HTTPException(
        status_code=STATUS_BY_KIND[failure.kind],
        detail={"code": code, "message": failure.message},
        headers=headers,
    )


def get_services(request: Request) -> AuthServices:
    return request.app.state.auth


def require_principal(request: Request, role: RoleType) -> Principal:
    """Require a valid access token for the role in the path.

    Use as a FastAPI dependency on routes declared with a {role} path param:
        @router.get("/auth/{role}/me")
        async def me(principal: Principal = Depends(require_principal)): ...
    """
    result = get_services(request).guard.authorize(request.headers.get("Authorization"), role)
    if isinstance(result, AuthFailure):
        raise failure_to_http(result)
    return result


def optional_principal(request: Request, role: RoleType) -> Principal | None:
    """Return the caller's principal if the request carries a valid access token, else None."""
    if not request.headers.get("Authorization"):
        return None
    result = get_services(request).guard.authorize(request.headers.get("Authorization"), role)
    if isinstance(result, AuthFailure):
        if result.kind == ErrorKind.DATASTORE_UNAVAILABLE:
            raise failure_to_http(result)
        return None
    return result


def require_administrator(request: Request) -> Principal:
    """Require an administrator access token on routes without a {role} path param."""
    return require_principal(request, RoleType.administrator)
