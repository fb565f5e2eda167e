"""
api/routes/v1/auth.py -- Login, refresh, logout, and session management endpoints.

Routes (every {role} is one of member, moderator, administrator, visitor):
  POST   /api/v1/auth/{role}/join                   -- self-registration; returns a token pair (201)
  POST   /api/v1/auth/{role}/login                  -- password login; returns a token pair
  POST   /api/v1/auth/{role}/refresh                -- exchange a refresh token for a new pair
  POST   /api/v1/auth/{role}/logout                 -- revoke the session of the presented access token
  GET    /api/v1/auth/{role}/me                     -- current principal
  GET    /api/v1/auth/{role}/sessions               -- caller's live sessions
  DELETE /api/v1/auth/{role}/sessions/{session_id}  -- revoke one of the caller's sessions
  POST   /api/v1/auth/{role}/sessions/revoke-others -- revoke every session but the current one
  GET    /api/v1/auth/administrator/login-history   -- login audit trail for every user (administrator only)
  GET    /api/v1/auth/{role}/login-history          -- the caller's own login attempts

Security:
  [H2] join, login and refresh are rate-limited per IP (LOGIN_RATE_LIMIT).
  [M5] Cache-Control: no-store on every response that carries tokens.
  Login failures all return 401 bad_credentials with one generic message.
  IDOR guard: session and history routes only ever touch rows owned by the caller.
  /auth/administrator/login-history is declared before /auth/{role}/login-history
  so the administrator path keeps its all-users view.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    JoinRequest,
    LoginAuditResponse,
    LoginRequest,
    PrincipalResponse,
    RefreshRequest,
    RevokedCountResponse,
    SessionResponse,
    TokenPairResponse,
)
from auth.dependencies import (
    failure_to_http,
    get_services,
    optional_principal,
    require_administrator,
    require_principal,
)
from auth.errors import AuthFailure
from auth.guard import extract_bearer_token
from auth.models import AuthorizedPrincipal, LoginAudit, Principal, RequestMetadata, RoleType, Session
from core.config import get_settings

router = APIRouter()


def _login_limit() -> str:
    return get_settings().login_rate_limit


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/{role}/join", response_model=TokenPairResponse, status_code=201)
@limiter.limit(_login_limit)  # [H2]
def join(request: Request, role: RoleType, body: JoinRequest) -> JSONResponse:
    """Create an account holding role and sign it in. A taken email yields 409."""
    result = get_services(request).registrar.join(body.email, body.password, _request_metadata(request), role)
    if isinstance(result, AuthFailure):
        return _error_response(result)
    return _token_response(result, status_code=201)


@router.post("/auth/{role}/login", response_model=TokenPairResponse)
@limiter.limit(_login_limit)  # [H2]
def login(request: Request, role: RoleType, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password for the role in the path."""
    result = get_services(request).verifier.login(body.email, body.password, _request_metadata(request), role)
    if isinstance(result, AuthFailure):
        return _error_response(result)
    return _token_response(result)


@router.post("/auth/{role}/refresh", response_model=TokenPairResponse)
@limiter.limit(_login_limit)  # [H2]
def refresh(
    request: Request,
    role: RoleType,
    body: RefreshRequest,
    caller: Optional[Principal] = Depends(optional_principal),
) -> JSONResponse:
    """Rotate a refresh token.

    If the request also carries a valid access token, its subject must match
    the refresh token's subject. The role in the path must match the token's.
    """
    result = get_services(request).rotator.refresh(
        body.refresh_token, caller, _request_metadata(request), expected_role=role
    )
    if isinstance(result, AuthFailure):
        return _error_response(result)
    return _token_response(result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/{role}/logout")
def logout(request: Request, principal: Principal = Depends(require_principal)) -> JSONResponse:
    """Revoke the session the presented access token belongs to."""
    services = get_services(request)
    session = _current_session(request)
    if session is not None and session.user_id == principal.id:
        services.sessions.revoke(session.id)
    return JSONResponse(content={"message": "Logged out."})


@router.get("/auth/{role}/me", response_model=PrincipalResponse)
def me(principal: Principal = Depends(require_principal)) -> PrincipalResponse:
    return PrincipalResponse(user_id=principal.id, role=principal.role.value)


@router.get("/auth/{role}/sessions", response_model=list[SessionResponse])
def list_sessions(request: Request, principal: Principal = Depends(require_principal)) -> list[SessionResponse]:
    """List the caller's live sessions across all devices, newest first."""
    current = _current_session(request)
    current_id = current.id if current is not None else None
    sessions = get_services(request).sessions.list_active_sessions(principal.id)
    return [_session_to_response(s, current_id) for s in sessions]


@router.delete("/auth/{role}/sessions/{session_id}", status_code=204)
def revoke_session(
    request: Request,
    session_id: str,
    principal: Principal = Depends(require_principal),
) -> Response:
    """Revoke one of the caller's sessions. Another user's session id yields 404 [IDOR guard]."""
    store = get_services(request).sessions
    session = store.get_session(session_id)
    if session is None or session.user_id != principal.id or not store.revoke(session_id):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Session not found."},
        )
    return Response(status_code=204)


@router.post("/auth/{role}/sessions/revoke-others", response_model=RevokedCountResponse)
def revoke_other_sessions(
    request: Request,
    principal: Principal = Depends(require_principal),
) -> RevokedCountResponse:
    """Sign out every other device. The session of the presented access token stays live."""
    current = _current_session(request)
    count = get_services(request).sessions.revoke_all_for_user(
        principal.id, except_session_id=current.id if current is not None else None
    )
    return RevokedCountResponse(revoked=count)


# ---------------------------------------------------------------------------
# Login history
# ---------------------------------------------------------------------------


@router.get("/auth/administrator/login-history", response_model=list[LoginAuditResponse])
def login_history(
    request: Request,
    user_id: Optional[str] = None,
    email: Optional[str] = None,
    only_failures: bool = False,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    admin: Principal = Depends(require_administrator),
) -> list[LoginAuditResponse]:
    """Return login attempts newest first, with their internal failure reasons."""
    rows = get_services(request).audit.history(
        user_id=user_id, email=email, only_failures=only_failures, limit=limit, offset=offset
    )
    return [_audit_to_response(a) for a in rows]


@router.get("/auth/{role}/login-history", response_model=list[LoginAuditResponse])
def own_login_history(
    request: Request,
    only_failures: bool = False,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(require_principal),
) -> list[LoginAuditResponse]:
    """Return the caller's own login attempts, newest first [IDOR guard]."""
    rows = get_services(request).audit.history(
        user_id=principal.id, only_failures=only_failures, limit=limit, offset=offset
    )
    return [_audit_to_response(a) for a in rows]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _request_metadata(request: Request) -> RequestMetadata:
    user_agent = request.headers.get("User-Agent")
    return RequestMetadata(
        ip=request.client.host if request.client else None,
        device=request.headers.get("X-Device-Name"),
        browser=_browser_from_user_agent(user_agent),
        location=request.headers.get("X-Client-Location"),
        user_agent=user_agent,
    )


# Order matters: Edge and Chrome both advertise "Safari", Edge also advertises "Chrome".
_BROWSER_MARKERS = (("Edg/", "Edge"), ("Firefox/", "Firefox"), ("Chrome/", "Chrome"), ("Safari/", "Safari"))


def _browser_from_user_agent(user_agent: str | None) -> str | None:
    if not user_agent:
        return None
    for marker, name in _BROWSER_MARKERS:
        if marker in user_agent:
            return name
    return None


def _current_session(request: Request) -> Session | None:
    token = extract_bearer_token(request.headers.get("Authorization"))
    if token is None:
        return None
    return get_services(request).sessions.find_active_session_by_access_token(token)


def _token_response(result: AuthorizedPrincipal, status_code: int = 200) -> JSONResponse:
    body = TokenPairResponse(
        access_token=result.tokens.access.token,
        access_expires_at=result.tokens.access.expires_at,
        refresh_token=result.tokens.refresh.token,
        refresh_expires_at=result.tokens.refresh.expires_at,
        user_id=result.principal.id,
        role=result.principal.role.value,
        session_id=result.session_id,
    )
    resp = JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _error_response(failure: AuthFailure) -> JSONResponse:
    exc = failure_to_http(failure)
    resp = JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _session_to_response(session: Session, current_id: str | None) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        role=session.role_type.value,
        ip=session.ip,
        device=session.device,
        browser=session.browser,
        location=session.location,
        created_at=session.created_at,
        last_activity_at=session.last_activity_at,
        expires_at=session.expires_at,
        current=session.id == current_id,
    )


def _audit_to_response(a: LoginAudit) -> LoginAuditResponse:
    return LoginAuditResponse(
        id=a.id,
        user_id=a.user_id,
        email_attempted=a.email_attempted,
        role=a.role_type.value if a.role_type else None,
        is_successful=a.is_successful,
        failure_reason=a.failure_reason.value if a.failure_reason else None,
        ip=a.ip,
        device=a.device,
        browser=a.browser,
        location=a.location,
        created_at=a.created_at,
    )
