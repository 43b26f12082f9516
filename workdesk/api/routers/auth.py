from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from workdesk.api.deps import CurrentPrincipal, get_identity_service, get_session_token
from workdesk.domain.models import LoginRequest, PrincipalRead, RegisterRequest, TokenResponse
from workdesk.infra.audit import set_audit_context
from workdesk.infra.auth import SESSION_COOKIE_NAME, SESSION_COOKIE_SECURE
from workdesk.services.identity_service import AuthError, ConflictError, IdentityService

router = APIRouter()

Identity = Annotated[IdentityService, Depends(get_identity_service)]


def _handle_auth_error(exc: Exception) -> None:
    if isinstance(exc, AuthError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


def _set_session_cookie(response: Response, token: str, expires_at: datetime) -> None:
    max_age = max(int((expires_at - datetime.now(UTC)).total_seconds()), 0)
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=max_age,
        httponly=True,
        secure=SESSION_COOKIE_SECURE,
        samesite="lax",
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, request: Request, response: Response, identity: Identity) -> TokenResponse:
    try:
        user, token, expires_at = identity.register(payload)
    except ConflictError as exc:
        _handle_auth_error(exc)
        raise
    set_audit_context(
        request,
        action="auth.register",
        detail={"what": {"user_id": user.id, "tenant_id": user.tenant_id}},
    )
    _set_session_cookie(response, token, expires_at)
    return TokenResponse(access_token=token, expires_at=expires_at)


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, request: Request, response: Response, identity: Identity) -> TokenResponse:
    try:
        token, expires_at = identity.login(payload.email, payload.password)
    except AuthError as exc:
        set_audit_context(request, action="auth.login_failed", detail={"what": {"email": payload.email}})
        _handle_auth_error(exc)
        raise
    _set_session_cookie(response, token, expires_at)
    return TokenResponse(access_token=token, expires_at=expires_at)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    request: Request,
    token: Annotated[str | None, Depends(get_session_token)],
    identity: Identity,
) -> Response:
    identity.logout(token)
    set_audit_context(request, action="auth.logout")
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(SESSION_COOKIE_NAME, httponly=True, secure=SESSION_COOKIE_SECURE, samesite="lax")
    return response


@router.get("/me", response_model=PrincipalRead)
def me(principal: CurrentPrincipal) -> PrincipalRead:
    return PrincipalRead(
        id=principal.id,
        role=principal.role.value,
        tenant_id=principal.tenant_id,
        client_id=principal.client_id,
        is_active=principal.is_active,
    )
