from __future__ import annotations

from typing import Annotated

from fastapi import Cookie, Depends, HTTPException, Query, Request, status
from fastapi.security import OAuth2PasswordBearer

from workdesk.domain.access import AccessDecision, DenyReason, ListScope, Principal, ResourceScope
from workdesk.domain.permissions import CONCEALED_KINDS, Action, ResourceKind
from workdesk.infra.audit import record_denial
from workdesk.infra.auth import SESSION_COOKIE_NAME
from workdesk.services.authorization_service import AuthorizationService
from workdesk.services.identity_service import IdentityService
from workdesk.services.resource_service import MAX_PAGE_SIZE, ResourceService
from workdesk.services.scope_service import ResourceNotFoundError, ScopeService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_identity_service() -> IdentityService:
    return IdentityService()


def get_resource_service() -> ResourceService:
    return ResourceService()


Resources = Annotated[ResourceService, Depends(get_resource_service)]
Page = Annotated[int, Query(ge=1)]
Limit = Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)]


def get_session_token(
    bearer: Annotated[str | None, Depends(oauth2_scheme)],
    session_cookie: Annotated[str | None, Cookie(alias=SESSION_COOKIE_NAME)] = None,
) -> str | None:
    return bearer or session_cookie


def get_current_principal(
    request: Request,
    token: Annotated[str | None, Depends(get_session_token)],
    identity: Annotated[IdentityService, Depends(get_identity_service)],
) -> Principal:
    principal = identity.resolve_principal(token)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    request.state.principal = principal
    return principal


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


class AccessGuard:
    """Turns access decisions into HTTP errors for one request.

    401 for unauthenticated, 404 for missing resources and for out-of-scope access to
    concealed kinds, 403 otherwise. The detailed reason only reaches the audit log.
    """

    def __init__(
        self,
        request: Request,
        authorization: AuthorizationService | None = None,
        scopes: ScopeService | None = None,
    ) -> None:
        self._request = request
        self._scopes = scopes if scopes is not None else ScopeService()
        self._authz = authorization if authorization is not None else AuthorizationService(self._scopes)

    def _deny(
        self,
        kind: ResourceKind,
        resource_id: str | None,
        action: Action,
        decision: AccessDecision,
        *,
        concealed_as: ResourceKind | None = None,
    ) -> HTTPException:
        reason = decision.reason or DenyReason.NO_POLICY
        record_denial(self._request, kind=str(kind), resource_id=resource_id, action=str(action), reason=str(reason))
        if reason == DenyReason.UNAUTHENTICATED:
            return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")
        if reason == DenyReason.NOT_FOUND:
            return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{concealed_as or kind} not found")
        if reason == DenyReason.OUT_OF_SCOPE and concealed_as in CONCEALED_KINDS:
            return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{concealed_as} not found")
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")

    def check(self, principal: Principal, kind: ResourceKind, resource_id: str, action: Action) -> None:
        decision = self._authz.authorize(principal, kind, resource_id, action)
        if not decision.allowed:
            raise self._deny(kind, resource_id, action, decision, concealed_as=kind)

    def check_create(
        self,
        principal: Principal,
        kind: ResourceKind,
        *,
        owner_tenant_id: str | None,
        owner_client_id: str | None = None,
        parent: ResourceScope | None = None,
    ) -> None:
        decision = self._authz.authorize_create(
            principal,
            kind,
            owner_tenant_id=owner_tenant_id,
            owner_client_id=owner_client_id,
        )
        if not decision.allowed:
            concealed_as = None
            # a parent the caller cannot even read is reported as missing
            if parent is not None and not self._authz.authorize(
                principal, parent.kind, parent.resource_id, Action.READ
            ).allowed:
                concealed_as = parent.kind
            raise self._deny(kind, None, Action.WRITE, decision, concealed_as=concealed_as)

    def require(self, principal: Principal, kind: ResourceKind, action: Action) -> None:
        decision = self._authz.check_action(principal, kind, action)
        if not decision.allowed:
            raise self._deny(kind, None, action, decision)

    def list_scope(self, principal: Principal, kind: ResourceKind) -> ListScope:
        decision, scope = self._authz.list_scope(principal, kind)
        if not decision.allowed or scope is None:
            raise self._deny(kind, None, Action.READ, decision)
        return scope

    def parent_scope(
        self,
        principal: Principal,
        kind: ResourceKind,
        parent_kind: ResourceKind,
        parent_id: str,
    ) -> ResourceScope:
        """Ownership of the parent a new ``kind`` row would hang off; 404 when missing.

        The role-level check runs first so callers without write access learn nothing
        about which parent ids exist.
        """
        self.require(principal, kind, Action.WRITE)
        try:
            return self._scopes.resolve_scope(parent_kind, parent_id)
        except ResourceNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{parent_kind} not found") from exc


def get_access_guard(request: Request) -> AccessGuard:
    return AccessGuard(request)


Guard = Annotated[AccessGuard, Depends(get_access_guard)]
