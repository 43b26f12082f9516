from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response, status

from workdesk.api.deps import CurrentPrincipal, Guard, Limit, Page, Resources, get_identity_service
from workdesk.api.payloads import sanitize_update
from workdesk.domain.models import (
    PasswordChangeRequest,
    TenantCreate,
    TenantRead,
    TenantUpdate,
    UserCreate,
    UserRead,
    UserUpdate,
)
from workdesk.domain.permissions import Action, ResourceKind
from workdesk.infra.audit import set_audit_context
from workdesk.services import identity_service, resource_service
from workdesk.services.identity_service import IdentityService

router = APIRouter()

RESOURCE_KINDS = (ResourceKind.TENANT, ResourceKind.USER)

Identity = Annotated[IdentityService, Depends(get_identity_service)]


def _handle_identity_error(exc: Exception) -> None:
    if isinstance(exc, (identity_service.NotFoundError, resource_service.NotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, (identity_service.ConflictError, resource_service.ConflictError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, identity_service.ForbiddenError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden") from exc
    if isinstance(exc, (identity_service.ValidationError, resource_service.ValidationError)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc


@router.get("/tenants", response_model=list[TenantRead])
def list_tenants(
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
    page: Page = 1,
    limit: Limit = 10,
) -> list[TenantRead]:
    scope = guard.list_scope(principal, ResourceKind.TENANT)
    rows = service.list_resources(ResourceKind.TENANT, scope, page=page, limit=limit)
    return [TenantRead.model_validate(item) for item in rows]


@router.post("/tenants", response_model=TenantRead, status_code=status.HTTP_201_CREATED)
def create_tenant(payload: TenantCreate, principal: CurrentPrincipal, guard: Guard, service: Resources) -> TenantRead:
    guard.check_create(principal, ResourceKind.TENANT, owner_tenant_id=None)
    values = payload.model_dump()
    if values.get("email"):
        values["email"] = values["email"].lower()
    try:
        tenant = service.create_resource(ResourceKind.TENANT, values, owner_tenant_id=None)
        return TenantRead.model_validate(tenant)
    except (resource_service.NotFoundError, resource_service.ConflictError, resource_service.ValidationError) as exc:
        _handle_identity_error(exc)
        raise


@router.get("/tenants/{tenant_id}", response_model=TenantRead)
def get_tenant(tenant_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> TenantRead:
    guard.check(principal, ResourceKind.TENANT, tenant_id, Action.READ)
    try:
        return TenantRead.model_validate(service.get_resource(ResourceKind.TENANT, tenant_id))
    except resource_service.NotFoundError as exc:
        _handle_identity_error(exc)
        raise


@router.patch("/tenants/{tenant_id}", response_model=TenantRead)
def update_tenant(
    tenant_id: str,
    body: Annotated[dict[str, Any], Body()],
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> TenantRead:
    guard.check(principal, ResourceKind.TENANT, tenant_id, Action.WRITE)
    values = sanitize_update(ResourceKind.TENANT, body, TenantUpdate)
    try:
        tenant = service.update_resource(ResourceKind.TENANT, tenant_id, values)
        return TenantRead.model_validate(tenant)
    except (resource_service.NotFoundError, resource_service.ConflictError, resource_service.ValidationError) as exc:
        _handle_identity_error(exc)
        raise


@router.delete("/tenants/{tenant_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_tenant(tenant_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> Response:
    guard.check(principal, ResourceKind.TENANT, tenant_id, Action.DELETE)
    try:
        service.delete_resource(ResourceKind.TENANT, tenant_id)
    except (resource_service.NotFoundError, resource_service.ConflictError) as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/users", response_model=list[UserRead])
def list_users(
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
    tenant_id: str | None = None,
    client_id: str | None = None,
    page: Page = 1,
    limit: Limit = 10,
) -> list[UserRead]:
    scope = guard.list_scope(principal, ResourceKind.USER)
    try:
        rows = service.list_resources(
            ResourceKind.USER,
            scope,
            tenant_id=tenant_id,
            client_id=client_id,
            page=page,
            limit=limit,
        )
    except resource_service.ValidationError as exc:
        _handle_identity_error(exc)
        raise
    return [UserRead.model_validate(item) for item in rows]


@router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    request: Request,
    principal: CurrentPrincipal,
    guard: Guard,
    identity: Identity,
) -> UserRead:
    guard.require(principal, ResourceKind.USER, Action.WRITE)
    try:
        role, tenant_id, client_id = identity.resolve_user_ownership(principal, payload)
    except (identity_service.NotFoundError, identity_service.ForbiddenError, identity_service.ValidationError) as exc:
        _handle_identity_error(exc)
        raise
    tenant = None
    if tenant_id is not None:
        tenant = guard.parent_scope(principal, ResourceKind.USER, ResourceKind.TENANT, tenant_id)
    guard.check_create(
        principal,
        ResourceKind.USER,
        owner_tenant_id=tenant_id,
        owner_client_id=client_id,
        parent=tenant,
    )
    try:
        user = identity.create_user(role, tenant_id, client_id, payload)
    except (identity_service.NotFoundError, identity_service.ConflictError) as exc:
        _handle_identity_error(exc)
        raise
    set_audit_context(request, action="user.create", detail={"what": {"user_id": user.id, "role": user.role}})
    return UserRead.model_validate(user)


@router.get("/users/{user_id}", response_model=UserRead)
def get_user(user_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> UserRead:
    guard.check(principal, ResourceKind.USER, user_id, Action.READ)
    try:
        return UserRead.model_validate(service.get_resource(ResourceKind.USER, user_id))
    except resource_service.NotFoundError as exc:
        _handle_identity_error(exc)
        raise


@router.patch("/users/{user_id}", response_model=UserRead)
def update_user(
    user_id: str,
    body: Annotated[dict[str, Any], Body()],
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
    identity: Identity,
) -> UserRead:
    guard.check(principal, ResourceKind.USER, user_id, Action.WRITE)
    values = sanitize_update(ResourceKind.USER, body, UserUpdate)
    if values.get("email"):
        values["email"] = values["email"].lower()
    try:
        identity.ensure_manageable(principal, user_id)
        user = service.update_resource(ResourceKind.USER, user_id, values)
        return UserRead.model_validate(user)
    except (
        identity_service.NotFoundError,
        identity_service.ForbiddenError,
        resource_service.NotFoundError,
        resource_service.ConflictError,
    ) as exc:
        _handle_identity_error(exc)
        raise


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: str,
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
    identity: Identity,
) -> Response:
    guard.check(principal, ResourceKind.USER, user_id, Action.DELETE)
    if user_id == principal.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="cannot delete own account")
    try:
        identity.ensure_manageable(principal, user_id)
        service.delete_resource(ResourceKind.USER, user_id)
    except (
        identity_service.NotFoundError,
        identity_service.ForbiddenError,
        resource_service.NotFoundError,
        resource_service.ConflictError,
    ) as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/users/{user_id}/password", status_code=status.HTTP_204_NO_CONTENT)
def change_password(
    user_id: str,
    payload: PasswordChangeRequest,
    request: Request,
    principal: CurrentPrincipal,
    guard: Guard,
    identity: Identity,
) -> Response:
    guard.check(principal, ResourceKind.USER, user_id, Action.WRITE)
    try:
        identity.change_password(principal, user_id, payload)
    except (identity_service.NotFoundError, identity_service.ForbiddenError, identity_service.ValidationError) as exc:
        _handle_identity_error(exc)
    mode = "self" if user_id == principal.id else "admin_reset"
    set_audit_context(request, action="user.password", detail={"what": {"user_id": user_id, "mode": mode}})
    return Response(status_code=status.HTTP_204_NO_CONTENT)
