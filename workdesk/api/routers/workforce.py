from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, HTTPException, Request, Response, status

from workdesk.api.deps import CurrentPrincipal, Guard, Limit, Page, Resources
from workdesk.api.payloads import sanitize_update
from workdesk.domain.models import (
    AssignmentCreate,
    AssignmentRead,
    AssignmentUpdate,
    BranchCreate,
    BranchRead,
    BranchUpdate,
    ClientCreate,
    ClientRead,
    ClientUpdate,
)
from workdesk.domain.permissions import Action, ResourceKind
from workdesk.infra.audit import set_audit_context
from workdesk.services.resource_service import ConflictError, NotFoundError, ValidationError

router = APIRouter()

RESOURCE_KINDS = (ResourceKind.CLIENT, ResourceKind.BRANCH, ResourceKind.ASSIGNMENT)


def _handle_workforce_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc


@router.get("/clients", response_model=list[ClientRead])
def list_clients(
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
    tenant_id: str | None = None,
    page: Page = 1,
    limit: Limit = 10,
) -> list[ClientRead]:
    scope = guard.list_scope(principal, ResourceKind.CLIENT)
    rows = service.list_resources(ResourceKind.CLIENT, scope, tenant_id=tenant_id, page=page, limit=limit)
    return [ClientRead.model_validate(item) for item in rows]


@router.post("/clients", response_model=ClientRead, status_code=status.HTTP_201_CREATED)
def create_client(
    payload: ClientCreate,
    request: Request,
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> ClientRead:
    tenant = guard.parent_scope(principal, ResourceKind.CLIENT, ResourceKind.TENANT, payload.tenant_id)
    guard.check_create(principal, ResourceKind.CLIENT, owner_tenant_id=tenant.owner_tenant_id, parent=tenant)
    try:
        row = service.create_resource(ResourceKind.CLIENT, payload.model_dump(), owner_tenant_id=tenant.owner_tenant_id)
        set_audit_context(request, action="client.create", detail={"what": {"client_id": row.id}})
        return ClientRead.model_validate(row)
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_workforce_error(exc)
        raise


@router.get("/clients/{client_id}", response_model=ClientRead)
def get_client(client_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> ClientRead:
    guard.check(principal, ResourceKind.CLIENT, client_id, Action.READ)
    try:
        return ClientRead.model_validate(service.get_resource(ResourceKind.CLIENT, client_id))
    except NotFoundError as exc:
        _handle_workforce_error(exc)
        raise


@router.patch("/clients/{client_id}", response_model=ClientRead)
def update_client(
    client_id: str,
    body: Annotated[dict[str, Any], Body()],
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> ClientRead:
    guard.check(principal, ResourceKind.CLIENT, client_id, Action.WRITE)
    values = sanitize_update(ResourceKind.CLIENT, body, ClientUpdate)
    try:
        return ClientRead.model_validate(service.update_resource(ResourceKind.CLIENT, client_id, values))
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_workforce_error(exc)
        raise


@router.delete("/clients/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_client(client_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> Response:
    guard.check(principal, ResourceKind.CLIENT, client_id, Action.DELETE)
    try:
        service.delete_resource(ResourceKind.CLIENT, client_id)
    except (NotFoundError, ConflictError) as exc:
        _handle_workforce_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/branches", response_model=list[BranchRead])
def list_branches(
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
    tenant_id: str | None = None,
    client_id: str | None = None,
    page: Page = 1,
    limit: Limit = 10,
) -> list[BranchRead]:
    scope = guard.list_scope(principal, ResourceKind.BRANCH)
    rows = service.list_resources(
        ResourceKind.BRANCH,
        scope,
        tenant_id=tenant_id,
        client_id=client_id,
        page=page,
        limit=limit,
    )
    return [BranchRead.model_validate(item) for item in rows]


@router.post("/branches", response_model=BranchRead, status_code=status.HTTP_201_CREATED)
def create_branch(
    payload: BranchCreate,
    request: Request,
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> BranchRead:
    client = guard.parent_scope(principal, ResourceKind.BRANCH, ResourceKind.CLIENT, payload.client_id)
    guard.check_create(
        principal,
        ResourceKind.BRANCH,
        owner_tenant_id=client.owner_tenant_id,
        owner_client_id=client.owner_client_id,
        parent=client,
    )
    values = {**payload.model_dump(), "tenant_id": client.owner_tenant_id}
    try:
        row = service.create_resource(ResourceKind.BRANCH, values, owner_tenant_id=client.owner_tenant_id)
        set_audit_context(request, action="branch.create", detail={"what": {"branch_id": row.id}})
        return BranchRead.model_validate(row)
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_workforce_error(exc)
        raise


@router.get("/branches/{branch_id}", response_model=BranchRead)
def get_branch(branch_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> BranchRead:
    guard.check(principal, ResourceKind.BRANCH, branch_id, Action.READ)
    try:
        return BranchRead.model_validate(service.get_resource(ResourceKind.BRANCH, branch_id))
    except NotFoundError as exc:
        _handle_workforce_error(exc)
        raise


@router.patch("/branches/{branch_id}", response_model=BranchRead)
def update_branch(
    branch_id: str,
    body: Annotated[dict[str, Any], Body()],
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> BranchRead:
    guard.check(principal, ResourceKind.BRANCH, branch_id, Action.WRITE)
    values = sanitize_update(ResourceKind.BRANCH, body, BranchUpdate)
    try:
        return BranchRead.model_validate(service.update_resource(ResourceKind.BRANCH, branch_id, values))
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_workforce_error(exc)
        raise


@router.delete("/branches/{branch_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_branch(branch_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> Response:
    guard.check(principal, ResourceKind.BRANCH, branch_id, Action.DELETE)
    try:
        service.delete_resource(ResourceKind.BRANCH, branch_id)
    except (NotFoundError, ConflictError) as exc:
        _handle_workforce_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/assignments", response_model=list[AssignmentRead])
def list_assignments(
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
    tenant_id: str | None = None,
    client_id: str | None = None,
    page: Page = 1,
    limit: Limit = 10,
) -> list[AssignmentRead]:
    scope = guard.list_scope(principal, ResourceKind.ASSIGNMENT)
    rows = service.list_resources(
        ResourceKind.ASSIGNMENT,
        scope,
        tenant_id=tenant_id,
        client_id=client_id,
        page=page,
        limit=limit,
    )
    return [AssignmentRead.model_validate(item) for item in rows]


@router.post("/assignments", response_model=AssignmentRead, status_code=status.HTTP_201_CREATED)
def create_assignment(
    payload: AssignmentCreate,
    request: Request,
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> AssignmentRead:
    client = guard.parent_scope(principal, ResourceKind.ASSIGNMENT, ResourceKind.CLIENT, payload.client_id)
    guard.check_create(
        principal,
        ResourceKind.ASSIGNMENT,
        owner_tenant_id=client.owner_tenant_id,
        owner_client_id=client.owner_client_id,
        parent=client,
    )
    try:
        row = service.create_resource(
            ResourceKind.ASSIGNMENT,
            payload.model_dump(),
            owner_tenant_id=client.owner_tenant_id,
        )
        set_audit_context(
            request,
            action="assignment.create",
            detail={"what": {"assignment_id": row.id, "employee_id": row.employee_id}},
        )
        return AssignmentRead.model_validate(row)
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_workforce_error(exc)
        raise


@router.get("/assignments/{assignment_id}", response_model=AssignmentRead)
def get_assignment(assignment_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> AssignmentRead:
    guard.check(principal, ResourceKind.ASSIGNMENT, assignment_id, Action.READ)
    try:
        return AssignmentRead.model_validate(service.get_resource(ResourceKind.ASSIGNMENT, assignment_id))
    except NotFoundError as exc:
        _handle_workforce_error(exc)
        raise


@router.patch("/assignments/{assignment_id}", response_model=AssignmentRead)
def update_assignment(
    assignment_id: str,
    body: Annotated[dict[str, Any], Body()],
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> AssignmentRead:
    guard.check(principal, ResourceKind.ASSIGNMENT, assignment_id, Action.WRITE)
    values = sanitize_update(ResourceKind.ASSIGNMENT, body, AssignmentUpdate)
    new_client_id = values.get("client_id")
    if new_client_id is not None:
        # moving an assignment is a write against the destination client too
        client = guard.parent_scope(principal, ResourceKind.ASSIGNMENT, ResourceKind.CLIENT, new_client_id)
        guard.check_create(
            principal,
            ResourceKind.ASSIGNMENT,
            owner_tenant_id=client.owner_tenant_id,
            owner_client_id=client.owner_client_id,
            parent=client,
        )
    try:
        row = service.update_resource(ResourceKind.ASSIGNMENT, assignment_id, values)
        return AssignmentRead.model_validate(row)
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_workforce_error(exc)
        raise


@router.delete("/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_assignment(assignment_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> Response:
    guard.check(principal, ResourceKind.ASSIGNMENT, assignment_id, Action.DELETE)
    try:
        service.delete_resource(ResourceKind.ASSIGNMENT, assignment_id)
    except (NotFoundError, ConflictError) as exc:
        _handle_workforce_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
