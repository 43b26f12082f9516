from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, HTTPException, Request, Response, status

from workdesk.api.deps import CurrentPrincipal, Guard, Limit, Page, Resources
from workdesk.api.payloads import sanitize_update
from workdesk.domain.models import (
    ContractCreate,
    ContractRead,
    ContractUpdate,
    InvoiceCreate,
    InvoiceRead,
    InvoiceUpdate,
    PlanCreate,
    PlanRead,
    PlanUpdate,
    SubscriptionCreate,
    SubscriptionRead,
    SubscriptionUpdate,
)
from workdesk.domain.permissions import Action, ResourceKind
from workdesk.infra.audit import set_audit_context
from workdesk.services.resource_service import ConflictError, NotFoundError, ValidationError

router = APIRouter()

RESOURCE_KINDS = (
    ResourceKind.CONTRACT,
    ResourceKind.INVOICE,
    ResourceKind.SUBSCRIPTION,
    ResourceKind.PLAN,
)


def _handle_billing_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc


@router.get("/contracts", response_model=list[ContractRead])
def list_contracts(
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
    tenant_id: str | None = None,
    client_id: str | None = None,
    page: Page = 1,
    limit: Limit = 10,
) -> list[ContractRead]:
    scope = guard.list_scope(principal, ResourceKind.CONTRACT)
    rows = service.list_resources(
        ResourceKind.CONTRACT,
        scope,
        tenant_id=tenant_id,
        client_id=client_id,
        page=page,
        limit=limit,
    )
    return [ContractRead.model_validate(item) for item in rows]


@router.post("/contracts", response_model=ContractRead, status_code=status.HTTP_201_CREATED)
def create_contract(
    payload: ContractCreate,
    request: Request,
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> ContractRead:
    client = guard.parent_scope(principal, ResourceKind.CONTRACT, ResourceKind.CLIENT, payload.client_id)
    guard.check_create(
        principal,
        ResourceKind.CONTRACT,
        owner_tenant_id=client.owner_tenant_id,
        owner_client_id=client.owner_client_id,
        parent=client,
    )
    values = {**payload.model_dump(), "tenant_id": client.owner_tenant_id}
    try:
        row = service.create_resource(ResourceKind.CONTRACT, values, owner_tenant_id=client.owner_tenant_id)
        set_audit_context(
            request,
            action="billing.contract.create",
            detail={"what": {"contract_id": row.id, "client_id": row.client_id}},
        )
        return ContractRead.model_validate(row)
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_billing_error(exc)
        raise


@router.get("/contracts/{contract_id}", response_model=ContractRead)
def get_contract(contract_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> ContractRead:
    guard.check(principal, ResourceKind.CONTRACT, contract_id, Action.READ)
    try:
        return ContractRead.model_validate(service.get_resource(ResourceKind.CONTRACT, contract_id))
    except NotFoundError as exc:
        _handle_billing_error(exc)
        raise


@router.patch("/contracts/{contract_id}", response_model=ContractRead)
def update_contract(
    contract_id: str,
    body: Annotated[dict[str, Any], Body()],
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> ContractRead:
    guard.check(principal, ResourceKind.CONTRACT, contract_id, Action.WRITE)
    values = sanitize_update(ResourceKind.CONTRACT, body, ContractUpdate)
    try:
        return ContractRead.model_validate(service.update_resource(ResourceKind.CONTRACT, contract_id, values))
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_billing_error(exc)
        raise


@router.delete("/contracts/{contract_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_contract(contract_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> Response:
    guard.check(principal, ResourceKind.CONTRACT, contract_id, Action.DELETE)
    try:
        service.delete_resource(ResourceKind.CONTRACT, contract_id)
    except (NotFoundError, ConflictError) as exc:
        _handle_billing_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/invoices", response_model=list[InvoiceRead])
def list_invoices(
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
    tenant_id: str | None = None,
    client_id: str | None = None,
    page: Page = 1,
    limit: Limit = 10,
) -> list[InvoiceRead]:
    scope = guard.list_scope(principal, ResourceKind.INVOICE)
    rows = service.list_resources(
        ResourceKind.INVOICE,
        scope,
        tenant_id=tenant_id,
        client_id=client_id,
        page=page,
        limit=limit,
    )
    return [InvoiceRead.model_validate(item) for item in rows]


@router.post("/invoices", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def create_invoice(
    payload: InvoiceCreate,
    request: Request,
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> InvoiceRead:
    contract = guard.parent_scope(principal, ResourceKind.INVOICE, ResourceKind.CONTRACT, payload.contract_id)
    guard.check_create(
        principal,
        ResourceKind.INVOICE,
        owner_tenant_id=contract.owner_tenant_id,
        owner_client_id=contract.owner_client_id,
        parent=contract,
    )
    try:
        row = service.create_resource(
            ResourceKind.INVOICE,
            payload.model_dump(),
            owner_tenant_id=contract.owner_tenant_id,
        )
        set_audit_context(
            request,
            action="billing.invoice.create",
            detail={"what": {"invoice_id": row.id, "amount_cents": row.amount_cents}},
        )
        return InvoiceRead.model_validate(row)
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_billing_error(exc)
        raise


@router.get("/invoices/{invoice_id}", response_model=InvoiceRead)
def get_invoice(invoice_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> InvoiceRead:
    guard.check(principal, ResourceKind.INVOICE, invoice_id, Action.READ)
    try:
        return InvoiceRead.model_validate(service.get_resource(ResourceKind.INVOICE, invoice_id))
    except NotFoundError as exc:
        _handle_billing_error(exc)
        raise


@router.patch("/invoices/{invoice_id}", response_model=InvoiceRead)
def update_invoice(
    invoice_id: str,
    body: Annotated[dict[str, Any], Body()],
    request: Request,
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> InvoiceRead:
    guard.check(principal, ResourceKind.INVOICE, invoice_id, Action.WRITE)
    values = sanitize_update(ResourceKind.INVOICE, body, InvoiceUpdate)
    try:
        row = service.update_resource(ResourceKind.INVOICE, invoice_id, values)
        if "paid" in values:
            set_audit_context(
                request,
                action="billing.invoice.paid" if row.paid else "billing.invoice.unpaid",
                detail={"what": {"invoice_id": row.id}},
            )
        return InvoiceRead.model_validate(row)
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_billing_error(exc)
        raise


@router.delete("/invoices/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(invoice_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> Response:
    guard.check(principal, ResourceKind.INVOICE, invoice_id, Action.DELETE)
    try:
        service.delete_resource(ResourceKind.INVOICE, invoice_id)
    except (NotFoundError, ConflictError) as exc:
        _handle_billing_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/subscriptions", response_model=list[SubscriptionRead])
def list_subscriptions(
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
    tenant_id: str | None = None,
    page: Page = 1,
    limit: Limit = 10,
) -> list[SubscriptionRead]:
    scope = guard.list_scope(principal, ResourceKind.SUBSCRIPTION)
    rows = service.list_resources(ResourceKind.SUBSCRIPTION, scope, tenant_id=tenant_id, page=page, limit=limit)
    return [SubscriptionRead.model_validate(item) for item in rows]


@router.post("/subscriptions", response_model=SubscriptionRead, status_code=status.HTTP_201_CREATED)
def create_subscription(
    payload: SubscriptionCreate,
    request: Request,
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> SubscriptionRead:
    tenant = guard.parent_scope(principal, ResourceKind.SUBSCRIPTION, ResourceKind.TENANT, payload.tenant_id)
    guard.check_create(principal, ResourceKind.SUBSCRIPTION, owner_tenant_id=tenant.owner_tenant_id, parent=tenant)
    try:
        row = service.create_resource(
            ResourceKind.SUBSCRIPTION,
            payload.model_dump(),
            owner_tenant_id=tenant.owner_tenant_id,
        )
        set_audit_context(
            request,
            action="billing.subscription.create",
            detail={"what": {"subscription_id": row.id, "plan_id": row.plan_id}},
        )
        return SubscriptionRead.model_validate(row)
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_billing_error(exc)
        raise


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionRead)
def get_subscription(
    subscription_id: str,
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> SubscriptionRead:
    guard.check(principal, ResourceKind.SUBSCRIPTION, subscription_id, Action.READ)
    try:
        return SubscriptionRead.model_validate(service.get_resource(ResourceKind.SUBSCRIPTION, subscription_id))
    except NotFoundError as exc:
        _handle_billing_error(exc)
        raise


@router.patch("/subscriptions/{subscription_id}", response_model=SubscriptionRead)
def update_subscription(
    subscription_id: str,
    body: Annotated[dict[str, Any], Body()],
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> SubscriptionRead:
    guard.check(principal, ResourceKind.SUBSCRIPTION, subscription_id, Action.WRITE)
    values = sanitize_update(ResourceKind.SUBSCRIPTION, body, SubscriptionUpdate)
    try:
        row = service.update_resource(ResourceKind.SUBSCRIPTION, subscription_id, values)
        return SubscriptionRead.model_validate(row)
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_billing_error(exc)
        raise


@router.delete("/subscriptions/{subscription_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_subscription(
    subscription_id: str,
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> Response:
    guard.check(principal, ResourceKind.SUBSCRIPTION, subscription_id, Action.DELETE)
    try:
        service.delete_resource(ResourceKind.SUBSCRIPTION, subscription_id)
    except (NotFoundError, ConflictError) as exc:
        _handle_billing_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/plans", response_model=list[PlanRead])
def list_plans(
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
    page: Page = 1,
    limit: Limit = 10,
) -> list[PlanRead]:
    scope = guard.list_scope(principal, ResourceKind.PLAN)
    rows = service.list_resources(ResourceKind.PLAN, scope, page=page, limit=limit)
    return [PlanRead.model_validate(item) for item in rows]


@router.post("/plans", response_model=PlanRead, status_code=status.HTTP_201_CREATED)
def create_plan(
    payload: PlanCreate,
    request: Request,
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> PlanRead:
    guard.check_create(principal, ResourceKind.PLAN, owner_tenant_id=None)
    try:
        row = service.create_resource(ResourceKind.PLAN, payload.model_dump(), owner_tenant_id=None)
        set_audit_context(
            request,
            action="billing.plan.create",
            detail={"what": {"plan_id": row.id, "name": row.name}},
        )
        return PlanRead.model_validate(row)
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_billing_error(exc)
        raise


@router.get("/plans/{plan_id}", response_model=PlanRead)
def get_plan(plan_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> PlanRead:
    guard.check(principal, ResourceKind.PLAN, plan_id, Action.READ)
    try:
        return PlanRead.model_validate(service.get_resource(ResourceKind.PLAN, plan_id))
    except NotFoundError as exc:
        _handle_billing_error(exc)
        raise


@router.patch("/plans/{plan_id}", response_model=PlanRead)
def update_plan(
    plan_id: str,
    body: Annotated[dict[str, Any], Body()],
    principal: CurrentPrincipal,
    guard: Guard,
    service: Resources,
) -> PlanRead:
    guard.check(principal, ResourceKind.PLAN, plan_id, Action.WRITE)
    values = sanitize_update(ResourceKind.PLAN, body, PlanUpdate)
    try:
        return PlanRead.model_validate(service.update_resource(ResourceKind.PLAN, plan_id, values))
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_billing_error(exc)
        raise


@router.delete("/plans/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_plan(plan_id: str, principal: CurrentPrincipal, guard: Guard, service: Resources) -> Response:
    guard.check(principal, ResourceKind.PLAN, plan_id, Action.DELETE)
    try:
        service.delete_resource(ResourceKind.PLAN, plan_id)
    except (NotFoundError, ConflictError) as exc:
        _handle_billing_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
