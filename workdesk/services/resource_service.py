from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, col, select

from workdesk.domain.access import ListScope
from workdesk.domain.models import (
    Assignment,
    Branch,
    Client,
    Contract,
    Invoice,
    Subscription,
    SubscriptionPlan,
    Tenant,
    User,
    now_utc,
)
from workdesk.domain.permissions import ResourceKind
from workdesk.infra.db import get_engine, store_call
from workdesk.services.scope_service import OWNERSHIP, ResourceNotFoundError, ScopeService, scope_conditions

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class ResourceError(Exception):
    pass


class NotFoundError(ResourceError):
    pass


class ConflictError(ResourceError):
    pass


class ValidationError(ResourceError):
    pass


@dataclass(frozen=True)
class ResourceSpec:
    model: type[SQLModel]
    # field name -> kind of the row it points at
    references: dict[str, ResourceKind] = field(default_factory=dict)


RESOURCE_SPECS: dict[ResourceKind, ResourceSpec] = {
    ResourceKind.TENANT: ResourceSpec(Tenant),
    ResourceKind.CLIENT: ResourceSpec(Client, {"tenant_id": ResourceKind.TENANT, "branch_id": ResourceKind.BRANCH}),
    ResourceKind.BRANCH: ResourceSpec(
        Branch,
        {"client_id": ResourceKind.CLIENT, "supervisor_id": ResourceKind.USER},
    ),
    ResourceKind.ASSIGNMENT: ResourceSpec(
        Assignment,
        {"employee_id": ResourceKind.USER, "client_id": ResourceKind.CLIENT},
    ),
    ResourceKind.CONTRACT: ResourceSpec(Contract, {"client_id": ResourceKind.CLIENT}),
    ResourceKind.INVOICE: ResourceSpec(Invoice, {"contract_id": ResourceKind.CONTRACT}),
    ResourceKind.SUBSCRIPTION: ResourceSpec(
        Subscription,
        {"tenant_id": ResourceKind.TENANT, "plan_id": ResourceKind.PLAN},
    ),
    ResourceKind.PLAN: ResourceSpec(SubscriptionPlan),
    ResourceKind.USER: ResourceSpec(User),
}


class ResourceService:
    def __init__(self, scope_service: ScopeService | None = None) -> None:
        self._scopes = scope_service if scope_service is not None else ScopeService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _model(self, kind: ResourceKind) -> type[SQLModel]:
        return RESOURCE_SPECS[kind].model

    def list_resources(
        self,
        kind: ResourceKind,
        scope: ListScope,
        *,
        tenant_id: str | None = None,
        client_id: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> list[Any]:
        """Rows of ``kind`` visible under ``scope``, optionally narrowed by owner filters.

        The owner filters only ever narrow; they are ANDed with the caller's scope.
        """
        model = self._model(kind)
        ownership = OWNERSHIP[kind]
        statement = select(model)
        if ownership.parent is not None:
            statement = statement.join(ownership.parent, ownership.parent_join)
        for condition in scope_conditions(kind, scope):
            statement = statement.where(condition)
        if tenant_id is not None:
            if ownership.tenant_column is None:
                raise ValidationError(f"{kind} cannot be filtered by tenant")
            statement = statement.where(ownership.tenant_column == tenant_id)
        if client_id is not None:
            if ownership.client_column is None:
                raise ValidationError(f"{kind} cannot be filtered by client")
            statement = statement.where(ownership.client_column == client_id)

        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        statement = (
            statement.order_by(col(model.created_at).desc())  # type: ignore[attr-defined]
            .offset((page - 1) * limit)
            .limit(limit)
        )
        with store_call(f"list:{kind}"), self._session() as session:
            return list(session.exec(statement).all())

    def get_resource(self, kind: ResourceKind, resource_id: str) -> Any:
        with store_call(f"get:{kind}"), self._session() as session:
            row = session.get(self._model(kind), resource_id)
        if row is None:
            raise NotFoundError(f"{kind} not found")
        return row

    def _check_references(self, kind: ResourceKind, values: dict[str, Any], owner_tenant_id: str | None) -> None:
        """Referenced rows must exist and, when tenant-owned, sit in the writer's tenant."""
        for field_name, ref_kind in RESOURCE_SPECS[kind].references.items():
            ref_id = values.get(field_name)
            if ref_id is None:
                continue
            try:
                ref_scope = self._scopes.resolve_scope(ref_kind, ref_id)
            except ResourceNotFoundError as exc:
                raise NotFoundError(f"{ref_kind} not found") from exc
            if OWNERSHIP[ref_kind].tenant_column is None or owner_tenant_id is None:
                continue
            if ref_scope.owner_tenant_id != owner_tenant_id:
                raise ValidationError(f"{ref_kind} does not belong to this tenant")

    def create_resource(self, kind: ResourceKind, values: dict[str, Any], *, owner_tenant_id: str | None) -> Any:
        self._check_references(kind, values, owner_tenant_id)
        row = self._model(kind)(**values)
        with store_call(f"create:{kind}"), self._session() as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(f"{kind} conflicts with an existing record") from exc
            session.refresh(row)
        logger.info("resource.created kind=%s id=%s", kind, row.id)  # type: ignore[attr-defined]
        return row

    def update_resource(self, kind: ResourceKind, resource_id: str, values: dict[str, Any]) -> Any:
        if any(name in values for name in RESOURCE_SPECS[kind].references):
            try:
                owner = self._scopes.resolve_scope(kind, resource_id)
            except ResourceNotFoundError as exc:
                raise NotFoundError(f"{kind} not found") from exc
            self._check_references(kind, values, owner.owner_tenant_id)
        if kind == ResourceKind.INVOICE and "paid" in values:
            values = {**values, "paid_at": now_utc() if values["paid"] else None}
        with store_call(f"update:{kind}"), self._session() as session:
            row = session.get(self._model(kind), resource_id)
            if row is None:
                raise NotFoundError(f"{kind} not found")
            for key, value in values.items():
                setattr(row, key, value)
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(f"{kind} conflicts with an existing record") from exc
            session.refresh(row)
        logger.info("resource.updated kind=%s id=%s fields=%s", kind, resource_id, sorted(values))
        return row

    def delete_resource(self, kind: ResourceKind, resource_id: str) -> None:
        with store_call(f"delete:{kind}"), self._session() as session:
            row = session.get(self._model(kind), resource_id)
            if row is None:
                raise NotFoundError(f"{kind} not found")
            session.delete(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(f"{kind} still has dependent records") from exc
        logger.info("resource.deleted kind=%s id=%s", kind, resource_id)
