from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import ColumnElement, null
from sqlmodel import Session, SQLModel, select

from workdesk.domain.access import ListScope, ResourceScope
from workdesk.domain.models import (
    Assignment,
    AuditLog,
    Branch,
    Client,
    Contract,
    Invoice,
    Subscription,
    SubscriptionPlan,
    Tenant,
    User,
)
from workdesk.domain.permissions import ResourceKind, ScopeRule
from workdesk.infra.db import get_engine, store_call

logger = logging.getLogger(__name__)


class ResourceNotFoundError(Exception):
    def __init__(self, kind: ResourceKind, resource_id: str) -> None:
        super().__init__(f"{kind} not found")
        self.kind = kind
        self.resource_id = resource_id


@dataclass(frozen=True)
class Ownership:
    """Where a kind's owning tenant and client live.

    ``parent``/``parent_join`` name the table ownership is inherited from when the
    kind's own row does not carry it. ``self_column`` holds the user a row belongs
    to for self-scoped reads; it defaults to the row id.
    """

    model: type[SQLModel]
    tenant_column: Any | None
    client_column: Any | None
    parent: type[SQLModel] | None = None
    parent_join: Any | None = None
    self_column: Any | None = None


OWNERSHIP: dict[ResourceKind, Ownership] = {
    ResourceKind.TENANT: Ownership(Tenant, Tenant.id, None),
    ResourceKind.CLIENT: Ownership(Client, Client.tenant_id, Client.id),
    ResourceKind.BRANCH: Ownership(Branch, Branch.tenant_id, Branch.client_id),
    ResourceKind.ASSIGNMENT: Ownership(
        Assignment,
        Client.tenant_id,
        Assignment.client_id,
        parent=Client,
        parent_join=Assignment.client_id == Client.id,
    ),
    ResourceKind.CONTRACT: Ownership(Contract, Contract.tenant_id, Contract.client_id),
    ResourceKind.INVOICE: Ownership(
        Invoice,
        Contract.tenant_id,
        Contract.client_id,
        parent=Contract,
        parent_join=Invoice.contract_id == Contract.id,
    ),
    ResourceKind.SUBSCRIPTION: Ownership(Subscription, Subscription.tenant_id, None),
    ResourceKind.PLAN: Ownership(SubscriptionPlan, None, None),
    ResourceKind.USER: Ownership(User, User.tenant_id, User.client_id),
    ResourceKind.ACTIVITY_LOG: Ownership(AuditLog, AuditLog.tenant_id, None, self_column=AuditLog.actor_id),
}


class ScopeService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def resolve_scope(self, kind: ResourceKind, resource_id: str) -> ResourceScope:
        ownership = OWNERSHIP[kind]
        statement = select(
            ownership.model.id.label("resource_id"),  # type: ignore[attr-defined]
            _owner_column(ownership.tenant_column, "owner_tenant_id"),
            _owner_column(ownership.client_column, "owner_client_id"),
        ).select_from(ownership.model)
        if ownership.parent is not None:
            statement = statement.join(ownership.parent, ownership.parent_join)
        statement = statement.where(ownership.model.id == resource_id)  # type: ignore[attr-defined]

        with store_call(f"resolve_scope:{kind}"), self._session() as session:
            row = session.exec(statement).first()

        if row is None:
            raise ResourceNotFoundError(kind, resource_id)
        return ResourceScope(
            kind=kind,
            resource_id=resource_id,
            owner_tenant_id=row.owner_tenant_id,
            owner_client_id=row.owner_client_id,
        )


def _owner_column(column: Any | None, name: str) -> Any:
    return (null() if column is None else column).label(name)


def scope_conditions(kind: ResourceKind, scope: ListScope) -> list[ColumnElement[bool]]:
    """Translate a list scope into WHERE clauses over ``OWNERSHIP[kind]`` columns.

    A rule the kind cannot express (e.g. client scope on a tenant-only table) yields
    an always-false clause rather than no restriction.
    """
    if scope.is_unrestricted():
        return []
    ownership = OWNERSHIP[kind]
    if scope.rule == ScopeRule.OWN_TENANT and ownership.tenant_column is not None and scope.tenant_id:
        return [ownership.tenant_column == scope.tenant_id]
    if scope.rule == ScopeRule.OWN_CLIENT and ownership.client_column is not None and scope.client_id:
        return [ownership.client_column == scope.client_id]
    if scope.rule == ScopeRule.SELF and scope.user_id:
        owner = ownership.self_column
        if owner is None:
            owner = ownership.model.id  # type: ignore[attr-defined]
        return [owner == scope.user_id]
    logger.info("scope.unsatisfiable kind=%s rule=%s", kind, scope.rule)
    return [ownership.model.id.is_(None)]  # type: ignore[attr-defined]
