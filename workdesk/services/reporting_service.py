from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlmodel import Session, col, select

from workdesk.domain.access import ListScope
from workdesk.domain.models import (
    ActivityLogRead,
    AuditLog,
    Branch,
    CurrentPlanRead,
    DashboardMetricsRead,
    Subscription,
    SubscriptionPlan,
    User,
)
from workdesk.domain.permissions import ResourceKind, Role, ScopeRule
from workdesk.infra.db import get_engine, store_call
from workdesk.services.resource_service import MAX_PAGE_SIZE
from workdesk.services.scope_service import OWNERSHIP, scope_conditions

logger = logging.getLogger(__name__)

# Kinds counted on the dashboard, keyed by the caller's metrics scope.
METRIC_KINDS: dict[ScopeRule, tuple[ResourceKind, ...]] = {
    ScopeRule.ANY: (ResourceKind.TENANT, ResourceKind.CLIENT),
    ScopeRule.OWN_TENANT: (
        ResourceKind.CLIENT,
        ResourceKind.USER,
        ResourceKind.BRANCH,
        ResourceKind.SUBSCRIPTION,
    ),
    ScopeRule.OWN_CLIENT: (ResourceKind.BRANCH,),
}


class ReportingService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def list_activity(
        self,
        scope: ListScope,
        *,
        tenant_id: str | None = None,
        actor_id: str | None = None,
        action: str | None = None,
        kind: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> list[ActivityLogRead]:
        """Audit rows visible under ``scope``, newest first.

        ``kind`` matches the ``<kind>.`` prefix of named actions such as ``client.create``.
        """
        statement = select(AuditLog, User.name, User.email).outerjoin(User, col(AuditLog.actor_id) == col(User.id))
        conditions: list[Any] = list(scope_conditions(ResourceKind.ACTIVITY_LOG, scope))
        if tenant_id is not None:
            conditions.append(col(AuditLog.tenant_id) == tenant_id)
        if actor_id is not None:
            conditions.append(col(AuditLog.actor_id) == actor_id)
        if action is not None:
            conditions.append(col(AuditLog.action) == action)
        if kind is not None:
            conditions.append(col(AuditLog.action).startswith(f"{kind}."))
        if since is not None:
            conditions.append(col(AuditLog.ts) >= since)
        if until is not None:
            conditions.append(col(AuditLog.ts) <= until)
        for condition in conditions:
            statement = statement.where(condition)

        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        statement = statement.order_by(col(AuditLog.ts).desc()).offset((page - 1) * limit).limit(limit)
        with store_call("list:activity_log"), self._session() as session:
            rows = list(session.exec(statement).all())
        return [
            ActivityLogRead(
                id=log.id,
                tenant_id=log.tenant_id,
                actor_id=log.actor_id,
                actor_name=actor_name,
                actor_email=actor_email,
                action=log.action,
                resource=log.resource,
                method=log.method,
                status_code=log.status_code,
                ts=log.ts,
                detail=log.detail,
            )
            for log, actor_name, actor_email in rows
        ]

    def count(self, kind: ResourceKind, scope: ListScope, *conditions: Any) -> int:
        ownership = OWNERSHIP[kind]
        statement = select(func.count()).select_from(ownership.model)
        if ownership.parent is not None:
            statement = statement.join(ownership.parent, ownership.parent_join)
        for condition in [*scope_conditions(kind, scope), *conditions]:
            statement = statement.where(condition)
        with store_call(f"count:{kind}"), self._session() as session:
            return int(session.exec(statement).one())

    def current_plan(self, scope: ListScope) -> CurrentPlanRead | None:
        statement = (
            select(Subscription, SubscriptionPlan)
            .join(SubscriptionPlan, col(Subscription.plan_id) == col(SubscriptionPlan.id))
            .where(col(Subscription.is_active).is_(True))
        )
        for condition in scope_conditions(ResourceKind.SUBSCRIPTION, scope):
            statement = statement.where(condition)
        statement = statement.order_by(col(Subscription.created_at).desc()).limit(1)
        with store_call("current_plan"), self._session() as session:
            row = session.exec(statement).first()
        if row is None:
            return None
        subscription, plan = row
        return CurrentPlanRead(subscription_id=subscription.id, plan_id=plan.id, name=plan.name)

    def dashboard_metrics(self, rule: ScopeRule, scopes: Mapping[ResourceKind, ListScope]) -> DashboardMetricsRead:
        """Counts for the caller's dashboard; ``scopes`` holds a list scope per ``METRIC_KINDS[rule]``."""
        if rule == ScopeRule.ANY:
            metrics = DashboardMetricsRead(
                tenants=self.count(ResourceKind.TENANT, scopes[ResourceKind.TENANT]),
                clients=self.count(ResourceKind.CLIENT, scopes[ResourceKind.CLIENT]),
            )
        elif rule == ScopeRule.OWN_TENANT:
            metrics = DashboardMetricsRead(
                clients=self.count(ResourceKind.CLIENT, scopes[ResourceKind.CLIENT]),
                employees=self.count(
                    ResourceKind.USER,
                    scopes[ResourceKind.USER],
                    col(User.role) == Role.EMPLOYEE.value,
                ),
                supervisors=self.count(
                    ResourceKind.BRANCH,
                    scopes[ResourceKind.BRANCH],
                    col(Branch.supervisor_id).is_not(None),
                ),
                plan=self.current_plan(scopes[ResourceKind.SUBSCRIPTION]),
            )
        else:
            metrics = DashboardMetricsRead(branches=self.count(ResourceKind.BRANCH, scopes[ResourceKind.BRANCH]))
        logger.info("reporting.dashboard rule=%s", rule)
        return metrics
