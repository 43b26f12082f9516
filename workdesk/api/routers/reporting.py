from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends

from workdesk.api.deps import CurrentPrincipal, Guard, Limit, Page
from workdesk.domain.models import ActivityLogRead, DashboardMetricsRead
from workdesk.domain.permissions import ResourceKind
from workdesk.services.reporting_service import METRIC_KINDS, ReportingService

router = APIRouter()

RESOURCE_KINDS = (ResourceKind.ACTIVITY_LOG, ResourceKind.METRICS)


def get_reporting_service() -> ReportingService:
    return ReportingService()


Reporting = Annotated[ReportingService, Depends(get_reporting_service)]


@router.get("/activity-logs", response_model=list[ActivityLogRead])
def list_activity_logs(
    principal: CurrentPrincipal,
    guard: Guard,
    reporting: Reporting,
    tenant_id: str | None = None,
    actor_id: str | None = None,
    action: str | None = None,
    kind: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    page: Page = 1,
    limit: Limit = 20,
) -> list[ActivityLogRead]:
    scope = guard.list_scope(principal, ResourceKind.ACTIVITY_LOG)
    return reporting.list_activity(
        scope,
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=action,
        kind=kind,
        since=since,
        until=until,
        page=page,
        limit=limit,
    )


@router.get("/dashboard-metrics", response_model=DashboardMetricsRead, response_model_exclude_none=True)
def dashboard_metrics(principal: CurrentPrincipal, guard: Guard, reporting: Reporting) -> DashboardMetricsRead:
    gate = guard.list_scope(principal, ResourceKind.METRICS)
    scopes = {kind: guard.list_scope(principal, kind) for kind in METRIC_KINDS.get(gate.rule, ())}
    return reporting.dashboard_metrics(gate.rule, scopes)
