from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from workdesk.domain.models import AuditLog, now_utc
from workdesk.domain.permissions import action_for_method
from workdesk.infra.db import get_engine

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
AUDIT_CONTEXT_STATE_KEY = "_audit_context"
SYSTEM_TENANT = "system"

logger = logging.getLogger(__name__)


def _merge_sections(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    # detail is grouped by section (who/when/where/what/result); sections merge key by key
    merged = dict(base)
    for section, values in extra.items():
        current = merged.get(section)
        if isinstance(current, dict) and isinstance(values, dict):
            merged[section] = {**current, **values}
        else:
            merged[section] = values
    return merged


def _context(request: Request) -> dict[str, Any]:
    context = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, None)
    return context if isinstance(context, dict) else {}


def set_audit_context(
    request: Request,
    *,
    action: str | None = None,
    detail: dict[str, Any] | None = None,
) -> None:
    """Name the audited action and attach detail sections for the current request."""
    context = dict(_context(request))
    if action is not None:
        context["action"] = action
    if detail:
        context["detail"] = _merge_sections(context.get("detail", {}), detail)
    setattr(request.state, AUDIT_CONTEXT_STATE_KEY, context)


def record_denial(request: Request, *, kind: str, resource_id: str | None, action: str, reason: str) -> None:
    """Keep the internal deny reason in the audit trail; clients only see a generic status."""
    set_audit_context(
        request,
        action=f"{kind}.{action}",
        detail={
            "what": {"kind": kind, "resource_id": resource_id},
            "result": {"reason": reason},
        },
    )


def _outcome(status_code: int, detail: dict[str, Any]) -> str:
    if "reason" in detail.get("result", {}):
        return "denied"
    return "success" if status_code < 400 else "failed"


class AuditMiddleware(BaseHTTPMiddleware):
    """Writes one audit row per write request, per 401/403, and per request that named its action."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        method = request.method
        context = _context(request)
        if method not in WRITE_METHODS and response.status_code not in {401, 403} and not context:
            return response

        path = request.url.path
        principal = getattr(request.state, "principal", None)
        tenant_id = getattr(principal, "tenant_id", None) or SYSTEM_TENANT
        actor_id = getattr(principal, "id", None)
        action = context.get("action") or f"{method}:{path}"
        route = request.scope.get("route")
        detail = _merge_sections(
            {
                "who": {
                    "tenant_id": tenant_id,
                    "actor_id": actor_id,
                    "role": str(getattr(principal, "role", "")) or None,
                },
                "when": {"request_ts": now_utc().isoformat()},
                "where": {
                    "path": path,
                    "route": getattr(route, "path", path),
                    "client_ip": request.client.host if request.client is not None else None,
                },
                "what": {
                    "action": action,
                    "method": method,
                    "access": action_for_method(method).value,
                },
                "result": {"status_code": response.status_code},
            },
            context.get("detail", {}),
        )
        detail["result"]["outcome"] = _outcome(response.status_code, detail)

        log = AuditLog(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=action,
            resource=path,
            method=method,
            status_code=response.status_code,
            detail=detail,
        )
        try:
            with Session(get_engine()) as session:
                session.add(log)
                session.commit()
        except Exception:
            logger.exception("audit.write_failed action=%s path=%s", action, path)
        return response
