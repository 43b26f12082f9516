from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from workdesk.domain.permissions import ResourceKind

# Ownership columns, role and password never appear here: they change through
# dedicated routes or not at all.
WRITABLE_FIELDS: dict[ResourceKind, tuple[str, ...]] = {
    ResourceKind.TENANT: ("name", "email", "phone", "address", "logo"),
    ResourceKind.CLIENT: ("name", "phone", "address", "branch_id"),
    ResourceKind.BRANCH: ("name", "address", "supervisor_id"),
    ResourceKind.ASSIGNMENT: ("employee_id", "client_id", "start_date", "end_date", "status"),
    ResourceKind.CONTRACT: ("start_date", "end_date", "terms", "status"),
    ResourceKind.INVOICE: ("amount_cents", "due_date", "paid"),
    ResourceKind.SUBSCRIPTION: ("plan_id", "start_date", "end_date", "is_active"),
    ResourceKind.PLAN: ("name", "description", "price_cents", "billing_cycle"),
    ResourceKind.USER: ("name", "email", "avatar"),
}


class EmptyUpdateError(ValueError):
    def __init__(self, message: str = "no valid fields to update") -> None:
        super().__init__(message)


def filter_fields(allowed: Iterable[str], body: Mapping[str, Any]) -> dict[str, Any]:
    allowed_set = set(allowed)
    return {key: value for key, value in body.items() if key in allowed_set}


def filter_writable_fields(kind: ResourceKind, body: Mapping[str, Any]) -> dict[str, Any]:
    return filter_fields(WRITABLE_FIELDS.get(kind, ()), body)


def require_writable_fields(kind: ResourceKind, body: Mapping[str, Any]) -> dict[str, Any]:
    sanitized = filter_writable_fields(kind, body)
    if not sanitized:
        raise EmptyUpdateError()
    return sanitized
