from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from workdesk.domain.permissions import ResourceKind, Role, ScopeRule


class DenyReason(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    NO_POLICY = "no_policy"
    ACTION_NOT_PERMITTED = "action_not_permitted"
    NOT_FOUND = "not_found"
    OUT_OF_SCOPE = "out_of_scope"


@dataclass(frozen=True)
class Principal:
    id: str
    role: Role
    tenant_id: str | None = None
    client_id: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class ResourceScope:
    kind: ResourceKind
    resource_id: str
    owner_tenant_id: str | None = None
    owner_client_id: str | None = None


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: DenyReason | None = None

    @classmethod
    def allow(cls) -> AccessDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> AccessDecision:
        return cls(allowed=False, reason=reason)

    @property
    def is_policy_denial(self) -> bool:
        return self.reason in {DenyReason.NO_POLICY, DenyReason.ACTION_NOT_PERMITTED}

    @property
    def is_scope_denial(self) -> bool:
        return self.reason == DenyReason.OUT_OF_SCOPE


@dataclass(frozen=True)
class ListScope:
    """Row restriction for collection reads, derived from the caller's read policy."""

    rule: ScopeRule
    tenant_id: str | None = None
    client_id: str | None = None
    user_id: str | None = None

    def is_unrestricted(self) -> bool:
        return self.rule == ScopeRule.ANY
