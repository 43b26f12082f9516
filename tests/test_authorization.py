from __future__ import annotations

import pytest

from workdesk.domain.access import DenyReason, ListScope, Principal, ResourceScope
from workdesk.domain.permissions import Action, PolicyEntry, ResourceKind, Role, ScopeRule, lookup_policy
from workdesk.infra.db import InfrastructureError
from workdesk.services.authorization_service import AuthorizationService
from workdesk.services.scope_service import ResourceNotFoundError


class _FakeScopes:
    def __init__(self, scopes: dict[tuple[ResourceKind, str], ResourceScope] | None = None) -> None:
        self.scopes = scopes or {}
        self.calls: list[tuple[ResourceKind, str]] = []
        self.error: Exception | None = None

    def resolve_scope(self, kind: ResourceKind, resource_id: str) -> ResourceScope:
        self.calls.append((kind, resource_id))
        if self.error is not None:
            raise self.error
        scope = self.scopes.get((kind, resource_id))
        if scope is None:
            raise ResourceNotFoundError(kind, resource_id)
        return scope


TENANT_ADMIN_T1 = Principal(id="u1", role=Role.TENANT_ADMIN, tenant_id="T1")
CLIENT_ADMIN_C1 = Principal(id="u2", role=Role.CLIENT_ADMIN, tenant_id="T1", client_id="C1")
EMPLOYEE_E1 = Principal(id="E1", role=Role.EMPLOYEE, tenant_id="T1", client_id="C1")
SUPER = Principal(id="root", role=Role.SUPER_ADMIN)


def _branch(resource_id: str, tenant_id: str, client_id: str) -> ResourceScope:
    return ResourceScope(ResourceKind.BRANCH, resource_id, owner_tenant_id=tenant_id, owner_client_id=client_id)


def test_tenant_admin_reads_own_branch() -> None:
    scopes = _FakeScopes({(ResourceKind.BRANCH, "B1"): _branch("B1", "T1", "C1")})
    decision = AuthorizationService(scopes).authorize(TENANT_ADMIN_T1, ResourceKind.BRANCH, "B1", Action.READ)
    assert decision.allowed
    assert scopes.calls == [(ResourceKind.BRANCH, "B1")]


def test_tenant_admin_denied_other_tenants_branch() -> None:
    scopes = _FakeScopes({(ResourceKind.BRANCH, "B2"): _branch("B2", "T2", "C7")})
    decision = AuthorizationService(scopes).authorize(TENANT_ADMIN_T1, ResourceKind.BRANCH, "B2", Action.READ)
    assert not decision.allowed
    assert decision.reason == DenyReason.OUT_OF_SCOPE
    assert decision.is_scope_denial


def test_employee_write_on_client_is_denied_without_lookup() -> None:
    scopes = _FakeScopes()
    decision = AuthorizationService(scopes).authorize(EMPLOYEE_E1, ResourceKind.CLIENT, "C1", Action.WRITE)
    assert decision.reason == DenyReason.ACTION_NOT_PERMITTED
    assert decision.is_policy_denial
    assert scopes.calls == []


def test_missing_principal_is_unauthenticated() -> None:
    scopes = _FakeScopes()
    decision = AuthorizationService(scopes).authorize(None, ResourceKind.CLIENT, "C1", Action.READ)
    assert decision.reason == DenyReason.UNAUTHENTICATED
    assert scopes.calls == []

    inactive = Principal(id="u9", role=Role.TENANT_ADMIN, tenant_id="T1", is_active=False)
    assert AuthorizationService(scopes).authorize(inactive, ResourceKind.CLIENT, "C1", Action.READ).reason == (
        DenyReason.UNAUTHENTICATED
    )


def test_missing_policy_entry_denies() -> None:
    scopes = _FakeScopes()
    service = AuthorizationService(scopes, policy_lookup=lambda role, kind: None)
    decision = service.authorize(SUPER, ResourceKind.TENANT, "T1", Action.READ)
    assert decision.reason == DenyReason.NO_POLICY


def test_super_admin_skips_ownership_lookup() -> None:
    scopes = _FakeScopes()
    decision = AuthorizationService(scopes).authorize(SUPER, ResourceKind.INVOICE, "I-any", Action.DELETE)
    assert decision.allowed
    assert scopes.calls == []


def test_missing_resource_is_not_found() -> None:
    decision = AuthorizationService(_FakeScopes()).authorize(
        TENANT_ADMIN_T1, ResourceKind.CONTRACT, "nope", Action.READ
    )
    assert decision.reason == DenyReason.NOT_FOUND


def test_infrastructure_error_propagates() -> None:
    scopes = _FakeScopes()
    scopes.error = InfrastructureError("resolve_scope failed")
    with pytest.raises(InfrastructureError):
        AuthorizationService(scopes).authorize(TENANT_ADMIN_T1, ResourceKind.CLIENT, "C1", Action.READ)


def test_client_scope_needs_client_affiliation() -> None:
    scopes = _FakeScopes({(ResourceKind.BRANCH, "B1"): _branch("B1", "T1", "C1")})
    orphan = Principal(id="u3", role=Role.CLIENT_ADMIN, tenant_id="T1", client_id=None)
    decision = AuthorizationService(scopes).authorize(orphan, ResourceKind.BRANCH, "B1", Action.READ)
    assert decision.reason == DenyReason.OUT_OF_SCOPE


def test_employee_reaches_only_own_user_row() -> None:
    scopes = _FakeScopes(
        {
            (ResourceKind.USER, "E1"): ResourceScope(ResourceKind.USER, "E1", "T1", "C1"),
            (ResourceKind.USER, "E2"): ResourceScope(ResourceKind.USER, "E2", "T1", "C1"),
        }
    )
    service = AuthorizationService(scopes)
    assert service.authorize(EMPLOYEE_E1, ResourceKind.USER, "E1", Action.WRITE).allowed
    assert service.authorize(EMPLOYEE_E1, ResourceKind.USER, "E2", Action.READ).reason == DenyReason.OUT_OF_SCOPE


def test_tenant_admin_decisions_follow_owning_tenant() -> None:
    scopes = _FakeScopes(
        {
            (ResourceKind.CLIENT, f"C{index}"): ResourceScope(
                ResourceKind.CLIENT,
                f"C{index}",
                owner_tenant_id="T1" if index % 2 else "T2",
                owner_client_id=f"C{index}",
            )
            for index in range(10)
        }
    )
    service = AuthorizationService(scopes)
    for index in range(10):
        for action in Action:
            decision = service.authorize(TENANT_ADMIN_T1, ResourceKind.CLIENT, f"C{index}", action)
            assert decision.allowed == (index % 2 == 1)


def test_custom_policy_lookup_is_honoured() -> None:
    read_only = PolicyEntry(Role.TENANT_ADMIN, ResourceKind.CLIENT, frozenset({Action.READ}), ScopeRule.OWN_TENANT)

    def lookup(role: Role, kind: ResourceKind) -> PolicyEntry | None:
        if (role, kind) == (Role.TENANT_ADMIN, ResourceKind.CLIENT):
            return read_only
        return lookup_policy(role, kind)

    scopes = _FakeScopes({(ResourceKind.CLIENT, "C1"): ResourceScope(ResourceKind.CLIENT, "C1", "T1", "C1")})
    service = AuthorizationService(scopes, policy_lookup=lookup)
    assert service.authorize(TENANT_ADMIN_T1, ResourceKind.CLIENT, "C1", Action.READ).allowed
    assert service.authorize(TENANT_ADMIN_T1, ResourceKind.CLIENT, "C1", Action.DELETE).reason == (
        DenyReason.ACTION_NOT_PERMITTED
    )


def test_authorize_create_uses_proposed_ownership() -> None:
    scopes = _FakeScopes()
    service = AuthorizationService(scopes)
    allowed = service.authorize_create(CLIENT_ADMIN_C1, ResourceKind.BRANCH, owner_tenant_id="T1", owner_client_id="C1")
    assert allowed.allowed
    denied = service.authorize_create(CLIENT_ADMIN_C1, ResourceKind.BRANCH, owner_tenant_id="T1", owner_client_id="C2")
    assert denied.reason == DenyReason.OUT_OF_SCOPE
    assert service.authorize_create(EMPLOYEE_E1, ResourceKind.USER, owner_tenant_id="T1").reason == (
        DenyReason.OUT_OF_SCOPE
    )
    assert service.authorize_create(TENANT_ADMIN_T1, ResourceKind.PLAN, owner_tenant_id=None).reason == (
        DenyReason.ACTION_NOT_PERMITTED
    )
    assert scopes.calls == []


def test_check_action_ignores_ownership() -> None:
    scopes = _FakeScopes()
    service = AuthorizationService(scopes)
    assert service.check_action(CLIENT_ADMIN_C1, ResourceKind.BRANCH, Action.WRITE).allowed
    assert service.check_action(CLIENT_ADMIN_C1, ResourceKind.CONTRACT, Action.WRITE).reason == (
        DenyReason.ACTION_NOT_PERMITTED
    )
    assert scopes.calls == []


def test_list_scope_carries_caller_affiliation() -> None:
    service = AuthorizationService(_FakeScopes())

    decision, scope = service.list_scope(CLIENT_ADMIN_C1, ResourceKind.ASSIGNMENT)
    assert decision.allowed
    assert scope == ListScope(rule=ScopeRule.OWN_CLIENT, tenant_id="T1", client_id="C1", user_id="u2")

    decision, scope = service.list_scope(SUPER, ResourceKind.INVOICE)
    assert decision.allowed
    assert scope is not None and scope.is_unrestricted()

    decision, scope = service.list_scope(EMPLOYEE_E1, ResourceKind.CONTRACT)
    assert decision.reason == DenyReason.ACTION_NOT_PERMITTED
    assert scope is None
