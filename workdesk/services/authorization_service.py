from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from workdesk.domain.access import AccessDecision, DenyReason, ListScope, Principal, ResourceScope
from workdesk.domain.permissions import Action, PolicyEntry, ResourceKind, Role, ScopeRule, lookup_policy
from workdesk.services.scope_service import ResourceNotFoundError, ScopeService

logger = logging.getLogger(__name__)


class ScopeResolver(Protocol):
    def resolve_scope(self, kind: ResourceKind, resource_id: str) -> ResourceScope: ...


PolicyLookup = Callable[[Role, ResourceKind], PolicyEntry | None]


class AuthorizationService:
    """Single decision point for every role/tenant/client check.

    Expected outcomes (policy denial, scope denial, missing resource) come back as
    ``AccessDecision`` values. Only ``InfrastructureError`` from the scope lookup
    propagates, so a backend fault is never reported as "forbidden".
    """

    def __init__(
        self,
        scope_resolver: ScopeResolver | None = None,
        policy_lookup: PolicyLookup | None = None,
    ) -> None:
        self._scopes = scope_resolver if scope_resolver is not None else ScopeService()
        self._lookup = policy_lookup if policy_lookup is not None else lookup_policy

    def _policy_for(
        self,
        principal: Principal | None,
        kind: ResourceKind,
        action: Action,
    ) -> tuple[Principal, PolicyEntry] | AccessDecision:
        if principal is None or not principal.is_active:
            return AccessDecision.deny(DenyReason.UNAUTHENTICATED)
        policy = self._lookup(principal.role, kind)
        if policy is None:
            logger.warning("authz.no_policy role=%s kind=%s", principal.role, kind)
            return AccessDecision.deny(DenyReason.NO_POLICY)
        if not policy.permits(action):
            return AccessDecision.deny(DenyReason.ACTION_NOT_PERMITTED)
        if policy.scope_rule == ScopeRule.ANY:
            return AccessDecision.allow()
        return principal, policy

    def authorize(
        self,
        principal: Principal | None,
        kind: ResourceKind,
        resource_id: str,
        action: Action,
    ) -> AccessDecision:
        outcome = self._policy_for(principal, kind, action)
        if isinstance(outcome, AccessDecision):
            return self._logged(principal, kind, resource_id, action, outcome)
        actor, policy = outcome

        try:
            scope = self._scopes.resolve_scope(kind, resource_id)
        except ResourceNotFoundError:
            return self._logged(principal, kind, resource_id, action, AccessDecision.deny(DenyReason.NOT_FOUND))

        decision = self._compare(actor, policy.scope_rule, scope)
        return self._logged(principal, kind, resource_id, action, decision)

    def check_action(self, principal: Principal | None, kind: ResourceKind, action: Action) -> AccessDecision:
        """Role-level check only (steps before any ownership lookup)."""
        outcome = self._policy_for(principal, kind, action)
        if isinstance(outcome, AccessDecision):
            return self._logged(principal, kind, None, action, outcome)
        return AccessDecision.allow()

    def authorize_create(
        self,
        principal: Principal | None,
        kind: ResourceKind,
        *,
        owner_tenant_id: str | None,
        owner_client_id: str | None = None,
    ) -> AccessDecision:
        """Check ``write`` on a resource that does not exist yet.

        The proposed ownership stands in for the stored one, so no lookup happens here;
        callers must verify the referenced parents exist.
        """
        outcome = self._policy_for(principal, kind, Action.WRITE)
        if isinstance(outcome, AccessDecision):
            return self._logged(principal, kind, None, Action.WRITE, outcome)
        actor, policy = outcome

        if policy.scope_rule == ScopeRule.SELF:
            decision = AccessDecision.deny(DenyReason.OUT_OF_SCOPE)
        else:
            proposed = ResourceScope(
                kind=kind,
                resource_id="",
                owner_tenant_id=owner_tenant_id,
                owner_client_id=owner_client_id,
            )
            decision = self._compare(actor, policy.scope_rule, proposed)
        return self._logged(principal, kind, None, Action.WRITE, decision)

    def list_scope(self, principal: Principal | None, kind: ResourceKind) -> tuple[AccessDecision, ListScope | None]:
        outcome = self._policy_for(principal, kind, Action.READ)
        if isinstance(outcome, AccessDecision):
            if not outcome.allowed:
                return self._logged(principal, kind, None, Action.READ, outcome), None
            return outcome, ListScope(rule=ScopeRule.ANY)
        actor, policy = outcome
        return AccessDecision.allow(), ListScope(
            rule=policy.scope_rule,
            tenant_id=actor.tenant_id,
            client_id=actor.client_id,
            user_id=actor.id,
        )

    @staticmethod
    def _compare(principal: Principal, rule: ScopeRule, scope: ResourceScope) -> AccessDecision:
        if rule == ScopeRule.OWN_TENANT:
            matched = principal.tenant_id is not None and principal.tenant_id == scope.owner_tenant_id
        elif rule == ScopeRule.OWN_CLIENT:
            matched = principal.client_id is not None and principal.client_id == scope.owner_client_id
        elif rule == ScopeRule.SELF:
            matched = principal.id == scope.resource_id
        else:
            matched = True
        return AccessDecision.allow() if matched else AccessDecision.deny(DenyReason.OUT_OF_SCOPE)

    @staticmethod
    def _logged(
        principal: Principal | None,
        kind: ResourceKind,
        resource_id: str | None,
        action: Action,
        decision: AccessDecision,
    ) -> AccessDecision:
        if not decision.allowed:
            logger.info(
                "authz.denied actor=%s role=%s kind=%s resource_id=%s action=%s reason=%s",
                getattr(principal, "id", None),
                getattr(principal, "role", None),
                kind,
                resource_id,
                action,
                decision.reason,
            )
        return decision
