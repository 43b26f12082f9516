from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum


class Role(StrEnum):
    SUPER_ADMIN = "super_admin"
    TENANT_ADMIN = "tenant_admin"
    CLIENT_ADMIN = "client_admin"
    EMPLOYEE = "employee"


class ResourceKind(StrEnum):
    TENANT = "tenant"
    CLIENT = "client"
    BRANCH = "branch"
    ASSIGNMENT = "assignment"
    CONTRACT = "contract"
    INVOICE = "invoice"
    SUBSCRIPTION = "subscription"
    PLAN = "plan"
    USER = "user"
    ACTIVITY_LOG = "activity_log"
    METRICS = "metrics"


class Action(StrEnum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


class ScopeRule(StrEnum):
    ANY = "any"
    OWN_TENANT = "own_tenant"
    OWN_CLIENT = "own_client"
    SELF = "self"


class PolicyConfigurationError(RuntimeError):
    pass


@dataclass(frozen=True)
class PolicyEntry:
    role: Role
    kind: ResourceKind
    allowed_actions: frozenset[Action]
    scope_rule: ScopeRule

    def permits(self, action: Action) -> bool:
        return action in self.allowed_actions


READ = frozenset({Action.READ})
READ_WRITE = frozenset({Action.READ, Action.WRITE})
FULL = frozenset({Action.READ, Action.WRITE, Action.DELETE})
NONE: frozenset[Action] = frozenset()

# Roles an actor may assign when creating users. Nobody creates a peer or a superior
# except super_admin.
ASSIGNABLE_ROLES: dict[Role, frozenset[Role]] = {
    Role.SUPER_ADMIN: frozenset(Role),
    Role.TENANT_ADMIN: frozenset({Role.CLIENT_ADMIN, Role.EMPLOYEE}),
    Role.CLIENT_ADMIN: frozenset({Role.EMPLOYEE}),
    Role.EMPLOYEE: frozenset(),
}

# Out-of-scope access to these kinds is answered as "not found".
CONCEALED_KINDS: frozenset[ResourceKind] = frozenset(
    {
        ResourceKind.TENANT,
        ResourceKind.USER,
        ResourceKind.CONTRACT,
        ResourceKind.INVOICE,
        ResourceKind.SUBSCRIPTION,
    }
)


def _entries(role: Role, rows: Iterable[tuple[ResourceKind, frozenset[Action], ScopeRule]]) -> list[PolicyEntry]:
    return [PolicyEntry(role, kind, actions, rule) for kind, actions, rule in rows]


POLICY_ENTRIES: tuple[PolicyEntry, ...] = (
    *_entries(
        Role.SUPER_ADMIN,
        [(kind, FULL, ScopeRule.ANY) for kind in ResourceKind],
    ),
    *_entries(
        Role.TENANT_ADMIN,
        [
            (ResourceKind.TENANT, READ_WRITE, ScopeRule.OWN_TENANT),
            (ResourceKind.CLIENT, FULL, ScopeRule.OWN_TENANT),
            (ResourceKind.BRANCH, FULL, ScopeRule.OWN_TENANT),
            (ResourceKind.ASSIGNMENT, FULL, ScopeRule.OWN_TENANT),
            (ResourceKind.CONTRACT, FULL, ScopeRule.OWN_TENANT),
            (ResourceKind.INVOICE, FULL, ScopeRule.OWN_TENANT),
            (ResourceKind.SUBSCRIPTION, READ, ScopeRule.OWN_TENANT),
            (ResourceKind.PLAN, READ, ScopeRule.ANY),
            (ResourceKind.USER, FULL, ScopeRule.OWN_TENANT),
            (ResourceKind.ACTIVITY_LOG, READ, ScopeRule.OWN_TENANT),
            (ResourceKind.METRICS, READ, ScopeRule.OWN_TENANT),
        ],
    ),
    *_entries(
        Role.CLIENT_ADMIN,
        [
            (ResourceKind.TENANT, READ, ScopeRule.OWN_TENANT),
            (ResourceKind.CLIENT, READ_WRITE, ScopeRule.OWN_CLIENT),
            (ResourceKind.BRANCH, FULL, ScopeRule.OWN_CLIENT),
            (ResourceKind.ASSIGNMENT, FULL, ScopeRule.OWN_CLIENT),
            (ResourceKind.CONTRACT, READ, ScopeRule.OWN_CLIENT),
            (ResourceKind.INVOICE, READ, ScopeRule.OWN_CLIENT),
            (ResourceKind.SUBSCRIPTION, NONE, ScopeRule.OWN_TENANT),
            (ResourceKind.PLAN, READ, ScopeRule.ANY),
            (ResourceKind.USER, FULL, ScopeRule.OWN_CLIENT),
            (ResourceKind.ACTIVITY_LOG, READ, ScopeRule.SELF),
            (ResourceKind.METRICS, READ, ScopeRule.OWN_CLIENT),
        ],
    ),
    *_entries(
        Role.EMPLOYEE,
        [
            (ResourceKind.TENANT, READ, ScopeRule.OWN_TENANT),
            (ResourceKind.CLIENT, NONE, ScopeRule.OWN_CLIENT),
            (ResourceKind.BRANCH, NONE, ScopeRule.OWN_CLIENT),
            (ResourceKind.ASSIGNMENT, NONE, ScopeRule.OWN_CLIENT),
            (ResourceKind.CONTRACT, NONE, ScopeRule.OWN_CLIENT),
            (ResourceKind.INVOICE, NONE, ScopeRule.OWN_CLIENT),
            (ResourceKind.SUBSCRIPTION, NONE, ScopeRule.OWN_TENANT),
            (ResourceKind.PLAN, READ, ScopeRule.ANY),
            (ResourceKind.USER, READ_WRITE, ScopeRule.SELF),
            (ResourceKind.ACTIVITY_LOG, READ, ScopeRule.SELF),
            (ResourceKind.METRICS, NONE, ScopeRule.SELF),
        ],
    ),
)


def build_policy_table(entries: Iterable[PolicyEntry]) -> dict[tuple[Role, ResourceKind], PolicyEntry]:
    table: dict[tuple[Role, ResourceKind], PolicyEntry] = {}
    for entry in entries:
        key = (entry.role, entry.kind)
        if key in table:
            raise PolicyConfigurationError(f"duplicate policy entry for {entry.role}/{entry.kind}")
        table[key] = entry
    return table


POLICY_TABLE = build_policy_table(POLICY_ENTRIES)


def lookup_policy(role: Role, kind: ResourceKind) -> PolicyEntry | None:
    return POLICY_TABLE.get((role, kind))


def missing_policy_pairs(
    kinds: Iterable[ResourceKind],
    table: dict[tuple[Role, ResourceKind], PolicyEntry] | None = None,
) -> list[tuple[Role, ResourceKind]]:
    source = POLICY_TABLE if table is None else table
    return [(role, kind) for kind in sorted(set(kinds)) for role in Role if (role, kind) not in source]


def assert_policy_complete(
    kinds: Iterable[ResourceKind],
    table: dict[tuple[Role, ResourceKind], PolicyEntry] | None = None,
) -> None:
    """Fail startup when a routed resource kind lacks an entry for some role.

    Every role can reach every route, so each routed kind needs an explicit row per
    role, even when that row grants nothing.
    """
    missing = missing_policy_pairs(kinds, table)
    if missing:
        pairs = ", ".join(f"{role}/{kind}" for role, kind in missing)
        raise PolicyConfigurationError(f"missing policy entries: {pairs}")


def can_assign_role(actor_role: Role, target_role: Role) -> bool:
    return target_role in ASSIGNABLE_ROLES.get(actor_role, frozenset())


def action_for_method(method: str) -> Action:
    verb = method.upper()
    if verb in {"GET", "HEAD", "OPTIONS"}:
        return Action.READ
    if verb == "DELETE":
        return Action.DELETE
    return Action.WRITE
