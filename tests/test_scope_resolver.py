from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine, select

from workdesk.domain.access import ListScope
from workdesk.domain.models import Assignment, Client, Contract, Invoice, SubscriptionPlan, Tenant, User
from workdesk.domain.permissions import ResourceKind, ScopeRule
from workdesk.infra import db
from workdesk.infra.db import InfrastructureError
from workdesk.services.scope_service import ResourceNotFoundError, ScopeService, scope_conditions


@pytest.fixture()
def seeded(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[dict[str, str], None, None]:
    db_path = tmp_path / "scope_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)

    with Session(test_engine, expire_on_commit=False) as session:
        tenant = Tenant(name="Acme")
        other_tenant = Tenant(name="Globex")
        session.add(tenant)
        session.add(other_tenant)
        session.flush()
        client = Client(tenant_id=tenant.id, name="Harbor")
        other_client = Client(tenant_id=other_tenant.id, name="Depot")
        session.add(client)
        session.add(other_client)
        session.flush()
        employee = User(
            tenant_id=tenant.id,
            client_id=client.id,
            email="e@example.com",
            role="employee",
            password_hash="x",
        )
        session.add(employee)
        session.flush()
        assignment = Assignment(employee_id=employee.id, client_id=client.id)
        contract = Contract(tenant_id=tenant.id, client_id=client.id)
        other_contract = Contract(tenant_id=other_tenant.id, client_id=other_client.id)
        plan = SubscriptionPlan(name="Starter", price_cents=1900)
        session.add(assignment)
        session.add(contract)
        session.add(other_contract)
        session.add(plan)
        session.flush()
        invoice = Invoice(contract_id=contract.id, amount_cents=500)
        other_invoice = Invoice(contract_id=other_contract.id, amount_cents=700)
        session.add(invoice)
        session.add(other_invoice)
        session.commit()
        ids = {
            "tenant": tenant.id,
            "client": client.id,
            "employee": employee.id,
            "assignment": assignment.id,
            "contract": contract.id,
            "invoice": invoice.id,
            "other_invoice": other_invoice.id,
            "plan": plan.id,
        }
    yield ids


def test_direct_ownership(seeded: dict[str, str]) -> None:
    scope = ScopeService().resolve_scope(ResourceKind.CONTRACT, seeded["contract"])
    assert scope.owner_tenant_id == seeded["tenant"]
    assert scope.owner_client_id == seeded["client"]

    tenant_scope = ScopeService().resolve_scope(ResourceKind.TENANT, seeded["tenant"])
    assert tenant_scope.owner_tenant_id == seeded["tenant"]
    assert tenant_scope.owner_client_id is None


def test_inherited_ownership_through_parent(seeded: dict[str, str]) -> None:
    assignment = ScopeService().resolve_scope(ResourceKind.ASSIGNMENT, seeded["assignment"])
    assert assignment.owner_tenant_id == seeded["tenant"]
    assert assignment.owner_client_id == seeded["client"]

    invoice = ScopeService().resolve_scope(ResourceKind.INVOICE, seeded["invoice"])
    assert invoice.owner_tenant_id == seeded["tenant"]
    assert invoice.owner_client_id == seeded["client"]


def test_global_kind_has_no_owner(seeded: dict[str, str]) -> None:
    plan = ScopeService().resolve_scope(ResourceKind.PLAN, seeded["plan"])
    assert plan.owner_tenant_id is None
    assert plan.owner_client_id is None


def test_unknown_id_raises_not_found(seeded: dict[str, str]) -> None:
    with pytest.raises(ResourceNotFoundError) as exc_info:
        ScopeService().resolve_scope(ResourceKind.BRANCH, "missing")
    assert exc_info.value.kind == ResourceKind.BRANCH


def test_store_failure_becomes_infrastructure_error(seeded: dict[str, str], monkeypatch: pytest.MonkeyPatch) -> None:
    def _broken_exec(self: Session, *args: object, **kwargs: object) -> object:
        raise OperationalError("SELECT", {}, Exception("connection lost"))

    monkeypatch.setattr(Session, "exec", _broken_exec)
    with pytest.raises(InfrastructureError):
        ScopeService().resolve_scope(ResourceKind.CLIENT, seeded["client"])


def test_list_conditions_follow_inherited_tenant(seeded: dict[str, str]) -> None:
    scope = ListScope(rule=ScopeRule.OWN_TENANT, tenant_id=seeded["tenant"])
    statement = select(Invoice).join(Contract, Invoice.contract_id == Contract.id)
    for condition in scope_conditions(ResourceKind.INVOICE, scope):
        statement = statement.where(condition)
    with Session(db.get_engine()) as session:
        rows = list(session.exec(statement).all())
    assert [row.id for row in rows] == [seeded["invoice"]]


def test_unsatisfiable_list_scope_matches_nothing(seeded: dict[str, str]) -> None:
    scope = ListScope(rule=ScopeRule.OWN_CLIENT, client_id=seeded["client"])
    statement = select(Tenant)
    for condition in scope_conditions(ResourceKind.TENANT, scope):
        statement = statement.where(condition)
    with Session(db.get_engine()) as session:
        assert list(session.exec(statement).all()) == []
