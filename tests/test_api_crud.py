from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from workdesk import main as app_main
from workdesk.infra import db, redis_state
from workdesk.services.identity_service import IdentityService

PASSWORD = "password-123"


class _FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}

    def setex(self, key: str, ttl: int, value: str) -> None:
        self.values[key] = value

    def exists(self, key: str) -> int:
        return 1 if key in self.values else 0

    def ping(self) -> bool:
        return True


@pytest.fixture()
def crud_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "crud_test.db"
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
    fake_redis = _FakeRedis()
    monkeypatch.setattr(redis_state, "get_redis", lambda: fake_redis)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _login(client: TestClient, email: str) -> str:
    response = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert response.status_code == 200
    return response.json()["access_token"]


def _register(client: TestClient, tenant_name: str, email: str) -> tuple[str, str]:
    response = client.post(
        "/api/auth/register",
        json={"tenant_name": tenant_name, "email": email, "password": PASSWORD},
    )
    assert response.status_code == 201
    token = response.json()["access_token"]
    me = client.get("/api/auth/me", headers=_auth_header(token))
    return token, me.json()["tenant_id"]


def _super_admin(client: TestClient) -> str:
    IdentityService().create_super_admin("root@example.com", PASSWORD)
    return _login(client, "root@example.com")


def _post(client: TestClient, token: str, path: str, payload: dict[str, Any]) -> dict[str, Any]:
    response = client.post(path, json=payload, headers=_auth_header(token))
    assert response.status_code == 201, response.text
    return response.json()


def _patch(client: TestClient, token: str, path: str, payload: dict[str, Any]) -> Any:
    return client.patch(path, json=payload, headers=_auth_header(token))


def test_super_admin_manages_tenants(crud_client: TestClient) -> None:
    root = _super_admin(crud_client)
    token_a, tenant_a = _register(crud_client, "acme", "admin@acme.example.com")

    globex = _post(crud_client, root, "/api/tenants", {"name": "Globex", "email": "Ops@Globex.Example.com"})
    assert globex["name"] == "Globex"
    assert globex["email"] == "ops@globex.example.com"

    duplicate = crud_client.post("/api/tenants", json={"name": "Globex"}, headers=_auth_header(root))
    assert duplicate.status_code == 409

    renamed = _patch(crud_client, root, f"/api/tenants/{globex['id']}", {"name": "Globex Corp"})
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Globex Corp"

    fetched = crud_client.get(f"/api/tenants/{globex['id']}", headers=_auth_header(root))
    assert fetched.json()["name"] == "Globex Corp"

    assert crud_client.delete(f"/api/tenants/{globex['id']}", headers=_auth_header(root)).status_code == 204
    assert crud_client.get(f"/api/tenants/{globex['id']}", headers=_auth_header(root)).status_code == 404

    # an admin tenant cannot be created or deleted from below, only edited
    forbidden = crud_client.post("/api/tenants", json={"name": "Initech"}, headers=_auth_header(token_a))
    assert forbidden.status_code == 403
    assert forbidden.json() == {"detail": "forbidden"}
    own = _patch(crud_client, token_a, f"/api/tenants/{tenant_a}", {"phone": "555-0100"})
    assert own.status_code == 200
    assert own.json()["phone"] == "555-0100"
    assert crud_client.delete(f"/api/tenants/{tenant_a}", headers=_auth_header(token_a)).status_code == 403

    # a tenant that still has users cannot go away
    assert crud_client.delete(f"/api/tenants/{tenant_a}", headers=_auth_header(root)).status_code == 409


def test_null_for_required_columns_is_rejected(crud_client: TestClient) -> None:
    token_a, tenant_a = _register(crud_client, "acme", "admin@acme.example.com")
    harbor = _post(crud_client, token_a, "/api/clients", {"tenant_id": tenant_a, "name": "Harbor", "phone": "1"})
    employee = _post(
        crud_client,
        token_a,
        "/api/users",
        {"email": "emp@acme.example.com", "password": PASSWORD, "role": "employee", "client_id": harbor["id"]},
    )
    assignment = _post(
        crud_client,
        token_a,
        "/api/assignments",
        {"employee_id": employee["id"], "client_id": harbor["id"]},
    )
    contract = _post(crud_client, token_a, "/api/contracts", {"client_id": harbor["id"]})
    invoice = _post(crud_client, token_a, "/api/invoices", {"contract_id": contract["id"], "amount_cents": 900})

    rejected = _patch(crud_client, token_a, f"/api/clients/{harbor['id']}", {"name": None})
    assert rejected.status_code == 422
    assert rejected.json()["detail"][0]["loc"] == ["name"]
    unchanged = crud_client.get(f"/api/clients/{harbor['id']}", headers=_auth_header(token_a))
    assert unchanged.json()["name"] == "Harbor"

    cleared = _patch(crud_client, token_a, f"/api/clients/{harbor['id']}", {"phone": None})
    assert cleared.status_code == 200
    assert cleared.json()["phone"] is None

    assert _patch(crud_client, token_a, f"/api/assignments/{assignment['id']}", {"client_id": None}).status_code == 422
    assert _patch(crud_client, token_a, f"/api/invoices/{invoice['id']}", {"paid": None}).status_code == 422
    assert _patch(crud_client, token_a, f"/api/invoices/{invoice['id']}", {"amount_cents": None}).status_code == 422
    assert _patch(crud_client, token_a, f"/api/tenants/{tenant_a}", {"name": None}).status_code == 422
    assert _patch(crud_client, token_a, f"/api/users/{employee['id']}", {"email": None}).status_code == 422


def test_workforce_create_and_patch(crud_client: TestClient) -> None:
    token_a, tenant_a = _register(crud_client, "acme", "admin@acme.example.com")
    harbor = _post(crud_client, token_a, "/api/clients", {"tenant_id": tenant_a, "name": "Harbor"})
    assert harbor["tenant_id"] == tenant_a
    supervisor = _post(
        crud_client,
        token_a,
        "/api/users",
        {"email": "sup@acme.example.com", "password": PASSWORD, "role": "employee", "client_id": harbor["id"]},
    )

    branch = _post(
        crud_client,
        token_a,
        "/api/branches",
        {"client_id": harbor["id"], "name": "North", "supervisor_id": supervisor["id"]},
    )
    assert branch["tenant_id"] == tenant_a
    assert branch["supervisor_id"] == supervisor["id"]
    moved = _patch(crud_client, token_a, f"/api/branches/{branch['id']}", {"name": "North Pier", "address": "1 Dock"})
    assert moved.status_code == 200
    assert moved.json()["name"] == "North Pier"
    assert moved.json()["address"] == "1 Dock"

    linked = _patch(crud_client, token_a, f"/api/clients/{harbor['id']}", {"branch_id": branch["id"]})
    assert linked.status_code == 200
    assert linked.json()["branch_id"] == branch["id"]

    assignment = _post(
        crud_client,
        token_a,
        "/api/assignments",
        {"employee_id": supervisor["id"], "client_id": harbor["id"], "start_date": "2026-01-05"},
    )
    assert assignment["status"] == "active"
    closed = _patch(
        crud_client,
        token_a,
        f"/api/assignments/{assignment['id']}",
        {"status": "completed", "end_date": "2026-03-31"},
    )
    assert closed.status_code == 200
    assert closed.json()["status"] == "completed"
    assert closed.json()["end_date"] == "2026-03-31"

    bad_status = _patch(crud_client, token_a, f"/api/assignments/{assignment['id']}", {"status": "paused"})
    assert bad_status.status_code == 422


def test_billing_create_and_patch(crud_client: TestClient) -> None:
    root = _super_admin(crud_client)
    token_a, tenant_a = _register(crud_client, "acme", "admin@acme.example.com")
    harbor = _post(crud_client, token_a, "/api/clients", {"tenant_id": tenant_a, "name": "Harbor"})

    contract = _post(crud_client, token_a, "/api/contracts", {"client_id": harbor["id"], "terms": "net 30"})
    assert contract["tenant_id"] == tenant_a
    amended = _patch(crud_client, token_a, f"/api/contracts/{contract['id']}", {"terms": "net 15"})
    assert amended.json()["terms"] == "net 15"

    invoice = _post(crud_client, token_a, "/api/invoices", {"contract_id": contract["id"], "amount_cents": 12500})
    assert invoice["paid"] is False
    rebilled = _patch(crud_client, token_a, f"/api/invoices/{invoice['id']}", {"amount_cents": 13000})
    assert rebilled.json()["amount_cents"] == 13000
    negative = _patch(crud_client, token_a, f"/api/invoices/{invoice['id']}", {"amount_cents": -1})
    assert negative.status_code == 422

    starter = _post(crud_client, root, "/api/plans", {"name": "Starter", "price_cents": 1900})
    pro = _post(crud_client, root, "/api/plans", {"name": "Pro", "price_cents": 4900, "billing_cycle": "yearly"})

    self_service = crud_client.post(
        "/api/subscriptions",
        json={"tenant_id": tenant_a, "plan_id": starter["id"]},
        headers=_auth_header(token_a),
    )
    assert self_service.status_code == 403

    subscription = _post(crud_client, root, "/api/subscriptions", {"tenant_id": tenant_a, "plan_id": starter["id"]})
    assert subscription["is_active"] is True
    upgraded = _patch(crud_client, root, f"/api/subscriptions/{subscription['id']}", {"plan_id": pro["id"]})
    assert upgraded.status_code == 200
    assert upgraded.json()["plan_id"] == pro["id"]
    assert _patch(crud_client, root, f"/api/subscriptions/{subscription['id']}", {"plan_id": None}).status_code == 422
    read_only = _patch(crud_client, token_a, f"/api/subscriptions/{subscription['id']}", {"is_active": False})
    assert read_only.status_code == 403

    visible = crud_client.get("/api/subscriptions", headers=_auth_header(token_a))
    assert [item["id"] for item in visible.json()] == [subscription["id"]]


def test_user_create_under_missing_or_foreign_tenant_is_404(crud_client: TestClient) -> None:
    token_a, _ = _register(crud_client, "acme", "admin@acme.example.com")
    _, tenant_b = _register(crud_client, "globex", "admin@globex.example.com")

    missing = crud_client.post(
        "/api/users",
        json={"email": "x@acme.example.com", "password": PASSWORD, "role": "employee", "tenant_id": "no-such-tenant"},
        headers=_auth_header(token_a),
    )
    foreign = crud_client.post(
        "/api/users",
        json={"email": "y@acme.example.com", "password": PASSWORD, "role": "employee", "tenant_id": tenant_b},
        headers=_auth_header(token_a),
    )
    assert missing.status_code == 404
    assert foreign.status_code == 404
    assert missing.json() == foreign.json() == {"detail": "tenant not found"}

    own = crud_client.post(
        "/api/users",
        json={"email": "z@acme.example.com", "password": PASSWORD, "role": "employee"},
        headers=_auth_header(token_a),
    )
    assert own.status_code == 201
