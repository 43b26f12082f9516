from __future__ import annotations

import asyncio
import os
import time
from uuid import uuid4

import httpx


def _assert_status(response: httpx.Response, expected: int | tuple[int, ...]) -> None:
    expected_codes = (expected,) if isinstance(expected, int) else expected
    if response.status_code not in expected_codes:
        raise RuntimeError(
            f"{response.request.method} {response.request.url} expected {expected_codes}, "
            f"got {response.status_code}: {response.text}"
        )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def _wait_ok(client: httpx.AsyncClient, path: str, timeout_seconds: float = 60.0) -> None:
    deadline = time.monotonic() + timeout_seconds
    last_status = "n/a"
    while time.monotonic() < deadline:
        try:
            response = await client.get(path)
            if response.status_code == 200:
                return
            last_status = str(response.status_code)
        except httpx.HTTPError as exc:
            last_status = exc.__class__.__name__
        await asyncio.sleep(1.0)
    raise RuntimeError(f"timeout waiting for {path} (last status {last_status})")


async def _register(client: httpx.AsyncClient, prefix: str) -> str:
    run_id = uuid4().hex[:8]
    response = await client.post(
        "/api/auth/register",
        json={
            "tenant_name": f"{prefix}-tenant-{run_id}",
            "name": f"{prefix} admin",
            "email": f"{prefix}-{run_id}@example.com",
            "password": f"pass-{run_id}-long",
        },
    )
    _assert_status(response, 201)
    return response.json()["access_token"]


async def run() -> None:
    base_url = os.getenv("APP_BASE_URL", "http://localhost:8000")
    async with httpx.AsyncClient(base_url=base_url, timeout=10.0) as client:
        await _wait_ok(client, "/healthz")
        await _wait_ok(client, "/readyz")

        token_a = await _register(client, "smoke-a")
        token_b = await _register(client, "smoke-b")

        me = await client.get("/api/auth/me", headers=_auth_headers(token_a))
        _assert_status(me, 200)
        tenant_a = me.json()["tenant_id"]

        client_resp = await client.post(
            "/api/clients",
            json={"tenant_id": tenant_a, "name": "Smoke Client"},
            headers=_auth_headers(token_a),
        )
        _assert_status(client_resp, 201)
        client_id = client_resp.json()["id"]

        # another tenant must not see or touch it
        foreign_get = await client.get(f"/api/clients/{client_id}", headers=_auth_headers(token_b))
        _assert_status(foreign_get, 403)
        foreign_tenant = await client.get(f"/api/tenants/{tenant_a}", headers=_auth_headers(token_b))
        _assert_status(foreign_tenant, 404)

        logout = await client.post("/api/auth/logout", headers=_auth_headers(token_a))
        _assert_status(logout, 204)
        after_logout = await client.get("/api/auth/me", headers=_auth_headers(token_a))
        _assert_status(after_logout, 401)
    print("smoke ok")


if __name__ == "__main__":
    asyncio.run(run())
