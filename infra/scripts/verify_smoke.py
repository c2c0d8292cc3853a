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
    last_body = ""
    while time.monotonic() < deadline:
        try:
            response = await client.get(path)
            if response.status_code == 200:
                return
            last_status = str(response.status_code)
            last_body = response.text
        except httpx.HTTPError as exc:
            last_status = "http_error"
            last_body = str(exc)
        await asyncio.sleep(1.0)
    raise RuntimeError(f"timeout waiting for {path}, last_status={last_status}, detail={last_body}")


async def _run() -> None:
    base_url = os.getenv("APP_BASE_URL", "http://app:8000").rstrip("/")
    basic_auth = (
        os.getenv("BASIC_AUTH_USER", "usermgmt"),
        os.getenv("BASIC_AUTH_PWD", "usermgmt-dev-pwd"),
    )
    app_id = os.getenv("SMOKE_APP_ID", "smoke-app")
    admin_email = os.getenv("SMOKE_ADMIN_EMAIL", "smoke-admin@example.com")
    admin_password = os.getenv("SMOKE_ADMIN_PASSWORD", "smoke-admin-pass")
    run_id = uuid4().hex[:8]

    timeout = httpx.Timeout(20.0)
    async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as client:
        await _wait_ok(client, "/healthz")
        await _wait_ok(client, "/readyz")

        # 409 once the superuser exists from an earlier run
        bootstrap_resp = await client.post(
            "/api/v1/basic/users/bootstrap-superuser",
            json={
                "app_id": app_id,
                "app_name": app_id,
                "first_name": "Smoke",
                "last_name": "Admin",
                "email": admin_email,
                "password": admin_password,
            },
            auth=basic_auth,
        )
        _assert_status(bootstrap_resp, (201, 409))

        login_resp = await client.post(
            f"/api/v1/basic/users/{app_id}/login",
            json={"email": admin_email, "password": admin_password},
            auth=basic_auth,
        )
        _assert_status(login_resp, 200)
        access_token = login_resp.json()["a_token"]

        create_resp = await client.post(
            f"/api/v1/basic/users/{app_id}/create",
            json={
                "first_name": "Smoke",
                "last_name": f"User {run_id}",
                "email": f"smoke-{run_id}@example.com",
                "password": f"pass-{run_id}",
            },
            auth=basic_auth,
        )
        _assert_status(create_resp, 201)
        created = create_resp.json()["items"][0]
        role_names = [role["name"] for role in created["roles"]]
        if role_names != ["GUEST"]:
            raise RuntimeError(f"new user expected GUEST role only, got {role_names}")

        get_resp = await client.get(
            f"/api/v1/users/{created['id']}",
            params={"app_id": app_id},
            headers=_auth_headers(access_token),
        )
        _assert_status(get_resp, 200)

        logout_resp = await client.post(
            f"/api/v1/basic/users/{app_id}/logout",
            json={"access_token": access_token},
            auth=basic_auth,
        )
        _assert_status(logout_resp, 204)

        after_logout = await client.get("/api/v1/users", headers=_auth_headers(access_token))
        _assert_status(after_logout, 401)

    print("verify_smoke: healthz/readyz + bootstrap + login + create user + logout ok")


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
