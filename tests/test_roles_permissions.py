from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from usermgmt import main as app_main
from usermgmt.api import deps
from usermgmt.infra import audit, db

BASIC_AUTH = (deps.BASIC_AUTH_USER, deps.BASIC_AUTH_PWD)


@pytest.fixture()
def admin_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[tuple[TestClient, dict[str, str]], None, None]:
    db_path = tmp_path / "roles_test.db"
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
    client = TestClient(app_main.app)

    bootstrap = client.post(
        "/api/v1/basic/users/bootstrap-superuser",
        json={
            "app_id": "app-1",
            "app_name": "Platform",
            "first_name": "Ada",
            "last_name": "Admin",
            "email": "admin@email.com",
            "password": "admin-pass",
        },
        auth=BASIC_AUTH,
    )
    assert bootstrap.status_code == 201
    login = client.post(
        "/api/v1/basic/users/app-1/login",
        json={"email": "admin@email.com", "password": "admin-pass"},
        auth=BASIC_AUTH,
    )
    assert login.status_code == 200
    headers = {"Authorization": f"Bearer {login.json()['a_token']}"}
    yield client, headers
    client.close()
    audit.audit_dispatcher.flush()


def _create_permission(client: TestClient, headers: dict[str, str], name: str, app_id: str = "app-1") -> int:
    response = client.post("/api/v1/permissions", json={"name": name, "app_id": app_id}, headers=headers)
    assert response.status_code == 201
    return response.json()["items"][0]["id"]


def _create_role(client: TestClient, headers: dict[str, str], name: str, app_id: str = "app-1") -> int:
    response = client.post("/api/v1/roles", json={"name": name, "app_id": app_id}, headers=headers)
    assert response.status_code == 201
    return response.json()["items"][0]["id"]


def _grant(client: TestClient, headers: dict[str, str], role_id: int, permission_id: int) -> int:
    response = client.post(
        "/api/v1/role-permissions",
        json={"role_id": role_id, "permission_id": permission_id},
        headers=headers,
    )
    return response.status_code


def test_hard_delete_is_refused_while_grants_exist(admin_client: tuple[TestClient, dict[str, str]]) -> None:
    client, headers = admin_client
    permission_id = _create_permission(client, headers, "USER_READ")
    role_id = _create_role(client, headers, "viewer")
    assert _grant(client, headers, role_id, permission_id) == 201

    role_blocked = client.delete(f"/api/v1/roles/{role_id}/hard", headers=headers)
    assert role_blocked.status_code == 409
    permission_blocked = client.delete(f"/api/v1/permissions/{permission_id}/hard", headers=headers)
    assert permission_blocked.status_code == 409

    unassign = client.delete(f"/api/v1/role-permissions/{role_id}/{permission_id}", headers=headers)
    assert unassign.status_code == 200
    assert unassign.json()["crud_info"]["deleted_rows_count"] == 1

    assert client.delete(f"/api/v1/roles/{role_id}/hard", headers=headers).status_code == 200
    assert client.delete(f"/api/v1/permissions/{permission_id}/hard", headers=headers).status_code == 200
    assert client.get(f"/api/v1/roles/{role_id}", headers=headers).status_code == 404
    assert client.get(f"/api/v1/permissions/{permission_id}", headers=headers).status_code == 404


def test_role_lists_nested_permissions_for_its_app(admin_client: tuple[TestClient, dict[str, str]]) -> None:
    client, headers = admin_client
    read_id = _create_permission(client, headers, "user_read")
    update_id = _create_permission(client, headers, "USER_UPDATE")
    role_id = _create_role(client, headers, "editor")
    assert _grant(client, headers, role_id, update_id) == 201
    assert _grant(client, headers, role_id, read_id) == 201

    response = client.get(f"/api/v1/roles/{role_id}", headers=headers)
    assert response.status_code == 200
    permissions = response.json()["items"][0]["permissions"]
    assert [item["name"] for item in permissions] == ["USER_READ", "USER_UPDATE"]

    grants = client.get(f"/api/v1/role-permissions/{role_id}", headers=headers)
    assert grants.status_code == 200
    assert [item["permission"]["name"] for item in grants.json()["items"]] == ["USER_READ", "USER_UPDATE"]

    listed = client.get("/api/v1/roles", params={"app_id": "app-1"}, headers=headers)
    assert listed.status_code == 200
    names = sorted(item["name"] for item in listed.json()["items"])
    assert names == ["GUEST", "SUPERUSER", "editor"]


def test_duplicate_grant_is_a_conflict(admin_client: tuple[TestClient, dict[str, str]]) -> None:
    client, headers = admin_client
    permission_id = _create_permission(client, headers, "ROLE_READ")
    role_id = _create_role(client, headers, "auditor")

    assert _grant(client, headers, role_id, permission_id) == 201
    assert _grant(client, headers, role_id, permission_id) == 409


def test_app_role_cannot_hold_foreign_app_permission(admin_client: tuple[TestClient, dict[str, str]]) -> None:
    client, headers = admin_client
    created = client.post("/api/v1/apps", json={"id": "app-2", "name": "Second"}, headers=headers)
    assert created.status_code == 201
    foreign_permission_id = _create_permission(client, headers, "USER_READ", app_id="app-2")
    role_id = _create_role(client, headers, "viewer")

    response = client.post(
        "/api/v1/role-permissions",
        json={"role_id": role_id, "permission_id": foreign_permission_id},
        headers=headers,
    )
    assert response.status_code == 400
    assert "cannot be granted" in response.json()["status_info"]["err_msg"]


def test_platform_role_names_are_reserved(admin_client: tuple[TestClient, dict[str, str]]) -> None:
    client, headers = admin_client
    response = client.post("/api/v1/roles", json={"name": "SUPERUSER", "app_id": "app-1"}, headers=headers)
    assert response.status_code == 400


def test_duplicate_permission_name_in_app_is_a_conflict(admin_client: tuple[TestClient, dict[str, str]]) -> None:
    client, headers = admin_client
    _create_permission(client, headers, "APP_READ")
    response = client.post("/api/v1/permissions", json={"name": "app_read", "app_id": "app-1"}, headers=headers)
    assert response.status_code == 409


def test_soft_deleted_role_is_hidden_and_restorable(admin_client: tuple[TestClient, dict[str, str]]) -> None:
    client, headers = admin_client
    role_id = _create_role(client, headers, "temporary")

    assert client.delete(f"/api/v1/roles/{role_id}", headers=headers).status_code == 200
    assert client.get(f"/api/v1/roles/{role_id}", headers=headers).status_code == 404

    deleted = client.get("/api/v1/roles", params={"app_id": "app-1", "include_deleted": True}, headers=headers)
    assert role_id in [item["id"] for item in deleted.json()["items"]]

    restored = client.patch(f"/api/v1/roles/{role_id}/restore", headers=headers)
    assert restored.status_code == 200
    assert restored.json()["items"][0]["deleted_at"] is None


def test_hard_delete_app_requires_unassigned_records(admin_client: tuple[TestClient, dict[str, str]]) -> None:
    client, headers = admin_client
    created = client.post("/api/v1/apps", json={"id": "app-3", "name": "Third"}, headers=headers)
    assert created.status_code == 201
    permission_id = _create_permission(client, headers, "USER_READ", app_id="app-3")

    blocked = client.delete("/api/v1/apps/app-3/hard", headers=headers)
    assert blocked.status_code == 409

    assert client.delete(f"/api/v1/permissions/{permission_id}/hard", headers=headers).status_code == 200
    assert client.delete("/api/v1/apps/app-3/hard", headers=headers).status_code == 200
    assert client.get("/api/v1/apps/app-3", headers=headers).status_code == 404


def test_update_app_and_permission(admin_client: tuple[TestClient, dict[str, str]]) -> None:
    client, headers = admin_client
    updated = client.put(
        "/api/v1/apps/app-1",
        json={"description": "platform app", "redirect_url": "https://platform.example/home"},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["items"][0]["redirect_url"] == "https://platform.example/home"

    permission_id = _create_permission(client, headers, "ROLE_UPDATE")
    renamed = client.put(
        f"/api/v1/permissions/{permission_id}",
        json={"description": "edit roles"},
        headers=headers,
    )
    assert renamed.status_code == 200
    assert renamed.json()["items"][0]["description"] == "edit roles"
