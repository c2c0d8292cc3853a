from __future__ import annotations

import re
from collections.abc import Generator
from pathlib import Path
from urllib.parse import urlsplit

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from usermgmt import main as app_main
from usermgmt.api import deps
from usermgmt.infra import audit, db
from usermgmt.infra.email import email_sender

BASIC_AUTH = (deps.BASIC_AUTH_USER, deps.BASIC_AUTH_PWD)
ADMIN_EMAIL = "admin@email.com"
ADMIN_PASSWORD = "admin-pass"


@pytest.fixture()
def outbox(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, str, str]]:
    sent: list[tuple[str, str, str]] = []

    def _capture(recipient: str, subject: str, body: str) -> None:
        sent.append((recipient, subject, body))

    monkeypatch.setattr(email_sender, "send", _capture)
    return sent


@pytest.fixture()
def users_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    outbox: list[tuple[str, str, str]],
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "users_test.db"
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
    yield client
    client.close()
    audit.audit_dispatcher.flush()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _bootstrap_and_login(client: TestClient, app_id: str = "app-1") -> str:
    response = client.post(
        "/api/v1/basic/users/bootstrap-superuser",
        json={
            "app_id": app_id,
            "app_name": "Platform",
            "first_name": "Ada",
            "last_name": "Admin",
            "email": ADMIN_EMAIL,
            "password": ADMIN_PASSWORD,
        },
        auth=BASIC_AUTH,
    )
    assert response.status_code == 201
    return _login(client, app_id, ADMIN_EMAIL, ADMIN_PASSWORD)


def _login(client: TestClient, app_id: str, email: str, password: str) -> str:
    response = client.post(
        f"/api/v1/basic/users/{app_id}/login",
        json={"email": email, "password": password},
        auth=BASIC_AUTH,
    )
    assert response.status_code == 200
    return response.json()["a_token"]


def _create_app(client: TestClient, token: str, app_id: str) -> None:
    response = client.post(
        "/api/v1/apps",
        json={"id": app_id, "name": f"App {app_id}"},
        headers=_auth_header(token),
    )
    assert response.status_code == 201


def _create_user(client: TestClient, app_id: str, email: str) -> dict:
    payload = {
        "first_name": "Bob",
        "last_name": "Builder",
        "email": email,
        "password": "bob-pass",
        "addresses": [{"address_type": "HOME", "city": "Springfield"}],
    }
    response = client.post(f"/api/v1/basic/users/{app_id}/create", json=payload, auth=BASIC_AUTH)
    assert response.status_code == 201
    return response.json()["items"][0]


def _create_active_user(client: TestClient, outbox: list[tuple[str, str, str]], app_id: str, email: str) -> dict:
    created = _create_user(client, app_id, email)
    recipient, _subject, body = outbox[-1]
    assert recipient == email
    match = re.search(r"https?://\S+", body)
    assert match is not None
    link = urlsplit(match.group(0))
    response = client.get(f"{link.path}?{link.query}", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"].endswith("is_validated=true")
    return created


def test_bootstrap_superuser_only_once(users_client: TestClient) -> None:
    _bootstrap_and_login(users_client)
    response = users_client.post(
        "/api/v1/basic/users/bootstrap-superuser",
        json={
            "app_id": "app-1",
            "app_name": "Platform",
            "first_name": "Eve",
            "last_name": "Again",
            "email": "eve@email.com",
            "password": "eve-pass",
        },
        auth=BASIC_AUTH,
    )
    assert response.status_code == 409
    assert response.json()["status_info"]["err_msg"] == "Superuser already initialized"


def test_basic_endpoints_require_basic_auth(users_client: TestClient) -> None:
    response = users_client.post(
        "/api/v1/basic/users/app-1/login",
        json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
        auth=("usermgmt", "wrong"),
    )
    assert response.status_code == 401
    assert response.json()["items"] == []


def test_new_user_gets_guest_role_and_never_exposes_password(users_client: TestClient) -> None:
    token = _bootstrap_and_login(users_client)
    _create_app(users_client, token, "app-99")

    created = _create_user(users_client, "app-99", "Bob@Email.com")
    assert created["email"] == "bob@email.com"
    assert created["status"]["name"] == "PENDING"
    assert created["is_validated"] is False
    assert [role["name"] for role in created["roles"]] == ["GUEST"]
    assert created["addresses"][0]["city"] == "Springfield"
    assert "password" not in created
    assert "password_hash" not in created

    response = users_client.get(
        f"/api/v1/users/{created['id']}",
        params={"app_id": "app-99"},
        headers=_auth_header(token),
    )
    assert response.status_code == 200
    item = response.json()["items"][0]
    assert len(item["roles"]) == 1
    assert item["roles"][0]["name"] == "GUEST"
    assert item["roles"][0]["permissions"] == []

    # roles default to the app of the caller's token
    token_scope = users_client.get(f"/api/v1/users/{created['id']}", headers=_auth_header(token))
    assert token_scope.status_code == 200
    assert token_scope.json()["items"][0]["roles"] == []


def test_create_user_requires_password(users_client: TestClient) -> None:
    token = _bootstrap_and_login(users_client)
    _create_app(users_client, token, "app-99")

    response = users_client.post(
        "/api/v1/basic/users/app-99/create",
        json={"first_name": "No", "last_name": "Password", "email": "nopass@email.com"},
        auth=BASIC_AUTH,
    )
    assert response.status_code == 400
    assert response.json()["status_info"]["err_msg"] == "[password] is Missing in [User] request"


def test_create_user_rejects_duplicate_email(users_client: TestClient) -> None:
    token = _bootstrap_and_login(users_client)
    _create_app(users_client, token, "app-99")
    _create_user(users_client, "app-99", "dup@email.com")

    response = users_client.post(
        "/api/v1/basic/users/app-99/create",
        json={"first_name": "Dup", "last_name": "Again", "email": "DUP@email.com", "password": "x"},
        auth=BASIC_AUTH,
    )
    assert response.status_code == 409


def test_hard_delete_user_requires_explicit_unassignment(users_client: TestClient) -> None:
    token = _bootstrap_and_login(users_client)
    _create_app(users_client, token, "app-99")
    created = _create_user(users_client, "app-99", "gone@email.com")
    user_id = created["id"]
    guest_id = created["roles"][0]["id"]

    blocked = users_client.delete(f"/api/v1/users/{user_id}/hard", headers=_auth_header(token))
    assert blocked.status_code == 409
    assert "unassign" in blocked.json()["status_info"]["err_msg"]

    still_roles = users_client.delete(f"/api/v1/app-users/app-99/{user_id}", headers=_auth_header(token))
    assert still_roles.status_code == 409

    unassign_role = users_client.delete(
        f"/api/v1/app-user-roles/app-99/{user_id}/{guest_id}",
        headers=_auth_header(token),
    )
    assert unassign_role.status_code == 200
    assert unassign_role.json()["crud_info"]["deleted_rows_count"] == 1

    unassign_app = users_client.delete(f"/api/v1/app-users/app-99/{user_id}", headers=_auth_header(token))
    assert unassign_app.status_code == 200

    deleted = users_client.delete(f"/api/v1/users/{user_id}/hard", headers=_auth_header(token))
    assert deleted.status_code == 200
    assert deleted.json()["crud_info"]["deleted_rows_count"] == 1

    missing = users_client.get(f"/api/v1/users/{user_id}", headers=_auth_header(token))
    assert missing.status_code == 404
    assert missing.json()["status_info"]["err_msg"] == f"User Not Found for [{user_id}]"


def test_soft_delete_hides_user_until_restored(users_client: TestClient) -> None:
    token = _bootstrap_and_login(users_client)
    _create_app(users_client, token, "app-99")
    user_id = _create_user(users_client, "app-99", "soft@email.com")["id"]

    deleted = users_client.delete(f"/api/v1/users/{user_id}", headers=_auth_header(token))
    assert deleted.status_code == 200
    assert users_client.get(f"/api/v1/users/{user_id}", headers=_auth_header(token)).status_code == 404

    listed = users_client.get(
        "/api/v1/users",
        params={"app_id": "app-99", "include_deleted": True},
        headers=_auth_header(token),
    )
    assert [item["id"] for item in listed.json()["items"]] == [user_id]

    restored = users_client.patch(f"/api/v1/users/{user_id}/restore", headers=_auth_header(token))
    assert restored.status_code == 200
    assert restored.json()["items"][0]["deleted_at"] is None


def _grant(client: TestClient, token: str, app_id: str, user_id: int, permission: str, role: str) -> None:
    created = client.post(
        "/api/v1/permissions",
        json={"name": permission.lower(), "app_id": app_id},
        headers=_auth_header(token),
    )
    assert created.status_code == 201
    assert created.json()["items"][0]["name"] == permission
    permission_id = created.json()["items"][0]["id"]

    role_response = client.post(
        "/api/v1/roles",
        json={"name": role, "app_id": app_id},
        headers=_auth_header(token),
    )
    assert role_response.status_code == 201
    role_id = role_response.json()["items"][0]["id"]

    grant = client.post(
        "/api/v1/role-permissions",
        json={"role_id": role_id, "permission_id": permission_id},
        headers=_auth_header(token),
    )
    assert grant.status_code == 201

    assign = client.post(
        "/api/v1/app-user-roles",
        json={"app_id": app_id, "user_id": user_id, "role_id": role_id},
        headers=_auth_header(token),
    )
    assert assign.status_code == 201


def _admin_id(client: TestClient, token: str) -> int:
    response = client.get(f"/api/v1/users/email/{ADMIN_EMAIL}", headers=_auth_header(token))
    assert response.status_code == 200
    return response.json()["items"][0]["id"]


def test_app_read_only_caller_is_limited_to_own_records(
    users_client: TestClient,
    outbox: list[tuple[str, str, str]],
) -> None:
    admin_token = _bootstrap_and_login(users_client)
    _create_app(users_client, admin_token, "app-2")
    bob = _create_active_user(users_client, outbox, "app-2", "bob@email.com")
    carol = _create_user(users_client, "app-2", "carol@email.com")
    _grant(users_client, admin_token, "app-2", bob["id"], "APP_READ", "reader")

    login = users_client.post(
        "/api/v1/basic/users/app-2/login",
        json={"email": "bob@email.com", "password": "bob-pass"},
        auth=BASIC_AUTH,
    )
    assert login.status_code == 200
    body = login.json()
    assert sorted(role["name"] for role in body["user"]["roles"]) == ["GUEST", "reader"]
    bob_token = body["a_token"]

    other_app = users_client.get("/api/v1/users", params={"app_id": "app-1"}, headers=_auth_header(bob_token))
    assert other_app.status_code == 403

    own_list = users_client.get("/api/v1/users", headers=_auth_header(bob_token))
    assert own_list.status_code == 200
    assert [item["email"] for item in own_list.json()["items"]] == ["bob@email.com"]

    own = users_client.get(f"/api/v1/users/{bob['id']}", headers=_auth_header(bob_token))
    assert own.status_code == 200
    reader = next(role for role in own.json()["items"][0]["roles"] if role["name"] == "reader")
    assert [item["name"] for item in reader["permissions"]] == ["APP_READ"]

    updated = users_client.put(
        f"/api/v1/users/{bob['id']}",
        json={"first_name": "Robert"},
        headers=_auth_header(bob_token),
    )
    assert updated.status_code == 200
    assert updated.json()["items"][0]["first_name"] == "Robert"

    own_status = users_client.put(
        f"/api/v1/users/{bob['id']}",
        json={"status": "INACTIVE"},
        headers=_auth_header(bob_token),
    )
    assert own_status.status_code == 403

    foreign = users_client.get(f"/api/v1/users/{carol['id']}", headers=_auth_header(bob_token))
    assert foreign.status_code == 403

    app_read = users_client.get("/api/v1/apps/app-2", headers=_auth_header(bob_token))
    assert app_read.status_code == 200
    assert users_client.get("/api/v1/apps/app-1", headers=_auth_header(bob_token)).status_code == 403

    delete = users_client.delete(f"/api/v1/users/{bob['id']}", headers=_auth_header(bob_token))
    assert delete.status_code == 403
    assert delete.json()["status_info"]["err_msg"] == "Permission Denied: ONLY SUPERUSER can delete a user"


def test_user_read_in_one_app_does_not_reach_other_apps(
    users_client: TestClient,
    outbox: list[tuple[str, str, str]],
) -> None:
    admin_token = _bootstrap_and_login(users_client)
    admin_id = _admin_id(users_client, admin_token)
    _create_app(users_client, admin_token, "app-2")
    amy = _create_user(users_client, "app-1", "amy@email.com")
    carol = _create_user(users_client, "app-2", "carol@email.com")
    dave = _create_active_user(users_client, outbox, "app-2", "dave@email.com")
    _grant(users_client, admin_token, "app-2", dave["id"], "USER_READ", "reader")
    headers = _auth_header(_login(users_client, "app-2", "dave@email.com", "bob-pass"))

    by_id = users_client.get(f"/api/v1/users/{admin_id}", headers=headers)
    assert by_id.status_code == 403
    assert by_id.json()["items"] == []

    member = users_client.get(f"/api/v1/users/{amy['id']}", headers=headers)
    assert member.status_code == 403
    assert member.json()["status_info"]["err_msg"] == (
        f"Permission Denied: User [{amy['id']}] is not a member of app [app-2]"
    )

    assert users_client.get(f"/api/v1/users/email/{ADMIN_EMAIL}", headers=headers).status_code == 403
    assert users_client.get("/api/v1/users/email/amy@email.com", headers=headers).status_code == 403
    assert users_client.get(f"/api/v1/app-user-roles/app-2/{admin_id}", headers=headers).status_code == 403

    same_app = users_client.get(f"/api/v1/users/{carol['id']}", headers=headers)
    assert same_app.status_code == 200
    assert same_app.json()["items"][0]["email"] == "carol@email.com"
    assert users_client.get("/api/v1/users/email/carol@email.com", headers=headers).status_code == 200


def test_user_update_in_one_app_does_not_reach_other_apps(
    users_client: TestClient,
    outbox: list[tuple[str, str, str]],
) -> None:
    admin_token = _bootstrap_and_login(users_client)
    admin_id = _admin_id(users_client, admin_token)
    _create_app(users_client, admin_token, "app-2")
    amy = _create_user(users_client, "app-1", "amy@email.com")
    carol = _create_user(users_client, "app-2", "carol@email.com")
    erin = _create_active_user(users_client, outbox, "app-2", "erin@email.com")
    _grant(users_client, admin_token, "app-2", erin["id"], "USER_UPDATE", "editor")
    headers = _auth_header(_login(users_client, "app-2", "erin@email.com", "bob-pass"))

    password = users_client.put(f"/api/v1/users/{admin_id}/password", json={"password": "pwned"}, headers=headers)
    assert password.status_code == 403
    assert _login(users_client, "app-1", ADMIN_EMAIL, ADMIN_PASSWORD)

    profile = users_client.put(f"/api/v1/users/{admin_id}", json={"first_name": "Mallory"}, headers=headers)
    assert profile.status_code == 403
    email = users_client.put(
        f"/api/v1/users/{admin_id}/email",
        json={"old_email": ADMIN_EMAIL, "new_email": "mallory@email.com"},
        headers=headers,
    )
    assert email.status_code == 403

    amy_password = users_client.put(f"/api/v1/users/{amy['id']}/password", json={"password": "x"}, headers=headers)
    assert amy_password.status_code == 403
    address_id = amy["addresses"][0]["id"]
    address = users_client.delete(f"/api/v1/users/{amy['id']}/addresses/{address_id}", headers=headers)
    assert address.status_code == 403

    admin_view = users_client.get(f"/api/v1/users/{admin_id}", headers=_auth_header(admin_token))
    assert admin_view.json()["items"][0]["first_name"] == "Ada"
    assert admin_view.json()["items"][0]["email"] == ADMIN_EMAIL

    same_app = users_client.put(f"/api/v1/users/{carol['id']}", json={"first_name": "Caroline"}, headers=headers)
    assert same_app.status_code == 200
    assert same_app.json()["items"][0]["first_name"] == "Caroline"


def test_only_superuser_changes_a_superuser_in_the_same_app(
    users_client: TestClient,
    outbox: list[tuple[str, str, str]],
) -> None:
    admin_token = _bootstrap_and_login(users_client)
    admin_id = _admin_id(users_client, admin_token)
    amy = _create_user(users_client, "app-1", "amy@email.com")
    frank = _create_active_user(users_client, outbox, "app-1", "frank@email.com")
    _grant(users_client, admin_token, "app-1", frank["id"], "USER_UPDATE", "editor")
    headers = _auth_header(_login(users_client, "app-1", "frank@email.com", "bob-pass"))

    password = users_client.put(f"/api/v1/users/{admin_id}/password", json={"password": "pwned"}, headers=headers)
    assert password.status_code == 403
    assert password.json()["status_info"]["err_msg"] == "Permission Denied: ONLY SUPERUSER can change a superuser"
    assert _login(users_client, "app-1", ADMIN_EMAIL, ADMIN_PASSWORD)

    member = users_client.put(f"/api/v1/users/{amy['id']}", json={"last_name": "Pond"}, headers=headers)
    assert member.status_code == 200
    assert member.json()["items"][0]["last_name"] == "Pond"


def test_superuser_lists_users_with_page_info(users_client: TestClient) -> None:
    token = _bootstrap_and_login(users_client)
    _create_app(users_client, token, "app-99")
    for index in range(3):
        _create_user(users_client, "app-99", f"user{index}@email.com")

    response = users_client.get(
        "/api/v1/users",
        params={"app_id": "app-99", "per_page": 2, "page_number": 2},
        headers=_auth_header(token),
    )
    assert response.status_code == 200
    body = response.json()
    assert len(body["items"]) == 1
    assert body["page_info"] == {"total_items": 3, "total_pages": 2, "page_number": 2, "per_page": 2}


def test_update_email_and_lookup_by_email(users_client: TestClient, outbox: list[tuple[str, str, str]]) -> None:
    token = _bootstrap_and_login(users_client)
    _create_app(users_client, token, "app-99")
    user_id = _create_user(users_client, "app-99", "old@email.com")["id"]

    updated = users_client.put(
        f"/api/v1/users/{user_id}/email",
        params={"app_id": "app-99"},
        json={"old_email": "old@email.com", "new_email": "new@email.com"},
        headers=_auth_header(token),
    )
    assert updated.status_code == 200
    assert updated.json()["items"][0]["email"] == "new@email.com"
    assert outbox[-1][0] == "new@email.com"

    found = users_client.get("/api/v1/users/email/NEW@email.com", headers=_auth_header(token))
    assert found.status_code == 200
    assert users_client.get("/api/v1/users/email/old@email.com", headers=_auth_header(token)).status_code == 404


def test_delete_address(users_client: TestClient) -> None:
    token = _bootstrap_and_login(users_client)
    _create_app(users_client, token, "app-99")
    created = _create_user(users_client, "app-99", "addr@email.com")
    address_id = created["addresses"][0]["id"]

    response = users_client.delete(
        f"/api/v1/users/{created['id']}/addresses/{address_id}",
        headers=_auth_header(token),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["items"][0]["addresses"] == []
    assert body["crud_info"]["deleted_rows_count"] == 1

    again = users_client.delete(
        f"/api/v1/users/{created['id']}/addresses/{address_id}",
        headers=_auth_header(token),
    )
    assert again.status_code == 404


def test_request_validation_uses_error_envelope(users_client: TestClient) -> None:
    token = _bootstrap_and_login(users_client)
    response = users_client.put(
        "/api/v1/users/1/email",
        json={"old_email": "not-an-email"},
        headers=_auth_header(token),
    )
    assert response.status_code == 400
    body = response.json()
    assert body["items"] == []
    assert "old_email" in body["status_info"]["err_msg"]
