from __future__ import annotations

from collections.abc import Collection, Sequence
from typing import Any

from usermgmt.domain.models import App, Permission, Role, User
from usermgmt.services.errors import PermissionDeniedError

ROLE_SUPERUSER = "SUPERUSER"
ROLE_GUEST = "GUEST"

ACTION_CREATE = "CREATE"
ACTION_READ = "READ"
ACTION_UPDATE = "UPDATE"

RESOURCE_APP = "APP"
RESOURCE_USER = "USER"
RESOURCE_ROLE = "ROLE"
RESOURCE_PERMISSION = "PERMISSION"


def permission_name(resource: str, action: str) -> str:
    return f"{resource}_{action}"


PERM_APP_READ = permission_name(RESOURCE_APP, ACTION_READ)
PERM_APP_UPDATE = permission_name(RESOURCE_APP, ACTION_UPDATE)
PERM_USER_READ = permission_name(RESOURCE_USER, ACTION_READ)
PERM_USER_UPDATE = permission_name(RESOURCE_USER, ACTION_UPDATE)
PERM_ROLE_CREATE = permission_name(RESOURCE_ROLE, ACTION_CREATE)
PERM_ROLE_READ = permission_name(RESOURCE_ROLE, ACTION_READ)
PERM_ROLE_UPDATE = permission_name(RESOURCE_ROLE, ACTION_UPDATE)
PERM_PERMISSION_CREATE = permission_name(RESOURCE_PERMISSION, ACTION_CREATE)
PERM_PERMISSION_READ = permission_name(RESOURCE_PERMISSION, ACTION_READ)
PERM_PERMISSION_UPDATE = permission_name(RESOURCE_PERMISSION, ACTION_UPDATE)


def _claim_list(claims: dict[str, Any], key: str) -> list[str]:
    values = claims.get(key, [])
    if not isinstance(values, list):
        return []
    return [item for item in values if isinstance(item, str)]


def claims_user_id(claims: dict[str, Any]) -> int | None:
    try:
        return int(claims.get("sub", ""))
    except (TypeError, ValueError):
        return None


def is_superuser(claims: dict[str, Any]) -> bool:
    return ROLE_SUPERUSER in _claim_list(claims, "roles")


def is_self(claims: dict[str, Any], *, user_id: int | None = None, email: str | None = None) -> bool:
    if user_id is not None and user_id == claims_user_id(claims):
        return True
    caller_email = claims.get("email")
    return bool(email) and isinstance(caller_email, str) and caller_email.lower() == str(email).lower()


def has_permission(claims: dict[str, Any], permission: str, app_id: str | None = None) -> bool:
    """Membership test of ``permission`` in the caller's grants.

    Token permissions are resolved for the token's app only, so a request
    scoped to any other app never matches.
    """
    if is_superuser(claims):
        return True
    if app_id and claims.get("app_id") != app_id:
        return False
    return permission in _claim_list(claims, "permissions")


def _in_caller_app(claims: dict[str, Any], record_app_id: str | None) -> bool:
    return record_app_id is None or record_app_id == claims.get("app_id")


def check_superuser(claims: dict[str, Any], message: str) -> None:
    if not is_superuser(claims):
        raise PermissionDeniedError(message)


def check_permission(claims: dict[str, Any], permission: str, app_id: str | None = None) -> None:
    if not has_permission(claims, permission, app_id):
        raise PermissionDeniedError(f"Missing permission [{permission}]")


def check_user_access(
    claims: dict[str, Any],
    permission: str,
    *,
    user_id: int | None = None,
    email: str | None = None,
    app_id: str | None = None,
    member_app_ids: Collection[str] = (),
    target_is_superuser: bool = False,
) -> None:
    """Single user record check.

    Besides the permission, a non superuser needs the target to be a member
    of the token app. Callers pass ``target_is_superuser`` for changes, which
    only a superuser may make to a superuser's record.
    """
    if is_self(claims, user_id=user_id, email=email) or is_superuser(claims):
        return
    check_permission(claims, permission, app_id)
    token_app_id = claims.get("app_id")
    if token_app_id not in member_app_ids:
        raise PermissionDeniedError(f"User [{user_id or email}] is not a member of app [{token_app_id}]")
    if target_is_superuser:
        raise PermissionDeniedError("ONLY SUPERUSER can change a superuser")


def check_app_access(claims: dict[str, Any], permission: str, app_id: str) -> None:
    if is_superuser(claims):
        return
    if claims.get("app_id") == app_id and permission in _claim_list(claims, "permissions"):
        return
    raise PermissionDeniedError(f"Missing permission [{permission}] for app [{app_id}]")


def check_record_app_access(claims: dict[str, Any], permission: str, record_app_id: str | None) -> None:
    if is_superuser(claims):
        return
    if not _in_caller_app(claims, record_app_id):
        raise PermissionDeniedError(f"Missing permission [{permission}] for app [{record_app_id}]")
    check_permission(claims, permission)


def filter_users(claims: dict[str, Any], users: Sequence[User], app_id: str | None = None) -> list[User]:
    if has_permission(claims, PERM_USER_READ, app_id):
        return list(users)
    return [user for user in users if is_self(claims, user_id=user.id, email=user.email)]


def filter_apps(claims: dict[str, Any], apps: Sequence[App]) -> list[App]:
    if is_superuser(claims):
        return list(apps)
    return [app for app in apps if app.id == claims.get("app_id")]


def filter_roles(claims: dict[str, Any], roles: Sequence[Role]) -> list[Role]:
    if is_superuser(claims):
        return list(roles)
    if not has_permission(claims, PERM_ROLE_READ):
        return []
    return [role for role in roles if _in_caller_app(claims, role.app_id)]


def filter_permissions(claims: dict[str, Any], permissions: Sequence[Permission]) -> list[Permission]:
    if is_superuser(claims):
        return list(permissions)
    if not has_permission(claims, PERM_PERMISSION_READ):
        return []
    return [permission for permission in permissions if permission.app_id == claims.get("app_id")]
