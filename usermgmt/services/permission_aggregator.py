from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping

from sqlmodel import Session, col, select

from usermgmt.domain.models import Permission, PermissionRead, RolePermission
from usermgmt.infra.db import get_engine


def has_scope(app_id: str | None) -> bool:
    """A blank or missing app id means "do not expand nested grants"."""
    return app_id is not None and bool(app_id.strip())


def group_permissions_by_role(
    session: Session,
    app_id: str | None,
    role_ids: Iterable[int],
) -> dict[int, list[PermissionRead]]:
    """Resolve the permissions of every role in one grouped lookup.

    Rows are fetched once for the whole id set, filtered to permissions owned
    by ``app_id``, then grouped in memory by role id. Every requested role is
    present in the result; a role without grants maps to an empty list.
    """
    ids = sorted({role_id for role_id in role_ids if role_id is not None})
    if not has_scope(app_id) or not ids:
        return {}

    statement = (
        select(RolePermission.role_id, Permission)
        .join(Permission, col(Permission.id) == col(RolePermission.permission_id))
        .where(Permission.app_id == app_id)
        .where(col(RolePermission.role_id).in_(ids))
        .where(col(Permission.deleted_at).is_(None))
        .order_by(col(Permission.name), col(Permission.id))
    )
    grouped: dict[int, list[PermissionRead]] = defaultdict(list)
    for role_id, permission in session.exec(statement).all():
        grouped[role_id].append(PermissionRead.model_validate(permission))
    return {role_id: grouped.get(role_id, []) for role_id in ids}


def merge_permissions(grouped: Mapping[int, list[PermissionRead]]) -> list[PermissionRead]:
    unique: dict[int, PermissionRead] = {}
    for permissions in grouped.values():
        for permission in permissions:
            unique.setdefault(permission.id, permission)
    return sorted(unique.values(), key=lambda item: (item.name, item.id))


class PermissionAggregator:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def resolve_permissions(self, app_id: str | None, role_ids: Iterable[int]) -> list[PermissionRead]:
        with self._session() as session:
            return merge_permissions(group_permissions_by_role(session, app_id, role_ids))
