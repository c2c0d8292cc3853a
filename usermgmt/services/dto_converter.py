from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from typing import TypeVar

from sqlmodel import Session, col, select

from usermgmt.domain.models import (
    AddressRead,
    App,
    AppRead,
    AppResponse,
    AppUser,
    AppUserRead,
    AppUserResponse,
    AppUserRole,
    AppUserRoleRead,
    AppUserRoleResponse,
    Permission,
    PermissionRead,
    PermissionResponse,
    ResponseCrudInfo,
    ResponseMetadata,
    ResponsePageInfo,
    Role,
    RolePermission,
    RolePermissionRead,
    RolePermissionResponse,
    RoleRead,
    RoleResponse,
    StatusRead,
    StatusType,
    User,
    UserAddress,
    UserRead,
    UserResponse,
)
from usermgmt.infra.db import get_engine
from usermgmt.services.permission_aggregator import group_permissions_by_role, has_scope

ResponseT = TypeVar("ResponseT", bound=ResponseMetadata)


def app_read(app: App) -> AppRead:
    return AppRead(
        id=app.id,
        name=app.name,
        description=app.description,
        redirect_url=app.redirect_url,
        created_at=app.created_at,
        updated_at=app.updated_at,
        deleted_at=app.deleted_at,
    )


def permission_read(permission: Permission) -> PermissionRead:
    return PermissionRead(
        id=permission.id or 0,
        name=permission.name,
        description=permission.description,
        app_id=permission.app_id,
        created_at=permission.created_at,
        updated_at=permission.updated_at,
        deleted_at=permission.deleted_at,
    )


def status_read(status: StatusType | None) -> StatusRead | None:
    if status is None:
        return None
    return StatusRead(id=status.id or 0, name=status.name, description=status.description)


def address_read(address: UserAddress) -> AddressRead:
    return AddressRead(
        id=address.id or 0,
        address_type=address.address_type,
        street=address.street,
        city=address.city,
        state=address.state,
        country=address.country,
        postal_code=address.postal_code,
    )


def _role_read(role: Role, permissions: list[PermissionRead]) -> RoleRead:
    return RoleRead(
        id=role.id or 0,
        name=role.name,
        description=role.description,
        app_id=role.app_id,
        created_at=role.created_at,
        updated_at=role.updated_at,
        deleted_at=role.deleted_at,
        permissions=list(permissions),
    )


def _user_read(
    user: User,
    status: StatusType | None,
    addresses: list[UserAddress],
    roles: list[RoleRead],
) -> UserRead:
    # password hash is never copied
    return UserRead(
        id=user.id or 0,
        first_name=user.first_name,
        last_name=user.last_name,
        email=user.email,
        is_validated=user.is_validated,
        created_at=user.created_at,
        updated_at=user.updated_at,
        deleted_at=user.deleted_at,
        status=status_read(status),
        addresses=[address_read(item) for item in addresses] if addresses else [],
        roles=roles,
    )


def convert_roles(session: Session, roles: Sequence[Role], app_id: str | None) -> list[RoleRead]:
    if not roles:
        return []
    grouped = group_permissions_by_role(session, app_id, [role.id for role in roles if role.id is not None])
    return [_role_read(role, grouped.get(role.id or 0, [])) for role in roles]


def _roles_by_user(session: Session, app_id: str, user_ids: list[int]) -> dict[int, list[RoleRead]]:
    statement = (
        select(AppUserRole.user_id, Role)
        .join(Role, col(Role.id) == col(AppUserRole.role_id))
        .where(AppUserRole.app_id == app_id)
        .where(col(AppUserRole.user_id).in_(user_ids))
        .where(col(Role.deleted_at).is_(None))
        .order_by(col(Role.name), col(Role.id))
    )
    rows = list(session.exec(statement).all())
    unique_roles = {role.id: role for _, role in rows}
    role_reads = {read.id: read for read in convert_roles(session, list(unique_roles.values()), app_id)}

    grouped: dict[int, list[RoleRead]] = defaultdict(list)
    for user_id, role in rows:
        grouped[user_id].append(role_reads[role.id or 0])
    return grouped


def convert_users(session: Session, users: Sequence[User], app_id: str | None) -> list[UserRead]:
    """Convert users with a constant number of lookups.

    Statuses, addresses and (when ``app_id`` is set) roles with their
    permissions are each fetched once for the whole batch and grouped in
    memory; no statement is issued per user.
    """
    if not users:
        return []

    user_ids = [user.id for user in users if user.id is not None]
    status_ids = {user.status_id for user in users if user.status_id is not None}

    statuses: dict[int, StatusType] = {}
    if status_ids:
        rows = session.exec(select(StatusType).where(col(StatusType.id).in_(status_ids))).all()
        statuses = {item.id or 0: item for item in rows}

    addresses: dict[int, list[UserAddress]] = defaultdict(list)
    if user_ids:
        rows = session.exec(
            select(UserAddress).where(col(UserAddress.user_id).in_(user_ids)).order_by(col(UserAddress.id))
        ).all()
        for address in rows:
            addresses[address.user_id].append(address)

    roles: dict[int, list[RoleRead]] = {}
    if has_scope(app_id) and user_ids:
        roles = _roles_by_user(session, str(app_id), user_ids)

    return [
        _user_read(
            user,
            statuses.get(user.status_id) if user.status_id is not None else None,
            addresses.get(user.id or 0, []),
            roles.get(user.id or 0, []),
        )
        for user in users
    ]


def deleted_response(response_cls: type[ResponseT], deleted_rows_count: int = 1) -> ResponseT:
    return response_cls(crud_info=ResponseCrudInfo(deleted_rows_count=deleted_rows_count))


class DtoConverter:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def users(self, users: Sequence[User], app_id: str | None = None) -> list[UserRead]:
        with self._session() as session:
            return convert_users(session, users, app_id)

    def user(self, user: User | None, app_id: str | None = None) -> UserRead | None:
        if user is None:
            return None
        return self.users([user], app_id)[0]

    def roles(self, roles: Sequence[Role], app_id: str | None = None) -> list[RoleRead]:
        with self._session() as session:
            return convert_roles(session, roles, app_id)

    def user_response(self, user: User | None, app_id: str | None = None) -> UserResponse:
        read = self.user(user, app_id)
        return UserResponse(items=[read] if read is not None else [])

    def users_response(
        self,
        users: Sequence[User],
        app_id: str | None = None,
        page_info: ResponsePageInfo | None = None,
    ) -> UserResponse:
        return UserResponse(items=self.users(users, app_id), page_info=page_info)

    def role_response(self, role: Role | None, app_id: str | None = None) -> RoleResponse:
        if role is None:
            return RoleResponse(items=[])
        return RoleResponse(items=self.roles([role], app_id))

    def roles_response(self, roles: Sequence[Role], app_id: str | None = None) -> RoleResponse:
        return RoleResponse(items=self.roles(roles, app_id))

    def permission_response(self, permission: Permission | None) -> PermissionResponse:
        return PermissionResponse(items=[permission_read(permission)] if permission is not None else [])

    def permissions_response(self, permissions: Sequence[Permission]) -> PermissionResponse:
        return PermissionResponse(items=[permission_read(item) for item in permissions])

    def app_response(self, app: App | None) -> AppResponse:
        return AppResponse(items=[app_read(app)] if app is not None else [])

    def apps_response(self, apps: Sequence[App]) -> AppResponse:
        return AppResponse(items=[app_read(item) for item in apps])

    def app_users_response(self, links: Sequence[tuple[AppUser, App, User]]) -> AppUserResponse:
        user_reads = {read.id: read for read in self.users([user for _, _, user in links])}
        return AppUserResponse(
            items=[
                AppUserRead(app=app_read(app), user=user_reads[user.id or 0], assigned_date=link.created_at)
                for link, app, user in links
            ]
        )

    def app_user_roles_response(self, links: Sequence[tuple[AppUserRole, User, Role]]) -> AppUserRoleResponse:
        if not links:
            return AppUserRoleResponse(items=[])
        app_id = links[0][0].app_id
        with self._session() as session:
            user_reads = {read.id: read for read in convert_users(session, [user for _, user, _ in links], None)}
            role_reads = {read.id: read for read in convert_roles(session, [role for _, _, role in links], app_id)}
        return AppUserRoleResponse(
            items=[
                AppUserRoleRead(
                    app_id=link.app_id,
                    user=user_reads[user.id or 0],
                    role=role_reads[role.id or 0],
                    assigned_date=link.created_at,
                )
                for link, user, role in links
            ]
        )

    def role_permissions_response(
        self,
        links: Sequence[tuple[RolePermission, Role, Permission]],
    ) -> RolePermissionResponse:
        return RolePermissionResponse(
            items=[
                RolePermissionRead(
                    role=_role_read(role, []),
                    permission=permission_read(permission),
                    assigned_date=link.created_at,
                )
                for link, role, permission in links
            ]
        )
