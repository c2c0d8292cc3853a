from __future__ import annotations

from sqlmodel import Session, col, select

from usermgmt.domain.models import App, AppUser, AppUserRole, Permission, Role, RolePermission, User
from usermgmt.infra.db import get_engine
from usermgmt.services.errors import (
    IntegrityConflictError,
    NotFoundError,
    ValidationFailedError,
    commit_or_conflict,
)


class AssignmentService:
    """Manage the composite-keyed join rows between apps, users, roles and permissions.

    Nothing here cascades: an entity stays undeletable while a join row still
    references it, so every grant has to be removed explicitly.
    """

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _app(self, session: Session, app_id: str) -> App:
        app = session.get(App, app_id)
        if app is None or app.deleted_at is not None:
            raise NotFoundError("App", app_id)
        return app

    def _user(self, session: Session, user_id: int) -> User:
        user = session.get(User, user_id)
        if user is None or user.deleted_at is not None:
            raise NotFoundError("User", user_id)
        return user

    def _role(self, session: Session, role_id: int) -> Role:
        role = session.get(Role, role_id)
        if role is None or role.deleted_at is not None:
            raise NotFoundError("Role", role_id)
        return role

    def _permission(self, session: Session, permission_id: int) -> Permission:
        permission = session.get(Permission, permission_id)
        if permission is None or permission.deleted_at is not None:
            raise NotFoundError("Permission", permission_id)
        return permission

    def assign_app_user(self, app_id: str, user_id: int) -> tuple[AppUser, App, User]:
        with self._session() as session:
            app = self._app(session, app_id)
            user = self._user(session, user_id)
            link = AppUser(app_id=app_id, user_id=user_id)
            session.add(link)
            commit_or_conflict(session, f"User [{user_id}] is already assigned to App [{app_id}]")
            session.refresh(link)
            return link, app, user

    def list_app_users(self, app_id: str | None = None) -> list[tuple[AppUser, App, User]]:
        with self._session() as session:
            statement = (
                select(AppUser, App, User)
                .join(App, col(App.id) == col(AppUser.app_id))
                .join(User, col(User.id) == col(AppUser.user_id))
                .order_by(col(App.name), col(User.email))
            )
            if app_id:
                statement = statement.where(AppUser.app_id == app_id)
            return [(link, app, user) for link, app, user in session.exec(statement).all()]

    def unassign_app_user(self, app_id: str, user_id: int) -> None:
        with self._session() as session:
            link = session.get(AppUser, (app_id, user_id))
            if link is None:
                raise NotFoundError("App User", f"{app_id}, {user_id}")
            held = select(AppUserRole).where(AppUserRole.app_id == app_id).where(AppUserRole.user_id == user_id)
            if session.exec(held).first() is not None:
                raise IntegrityConflictError(f"User [{user_id}] still holds roles in App [{app_id}]")
            session.delete(link)
            session.commit()

    def assign_user_role(self, app_id: str, user_id: int, role_id: int) -> tuple[AppUserRole, User, Role]:
        with self._session() as session:
            if session.get(AppUser, (app_id, user_id)) is None:
                raise NotFoundError("App User", f"{app_id}, {user_id}")
            user = self._user(session, user_id)
            role = self._role(session, role_id)
            if role.app_id is not None and role.app_id != app_id:
                raise ValidationFailedError(f"Role [{role_id}] does not belong to App [{app_id}]")
            link = AppUserRole(app_id=app_id, user_id=user_id, role_id=role_id)
            session.add(link)
            commit_or_conflict(session, f"Role [{role_id}] is already assigned to User [{user_id}]")
            session.refresh(link)
            return link, user, role

    def list_user_roles(self, app_id: str, user_id: int) -> list[tuple[AppUserRole, User, Role]]:
        with self._session() as session:
            statement = (
                select(AppUserRole, User, Role)
                .join(User, col(User.id) == col(AppUserRole.user_id))
                .join(Role, col(Role.id) == col(AppUserRole.role_id))
                .where(AppUserRole.app_id == app_id)
                .where(AppUserRole.user_id == user_id)
                .order_by(col(Role.name))
            )
            return [(link, user, role) for link, user, role in session.exec(statement).all()]

    def unassign_user_role(self, app_id: str, user_id: int, role_id: int) -> None:
        with self._session() as session:
            link = session.get(AppUserRole, (app_id, user_id, role_id))
            if link is None:
                raise NotFoundError("App User Role", f"{app_id}, {user_id}, {role_id}")
            session.delete(link)
            session.commit()

    def assign_role_permission(self, role_id: int, permission_id: int) -> tuple[RolePermission, Role, Permission]:
        with self._session() as session:
            role = self._role(session, role_id)
            permission = self._permission(session, permission_id)
            if role.app_id is not None and role.app_id != permission.app_id:
                raise ValidationFailedError(
                    f"Permission [{permission_id}] of App [{permission.app_id}] "
                    f"cannot be granted to Role [{role_id}] of App [{role.app_id}]"
                )
            link = RolePermission(role_id=role_id, permission_id=permission_id)
            session.add(link)
            commit_or_conflict(session, f"Permission [{permission_id}] is already assigned to Role [{role_id}]")
            session.refresh(link)
            return link, role, permission

    def list_role_permissions(
        self,
        role_id: int,
        app_id: str | None = None,
    ) -> list[tuple[RolePermission, Role, Permission]]:
        with self._session() as session:
            statement = (
                select(RolePermission, Role, Permission)
                .join(Role, col(Role.id) == col(RolePermission.role_id))
                .join(Permission, col(Permission.id) == col(RolePermission.permission_id))
                .where(RolePermission.role_id == role_id)
                .order_by(col(Permission.name))
            )
            if app_id:
                statement = statement.where(Permission.app_id == app_id)
            return [(link, role, permission) for link, role, permission in session.exec(statement).all()]

    def unassign_role_permission(self, role_id: int, permission_id: int) -> None:
        with self._session() as session:
            link = session.get(RolePermission, (role_id, permission_id))
            if link is None:
                raise NotFoundError("Role Permission", f"{role_id}, {permission_id}")
            session.delete(link)
            session.commit()
