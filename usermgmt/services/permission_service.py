from __future__ import annotations

from sqlmodel import Session, col, select

from usermgmt.domain.models import App, Permission, PermissionCreate, PermissionUpdate, now_utc
from usermgmt.infra.db import get_engine
from usermgmt.services.errors import NotFoundError, commit_or_conflict


class PermissionService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get(self, session: Session, permission_id: int, include_deleted: bool = False) -> Permission:
        permission = session.get(Permission, permission_id)
        if permission is None or (permission.deleted_at is not None and not include_deleted):
            raise NotFoundError("Permission", permission_id)
        return permission

    def create_permission(self, payload: PermissionCreate) -> Permission:
        with self._session() as session:
            if session.get(App, payload.app_id) is None:
                raise NotFoundError("App", payload.app_id)
            permission = Permission(
                name=payload.name.strip().upper(),
                description=payload.description,
                app_id=payload.app_id,
            )
            session.add(permission)
            commit_or_conflict(session, f"Permission [{permission.name}] already exists in [{payload.app_id}]")
            session.refresh(permission)
            return permission

    def list_permissions(self, app_id: str | None = None, include_deleted: bool = False) -> list[Permission]:
        with self._session() as session:
            statement = select(Permission).order_by(col(Permission.name), col(Permission.id))
            if app_id:
                statement = statement.where(Permission.app_id == app_id)
            if not include_deleted:
                statement = statement.where(col(Permission.deleted_at).is_(None))
            return list(session.exec(statement).all())

    def get_permission(self, permission_id: int, include_deleted: bool = False) -> Permission:
        with self._session() as session:
            return self._get(session, permission_id, include_deleted)

    def update_permission(self, permission_id: int, payload: PermissionUpdate) -> Permission:
        with self._session() as session:
            permission = self._get(session, permission_id)
            if payload.name is not None:
                permission.name = payload.name.strip().upper()
            if payload.description is not None:
                permission.description = payload.description
            permission.updated_at = now_utc()
            session.add(permission)
            commit_or_conflict(session, f"Permission [{permission.name}] already exists in [{permission.app_id}]")
            session.refresh(permission)
            return permission

    def soft_delete_permission(self, permission_id: int) -> Permission:
        with self._session() as session:
            permission = self._get(session, permission_id)
            permission.deleted_at = now_utc()
            session.add(permission)
            session.commit()
            session.refresh(permission)
            return permission

    def hard_delete_permission(self, permission_id: int) -> None:
        with self._session() as session:
            permission = self._get(session, permission_id, include_deleted=True)
            session.delete(permission)
            commit_or_conflict(session, f"Permission [{permission_id}] is still assigned, unassign it first")

    def restore_permission(self, permission_id: int) -> Permission:
        with self._session() as session:
            permission = self._get(session, permission_id, include_deleted=True)
            permission.deleted_at = None
            permission.updated_at = now_utc()
            session.add(permission)
            session.commit()
            session.refresh(permission)
            return permission
