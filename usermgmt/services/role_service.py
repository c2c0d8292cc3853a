from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from usermgmt.domain.models import App, Role, RoleCreate, RoleUpdate, now_utc
from usermgmt.domain.permissions import ROLE_GUEST, ROLE_SUPERUSER
from usermgmt.infra.db import get_engine
from usermgmt.services.errors import NotFoundError, ValidationFailedError, commit_or_conflict

PLATFORM_ROLES: dict[str, str] = {
    ROLE_SUPERUSER: "platform superuser, bypasses every permission check",
    ROLE_GUEST: "default role of a newly created user",
}


def ensure_platform_roles(session: Session) -> dict[str, Role]:
    statement = select(Role).where(col(Role.app_id).is_(None)).where(col(Role.name).in_(list(PLATFORM_ROLES)))
    by_name = {item.name: item for item in session.exec(statement).all()}
    created: list[Role] = []
    for name, description in PLATFORM_ROLES.items():
        if name in by_name:
            continue
        role = Role(name=name, description=description, app_id=None)
        session.add(role)
        created.append(role)
    if not created:
        return by_name
    try:
        session.commit()
    except IntegrityError:
        # another request inserted them first, uq_roles_platform_name keeps one row per name
        session.rollback()
        return {item.name: item for item in session.exec(statement).all()}
    for role in created:
        session.refresh(role)
        by_name[role.name] = role
    return by_name


class RoleService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get(self, session: Session, role_id: int, include_deleted: bool = False) -> Role:
        role = session.get(Role, role_id)
        if role is None or (role.deleted_at is not None and not include_deleted):
            raise NotFoundError("Role", role_id)
        return role

    def create_role(self, payload: RoleCreate) -> Role:
        app_id = payload.app_id.strip() if payload.app_id else None
        with self._session() as session:
            if app_id is not None and session.get(App, app_id) is None:
                raise NotFoundError("App", app_id)
            if payload.name.strip().upper() in PLATFORM_ROLES:
                raise ValidationFailedError(f"Role [{payload.name}] is reserved")
            role = Role(name=payload.name, description=payload.description, app_id=app_id)
            session.add(role)
            commit_or_conflict(session, f"Role [{payload.name}] already exists")
            session.refresh(role)
            return role

    def list_roles(self, app_id: str | None = None, include_deleted: bool = False) -> list[Role]:
        with self._session() as session:
            ensure_platform_roles(session)
            statement = select(Role).order_by(col(Role.name), col(Role.id))
            if app_id:
                statement = statement.where((col(Role.app_id) == app_id) | col(Role.app_id).is_(None))
            if not include_deleted:
                statement = statement.where(col(Role.deleted_at).is_(None))
            return list(session.exec(statement).all())

    def get_role(self, role_id: int, include_deleted: bool = False) -> Role:
        with self._session() as session:
            return self._get(session, role_id, include_deleted)

    def update_role(self, role_id: int, payload: RoleUpdate) -> Role:
        with self._session() as session:
            role = self._get(session, role_id)
            if payload.name is not None:
                if payload.name.strip().upper() in PLATFORM_ROLES or role.name in PLATFORM_ROLES:
                    raise ValidationFailedError(f"Role [{role.name}] cannot be renamed to [{payload.name}]")
                role.name = payload.name
            if payload.description is not None:
                role.description = payload.description
            role.updated_at = now_utc()
            session.add(role)
            commit_or_conflict(session, f"Role [{role.name}] already exists")
            session.refresh(role)
            return role

    def soft_delete_role(self, role_id: int) -> Role:
        with self._session() as session:
            role = self._get(session, role_id)
            role.deleted_at = now_utc()
            session.add(role)
            session.commit()
            session.refresh(role)
            return role

    def hard_delete_role(self, role_id: int) -> None:
        with self._session() as session:
            role = self._get(session, role_id, include_deleted=True)
            session.delete(role)
            commit_or_conflict(session, f"Role [{role_id}] is still assigned, unassign it first")

    def restore_role(self, role_id: int) -> Role:
        with self._session() as session:
            role = self._get(session, role_id, include_deleted=True)
            role.deleted_at = None
            role.updated_at = now_utc()
            session.add(role)
            session.commit()
            session.refresh(role)
            return role
