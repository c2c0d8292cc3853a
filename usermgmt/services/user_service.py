from __future__ import annotations

import hashlib
import os

from sqlalchemy import func
from sqlmodel import Session, col, select

from usermgmt.domain.models import (
    AddressPayload,
    App,
    AppUser,
    AppUserRole,
    Role,
    StatusType,
    User,
    UserAddress,
    UserCreate,
    UserStatus,
    UserUpdate,
    UserUpdateEmailRequest,
    now_utc,
)
from usermgmt.domain.permissions import ROLE_GUEST, ROLE_SUPERUSER
from usermgmt.infra.db import get_engine
from usermgmt.services.errors import (
    IntegrityConflictError,
    MissingError,
    NotFoundError,
    ValidationFailedError,
    commit_or_conflict,
)
from usermgmt.services.role_service import ensure_platform_roles

PASSWORD_SALT = os.getenv("PASSWORD_SALT", "usermgmt-dev-salt")

STATUS_DESCRIPTIONS: dict[UserStatus, str] = {
    UserStatus.PENDING: "created, waiting for validation",
    UserStatus.ACTIVE: "validated and allowed to log in",
    UserStatus.INACTIVE: "disabled by an administrator",
    UserStatus.LOCKED: "locked out",
}


def hash_password(raw_password: str) -> str:
    return hashlib.sha256(f"{PASSWORD_SALT}:{raw_password}".encode()).hexdigest()


def verify_password(raw_password: str, password_hash: str) -> bool:
    return hash_password(raw_password) == password_hash


def ensure_status_types(session: Session) -> dict[str, StatusType]:
    by_name = {item.name: item for item in session.exec(select(StatusType)).all()}
    created: list[StatusType] = []
    for status, description in STATUS_DESCRIPTIONS.items():
        if status.value in by_name:
            continue
        item = StatusType(name=status.value, description=description)
        session.add(item)
        created.append(item)
    if created:
        session.commit()
        for item in created:
            session.refresh(item)
            by_name[item.name] = item
    return by_name


class UserService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get(self, session: Session, user_id: int, include_deleted: bool = False) -> User:
        user = session.get(User, user_id)
        if user is None or (user.deleted_at is not None and not include_deleted):
            raise NotFoundError("User", user_id)
        return user

    def _get_by_email(self, session: Session, email: str, include_deleted: bool = False) -> User:
        statement = select(User).where(func.lower(User.email) == email.strip().lower())
        user = session.exec(statement).first()
        if user is None or (user.deleted_at is not None and not include_deleted):
            raise NotFoundError("User", email)
        return user

    def _apply_addresses(self, session: Session, user_id: int, addresses: list[AddressPayload]) -> None:
        for payload in addresses:
            if payload.id is None:
                address = UserAddress(user_id=user_id)
            else:
                address = session.get(UserAddress, payload.id)
                if address is None or address.user_id != user_id:
                    raise NotFoundError("Address", payload.id)
            address.address_type = payload.address_type
            address.street = payload.street
            address.city = payload.city
            address.state = payload.state
            address.country = payload.country
            address.postal_code = payload.postal_code
            session.add(address)

    def create_user(self, payload: UserCreate, app_id: str | None = None) -> User:
        """Create a user, optionally assigning it to ``app_id`` with the guest role."""
        if not payload.password:
            raise MissingError("password", "User")
        with self._session() as session:
            statuses = ensure_status_types(session)
            platform_roles = ensure_platform_roles(session)
            if app_id is not None:
                app = session.get(App, app_id)
                if app is None or app.deleted_at is not None:
                    raise NotFoundError("App", app_id)
            email = str(payload.email).lower()
            if session.exec(select(User.id).where(User.email == email)).first() is not None:
                raise IntegrityConflictError(f"User [{email}] already exists")

            user = User(
                first_name=payload.first_name,
                last_name=payload.last_name,
                email=email,
                password_hash=hash_password(payload.password),
                status_id=statuses[UserStatus.PENDING.value].id,
                is_validated=False,
            )
            session.add(user)
            session.flush()
            user_id = user.id or 0
            self._apply_addresses(session, user_id, payload.addresses)
            if app_id is not None:
                guest = platform_roles[ROLE_GUEST]
                session.add(AppUser(app_id=app_id, user_id=user_id))
                session.add(AppUserRole(app_id=app_id, user_id=user_id, role_id=guest.id or 0))
            commit_or_conflict(session, f"User [{email}] already exists")
            session.refresh(user)
            return user

    def list_users(
        self,
        app_id: str | None = None,
        include_deleted: bool = False,
        page_number: int = 1,
        per_page: int = 100,
    ) -> tuple[list[User], int]:
        with self._session() as session:
            statement = select(User)
            count_statement = select(func.count()).select_from(User)
            if app_id:
                statement = statement.join(AppUser, col(AppUser.user_id) == col(User.id)).where(
                    AppUser.app_id == app_id
                )
                count_statement = count_statement.join(AppUser, col(AppUser.user_id) == col(User.id)).where(
                    AppUser.app_id == app_id
                )
            if not include_deleted:
                statement = statement.where(col(User.deleted_at).is_(None))
                count_statement = count_statement.where(col(User.deleted_at).is_(None))
            total = session.exec(count_statement).one()
            statement = (
                statement.order_by(col(User.last_name), col(User.first_name), col(User.id))
                .offset((page_number - 1) * per_page)
                .limit(per_page)
            )
            return list(session.exec(statement).all()), int(total)

    def get_user(self, user_id: int, include_deleted: bool = False) -> User:
        with self._session() as session:
            return self._get(session, user_id, include_deleted)

    def get_user_by_email(self, email: str) -> User:
        with self._session() as session:
            return self._get_by_email(session, email)

    def app_ids(self, user_id: int) -> list[str]:
        with self._session() as session:
            statement = select(AppUser.app_id).where(AppUser.user_id == user_id).order_by(col(AppUser.app_id))
            return list(session.exec(statement).all())

    def holds_superuser(self, user_id: int) -> bool:
        with self._session() as session:
            statement = (
                select(AppUserRole.role_id)
                .join(Role, col(Role.id) == col(AppUserRole.role_id))
                .where(AppUserRole.user_id == user_id)
                .where(col(Role.app_id).is_(None))
                .where(Role.name == ROLE_SUPERUSER)
            )
            return session.exec(statement).first() is not None

    def update_user(self, user_id: int, payload: UserUpdate) -> User:
        with self._session() as session:
            user = self._get(session, user_id)
            if payload.first_name is not None:
                user.first_name = payload.first_name
            if payload.last_name is not None:
                user.last_name = payload.last_name
            if payload.status is not None:
                user.status_id = ensure_status_types(session)[payload.status.value].id
            self._apply_addresses(session, user_id, payload.addresses)
            user.updated_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def update_email(self, user_id: int, payload: UserUpdateEmailRequest) -> User:
        """Change the email and mark the account for a new validation round."""
        with self._session() as session:
            user = self._get(session, user_id)
            if user.email != str(payload.old_email).lower():
                raise ValidationFailedError(f"[old_email] does not match User [{user_id}]")
            user.email = str(payload.new_email).lower()
            user.is_validated = False
            user.status_id = ensure_status_types(session)[UserStatus.PENDING.value].id
            user.updated_at = now_utc()
            session.add(user)
            commit_or_conflict(session, f"User [{user.email}] already exists")
            session.refresh(user)
            return user

    def update_password(self, user_id: int, password: str | None) -> User:
        if not password:
            raise MissingError("password", "User")
        with self._session() as session:
            user = self._get(session, user_id)
            user.password_hash = hash_password(password)
            user.updated_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def delete_address(self, user_id: int, address_id: int) -> User:
        with self._session() as session:
            user = self._get(session, user_id)
            address = session.get(UserAddress, address_id)
            if address is None or address.user_id != user_id:
                raise NotFoundError("Address", address_id)
            session.delete(address)
            user.updated_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def soft_delete_user(self, user_id: int) -> User:
        with self._session() as session:
            user = self._get(session, user_id)
            user.deleted_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def hard_delete_user(self, user_id: int) -> None:
        with self._session() as session:
            user = self._get(session, user_id, include_deleted=True)
            session.delete(user)
            commit_or_conflict(session, f"User [{user_id}] is still assigned, unassign it first")

    def restore_user(self, user_id: int) -> User:
        with self._session() as session:
            user = self._get(session, user_id, include_deleted=True)
            user.deleted_at = None
            user.updated_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
            return user
