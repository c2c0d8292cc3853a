from __future__ import annotations

import logging
import smtplib
from typing import Any
from urllib.parse import urlencode

import jwt
from sqlmodel import Session, col, select

from usermgmt.domain.models import (
    App,
    AppUser,
    AppUserRole,
    BootstrapSuperuserRequest,
    Role,
    StatusType,
    User,
    UserCreate,
    UserLoginRequest,
    UserStatus,
    UserToken,
    UserUpdateEmailRequest,
    now_utc,
)
from usermgmt.domain.permissions import ROLE_SUPERUSER
from usermgmt.infra.auth import (
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH,
    TOKEN_TYPE_RESET,
    TOKEN_TYPE_VALIDATE,
    decode_token,
    encode_token,
)
from usermgmt.infra.db import get_engine
from usermgmt.infra.email import email_sender
from usermgmt.services.errors import (
    IntegrityConflictError,
    MissingError,
    NotFoundError,
    UnauthenticatedError,
    UserNotActiveError,
    commit_or_conflict,
)
from usermgmt.services.permission_aggregator import group_permissions_by_role, merge_permissions
from usermgmt.services.role_service import ensure_platform_roles
from usermgmt.services.user_service import UserService, ensure_status_types, hash_password, verify_password

logger = logging.getLogger(__name__)


def _link(base_url: str, app_id: str, action: str, param: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/api/v1/na/users/{app_id}/{action}?{urlencode({param: token})}"


class AuthService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _app(self, session: Session, app_id: str) -> App:
        app = session.get(App, app_id)
        if app is None or app.deleted_at is not None:
            raise NotFoundError("App", app_id)
        return app

    def _app_user(self, session: Session, app_id: str, email: str) -> User:
        self._app(session, app_id)
        statement = (
            select(User)
            .join(AppUser, col(AppUser.user_id) == col(User.id))
            .where(AppUser.app_id == app_id)
            .where(User.email == email.strip().lower())
            .where(col(User.deleted_at).is_(None))
        )
        user = session.exec(statement).first()
        if user is None:
            raise NotFoundError("App User", f"{app_id}, {email}")
        return user

    def _check_active(self, session: Session, user: User) -> None:
        status = session.get(StatusType, user.status_id) if user.status_id is not None else None
        if not user.is_validated or status is None or status.name != UserStatus.ACTIVE.value:
            raise UserNotActiveError()

    def _grants(self, session: Session, app_id: str, user_id: int) -> tuple[list[str], list[str]]:
        statement = (
            select(Role)
            .join(AppUserRole, col(AppUserRole.role_id) == col(Role.id))
            .where(AppUserRole.app_id == app_id)
            .where(AppUserRole.user_id == user_id)
            .where(col(Role.deleted_at).is_(None))
            .order_by(col(Role.name))
        )
        roles = list(session.exec(statement).all())
        grouped = group_permissions_by_role(session, app_id, [role.id or 0 for role in roles])
        return [role.name for role in roles], [item.name for item in merge_permissions(grouped)]

    def _issue_tokens(self, session: Session, app_id: str, user: User) -> tuple[str, str]:
        roles, permissions = self._grants(session, app_id, user.id or 0)
        claims: dict[str, Any] = {
            "user_id": user.id or 0,
            "email": user.email,
            "app_id": app_id,
            "roles": roles,
            "permissions": permissions,
        }
        return (
            encode_token(token_type=TOKEN_TYPE_ACCESS, **claims),
            encode_token(token_type=TOKEN_TYPE_REFRESH, **claims),
        )

    def _decode_link(self, token: str, token_type: str, app_id: str) -> dict[str, Any]:
        try:
            claims = decode_token(token, token_type)
        except (jwt.PyJWTError, ValueError) as exc:
            raise UnauthenticatedError(f"Invalid {token_type} token") from exc
        if claims.get("app_id") != app_id:
            raise UnauthenticatedError(f"Invalid {token_type} token for App [{app_id}]")
        return claims

    def _send_link(self, app: App, user: User, base_url: str, token_type: str) -> None:
        token = encode_token(user_id=user.id or 0, email=user.email, app_id=app.id, token_type=token_type)
        try:
            if token_type == TOKEN_TYPE_VALIDATE:
                link = _link(base_url, app.id, "validate-exit", "to_validate", token)
                email_sender.send_validation_email(app_name=app.name, recipient=user.email, link=link)
            else:
                link = _link(base_url, app.id, "reset-exit", "to_reset", token)
                email_sender.send_reset_email(app_name=app.name, recipient=user.email, link=link)
        except (smtplib.SMTPException, OSError):
            # the user can ask for a new link through validate-init or reset-init
            logger.warning("could not send %s email to [%s]", token_type, user.email, exc_info=True)

    def bootstrap_superuser(self, payload: BootstrapSuperuserRequest) -> User:
        with self._session() as session:
            statuses = ensure_status_types(session)
            superuser = ensure_platform_roles(session)[ROLE_SUPERUSER]
            if session.exec(select(AppUserRole).where(AppUserRole.role_id == superuser.id)).first() is not None:
                raise IntegrityConflictError("Superuser already initialized")

            app = session.get(App, payload.app_id)
            if app is None:
                app = App(id=payload.app_id, name=payload.app_name)
                session.add(app)
            user = User(
                first_name=payload.first_name,
                last_name=payload.last_name,
                email=str(payload.email).lower(),
                password_hash=hash_password(payload.password),
                status_id=statuses[UserStatus.ACTIVE.value].id,
                is_validated=True,
            )
            session.add(user)
            commit_or_conflict(session, f"User [{user.email}] already exists")
            session.refresh(user)

            session.add(AppUser(app_id=payload.app_id, user_id=user.id or 0))
            session.add(AppUserRole(app_id=payload.app_id, user_id=user.id or 0, role_id=superuser.id or 0))
            session.commit()
            logger.info("bootstrapped superuser [%s] for app [%s]", user.email, payload.app_id)
            return user

    def create_app_user(self, app_id: str, payload: UserCreate, base_url: str) -> User:
        user = UserService().create_user(payload, app_id)
        with self._session() as session:
            app = self._app(session, app_id)
        self._send_link(app, user, base_url, TOKEN_TYPE_VALIDATE)
        return user

    def login(self, app_id: str, payload: UserLoginRequest) -> tuple[str, str, User]:
        with self._session() as session:
            user = self._app_user(session, app_id, str(payload.email))
            if not verify_password(payload.password, user.password_hash):
                raise UnauthenticatedError("Invalid credentials")
            self._check_active(session, user)
            access_token, refresh_token = self._issue_tokens(session, app_id, user)
            session.add(UserToken(user_id=user.id or 0, access_token=access_token, refresh_token=refresh_token))
            session.commit()
            return access_token, refresh_token, user

    def refresh(self, app_id: str, refresh_token: str | None) -> tuple[str, str, User]:
        if not refresh_token:
            raise MissingError("refresh_token", "Token")
        with self._session() as session:
            statement = select(UserToken).where(UserToken.refresh_token == refresh_token)
            row = session.exec(statement).first()
            if row is None or row.deleted_at is not None:
                raise NotFoundError("User Token", "refresh token")
            self._decode_link(refresh_token, TOKEN_TYPE_REFRESH, app_id)
            user = session.get(User, row.user_id)
            if user is None or user.deleted_at is not None:
                raise NotFoundError("User", row.user_id)
            self._check_active(session, user)
            row.access_token, row.refresh_token = self._issue_tokens(session, app_id, user)
            row.updated_at = now_utc()
            session.add(row)
            session.commit()
            return row.access_token, row.refresh_token, user

    def logout(self, access_token: str | None) -> UserToken:
        if not access_token:
            raise MissingError("access_token", "Token")
        with self._session() as session:
            statement = select(UserToken).where(UserToken.access_token == access_token)
            row = session.exec(statement).first()
            if row is None or row.deleted_at is not None:
                raise NotFoundError("User Token", "access token")
            row.deleted_at = now_utc()
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def is_token_revoked(self, access_token: str) -> bool:
        with self._session() as session:
            statement = (
                select(UserToken.id)
                .where(UserToken.access_token == access_token)
                .where(col(UserToken.deleted_at).is_not(None))
            )
            return session.exec(statement).first() is not None

    def reset_password(self, app_id: str, payload: UserLoginRequest) -> User:
        with self._session() as session:
            user = self._app_user(session, app_id, str(payload.email))
            user.password_hash = hash_password(payload.password)
            user.updated_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def validate_init(self, app_id: str, email: str, base_url: str) -> User:
        with self._session() as session:
            app = self._app(session, app_id)
            user = self._app_user(session, app_id, email)
        self._send_link(app, user, base_url, TOKEN_TYPE_VALIDATE)
        return user

    def change_email(self, app_id: str, user_id: int, payload: UserUpdateEmailRequest, base_url: str) -> User:
        with self._session() as session:
            app = self._app(session, app_id)
            member = self._app_user(session, app_id, str(payload.old_email))
        if member.id != user_id:
            raise NotFoundError("App User", f"{app_id}, {payload.old_email}")
        user = UserService().update_email(user_id, payload)
        self._send_link(app, user, base_url, TOKEN_TYPE_VALIDATE)
        return user

    def reset_init(self, app_id: str, email: str, base_url: str) -> User:
        with self._session() as session:
            app = self._app(session, app_id)
            user = self._app_user(session, app_id, email)
        self._send_link(app, user, base_url, TOKEN_TYPE_RESET)
        return user

    def validate_exit(self, app_id: str, token: str) -> User:
        claims = self._decode_link(token, TOKEN_TYPE_VALIDATE, app_id)
        with self._session() as session:
            user = self._app_user(session, app_id, str(claims.get("email", "")))
            user.is_validated = True
            user.status_id = ensure_status_types(session)[UserStatus.ACTIVE.value].id
            user.updated_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def reset_exit(self, app_id: str, token: str) -> User:
        claims = self._decode_link(token, TOKEN_TYPE_RESET, app_id)
        with self._session() as session:
            return self._app_user(session, app_id, str(claims.get("email", "")))

    def redirect_url(self, app_id: str) -> str:
        with self._session() as session:
            app = session.get(App, app_id)
            if app is None or not app.redirect_url:
                return ""
            return app.redirect_url
