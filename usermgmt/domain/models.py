from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, EmailStr
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


class UserStatus(StrEnum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    LOCKED = "LOCKED"


class AddressType(StrEnum):
    MAILING = "MAILING"
    SHIPPING = "SHIPPING"
    BILLING = "BILLING"
    HOME = "HOME"


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    entity_type: str = Field(index=True)
    entity_id: str | None = Field(default=None, index=True)
    app_id: str | None = Field(default=None, index=True)
    actor_id: str | None = Field(default=None, index=True)
    actor_email: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class App(SQLModel, table=True):
    __tablename__ = "apps"

    id: str = Field(primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    redirect_url: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)
    deleted_at: datetime | None = Field(default=None, index=True)


class StatusType(SQLModel, table=True):
    __tablename__ = "status_types"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    first_name: str
    last_name: str
    email: str = Field(index=True, unique=True)
    password_hash: str
    status_id: int | None = Field(default=None, foreign_key="status_types.id", index=True)
    is_validated: bool = Field(default=False)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)
    deleted_at: datetime | None = Field(default=None, index=True)


class UserAddress(SQLModel, table=True):
    __tablename__ = "user_addresses"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        Index("ix_user_addresses_user_id", "user_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: int
    address_type: AddressType = Field(default=AddressType.MAILING)
    street: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    postal_code: str | None = None


class Role(SQLModel, table=True):
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("app_id", "name", name="uq_roles_app_name"),
        ForeignKeyConstraint(["app_id"], ["apps.id"], ondelete="RESTRICT"),
        Index("ix_roles_app_id", "app_id"),
        # platform roles have a NULL app_id, which uq_roles_app_name does not cover
        Index(
            "uq_roles_platform_name",
            "name",
            unique=True,
            sqlite_where=text("app_id IS NULL"),
            postgresql_where=text("app_id IS NULL"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: str | None = None
    # NULL app_id means the role is platform scoped
    app_id: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)
    deleted_at: datetime | None = Field(default=None, index=True)


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("app_id", "name", name="uq_permissions_app_name"),
        ForeignKeyConstraint(["app_id"], ["apps.id"], ondelete="RESTRICT"),
        Index("ix_permissions_app_id", "app_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: str | None = None
    app_id: str
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)
    deleted_at: datetime | None = Field(default=None, index=True)


class AppUser(SQLModel, table=True):
    __tablename__ = "app_users"
    __table_args__ = (
        ForeignKeyConstraint(["app_id"], ["apps.id"], ondelete="RESTRICT"),
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        Index("ix_app_users_user_id", "user_id"),
    )

    app_id: str = Field(primary_key=True)
    user_id: int = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class RolePermission(SQLModel, table=True):
    __tablename__ = "role_permissions"
    __table_args__ = (
        ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="RESTRICT"),
        ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="RESTRICT"),
        Index("ix_role_permissions_permission_id", "permission_id"),
    )

    role_id: int = Field(primary_key=True)
    permission_id: int = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class AppUserRole(SQLModel, table=True):
    __tablename__ = "app_user_roles"
    __table_args__ = (
        ForeignKeyConstraint(["app_id"], ["apps.id"], ondelete="RESTRICT"),
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="RESTRICT"),
        Index("ix_app_user_roles_app_user", "app_id", "user_id"),
        Index("ix_app_user_roles_role_id", "role_id"),
    )

    app_id: str = Field(primary_key=True)
    user_id: int = Field(primary_key=True)
    role_id: int = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class UserToken(SQLModel, table=True):
    __tablename__ = "user_tokens"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        Index("ix_user_tokens_user_id", "user_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: int
    access_token: str = Field(unique=True)
    refresh_token: str = Field(unique=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)
    deleted_at: datetime | None = Field(default=None, index=True)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ResponseCrudInfo(BaseModel):
    inserted_rows_count: int = 0
    updated_rows_count: int = 0
    deleted_rows_count: int = 0
    restored_rows_count: int = 0


class ResponsePageInfo(BaseModel):
    total_items: int = 0
    total_pages: int = 0
    page_number: int = 0
    per_page: int = 0


class ResponseStatusInfo(BaseModel):
    err_msg: str | None = None


class ResponseMetadata(BaseModel):
    crud_info: ResponseCrudInfo | None = None
    page_info: ResponsePageInfo | None = None
    status_info: ResponseStatusInfo | None = None


class AppCreate(BaseModel):
    id: str = PydanticField(min_length=1)
    name: str = PydanticField(min_length=1)
    description: str | None = None
    redirect_url: str | None = None


class AppUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    redirect_url: str | None = None


class AppRead(ORMReadModel):
    id: str
    name: str
    description: str | None = None
    redirect_url: str | None = None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None


class AppResponse(ResponseMetadata):
    items: list[AppRead] = PydanticField(default_factory=list)


class StatusRead(ORMReadModel):
    id: int
    name: str
    description: str | None = None


class AddressPayload(BaseModel):
    id: int | None = None
    address_type: AddressType = AddressType.MAILING
    street: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    postal_code: str | None = None


class AddressRead(ORMReadModel):
    id: int
    address_type: AddressType
    street: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    postal_code: str | None = None


class PermissionCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    description: str | None = None
    app_id: str = PydanticField(min_length=1)


class PermissionUpdate(BaseModel):
    name: str | None = None
    description: str | None = None


class PermissionRead(ORMReadModel):
    id: int
    name: str
    description: str | None = None
    app_id: str
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None


class PermissionResponse(ResponseMetadata):
    items: list[PermissionRead] = PydanticField(default_factory=list)


class RoleCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    description: str | None = None
    app_id: str | None = None


class RoleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None


class RoleRead(ORMReadModel):
    id: int
    name: str
    description: str | None = None
    app_id: str | None = None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None
    permissions: list[PermissionRead] = PydanticField(default_factory=list)


class RoleResponse(ResponseMetadata):
    items: list[RoleRead] = PydanticField(default_factory=list)


class UserCreate(BaseModel):
    first_name: str = PydanticField(min_length=1)
    last_name: str = PydanticField(min_length=1)
    email: EmailStr
    password: str | None = None
    addresses: list[AddressPayload] = PydanticField(default_factory=list)


class UserUpdate(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    status: UserStatus | None = None
    addresses: list[AddressPayload] = PydanticField(default_factory=list)


class UserUpdateEmailRequest(BaseModel):
    old_email: EmailStr
    new_email: EmailStr


class UserPasswordUpdate(BaseModel):
    password: str | None = None


class UserLoginRequest(BaseModel):
    email: EmailStr
    password: str = PydanticField(min_length=1)


class UserRead(ORMReadModel):
    id: int
    first_name: str
    last_name: str
    email: str
    is_validated: bool
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None
    status: StatusRead | None = None
    addresses: list[AddressRead] = PydanticField(default_factory=list)
    roles: list[RoleRead] = PydanticField(default_factory=list)


class UserResponse(ResponseMetadata):
    items: list[UserRead] = PydanticField(default_factory=list)


class BootstrapSuperuserRequest(BaseModel):
    app_id: str = PydanticField(min_length=1)
    app_name: str = PydanticField(min_length=1)
    first_name: str = PydanticField(min_length=1)
    last_name: str = PydanticField(min_length=1)
    email: EmailStr
    password: str = PydanticField(min_length=1)


class TokenRequest(BaseModel):
    access_token: str | None = None
    refresh_token: str | None = None


class UserLoginResponse(ResponseMetadata):
    a_token: str | None = None
    r_token: str | None = None
    user: UserRead | None = None


class AppUserRequest(BaseModel):
    app_id: str = PydanticField(min_length=1)
    user_id: int = PydanticField(gt=0)


class AppUserRead(BaseModel):
    app: AppRead
    user: UserRead
    assigned_date: datetime


class AppUserResponse(ResponseMetadata):
    items: list[AppUserRead] = PydanticField(default_factory=list)


class AppUserRoleRequest(BaseModel):
    app_id: str = PydanticField(min_length=1)
    user_id: int = PydanticField(gt=0)
    role_id: int = PydanticField(gt=0)


class AppUserRoleRead(BaseModel):
    app_id: str
    user: UserRead
    role: RoleRead
    assigned_date: datetime


class AppUserRoleResponse(ResponseMetadata):
    items: list[AppUserRoleRead] = PydanticField(default_factory=list)


class RolePermissionRequest(BaseModel):
    role_id: int = PydanticField(gt=0)
    permission_id: int = PydanticField(gt=0)


class RolePermissionRead(BaseModel):
    role: RoleRead
    permission: PermissionRead
    assigned_date: datetime


class RolePermissionResponse(ResponseMetadata):
    items: list[RolePermissionRead] = PydanticField(default_factory=list)
