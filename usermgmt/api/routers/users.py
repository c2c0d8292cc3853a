from __future__ import annotations

import math
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request

from usermgmt.api.deps import Claims, Converter
from usermgmt.domain.models import (
    ResponsePageInfo,
    User,
    UserPasswordUpdate,
    UserResponse,
    UserUpdate,
    UserUpdateEmailRequest,
)
from usermgmt.domain.permissions import (
    PERM_USER_READ,
    PERM_USER_UPDATE,
    check_permission,
    check_superuser,
    check_user_access,
    filter_users,
    is_superuser,
)
from usermgmt.infra.audit import AuditEvent, EntityType, audit_dispatcher
from usermgmt.services.auth_service import AuthService
from usermgmt.services.dto_converter import deleted_response
from usermgmt.services.errors import MissingError, PermissionDeniedError
from usermgmt.services.user_service import UserService

router = APIRouter()


def get_user_service() -> UserService:
    return UserService()


Service = Annotated[UserService, Depends(get_user_service)]


def _scope(claims: dict[str, Any], app_id: str | None) -> str | None:
    """Requested app scope; non superusers are pinned to the app of their token."""
    if is_superuser(claims):
        return app_id
    token_app_id = claims.get("app_id")
    if app_id and app_id != token_app_id:
        raise PermissionDeniedError(f"Missing permission [{PERM_USER_READ}] for app [{app_id}]")
    return token_app_id


def _record(
    event: AuditEvent,
    user_id: int,
    claims: dict[str, Any],
    request: Request,
    detail: dict[str, Any] | None = None,
) -> None:
    audit_dispatcher.record(
        event,
        entity_type=EntityType.USER,
        entity_id=user_id,
        app_id=claims.get("app_id"),
        claims=claims,
        request=request,
        detail=detail,
    )


def _check_target(
    claims: dict[str, Any],
    permission: str,
    service: UserService,
    user: User,
    app_id: str | None = None,
    *,
    changes: bool = False,
) -> None:
    target_id = user.id or 0
    check_user_access(
        claims,
        permission,
        user_id=target_id,
        email=user.email,
        app_id=app_id,
        member_app_ids=service.app_ids(target_id),
        target_is_superuser=changes and service.holds_superuser(target_id),
    )


@router.get("", response_model=UserResponse)
def list_users(
    claims: Claims,
    service: Service,
    converter: Converter,
    app_id: str | None = None,
    include_deleted: bool = False,
    page_number: Annotated[int, Query(ge=1)] = 1,
    per_page: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> UserResponse:
    scope = _scope(claims, app_id)
    if include_deleted:
        check_superuser(claims, "ONLY SUPERUSER can list deleted users")
    users, total = service.list_users(scope, include_deleted, page_number, per_page)
    page_info = ResponsePageInfo(
        total_items=total,
        total_pages=math.ceil(total / per_page),
        page_number=page_number,
        per_page=per_page,
    )
    return converter.users_response(filter_users(claims, users, scope), scope, page_info)


@router.get("/email/{email}", response_model=UserResponse)
def get_user_by_email(
    email: str,
    claims: Claims,
    service: Service,
    converter: Converter,
    app_id: str | None = None,
) -> UserResponse:
    user = service.get_user_by_email(email)
    _check_target(claims, PERM_USER_READ, service, user, app_id)
    return converter.user_response(user, app_id or claims.get("app_id"))


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    claims: Claims,
    service: Service,
    converter: Converter,
    app_id: str | None = None,
) -> UserResponse:
    user = service.get_user(user_id)
    _check_target(claims, PERM_USER_READ, service, user, app_id)
    return converter.user_response(user, app_id or claims.get("app_id"))


@router.put("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    payload: UserUpdate,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> UserResponse:
    _check_target(claims, PERM_USER_UPDATE, service, service.get_user(user_id), changes=True)
    if payload.status is not None:
        # own record access does not cover the account status
        check_permission(claims, PERM_USER_UPDATE)
    user = service.update_user(user_id, payload)
    _record(AuditEvent.UPDATE_USER, user_id, claims, request, payload.model_dump(mode="json", exclude_none=True))
    return converter.user_response(user, claims.get("app_id"))


@router.put("/{user_id}/email", response_model=UserResponse)
def update_user_email(
    user_id: int,
    payload: UserUpdateEmailRequest,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
    app_id: str | None = None,
) -> UserResponse:
    """Change the email within ``app_id`` and send a validation link for the new address."""
    _check_target(claims, PERM_USER_UPDATE, service, service.get_user(user_id), changes=True)
    scope = _scope(claims, app_id) or claims.get("app_id")
    if not scope:
        raise MissingError("app_id", "User")
    user = AuthService().change_email(scope, user_id, payload, str(request.base_url))
    _record(
        AuditEvent.UPDATE_USER_EMAIL,
        user_id,
        claims,
        request,
        {"old_email": str(payload.old_email), "new_email": user.email},
    )
    return converter.user_response(user, scope)


@router.put("/{user_id}/password", response_model=UserResponse)
def update_user_password(
    user_id: int,
    payload: UserPasswordUpdate,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> UserResponse:
    _check_target(claims, PERM_USER_UPDATE, service, service.get_user(user_id), changes=True)
    user = service.update_password(user_id, payload.password)
    _record(AuditEvent.UPDATE_USER_PASSWORD, user_id, claims, request)
    return converter.user_response(user, claims.get("app_id"))


@router.delete("/{user_id}/addresses/{address_id}", response_model=UserResponse)
def delete_user_address(
    user_id: int,
    address_id: int,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> UserResponse:
    _check_target(claims, PERM_USER_UPDATE, service, service.get_user(user_id), changes=True)
    user = service.delete_address(user_id, address_id)
    _record(AuditEvent.DELETE_ADDRESS, user_id, claims, request, {"address_id": address_id})
    response = converter.user_response(user, claims.get("app_id"))
    response.crud_info = deleted_response(UserResponse).crud_info
    return response


@router.delete("/{user_id}", response_model=UserResponse)
def soft_delete_user(user_id: int, request: Request, claims: Claims, service: Service) -> UserResponse:
    check_superuser(claims, "ONLY SUPERUSER can delete a user")
    service.soft_delete_user(user_id)
    _record(AuditEvent.SOFT_DELETE_USER, user_id, claims, request)
    return deleted_response(UserResponse)


@router.delete("/{user_id}/hard", response_model=UserResponse)
def hard_delete_user(user_id: int, request: Request, claims: Claims, service: Service) -> UserResponse:
    check_superuser(claims, "ONLY SUPERUSER can hard delete a user")
    service.hard_delete_user(user_id)
    _record(AuditEvent.HARD_DELETE_USER, user_id, claims, request)
    return deleted_response(UserResponse)


@router.patch("/{user_id}/restore", response_model=UserResponse)
def restore_user(
    user_id: int,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> UserResponse:
    check_superuser(claims, "ONLY SUPERUSER can restore a user")
    user = service.restore_user(user_id)
    _record(AuditEvent.RESTORE_USER, user_id, claims, request)
    return converter.user_response(user, claims.get("app_id"))
