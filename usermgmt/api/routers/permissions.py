from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status

from usermgmt.api.deps import Claims, Converter
from usermgmt.domain.models import Permission, PermissionCreate, PermissionResponse, PermissionUpdate
from usermgmt.domain.permissions import (
    PERM_PERMISSION_CREATE,
    PERM_PERMISSION_READ,
    PERM_PERMISSION_UPDATE,
    check_app_access,
    check_record_app_access,
    check_superuser,
    filter_permissions,
    is_superuser,
)
from usermgmt.infra.audit import AuditEvent, EntityType, audit_dispatcher
from usermgmt.services.dto_converter import deleted_response
from usermgmt.services.permission_service import PermissionService

router = APIRouter()


def get_permission_service() -> PermissionService:
    return PermissionService()


Service = Annotated[PermissionService, Depends(get_permission_service)]


def _record(event: AuditEvent, permission: Permission, claims: dict[str, Any], request: Request) -> None:
    audit_dispatcher.record(
        event,
        entity_type=EntityType.PERMISSION,
        entity_id=permission.id,
        app_id=permission.app_id,
        claims=claims,
        request=request,
        detail={"name": permission.name},
    )


@router.post("", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
def create_permission(
    payload: PermissionCreate,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> PermissionResponse:
    check_app_access(claims, PERM_PERMISSION_CREATE, payload.app_id)
    permission = service.create_permission(payload)
    _record(AuditEvent.CREATE_PERMISSION, permission, claims, request)
    return converter.permission_response(permission)


@router.get("", response_model=PermissionResponse)
def list_permissions(
    claims: Claims,
    service: Service,
    converter: Converter,
    app_id: str | None = None,
    include_deleted: bool = False,
) -> PermissionResponse:
    if include_deleted:
        check_superuser(claims, "ONLY SUPERUSER can list deleted permissions")
    scope = app_id if is_superuser(claims) else claims.get("app_id")
    permissions = service.list_permissions(scope, include_deleted)
    return converter.permissions_response(filter_permissions(claims, permissions))


@router.get("/{permission_id}", response_model=PermissionResponse)
def get_permission(permission_id: int, claims: Claims, service: Service, converter: Converter) -> PermissionResponse:
    permission = service.get_permission(permission_id)
    check_record_app_access(claims, PERM_PERMISSION_READ, permission.app_id)
    return converter.permission_response(permission)


@router.put("/{permission_id}", response_model=PermissionResponse)
def update_permission(
    permission_id: int,
    payload: PermissionUpdate,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> PermissionResponse:
    permission = service.get_permission(permission_id)
    check_record_app_access(claims, PERM_PERMISSION_UPDATE, permission.app_id)
    permission = service.update_permission(permission_id, payload)
    _record(AuditEvent.UPDATE_PERMISSION, permission, claims, request)
    return converter.permission_response(permission)


@router.delete("/{permission_id}", response_model=PermissionResponse)
def soft_delete_permission(
    permission_id: int,
    request: Request,
    claims: Claims,
    service: Service,
) -> PermissionResponse:
    check_superuser(claims, "ONLY SUPERUSER can delete a permission")
    permission = service.soft_delete_permission(permission_id)
    _record(AuditEvent.SOFT_DELETE_PERMISSION, permission, claims, request)
    return deleted_response(PermissionResponse)


@router.delete("/{permission_id}/hard", response_model=PermissionResponse)
def hard_delete_permission(
    permission_id: int,
    request: Request,
    claims: Claims,
    service: Service,
) -> PermissionResponse:
    check_superuser(claims, "ONLY SUPERUSER can hard delete a permission")
    permission = service.get_permission(permission_id, include_deleted=True)
    service.hard_delete_permission(permission_id)
    _record(AuditEvent.HARD_DELETE_PERMISSION, permission, claims, request)
    return deleted_response(PermissionResponse)


@router.patch("/{permission_id}/restore", response_model=PermissionResponse)
def restore_permission(
    permission_id: int,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> PermissionResponse:
    check_superuser(claims, "ONLY SUPERUSER can restore a permission")
    permission = service.restore_permission(permission_id)
    _record(AuditEvent.RESTORE_PERMISSION, permission, claims, request)
    return converter.permission_response(permission)
