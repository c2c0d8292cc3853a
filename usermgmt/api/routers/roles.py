from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status

from usermgmt.api.deps import Claims, Converter
from usermgmt.domain.models import Role, RoleCreate, RoleResponse, RoleUpdate
from usermgmt.domain.permissions import (
    PERM_ROLE_CREATE,
    PERM_ROLE_READ,
    PERM_ROLE_UPDATE,
    check_app_access,
    check_record_app_access,
    check_superuser,
    filter_roles,
    is_superuser,
)
from usermgmt.infra.audit import AuditEvent, EntityType, audit_dispatcher
from usermgmt.services.dto_converter import deleted_response
from usermgmt.services.role_service import RoleService

router = APIRouter()


def get_role_service() -> RoleService:
    return RoleService()


Service = Annotated[RoleService, Depends(get_role_service)]


def _record(event: AuditEvent, role: Role, claims: dict[str, Any], request: Request) -> None:
    audit_dispatcher.record(
        event,
        entity_type=EntityType.ROLE,
        entity_id=role.id,
        app_id=role.app_id,
        claims=claims,
        request=request,
        detail={"name": role.name},
    )


@router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
def create_role(
    payload: RoleCreate,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> RoleResponse:
    if payload.app_id:
        check_app_access(claims, PERM_ROLE_CREATE, payload.app_id)
    else:
        check_superuser(claims, "ONLY SUPERUSER can create a platform role")
    role = service.create_role(payload)
    _record(AuditEvent.CREATE_ROLE, role, claims, request)
    return converter.role_response(role, role.app_id)


@router.get("", response_model=RoleResponse)
def list_roles(
    claims: Claims,
    service: Service,
    converter: Converter,
    app_id: str | None = None,
    include_deleted: bool = False,
) -> RoleResponse:
    if include_deleted:
        check_superuser(claims, "ONLY SUPERUSER can list deleted roles")
    scope = app_id if is_superuser(claims) else claims.get("app_id")
    roles = service.list_roles(scope, include_deleted)
    return converter.roles_response(filter_roles(claims, roles), scope)


@router.get("/{role_id}", response_model=RoleResponse)
def get_role(
    role_id: int,
    claims: Claims,
    service: Service,
    converter: Converter,
    app_id: str | None = None,
) -> RoleResponse:
    role = service.get_role(role_id)
    check_record_app_access(claims, PERM_ROLE_READ, role.app_id)
    return converter.role_response(role, role.app_id or app_id or claims.get("app_id"))


@router.put("/{role_id}", response_model=RoleResponse)
def update_role(
    role_id: int,
    payload: RoleUpdate,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> RoleResponse:
    role = service.get_role(role_id)
    if role.app_id is None:
        check_superuser(claims, "ONLY SUPERUSER can update a platform role")
    else:
        check_record_app_access(claims, PERM_ROLE_UPDATE, role.app_id)
    role = service.update_role(role_id, payload)
    _record(AuditEvent.UPDATE_ROLE, role, claims, request)
    return converter.role_response(role, role.app_id or claims.get("app_id"))


@router.delete("/{role_id}", response_model=RoleResponse)
def soft_delete_role(role_id: int, request: Request, claims: Claims, service: Service) -> RoleResponse:
    check_superuser(claims, "ONLY SUPERUSER can delete a role")
    role = service.soft_delete_role(role_id)
    _record(AuditEvent.SOFT_DELETE_ROLE, role, claims, request)
    return deleted_response(RoleResponse)


@router.delete("/{role_id}/hard", response_model=RoleResponse)
def hard_delete_role(role_id: int, request: Request, claims: Claims, service: Service) -> RoleResponse:
    check_superuser(claims, "ONLY SUPERUSER can hard delete a role")
    role = service.get_role(role_id, include_deleted=True)
    service.hard_delete_role(role_id)
    _record(AuditEvent.HARD_DELETE_ROLE, role, claims, request)
    return deleted_response(RoleResponse)


@router.patch("/{role_id}/restore", response_model=RoleResponse)
def restore_role(
    role_id: int,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> RoleResponse:
    check_superuser(claims, "ONLY SUPERUSER can restore a role")
    role = service.restore_role(role_id)
    _record(AuditEvent.RESTORE_ROLE, role, claims, request)
    return converter.role_response(role, role.app_id or claims.get("app_id"))
