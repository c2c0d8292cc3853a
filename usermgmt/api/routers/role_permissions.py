from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status

from usermgmt.api.deps import Claims, Converter
from usermgmt.domain.models import RolePermissionRequest, RolePermissionResponse
from usermgmt.domain.permissions import (
    PERM_ROLE_READ,
    PERM_ROLE_UPDATE,
    check_record_app_access,
    check_superuser,
)
from usermgmt.infra.audit import AuditEvent, EntityType, audit_dispatcher
from usermgmt.services.assignment_service import AssignmentService
from usermgmt.services.dto_converter import deleted_response
from usermgmt.services.role_service import RoleService

router = APIRouter()


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


Service = Annotated[AssignmentService, Depends(get_assignment_service)]


def _check_role_update(claims: dict[str, Any], role_id: int) -> str | None:
    role = RoleService().get_role(role_id, include_deleted=True)
    if role.app_id is None:
        check_superuser(claims, "ONLY SUPERUSER can change platform role grants")
    else:
        check_record_app_access(claims, PERM_ROLE_UPDATE, role.app_id)
    return role.app_id


@router.post("", response_model=RolePermissionResponse, status_code=status.HTTP_201_CREATED)
def assign_role_permission(
    payload: RolePermissionRequest,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> RolePermissionResponse:
    _check_role_update(claims, payload.role_id)
    link, role, permission = service.assign_role_permission(payload.role_id, payload.permission_id)
    audit_dispatcher.record(
        AuditEvent.ASSIGN_PERMISSION,
        entity_type=EntityType.ROLE,
        entity_id=payload.role_id,
        app_id=permission.app_id,
        claims=claims,
        request=request,
        detail={"permission_id": payload.permission_id},
    )
    return converter.role_permissions_response([(link, role, permission)])


@router.get("/{role_id}", response_model=RolePermissionResponse)
def list_role_permissions(
    role_id: int,
    claims: Claims,
    service: Service,
    converter: Converter,
    app_id: str | None = None,
) -> RolePermissionResponse:
    role = RoleService().get_role(role_id)
    check_record_app_access(claims, PERM_ROLE_READ, role.app_id)
    return converter.role_permissions_response(service.list_role_permissions(role_id, app_id))


@router.delete("/{role_id}/{permission_id}", response_model=RolePermissionResponse)
def unassign_role_permission(
    role_id: int,
    permission_id: int,
    request: Request,
    claims: Claims,
    service: Service,
) -> RolePermissionResponse:
    role_app_id = _check_role_update(claims, role_id)
    service.unassign_role_permission(role_id, permission_id)
    audit_dispatcher.record(
        AuditEvent.UNASSIGN_PERMISSION,
        entity_type=EntityType.ROLE,
        entity_id=role_id,
        app_id=role_app_id,
        claims=claims,
        request=request,
        detail={"permission_id": permission_id},
    )
    return deleted_response(RolePermissionResponse)
