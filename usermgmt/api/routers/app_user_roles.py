from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from usermgmt.api.deps import Claims, Converter
from usermgmt.domain.models import AppUserRoleRequest, AppUserRoleResponse
from usermgmt.domain.permissions import PERM_USER_READ, check_superuser, check_user_access
from usermgmt.infra.audit import AuditEvent, EntityType, audit_dispatcher
from usermgmt.services.assignment_service import AssignmentService
from usermgmt.services.dto_converter import deleted_response
from usermgmt.services.user_service import UserService

router = APIRouter()


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


Service = Annotated[AssignmentService, Depends(get_assignment_service)]


@router.post("", response_model=AppUserRoleResponse, status_code=status.HTTP_201_CREATED)
def assign_user_role(
    payload: AppUserRoleRequest,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> AppUserRoleResponse:
    check_superuser(claims, "ONLY SUPERUSER can assign roles")
    link = service.assign_user_role(payload.app_id, payload.user_id, payload.role_id)
    audit_dispatcher.record(
        AuditEvent.ASSIGN_ROLE,
        entity_type=EntityType.USER,
        entity_id=payload.user_id,
        app_id=payload.app_id,
        claims=claims,
        request=request,
        detail={"role_id": payload.role_id},
    )
    return converter.app_user_roles_response([link])


@router.get("/{app_id}/{user_id}", response_model=AppUserRoleResponse)
def list_user_roles(
    app_id: str,
    user_id: int,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> AppUserRoleResponse:
    check_user_access(
        claims,
        PERM_USER_READ,
        user_id=user_id,
        app_id=app_id,
        member_app_ids=UserService().app_ids(user_id),
    )
    return converter.app_user_roles_response(service.list_user_roles(app_id, user_id))


@router.delete("/{app_id}/{user_id}/{role_id}", response_model=AppUserRoleResponse)
def unassign_user_role(
    app_id: str,
    user_id: int,
    role_id: int,
    request: Request,
    claims: Claims,
    service: Service,
) -> AppUserRoleResponse:
    check_superuser(claims, "ONLY SUPERUSER can unassign roles")
    service.unassign_user_role(app_id, user_id, role_id)
    audit_dispatcher.record(
        AuditEvent.UNASSIGN_ROLE,
        entity_type=EntityType.USER,
        entity_id=user_id,
        app_id=app_id,
        claims=claims,
        request=request,
        detail={"role_id": role_id},
    )
    return deleted_response(AppUserRoleResponse)
