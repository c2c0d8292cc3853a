from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from usermgmt.api.deps import Claims, Converter, require_superuser
from usermgmt.domain.models import AppUserRequest, AppUserResponse
from usermgmt.infra.audit import AuditEvent, EntityType, audit_dispatcher
from usermgmt.services.assignment_service import AssignmentService
from usermgmt.services.dto_converter import deleted_response

router = APIRouter(dependencies=[Depends(require_superuser("ONLY SUPERUSER can manage app users"))])


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


Service = Annotated[AssignmentService, Depends(get_assignment_service)]


@router.post("", response_model=AppUserResponse, status_code=status.HTTP_201_CREATED)
def assign_app_user(
    payload: AppUserRequest,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> AppUserResponse:
    link = service.assign_app_user(payload.app_id, payload.user_id)
    audit_dispatcher.record(
        AuditEvent.ASSIGN_APP,
        entity_type=EntityType.USER,
        entity_id=payload.user_id,
        app_id=payload.app_id,
        claims=claims,
        request=request,
    )
    return converter.app_users_response([link])


@router.get("", response_model=AppUserResponse)
def list_app_users(service: Service, converter: Converter) -> AppUserResponse:
    return converter.app_users_response(service.list_app_users())


@router.get("/{app_id}", response_model=AppUserResponse)
def list_app_users_by_app(app_id: str, service: Service, converter: Converter) -> AppUserResponse:
    return converter.app_users_response(service.list_app_users(app_id))


@router.delete("/{app_id}/{user_id}", response_model=AppUserResponse)
def unassign_app_user(
    app_id: str,
    user_id: int,
    request: Request,
    claims: Claims,
    service: Service,
) -> AppUserResponse:
    service.unassign_app_user(app_id, user_id)
    audit_dispatcher.record(
        AuditEvent.UNASSIGN_APP,
        entity_type=EntityType.USER,
        entity_id=user_id,
        app_id=app_id,
        claims=claims,
        request=request,
    )
    return deleted_response(AppUserResponse)
