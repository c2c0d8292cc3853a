from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from usermgmt.api.deps import Claims, Converter
from usermgmt.domain.models import AppCreate, AppResponse, AppUpdate
from usermgmt.domain.permissions import (
    PERM_APP_READ,
    PERM_APP_UPDATE,
    check_app_access,
    check_superuser,
    filter_apps,
)
from usermgmt.infra.audit import AuditEvent, EntityType, audit_dispatcher
from usermgmt.services.app_service import AppService
from usermgmt.services.dto_converter import deleted_response

router = APIRouter()


def get_app_service() -> AppService:
    return AppService()


Service = Annotated[AppService, Depends(get_app_service)]


@router.post("", response_model=AppResponse, status_code=status.HTTP_201_CREATED)
def create_app(
    payload: AppCreate,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> AppResponse:
    check_superuser(claims, "ONLY SUPERUSER can create an app")
    app = service.create_app(payload)
    audit_dispatcher.record(
        AuditEvent.CREATE_APP,
        entity_type=EntityType.APP,
        entity_id=app.id,
        app_id=app.id,
        claims=claims,
        request=request,
        detail={"name": app.name},
    )
    return converter.app_response(app)


@router.get("", response_model=AppResponse)
def list_apps(
    claims: Claims,
    service: Service,
    converter: Converter,
    include_deleted: bool = False,
) -> AppResponse:
    if include_deleted:
        check_superuser(claims, "ONLY SUPERUSER can list deleted apps")
    apps = service.list_apps(include_deleted)
    return converter.apps_response(filter_apps(claims, apps))


@router.get("/{app_id}", response_model=AppResponse)
def get_app(app_id: str, claims: Claims, service: Service, converter: Converter) -> AppResponse:
    check_app_access(claims, PERM_APP_READ, app_id)
    return converter.app_response(service.get_app(app_id))


@router.put("/{app_id}", response_model=AppResponse)
def update_app(
    app_id: str,
    payload: AppUpdate,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> AppResponse:
    check_app_access(claims, PERM_APP_UPDATE, app_id)
    app = service.update_app(app_id, payload)
    audit_dispatcher.record(
        AuditEvent.UPDATE_APP,
        entity_type=EntityType.APP,
        entity_id=app_id,
        app_id=app_id,
        claims=claims,
        request=request,
        detail=payload.model_dump(exclude_none=True),
    )
    return converter.app_response(app)


@router.delete("/{app_id}", response_model=AppResponse)
def soft_delete_app(app_id: str, request: Request, claims: Claims, service: Service) -> AppResponse:
    check_superuser(claims, "ONLY SUPERUSER can delete an app")
    service.soft_delete_app(app_id)
    audit_dispatcher.record(
        AuditEvent.SOFT_DELETE_APP,
        entity_type=EntityType.APP,
        entity_id=app_id,
        app_id=app_id,
        claims=claims,
        request=request,
    )
    return deleted_response(AppResponse)


@router.delete("/{app_id}/hard", response_model=AppResponse)
def hard_delete_app(app_id: str, request: Request, claims: Claims, service: Service) -> AppResponse:
    check_superuser(claims, "ONLY SUPERUSER can hard delete an app")
    service.hard_delete_app(app_id)
    audit_dispatcher.record(
        AuditEvent.HARD_DELETE_APP,
        entity_type=EntityType.APP,
        entity_id=app_id,
        app_id=app_id,
        claims=claims,
        request=request,
    )
    return deleted_response(AppResponse)


@router.patch("/{app_id}/restore", response_model=AppResponse)
def restore_app(
    app_id: str,
    request: Request,
    claims: Claims,
    service: Service,
    converter: Converter,
) -> AppResponse:
    check_superuser(claims, "ONLY SUPERUSER can restore an app")
    app = service.restore_app(app_id)
    audit_dispatcher.record(
        AuditEvent.RESTORE_APP,
        entity_type=EntityType.APP,
        entity_id=app_id,
        app_id=app_id,
        claims=claims,
        request=request,
    )
    return converter.app_response(app)
