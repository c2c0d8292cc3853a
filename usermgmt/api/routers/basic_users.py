from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, Response, status

from usermgmt.api.deps import Converter
from usermgmt.domain.models import (
    BootstrapSuperuserRequest,
    TokenRequest,
    User,
    UserCreate,
    UserLoginRequest,
    UserLoginResponse,
    UserResponse,
)
from usermgmt.infra.audit import AuditEvent, EntityType, audit_dispatcher
from usermgmt.services.auth_service import AuthService
from usermgmt.services.errors import ServiceError

router = APIRouter()


def get_auth_service() -> AuthService:
    return AuthService()


Service = Annotated[AuthService, Depends(get_auth_service)]


def _actor(user: User) -> dict[str, Any]:
    return {"sub": str(user.id), "email": user.email}


def _record(
    event: AuditEvent,
    app_id: str,
    user: User,
    request: Request,
    detail: dict[str, Any] | None = None,
) -> None:
    audit_dispatcher.record(
        event,
        entity_type=EntityType.USER,
        entity_id=user.id,
        app_id=app_id,
        claims=_actor(user),
        request=request,
        detail=detail,
    )


@router.post("/bootstrap-superuser", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def bootstrap_superuser(
    payload: BootstrapSuperuserRequest,
    request: Request,
    service: Service,
    converter: Converter,
) -> UserResponse:
    user = service.bootstrap_superuser(payload)
    _record(AuditEvent.CREATE_USER, payload.app_id, user, request, {"bootstrap": True})
    return converter.user_response(user, payload.app_id)


@router.post("/{app_id}/create", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_app_user(
    app_id: str,
    payload: UserCreate,
    request: Request,
    service: Service,
    converter: Converter,
) -> UserResponse:
    user = service.create_app_user(app_id, payload, str(request.base_url))
    _record(AuditEvent.CREATE_USER, app_id, user, request)
    return converter.user_response(user, app_id)


@router.post("/{app_id}/login", response_model=UserLoginResponse)
def login(
    app_id: str,
    payload: UserLoginRequest,
    request: Request,
    service: Service,
    converter: Converter,
) -> UserLoginResponse:
    try:
        access_token, refresh_token, user = service.login(app_id, payload)
    except ServiceError as exc:
        audit_dispatcher.record(
            AuditEvent.USER_LOGIN_ERROR,
            entity_type=EntityType.USER,
            app_id=app_id,
            claims={"email": str(payload.email)},
            request=request,
            detail={"error": str(exc)},
        )
        raise
    _record(AuditEvent.USER_LOGIN, app_id, user, request)
    return UserLoginResponse(a_token=access_token, r_token=refresh_token, user=converter.user(user, app_id))


@router.post("/{app_id}/refresh", response_model=UserLoginResponse)
def refresh(
    app_id: str,
    payload: TokenRequest,
    request: Request,
    service: Service,
    converter: Converter,
) -> UserLoginResponse:
    access_token, refresh_token, user = service.refresh(app_id, payload.refresh_token)
    _record(AuditEvent.TOKEN_REFRESH, app_id, user, request)
    return UserLoginResponse(a_token=access_token, r_token=refresh_token, user=converter.user(user, app_id))


@router.post("/{app_id}/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(app_id: str, payload: TokenRequest, request: Request, service: Service) -> Response:
    token = service.logout(payload.access_token)
    audit_dispatcher.record(
        AuditEvent.USER_LOGOUT,
        entity_type=EntityType.USER,
        entity_id=token.user_id,
        app_id=app_id,
        claims={"sub": str(token.user_id)},
        request=request,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{app_id}/reset", status_code=status.HTTP_204_NO_CONTENT)
def reset(app_id: str, payload: UserLoginRequest, request: Request, service: Service) -> Response:
    user = service.reset_password(app_id, payload)
    _record(AuditEvent.USER_RESET, app_id, user, request)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{app_id}/validate-init", status_code=status.HTTP_204_NO_CONTENT)
def validate_init(app_id: str, email: str, request: Request, service: Service) -> Response:
    user = service.validate_init(app_id, email, str(request.base_url))
    _record(AuditEvent.USER_VALIDATE_INIT, app_id, user, request)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{app_id}/reset-init", status_code=status.HTTP_204_NO_CONTENT)
def reset_init(app_id: str, email: str, request: Request, service: Service) -> Response:
    user = service.reset_init(app_id, email, str(request.base_url))
    _record(AuditEvent.USER_RESET_INIT, app_id, user, request)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
