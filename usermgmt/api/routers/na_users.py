from __future__ import annotations

import logging
from typing import Annotated
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from usermgmt.infra.audit import AuditEvent, EntityType, audit_dispatcher
from usermgmt.services.auth_service import AuthService
from usermgmt.services.errors import ServiceError

logger = logging.getLogger(__name__)

router = APIRouter()


def get_auth_service() -> AuthService:
    return AuthService()


Service = Annotated[AuthService, Depends(get_auth_service)]


def _redirect(base: str, params: dict[str, str]) -> RedirectResponse:
    return RedirectResponse(url=f"{base}?{urlencode(params)}", status_code=302)


@router.get("/{app_id}/validate-exit")
def validate_exit(app_id: str, to_validate: str, request: Request, service: Service) -> RedirectResponse:
    redirect_url = service.redirect_url(app_id)
    try:
        user = service.validate_exit(app_id, to_validate)
    except ServiceError as exc:
        logger.warning("validate exit failed for app [%s]: %s", app_id, exc)
        return _redirect(redirect_url, {"is_validated": "false"})
    audit_dispatcher.record(
        AuditEvent.USER_VALIDATE_EXIT,
        entity_type=EntityType.USER,
        entity_id=user.id,
        app_id=app_id,
        claims={"sub": str(user.id), "email": user.email},
        request=request,
    )
    return _redirect(redirect_url, {"is_validated": "true"})


@router.get("/{app_id}/reset-exit")
def reset_exit(app_id: str, to_reset: str, request: Request, service: Service) -> RedirectResponse:
    redirect_url = service.redirect_url(app_id)
    try:
        user = service.reset_exit(app_id, to_reset)
    except ServiceError as exc:
        logger.warning("reset exit failed for app [%s]: %s", app_id, exc)
        return _redirect(redirect_url, {"is_reset": "false"})
    audit_dispatcher.record(
        AuditEvent.USER_RESET_EXIT,
        entity_type=EntityType.USER,
        entity_id=user.id,
        app_id=app_id,
        claims={"sub": str(user.id), "email": user.email},
        request=request,
    )
    return _redirect(redirect_url, {"is_reset": "true", "to_reset": user.email})
