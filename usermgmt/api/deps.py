from __future__ import annotations

import os
import secrets
from collections.abc import Callable
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials, OAuth2PasswordBearer

from usermgmt.domain.permissions import check_superuser
from usermgmt.infra.auth import decode_access_token
from usermgmt.services.auth_service import AuthService
from usermgmt.services.dto_converter import DtoConverter

BASIC_AUTH_USER = os.getenv("BASIC_AUTH_USER", "usermgmt")
BASIC_AUTH_PWD = os.getenv("BASIC_AUTH_PWD", "usermgmt-dev-pwd")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/basic/users/{app_id}/login")
basic_scheme = HTTPBasic()


def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    if AuthService().is_token_revoked(token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is logged out",
        )
    request.state.claims = claims
    return claims


def require_superuser(message: str) -> Callable[[dict[str, Any]], dict[str, Any]]:
    def _checker(
        claims: Annotated[dict[str, Any], Depends(get_current_claims)],
    ) -> dict[str, Any]:
        check_superuser(claims, message)
        return claims

    return _checker


def require_basic_auth(credentials: HTTPBasicCredentials = Depends(basic_scheme)) -> str:
    valid_user = secrets.compare_digest(credentials.username.encode(), BASIC_AUTH_USER.encode())
    valid_pwd = secrets.compare_digest(credentials.password.encode(), BASIC_AUTH_PWD.encode())
    if not (valid_user and valid_pwd):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid basic auth credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]


def get_dto_converter() -> DtoConverter:
    return DtoConverter()


Converter = Annotated[DtoConverter, Depends(get_dto_converter)]
