from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse

from usermgmt.api.deps import require_basic_auth
from usermgmt.api.errors import register_error_handlers
from usermgmt.api.routers import (
    app_user_roles,
    app_users,
    apps,
    basic_users,
    na_users,
    permissions,
    role_permissions,
    roles,
    users,
)
from usermgmt.infra.audit import audit_dispatcher
from usermgmt.infra.db import check_db_ready
from usermgmt.infra.log import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    logger.info("usermgmt starting")
    yield
    audit_dispatcher.flush()
    audit_dispatcher.shutdown()
    logger.info("usermgmt stopped")


app = FastAPI(
    title="usermgmt",
    description="Multi-tenant user, role and permission management.",
    version="0.1.0",
    lifespan=lifespan,
)

register_error_handlers(app)

app.include_router(apps.router, prefix="/api/v1/apps", tags=["apps"])
app.include_router(users.router, prefix="/api/v1/users", tags=["users"])
app.include_router(roles.router, prefix="/api/v1/roles", tags=["roles"])
app.include_router(permissions.router, prefix="/api/v1/permissions", tags=["permissions"])
app.include_router(app_users.router, prefix="/api/v1/app-users", tags=["app-users"])
app.include_router(app_user_roles.router, prefix="/api/v1/app-user-roles", tags=["app-user-roles"])
app.include_router(role_permissions.router, prefix="/api/v1/role-permissions", tags=["role-permissions"])
app.include_router(
    basic_users.router,
    prefix="/api/v1/basic/users",
    tags=["basic-users"],
    dependencies=[Depends(require_basic_auth)],
)
app.include_router(na_users.router, prefix="/api/v1/na/users", tags=["na-users"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz", response_model=None)
def readyz() -> dict[str, object] | JSONResponse:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        return JSONResponse(status_code=503, content={"status": "not_ready", "checks": checks})
    return {"status": "ready", "checks": checks}
