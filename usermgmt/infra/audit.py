from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import StrEnum
from typing import Any

from sqlmodel import Session
from starlette.requests import Request

from usermgmt.domain.models import AuditLog
from usermgmt.infra.db import get_engine

logger = logging.getLogger(__name__)

AUDIT_MAX_WORKERS = int(os.getenv("AUDIT_MAX_WORKERS", "2"))


class EntityType(StrEnum):
    APP = "APP"
    USER = "USER"
    ROLE = "ROLE"
    PERMISSION = "PERMISSION"


class AuditEvent(StrEnum):
    CREATE_USER = "CREATE_USER"
    UPDATE_USER = "UPDATE_USER"
    UPDATE_USER_EMAIL = "UPDATE_USER_EMAIL"
    UPDATE_USER_PASSWORD = "UPDATE_USER_PASSWORD"
    DELETE_ADDRESS = "DELETE_ADDRESS"
    SOFT_DELETE_USER = "SOFT_DELETE_USER"
    HARD_DELETE_USER = "HARD_DELETE_USER"
    RESTORE_USER = "RESTORE_USER"
    ASSIGN_APP = "ASSIGN_APP"
    UNASSIGN_APP = "UNASSIGN_APP"
    ASSIGN_ROLE = "ASSIGN_ROLE"
    UNASSIGN_ROLE = "UNASSIGN_ROLE"
    USER_LOGIN = "USER_LOGIN"
    USER_LOGIN_ERROR = "USER_LOGIN_ERROR"
    USER_LOGOUT = "USER_LOGOUT"
    TOKEN_REFRESH = "TOKEN_REFRESH"
    USER_VALIDATE_INIT = "USER_VALIDATE_INIT"
    USER_VALIDATE_EXIT = "USER_VALIDATE_EXIT"
    USER_RESET_INIT = "USER_RESET_INIT"
    USER_RESET_EXIT = "USER_RESET_EXIT"
    USER_RESET = "USER_RESET"
    CREATE_ROLE = "CREATE_ROLE"
    UPDATE_ROLE = "UPDATE_ROLE"
    SOFT_DELETE_ROLE = "SOFT_DELETE_ROLE"
    HARD_DELETE_ROLE = "HARD_DELETE_ROLE"
    RESTORE_ROLE = "RESTORE_ROLE"
    ASSIGN_PERMISSION = "ASSIGN_PERMISSION"
    UNASSIGN_PERMISSION = "UNASSIGN_PERMISSION"
    CREATE_PERMISSION = "CREATE_PERMISSION"
    UPDATE_PERMISSION = "UPDATE_PERMISSION"
    SOFT_DELETE_PERMISSION = "SOFT_DELETE_PERMISSION"
    HARD_DELETE_PERMISSION = "HARD_DELETE_PERMISSION"
    RESTORE_PERMISSION = "RESTORE_PERMISSION"
    CREATE_APP = "CREATE_APP"
    UPDATE_APP = "UPDATE_APP"
    SOFT_DELETE_APP = "SOFT_DELETE_APP"
    HARD_DELETE_APP = "HARD_DELETE_APP"
    RESTORE_APP = "RESTORE_APP"


def write_audit_log(
    *,
    event_type: str,
    entity_type: str,
    entity_id: str | None,
    app_id: str | None,
    actor_id: str | None,
    actor_email: str | None,
    ip_address: str | None,
    user_agent: str | None,
    detail: dict[str, Any] | None = None,
) -> None:
    log = AuditLog(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        app_id=app_id,
        actor_id=actor_id,
        actor_email=actor_email,
        ip_address=ip_address,
        user_agent=user_agent,
        detail=detail or {},
    )
    with Session(get_engine()) as session:
        session.add(log)
        session.commit()


class AuditDispatcher:
    """Best-effort audit writer.

    ``record`` hands the write to a bounded thread pool and returns at once.
    Nothing is retried, ordering between writes is not guaranteed and the
    caller never observes a failure; failed writes are only logged.
    """

    def __init__(self, max_workers: int = AUDIT_MAX_WORKERS) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="audit")
        self._pending: set[Future[None]] = set()
        self._lock = threading.Lock()

    def record(
        self,
        event_type: AuditEvent,
        *,
        entity_type: EntityType,
        entity_id: object | None = None,
        app_id: str | None = None,
        claims: dict[str, Any] | None = None,
        request: Request | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        # request and claims are read here, the worker thread never touches them
        actor = claims or {}
        kwargs: dict[str, Any] = {
            "event_type": str(event_type),
            "entity_type": str(entity_type),
            "entity_id": str(entity_id) if entity_id is not None else None,
            "app_id": app_id,
            "actor_id": actor.get("sub"),
            "actor_email": actor.get("email"),
            "ip_address": request.client.host if request is not None and request.client is not None else None,
            "user_agent": request.headers.get("user-agent") if request is not None else None,
            "detail": detail,
        }
        try:
            future = self._executor.submit(self._write, kwargs)
        except RuntimeError:
            logger.warning("audit dispatcher is shut down, dropping %s", event_type)
            return
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _write(self, kwargs: dict[str, Any]) -> None:
        try:
            write_audit_log(**kwargs)
        except Exception:
            logger.warning("audit write failed for %s", kwargs["event_type"], exc_info=True)

    def _forget(self, future: Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)

    def flush(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


audit_dispatcher = AuditDispatcher()
