from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session


class ServiceError(Exception):
    status_code = 500


class NotFoundError(ServiceError):
    status_code = 404

    def __init__(self, entity: str, key: object) -> None:
        super().__init__(f"{entity} Not Found for [{key}]")


class MissingError(ServiceError):
    status_code = 400

    def __init__(self, field: str, entity: str) -> None:
        super().__init__(f"[{field}] is Missing in [{entity}] request")


class PermissionDeniedError(ServiceError):
    status_code = 403

    def __init__(self, message: str) -> None:
        super().__init__(f"Permission Denied: {message}")


class UserNotActiveError(PermissionDeniedError):
    def __init__(self) -> None:
        ServiceError.__init__(self, "User is not active, please revalidate or reset your account!")


class ValidationFailedError(ServiceError):
    status_code = 400


class IntegrityConflictError(ServiceError):
    status_code = 409


class UnauthenticatedError(ServiceError):
    status_code = 401


def commit_or_conflict(session: Session, message: str) -> None:
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise IntegrityConflictError(message) from exc
