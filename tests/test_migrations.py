from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, col, select

from usermgmt.domain.models import Role
from usermgmt.infra.migrate import run_upgrade_head
from usermgmt.services.role_service import ensure_platform_roles


def test_upgrade_head_creates_schema(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    url = f"sqlite:///{tmp_path / 'migrate_test.db'}"

    run_upgrade_head(url)

    inspector = inspect(create_engine(url))
    tables = set(inspector.get_table_names())
    assert {
        "apps",
        "users",
        "user_addresses",
        "status_types",
        "roles",
        "permissions",
        "app_users",
        "app_user_roles",
        "role_permissions",
        "user_tokens",
        "audit_logs",
    } <= tables
    role_fks = inspector.get_foreign_keys("app_user_roles")
    assert {fk["referred_table"] for fk in role_fks} == {"apps", "users", "roles"}
    role_indexes = {item["name"]: item for item in inspector.get_indexes("roles")}
    assert bool(role_indexes["uq_roles_platform_name"]["unique"])
    assert role_indexes["uq_roles_platform_name"]["column_names"] == ["name"]


def test_platform_role_names_are_unique(tmp_path: Path) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'roles_test.db'}")
    SQLModel.metadata.create_all(engine)

    with Session(engine) as session:
        session.add(Role(name="GUEST", app_id=None))
        session.commit()
        session.add(Role(name="GUEST", app_id=None))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

        assert len(ensure_platform_roles(session)) == 2
        names = session.exec(select(Role.name).where(col(Role.app_id).is_(None))).all()
    assert sorted(names) == ["GUEST", "SUPERUSER"]
