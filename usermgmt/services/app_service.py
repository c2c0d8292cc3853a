from __future__ import annotations

from sqlmodel import Session, col, select

from usermgmt.domain.models import App, AppCreate, AppUpdate, now_utc
from usermgmt.infra.db import get_engine
from usermgmt.services.errors import NotFoundError, commit_or_conflict


class AppService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get(self, session: Session, app_id: str, include_deleted: bool = False) -> App:
        app = session.get(App, app_id)
        if app is None or (app.deleted_at is not None and not include_deleted):
            raise NotFoundError("App", app_id)
        return app

    def create_app(self, payload: AppCreate) -> App:
        with self._session() as session:
            app = App(
                id=payload.id.strip(),
                name=payload.name,
                description=payload.description,
                redirect_url=payload.redirect_url,
            )
            session.add(app)
            commit_or_conflict(session, f"App [{payload.id}] or name [{payload.name}] already exists")
            session.refresh(app)
            return app

    def list_apps(self, include_deleted: bool = False) -> list[App]:
        with self._session() as session:
            statement = select(App).order_by(col(App.name))
            if not include_deleted:
                statement = statement.where(col(App.deleted_at).is_(None))
            return list(session.exec(statement).all())

    def get_app(self, app_id: str, include_deleted: bool = False) -> App:
        with self._session() as session:
            return self._get(session, app_id, include_deleted)

    def update_app(self, app_id: str, payload: AppUpdate) -> App:
        with self._session() as session:
            app = self._get(session, app_id)
            if payload.name is not None:
                app.name = payload.name
            if payload.description is not None:
                app.description = payload.description
            if payload.redirect_url is not None:
                app.redirect_url = payload.redirect_url
            app.updated_at = now_utc()
            session.add(app)
            commit_or_conflict(session, f"App name [{app.name}] already exists")
            session.refresh(app)
            return app

    def soft_delete_app(self, app_id: str) -> App:
        with self._session() as session:
            app = self._get(session, app_id)
            app.deleted_at = now_utc()
            session.add(app)
            session.commit()
            session.refresh(app)
            return app

    def hard_delete_app(self, app_id: str) -> None:
        with self._session() as session:
            app = self._get(session, app_id, include_deleted=True)
            session.delete(app)
            commit_or_conflict(session, f"App [{app_id}] is still referenced, unassign it first")

    def restore_app(self, app_id: str) -> App:
        with self._session() as session:
            app = self._get(session, app_id, include_deleted=True)
            app.deleted_at = None
            app.updated_at = now_utc()
            session.add(app)
            session.commit()
            session.refresh(app)
            return app
