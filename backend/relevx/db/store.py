"""ResearchStore — persistence boundary for the research engine.

Every method opens its own short-lived Session; rows are document-style and no
multi-row transaction is assumed. Returned table objects are detached copies.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from relevx.engine.history import SearchHistory
from relevx.models.delivery import DeliveryLog
from relevx.models.history import (
    ProcessedUrl,
    QueryPerformance,
    QueryStats,
    SearchHistoryRecord,
)
from relevx.models.project import ResearchProject, ResearchUser, as_utc, utcnow
from relevx.models.search_result import SearchResultRecord
from relevx.scheduling import is_project_due

logger = logging.getLogger(__name__)


class ResearchStore:
    """CRUD for projects, users, search history, results and delivery logs."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # -- Projects / users --------------------------------------------------

    def get_project(self, user_id: str, project_id: str) -> ResearchProject | None:
        with Session(self.engine) as session:
            project = session.get(ResearchProject, project_id)
            if project is None or project.user_id != user_id:
                return None
            session.expunge(project)
            _tag_project_times(project)
            return project

    def get_user(self, user_id: str) -> ResearchUser | None:
        with Session(self.engine) as session:
            user = session.get(ResearchUser, user_id)
            if user is not None:
                session.expunge(user)
            return user

    def save_user(self, user: ResearchUser) -> ResearchUser:
        with Session(self.engine) as session:
            session.add(user)
            session.commit()
            session.refresh(user)
            session.expunge(user)
            return user

    def save_project(self, project: ResearchProject) -> ResearchProject:
        with Session(self.engine) as session:
            session.add(project)
            session.commit()
            session.refresh(project)
            session.expunge(project)
            _tag_project_times(project)
            return project

    def update_project(self, user_id: str, project_id: str, **fields) -> ResearchProject | None:
        """Apply a partial update; `updated_at` is always bumped."""
        with Session(self.engine) as session:
            project = session.get(ResearchProject, project_id)
            if project is None or project.user_id != user_id:
                logger.warning("update_project: project %s not found", project_id)
                return None
            for key, value in fields.items():
                setattr(project, key, value)
            project.updated_at = utcnow()
            session.add(project)
            session.commit()
            session.refresh(project)
            session.expunge(project)
            _tag_project_times(project)
            return project

    def list_due_projects(self, now: datetime) -> list[ResearchProject]:
        """Active projects whose next_run_at has been reached at `now`."""
        with Session(self.engine) as session:
            stmt = (
                select(ResearchProject)
                .where(ResearchProject.status == "active")
                .where(ResearchProject.next_run_at != None)  # noqa: E711
                .order_by(ResearchProject.next_run_at)
            )
            projects = []
            for project in session.exec(stmt).all():
                _tag_project_times(project)
                if is_project_due(project.next_run_at, now):
                    session.expunge(project)
                    projects.append(project)
            return projects

    # -- Search history ----------------------------------------------------

    def get_search_history(self, user_id: str, project_id: str) -> SearchHistory:
        """Load the project's history, creating an empty record on first access."""
        with Session(self.engine) as session:
            record = self._history_record(session, user_id, project_id)
            if record is None:
                record = SearchHistoryRecord(user_id=user_id, project_id=project_id)
                session.add(record)
                session.commit()
                session.refresh(record)
            return SearchHistory(
                user_id=user_id,
                project_id=project_id,
                processed_urls=[ProcessedUrl.model_validate(u) for u in record.processed_urls or []],
                query_performance=[
                    QueryPerformance.model_validate(q) for q in record.query_performance or []
                ],
            )

    def update_search_history(
        self,
        user_id: str,
        project_id: str,
        new_urls: list[ProcessedUrl],
        query_stats: dict[str, QueryStats],
    ) -> SearchHistory:
        """Upsert processed URLs and fold per-query deltas into the history row."""
        history = self.get_search_history(user_id, project_id)
        history.merge_urls(new_urls)
        history.merge_query_stats(query_stats)

        with Session(self.engine) as session:
            record = self._history_record(session, user_id, project_id)
            if record is None:
                record = SearchHistoryRecord(user_id=user_id, project_id=project_id)
            # Reassign whole lists so the JSON columns are flagged dirty
            record.processed_urls = [u.model_dump(mode="json") for u in history.processed_urls]
            record.query_performance = [
                q.model_dump(mode="json") for q in history.query_performance
            ]
            record.updated_at = utcnow()
            session.add(record)
            session.commit()
        return history

    @staticmethod
    def _history_record(
        session: Session, user_id: str, project_id: str
    ) -> SearchHistoryRecord | None:
        stmt = select(SearchHistoryRecord).where(
            SearchHistoryRecord.user_id == user_id,
            SearchHistoryRecord.project_id == project_id,
        )
        return session.exec(stmt).first()

    # -- Results / delivery ------------------------------------------------

    def save_search_results(self, results: list[SearchResultRecord]) -> list[str]:
        """Persist results in order and return their ids."""
        if not results:
            return []
        with Session(self.engine) as session:
            for result in results:
                session.add(result)
            session.commit()
            ids = [r.id for r in results]
            for result in results:
                session.refresh(result)
                session.expunge(result)
        return ids

    def list_search_results(self, user_id: str, project_id: str) -> list[SearchResultRecord]:
        with Session(self.engine) as session:
            stmt = select(SearchResultRecord).where(
                SearchResultRecord.user_id == user_id,
                SearchResultRecord.project_id == project_id,
            )
            rows = list(session.exec(stmt).all())
            for row in rows:
                session.expunge(row)
            return rows

    def save_delivery_log(self, log: DeliveryLog) -> str:
        with Session(self.engine) as session:
            session.add(log)
            session.commit()
            return log.id

    def get_delivery_log(self, log_id: str) -> DeliveryLog | None:
        with Session(self.engine) as session:
            log = session.get(DeliveryLog, log_id)
            if log is not None:
                session.expunge(log)
            return log

    def update_delivery_status(
        self, log_id: str, status: str, error: str | None = None
    ) -> DeliveryLog | None:
        with Session(self.engine) as session:
            log = session.get(DeliveryLog, log_id)
            if log is None:
                logger.warning("update_delivery_status: delivery log %s not found", log_id)
                return None
            log.status = status
            log.error = error
            if status == "success":
                log.delivered_at = utcnow()
            session.add(log)
            session.commit()
            session.refresh(log)
            session.expunge(log)
            return log


def _tag_project_times(project: ResearchProject) -> None:
    project.last_run_at = as_utc(project.last_run_at)
    project.next_run_at = as_utc(project.next_run_at)
