from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import aliased, sessionmaker

from db.errors import InsertError, SelectError, UpdateError
from db.models import PunishmentHistory, utcnow


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    id: int
    user_id: int
    active: bool
    ends_at: Optional[dt.datetime]
    expires_at: Optional[dt.datetime]
    created_at: dt.datetime
    # number of the user's active, non-expired records (only set by fetch_all_latest)
    count: int = 0

    @classmethod
    def from_model(cls, model: PunishmentHistory, count: int = 0) -> "HistoryEntry":
        return cls(
            id=model.id,
            user_id=model.user_id,
            active=bool(model.active),
            ends_at=model.ends_at,
            expires_at=model.expires_at,
            created_at=model.created_at,
            count=count,
        )

    @property
    def is_indefinite(self) -> bool:
        return self.ends_at is None

    def has_ended(self, now: Optional[dt.datetime] = None) -> bool:
        return self.ends_at is not None and self.ends_at < (now or utcnow())


class PunishmentHistoryService:
    """Audit trail of punishments handed out; also the escalation counter."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(
        self,
        user_id: int,
        ends_at: Optional[dt.datetime],
        expires_at: Optional[dt.datetime] = None,
        active: bool = True,
    ) -> HistoryEntry:
        entry = PunishmentHistory(
            user_id=user_id,
            ends_at=ends_at,
            expires_at=expires_at,
            active=active,
            created_at=utcnow(),
        )
        try:
            with self._session_factory() as session:
                session.add(entry)
                session.commit()
                session.refresh(entry)
                return HistoryEntry.from_model(entry)
        except SQLAlchemyError as exc:
            raise InsertError(exc) from exc

    def fetch_user_history(
        self,
        user_id: int,
        include_ended: bool = False,
        include_expired: bool = False,
        now: Optional[dt.datetime] = None,
    ) -> List[HistoryEntry]:
        now = now or utcnow()
        try:
            with self._session_factory() as session:
                query = session.query(PunishmentHistory).filter(PunishmentHistory.user_id == user_id)
                if not include_ended:
                    query = query.filter(or_(PunishmentHistory.ends_at.is_(None), PunishmentHistory.ends_at >= now))
                if not include_expired:
                    query = query.filter(
                        or_(PunishmentHistory.expires_at.is_(None), PunishmentHistory.expires_at >= now)
                    )
                rows = query.order_by(PunishmentHistory.id.asc()).all()
                return [HistoryEntry.from_model(row) for row in rows]
        except SQLAlchemyError as exc:
            raise SelectError(exc) from exc

    def fetch_all_latest(self, now: Optional[dt.datetime] = None) -> List[HistoryEntry]:
        """
        Latest active, non-expired record per punished user, each annotated with
        the number of that user's active, non-expired records.
        """
        now = now or utcnow()
        history = PunishmentHistory
        latest = aliased(PunishmentHistory)
        other = aliased(PunishmentHistory)
        try:
            with self._session_factory() as session:
                latest_ids = (
                    select(func.max(latest.id))
                    .where(
                        latest.active.is_(True),
                        or_(latest.expires_at.is_(None), latest.expires_at >= now),
                    )
                    .group_by(latest.user_id)
                )
                active_count = (
                    select(func.count(other.id))
                    .where(
                        other.user_id == history.user_id,
                        other.active.is_(True),
                        or_(other.expires_at.is_(None), other.expires_at >= now),
                    )
                    .correlate(history)
                    .scalar_subquery()
                )
                rows = (
                    session.query(history, active_count.label("count"))
                    .filter(history.id.in_(latest_ids))
                    .order_by(history.user_id.asc())
                    .all()
                )
                return [HistoryEntry.from_model(row[0], count=int(row[1] or 0)) for row in rows]
        except SQLAlchemyError as exc:
            raise SelectError(exc) from exc

    def set_active(self, history_id: int, active: bool) -> bool:
        try:
            with self._session_factory() as session:
                updated = (
                    session.query(PunishmentHistory)
                    .filter(PunishmentHistory.id == history_id)
                    .update({PunishmentHistory.active: active}, synchronize_session=False)
                )
                session.commit()
                return updated > 0
        except SQLAlchemyError as exc:
            raise UpdateError(exc) from exc
