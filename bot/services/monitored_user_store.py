from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from db.errors import InsertError, SelectError, UpdateError
from db.models import MonitoredUser


@dataclass(frozen=True, slots=True)
class MonitoredUserData:
    user_id: int
    last_active_until: Optional[dt.datetime]

    @classmethod
    def from_model(cls, model: MonitoredUser) -> "MonitoredUserData":
        return cls(user_id=model.user_id, last_active_until=model.last_active_until)


class MonitoredUserStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def initialize_users(self, user_ids: Iterable[int]) -> int:
        """Create empty rows for users that do not have one yet. Returns how many were created."""
        ids = sorted(set(user_ids))
        if not ids:
            return 0
        try:
            with self._session_factory() as session:
                existing = {
                    row.user_id
                    for row in session.query(MonitoredUser.user_id).filter(MonitoredUser.user_id.in_(ids))
                }
                created = [MonitoredUser(user_id=user_id) for user_id in ids if user_id not in existing]
                session.add_all(created)
                session.commit()
                return len(created)
        except SQLAlchemyError as exc:
            raise InsertError(exc) from exc

    def update_last_active(self, user_id: int, last_active_until: dt.datetime) -> bool:
        """Insert or update the end of the user's ping window."""
        try:
            with self._session_factory() as session:
                model = session.get(MonitoredUser, user_id)
                if model is None:
                    model = MonitoredUser(user_id=user_id)
                    session.add(model)
                model.last_active_until = last_active_until
                session.commit()
                return True
        except SQLAlchemyError as exc:
            raise UpdateError(exc) from exc

    def get_last_active(self, user_id: int) -> Optional[dt.datetime]:
        try:
            with self._session_factory() as session:
                model = session.get(MonitoredUser, user_id)
                return model.last_active_until if model else None
        except SQLAlchemyError as exc:
            raise SelectError(exc) from exc

    def get_all(self) -> List[MonitoredUserData]:
        try:
            with self._session_factory() as session:
                rows = session.query(MonitoredUser).order_by(MonitoredUser.user_id.asc()).all()
                return [MonitoredUserData.from_model(row) for row in rows]
        except SQLAlchemyError as exc:
            raise SelectError(exc) from exc
