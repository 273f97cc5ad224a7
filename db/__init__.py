from .errors import DatabaseError, DeleteError, InsertError, SelectError, UpdateError
from .models import (
    Base,
    MonitoredUser,
    PunishmentHistory,
    PunishmentRule,
    PunishmentType,
    TargetType,
    as_naive_utc,
    utcnow,
)
from .session import dispose_engine, get_session_factory, init_database, init_engine

__all__ = [
    "Base",
    "DatabaseError",
    "DeleteError",
    "InsertError",
    "MonitoredUser",
    "PunishmentHistory",
    "PunishmentRule",
    "PunishmentType",
    "SelectError",
    "TargetType",
    "UpdateError",
    "as_naive_utc",
    "dispose_engine",
    "get_session_factory",
    "init_database",
    "init_engine",
    "utcnow",
]
