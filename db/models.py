from __future__ import annotations

import datetime as dt
from enum import Enum

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> dt.datetime:
    """Naive UTC timestamp; every stored datetime uses this convention."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(dt.timezone.utc).replace(tzinfo=None)


class TargetType(str, Enum):
    USER = "user"
    ROLE = "role"


class PunishmentType(str, Enum):
    BAN = "ban"
    MUTE = "mute"
    KICK = "kick"


class Base(DeclarativeBase):
    pass


class MonitoredUser(Base):
    __tablename__ = "monitored_users"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    last_active_until: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)


class PunishmentRule(Base):
    __tablename__ = "punishment_rules"
    __table_args__ = (
        UniqueConstraint("priority_index", "target", "target_key", "lenient", name="punishment_rules_priority_uq"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    priority_index: Mapped[int] = mapped_column(Integer, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    target: Mapped[str] = mapped_column(String(16), nullable=False)
    target_key: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    lenient: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # milliseconds, NULL means indefinite
    length: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class PunishmentHistory(Base):
    __tablename__ = "punishment_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    ends_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    expires_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
