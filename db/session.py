from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

from sqlalchemy import DateTime, bindparam, create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

log = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def init_engine(database_url: str) -> Engine:
    global _engine, _session_factory

    if _engine is not None:
        return _engine

    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    _engine = create_engine(database_url, future=True, connect_args=connect_args)
    _session_factory = sessionmaker(bind=_engine, class_=Session, expire_on_commit=False)
    return _engine


def init_database(database_url: str) -> None:
    """
    Create every table and run in-place migrations. Errors are not caught:
    the bot must not start against a schema it could not verify.
    """
    engine = init_engine(database_url)
    Base.metadata.create_all(engine)
    _run_migrations(engine)


def dispose_engine() -> None:
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        raise RuntimeError("Database engine is not initialized. Call init_database() first.")
    return _session_factory


def _run_migrations(engine: Engine) -> None:
    """
    Lightweight, in-place migrations for deployments without Alembic.
    Each step checks the live schema first, so running it twice is a no-op.
    """
    inspector = inspect(engine)

    if inspector.has_table("punishment_history"):
        history_cols = {col["name"] for col in inspector.get_columns("punishment_history")}
        with engine.begin() as conn:
            if "expires_at" not in history_cols:
                conn.execute(text("ALTER TABLE punishment_history ADD COLUMN expires_at TIMESTAMP"))

    if inspector.has_table("punishment_rules"):
        rule_cols = {col["name"] for col in inspector.get_columns("punishment_rules")}
        with engine.begin() as conn:
            if "lenient" not in rule_cols:
                conn.execute(text("ALTER TABLE punishment_rules ADD COLUMN lenient BOOLEAN NOT NULL DEFAULT FALSE"))

    if inspector.has_table("blocked_users"):
        _migrate_blocked_users(engine)


def _migrate_blocked_users(engine: Engine) -> None:
    # blocked_users predates monitored_users; last message was stored as epoch milliseconds
    insert_sql = text(
        "INSERT INTO monitored_users (user_id, last_active_until) VALUES (:user_id, :until)"
    ).bindparams(bindparam("until", type_=DateTime))
    with engine.begin() as conn:
        legacy_cols = {col["name"] for col in inspect(conn).get_columns("blocked_users")}
        if "user_id" not in legacy_cols:
            return
        stamp_col = "user_last_message" if "user_last_message" in legacy_cols else None
        select_sql = f"SELECT user_id{', ' + stamp_col if stamp_col else ''} FROM blocked_users"
        legacy_rows = conn.execute(text(select_sql)).all()
        existing = {row[0] for row in conn.execute(text("SELECT user_id FROM monitored_users"))}

        copied = 0
        for row in legacy_rows:
            user_id = int(row[0])
            if user_id in existing:
                continue
            last_active_until = None
            if stamp_col and row[1]:
                last_active_until = dt.datetime(1970, 1, 1) + dt.timedelta(milliseconds=int(row[1]))
            conn.execute(insert_sql, {"user_id": user_id, "until": last_active_until})
            existing.add(user_id)
            copied += 1
    if copied:
        log.info("Copied %d legacy blocked_users rows into monitored_users", copied)
