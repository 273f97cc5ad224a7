from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest
from sqlalchemy import create_engine, inspect, text

from bot.services.history_service import PunishmentHistoryService
from bot.services.monitored_user_store import MonitoredUserStore
from bot.services.rule_store import PunishmentRuleStore
from db import InsertError, dispose_engine, get_session_factory, init_database
from db.models import PunishmentType, TargetType, utcnow


def test_rule_round_trip(session_factory) -> None:
    store = PunishmentRuleStore(session_factory)
    created = store.create(3, "ban", "role", 777, lenient=True, length=3_600_000)

    [fetched] = store.get_all_active()

    assert fetched == created
    assert (fetched.priority_index, fetched.target, fetched.target_key) == (3, TargetType.ROLE, 777)
    assert (fetched.type, fetched.lenient, fetched.length) == (PunishmentType.BAN, True, 3_600_000)


def test_rule_slot_is_unique_while_active(session_factory) -> None:
    store = PunishmentRuleStore(session_factory)
    store.create(0, PunishmentType.MUTE, TargetType.USER, 42)

    with pytest.raises(InsertError):
        store.create(0, PunishmentType.BAN, TargetType.USER, 42)

    # a different leniency is a different slot
    store.create(0, PunishmentType.KICK, TargetType.USER, 42, lenient=True)
    assert len(store.get_all_active()) == 2


def test_removed_rule_slot_can_be_reused(session_factory) -> None:
    store = PunishmentRuleStore(session_factory)
    first = store.create(0, PunishmentType.MUTE, TargetType.USER, 42, length=60000)

    assert store.remove(0, TargetType.USER, 42) is True
    assert store.remove(0, TargetType.USER, 42) is False
    assert store.get_all_active() == []

    again = store.create(0, PunishmentType.BAN, TargetType.USER, 42)
    assert again.id == first.id
    assert (again.type, again.length) == (PunishmentType.BAN, None)


def test_invalid_rules_are_rejected(session_factory) -> None:
    store = PunishmentRuleStore(session_factory)

    with pytest.raises(InsertError, match="invalid punishment type"):
        store.create(0, "warn", TargetType.USER, 42)
    with pytest.raises(InsertError, match="invalid punishment target"):
        store.create(0, PunishmentType.BAN, "standard", 42)
    with pytest.raises(InsertError):
        store.create(0, PunishmentType.BAN, TargetType.USER, 42, length=-1)


def test_history_filters(session_factory) -> None:
    history = PunishmentHistoryService(session_factory)
    now = utcnow()
    running = history.create(1, now + dt.timedelta(hours=1))
    ended = history.create(1, now - dt.timedelta(hours=1))
    expired = history.create(1, now - dt.timedelta(days=2), expires_at=now - dt.timedelta(days=1))
    forever = history.create(1, None)

    def ids(**kwargs) -> list[int]:
        return [entry.id for entry in history.fetch_user_history(1, **kwargs)]

    assert ids() == [running.id, forever.id]
    assert ids(include_ended=True) == [running.id, ended.id, forever.id]
    assert ids(include_ended=True, include_expired=True) == [running.id, ended.id, expired.id, forever.id]
    assert forever.is_indefinite and not forever.has_ended()
    assert ended.has_ended() and not running.has_ended()


def test_fetch_all_latest_annotates_counts(session_factory) -> None:
    history = PunishmentHistoryService(session_factory)
    now = utcnow()
    history.create(1, now)
    latest_one = history.create(1, now + dt.timedelta(minutes=5))
    history.create(1, now, active=False)
    latest_two = history.create(2, None)
    history.create(3, now, active=False)

    latest = history.fetch_all_latest()

    assert [(entry.id, entry.count) for entry in latest] == [(latest_one.id, 2), (latest_two.id, 1)]


def test_set_active(session_factory) -> None:
    history = PunishmentHistoryService(session_factory)
    entry = history.create(1, utcnow())

    assert history.set_active(entry.id, False) is True
    assert history.set_active(entry.id + 100, False) is False
    assert history.fetch_all_latest() == []


def test_monitored_user_store(session_factory) -> None:
    store = MonitoredUserStore(session_factory)
    until = utcnow()

    assert store.initialize_users([1, 2, 2]) == 2
    assert store.initialize_users([1, 3]) == 1
    assert store.update_last_active(2, until) is True
    assert store.update_last_active(9, until) is True

    assert store.get_last_active(2) == until
    assert store.get_last_active(1) is None
    assert store.get_last_active(404) is None
    assert [row.user_id for row in store.get_all()] == [1, 2, 3, 9]


def test_migrations_upgrade_a_legacy_database(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'legacy.sqlite3'}"
    legacy = create_engine(url)
    with legacy.begin() as conn:
        conn.execute(text("CREATE TABLE blocked_users (user_id BIGINT PRIMARY KEY, user_last_message BIGINT)"))
        conn.execute(text("INSERT INTO blocked_users VALUES (1, 1700000000000), (2, NULL)"))
        conn.execute(
            text(
                "CREATE TABLE punishment_history (id INTEGER PRIMARY KEY, user_id BIGINT NOT NULL, "
                "active BOOLEAN NOT NULL, ends_at DATETIME, created_at DATETIME NOT NULL)"
            )
        )
        conn.execute(
            text(
                "CREATE TABLE punishment_rules (id INTEGER PRIMARY KEY, priority_index INTEGER NOT NULL, "
                "active BOOLEAN NOT NULL, type VARCHAR(16) NOT NULL, target VARCHAR(16) NOT NULL, "
                "target_key BIGINT, length BIGINT)"
            )
        )
        conn.execute(text("INSERT INTO punishment_rules VALUES (1, 0, 1, 'mute', 'user', 42, 60000)"))
    legacy.dispose()

    try:
        init_database(url)
        dispose_engine()
        # a second start must be a no-op
        init_database(url)

        inspector = inspect(create_engine(url))
        assert "expires_at" in {col["name"] for col in inspector.get_columns("punishment_history")}
        assert "lenient" in {col["name"] for col in inspector.get_columns("punishment_rules")}

        factory = get_session_factory()
        users = MonitoredUserStore(factory).get_all()
        assert [(u.user_id, u.last_active_until) for u in users] == [
            (1, dt.datetime(2023, 11, 14, 22, 13, 20)),
            (2, None),
        ]
        [legacy_rule] = PunishmentRuleStore(factory).get_all_active()
        assert legacy_rule.lenient is False and legacy_rule.type is PunishmentType.MUTE
    finally:
        dispose_engine()
