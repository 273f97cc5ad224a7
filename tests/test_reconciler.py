from __future__ import annotations

import asyncio
import datetime as dt
from types import SimpleNamespace

import pytest

from bot.services.history_service import PunishmentHistoryService
from bot.services.monitored_user_store import MonitoredUserStore
from bot.services.reconciler import PunishmentReconciler
from bot.services.rule_cache import PunishmentRuleCache
from bot.services.rule_store import PunishmentRuleStore
from db.models import PunishmentType, TargetType, utcnow
from fakes import MUTE_ROLE_ID, FakeGuild, http_error, make_config, make_member, not_found

OFFENDER = 60


def _reconciler(session_factory, guild):
    client = SimpleNamespace(get_guild=lambda guild_id: guild if guild and guild.id == guild_id else None)
    history = PunishmentHistoryService(session_factory)
    store = PunishmentRuleStore(session_factory)
    cache = PunishmentRuleCache()
    users = MonitoredUserStore(session_factory)
    reconciler = PunishmentReconciler(client, store, cache, history, users, make_config())
    return reconciler, history, store, cache


def _ago(minutes: int) -> dt.datetime:
    return utcnow() - dt.timedelta(minutes=minutes)


def test_ended_mute_is_lifted_once(session_factory) -> None:
    guild = FakeGuild()
    offender = make_member(OFFENDER, role_ids=[MUTE_ROLE_ID], guild=guild)
    reconciler, history, _, _ = _reconciler(session_factory, guild)
    record = history.create(OFFENDER, _ago(1))

    async def scenario():
        first = await reconciler.synchronize()
        second = await reconciler.synchronize()
        return first, second

    first, second = asyncio.run(scenario())

    assert first == [True]
    assert second == []
    offender.remove_roles.assert_awaited_once()
    assert offender.remove_roles.await_args.args[0].id == MUTE_ROLE_ID
    guild.unban.assert_awaited_once()
    [row] = history.fetch_user_history(OFFENDER, include_ended=True)
    assert row.id == record.id and row.active is False


def test_manual_unban_counts_as_lifted(session_factory) -> None:
    guild = FakeGuild()
    guild.unban.side_effect = not_found()
    reconciler, history, _, _ = _reconciler(session_factory, guild)
    history.create(OFFENDER, _ago(5))

    assert asyncio.run(reconciler.synchronize()) == [True]
    assert history.fetch_user_history(OFFENDER, include_ended=True)[0].active is False


def test_member_without_mute_role_is_only_unbanned(session_factory) -> None:
    guild = FakeGuild()
    offender = make_member(OFFENDER, guild=guild)
    reconciler, history, _, _ = _reconciler(session_factory, guild)
    history.create(OFFENDER, _ago(5))

    assert asyncio.run(reconciler.synchronize()) == [True]
    offender.remove_roles.assert_not_awaited()
    guild.unban.assert_awaited_once()


def test_running_and_indefinite_punishments_are_left_alone(session_factory) -> None:
    guild = FakeGuild()
    reconciler, history, _, _ = _reconciler(session_factory, guild)
    history.create(OFFENDER, utcnow() + dt.timedelta(minutes=30))
    history.create(OFFENDER + 1, None)

    assert asyncio.run(reconciler.synchronize()) == [False, False]
    guild.unban.assert_not_awaited()
    assert all(row.active for row in history.fetch_user_history(OFFENDER))
    assert history.fetch_user_history(OFFENDER + 1)[0].active is True


def test_one_failing_record_does_not_block_the_others(session_factory) -> None:
    guild = FakeGuild()
    failing = OFFENDER

    async def unban(user, reason=None):
        if user.id == failing:
            raise http_error()

    guild.unban.side_effect = unban
    reconciler, history, _, _ = _reconciler(session_factory, guild)
    history.create(failing, _ago(5))
    history.create(OFFENDER + 1, _ago(5))

    assert asyncio.run(reconciler.synchronize()) == [False, True]
    assert history.fetch_user_history(failing, include_ended=True)[0].active is True
    assert history.fetch_user_history(OFFENDER + 1, include_ended=True)[0].active is False


def test_only_latest_record_per_user_is_reconciled(session_factory) -> None:
    guild = FakeGuild()
    reconciler, history, _, _ = _reconciler(session_factory, guild)
    history.create(OFFENDER, _ago(60))
    history.create(OFFENDER, utcnow() + dt.timedelta(minutes=30))

    [latest] = history.fetch_all_latest()
    assert latest.count == 2

    assert asyncio.run(reconciler.synchronize()) == [False]
    guild.unban.assert_not_awaited()


def test_missing_guild_raises_but_sweep_does_not(session_factory, caplog) -> None:
    reconciler, _, _, _ = _reconciler(session_factory, None)

    with pytest.raises(RuntimeError, match="Guild not found"):
        asyncio.run(reconciler.synchronize())

    asyncio.run(reconciler.sweep())
    assert "Punishment synchronization failed" in caplog.text


def test_full_sync_reloads_rule_cache(session_factory) -> None:
    guild = FakeGuild()
    reconciler, _, store, cache = _reconciler(session_factory, guild)
    store.create(0, PunishmentType.MUTE, TargetType.USER, 42, length=60000)

    asyncio.run(reconciler.synchronize())
    assert len(cache) == 0

    asyncio.run(reconciler.synchronize(full=True))
    assert cache.blocked_user_keys() == frozenset({42})


def test_full_sync_starts_monitoring_new_rule_targets(session_factory) -> None:
    guild = FakeGuild()
    reconciler, _, store, _ = _reconciler(session_factory, guild)
    store.create(0, PunishmentType.MUTE, TargetType.USER, 42, length=60000)
    store.create(0, PunishmentType.MUTE, TargetType.ROLE, 77, length=60000)

    asyncio.run(reconciler.synchronize(full=True))

    users = MonitoredUserStore(session_factory)
    assert [row.user_id for row in users.get_all()] == [42]


def test_unexpected_error_only_fails_its_own_record(session_factory, caplog) -> None:
    guild = FakeGuild()
    failing = OFFENDER

    async def unban(user, reason=None):
        if user.id == failing:
            raise ValueError("unexpected payload")

    guild.unban.side_effect = unban
    reconciler, history, _, _ = _reconciler(session_factory, guild)
    history.create(failing, _ago(5))
    history.create(OFFENDER + 1, _ago(5))

    assert asyncio.run(reconciler.synchronize()) == [False, True]
    assert "Failed to synchronize punishment" in caplog.text
    assert history.fetch_user_history(failing, include_ended=True)[0].active is True
    assert history.fetch_user_history(OFFENDER + 1, include_ended=True)[0].active is False
