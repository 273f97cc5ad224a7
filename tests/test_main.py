from __future__ import annotations

import asyncio

import pytest

import main
from config import AppConfig, DiscordAppConfig
from fakes import make_config


def _fail_if_called(*args, **kwargs):
    raise AssertionError("startup went past configuration checks")


@pytest.fixture(autouse=True)
def _no_database(monkeypatch) -> None:
    monkeypatch.setattr(main, "init_database", _fail_if_called)
    monkeypatch.setattr(main, "create_bot", _fail_if_called)


def test_refuses_to_start_without_guild_id(monkeypatch) -> None:
    app_config = AppConfig(discord=DiscordAppConfig(token="token"), database_url="", guard=make_config(guild_id=None))
    monkeypatch.setattr(main, "load_config", lambda: app_config)

    with pytest.raises(RuntimeError, match="TARGET_GUILD_ID"):
        asyncio.run(main.main())


def test_refuses_to_start_without_token(monkeypatch) -> None:
    app_config = AppConfig(discord=DiscordAppConfig(token=""), database_url="", guard=make_config())
    monkeypatch.setattr(main, "load_config", lambda: app_config)

    with pytest.raises(RuntimeError, match="DISCORD_BOT_TOKEN"):
        asyncio.run(main.main())
