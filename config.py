from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass(slots=True)
class DiscordAppConfig:
    token: str
    application_id: Optional[int] = None


@dataclass(slots=True)
class GuardConfig:
    guild_id: Optional[int] = None
    command_prefix: str = "!"
    # minutes a monitored user stays pingable after their last message
    block_timeout_minutes: int = 10
    notify_timeout_minutes: int = 10
    notify_channel_ids: tuple[int, ...] = ()
    notify_role_ids: tuple[int, ...] = ()
    lenient_role_ids: tuple[int, ...] = ()
    moderator_role_ids: tuple[int, ...] = ()
    excluded_channel_ids: tuple[int, ...] = ()
    mute_role_id: Optional[int] = None
    dry_run: bool = False
    sync_interval_seconds: int = 60
    full_sync_every: int = 10
    persist_debounce_seconds: float = 5.0
    notice_delete_after_seconds: float = 10.0
    history_expiry_days: Optional[int] = None


@dataclass(slots=True)
class AppConfig:
    discord: DiscordAppConfig
    database_url: str
    guard: GuardConfig = field(default_factory=GuardConfig)


def _ensure_env_loaded() -> None:
    """
    Load `.env` from the working directory, falling back to the project root
    next to this file.
    """
    candidates = [
        Path(".env"),
        Path(__file__).resolve().parent / ".env",
    ]
    for path in candidates:
        if path.exists():
            load_dotenv(dotenv_path=path)
            break


def load_config() -> AppConfig:
    _ensure_env_loaded()

    discord_config = DiscordAppConfig(
        token=os.getenv("DISCORD_BOT_TOKEN", ""),
        application_id=_read_int("DISCORD_APPLICATION_ID"),
    )

    database_url = os.getenv("DATABASE_URL", "sqlite:///./ping_guard.sqlite3")

    guard = GuardConfig(
        guild_id=_read_int("TARGET_GUILD_ID"),
        command_prefix=os.getenv("COMMAND_PREFIX", "!"),
        block_timeout_minutes=max(0, int(os.getenv("BLOCK_TIMEOUT_MINUTES", "10"))),
        notify_timeout_minutes=max(0, int(os.getenv("NOTIFY_TIMEOUT_MINUTES", "10"))),
        notify_channel_ids=_read_id_csv("NOTIFY_CHANNEL_IDS"),
        notify_role_ids=_read_id_csv("NOTIFY_ROLE_IDS"),
        lenient_role_ids=_read_id_csv("LENIENT_ROLE_IDS"),
        moderator_role_ids=_read_id_csv("MODERATOR_ROLE_IDS"),
        excluded_channel_ids=_read_id_csv("EXCLUDED_CHANNEL_IDS"),
        mute_role_id=_read_int("MUTE_ROLE_ID"),
        dry_run=_read_bool("DRY_RUN", default=False),
        sync_interval_seconds=max(5, int(os.getenv("SYNC_INTERVAL_SECONDS", "60"))),
        full_sync_every=max(1, int(os.getenv("FULL_SYNC_EVERY", "10"))),
        persist_debounce_seconds=max(0.0, float(os.getenv("PERSIST_DEBOUNCE_SECONDS", "5"))),
        notice_delete_after_seconds=max(1.0, float(os.getenv("NOTICE_DELETE_AFTER_SECONDS", "10"))),
        history_expiry_days=_read_int("PUNISHMENT_HISTORY_EXPIRY_DAYS"),
    )

    return AppConfig(
        discord=discord_config,
        database_url=database_url,
        guard=guard,
    )


def _read_int(env_key: str) -> Optional[int]:
    value = os.getenv(env_key)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _read_csv(env_key: str) -> tuple[str, ...]:
    raw = os.getenv(env_key)
    if not raw:
        return ()
    return tuple(k.strip() for k in raw.split(",") if k.strip())


def _read_id_csv(env_key: str) -> tuple[int, ...]:
    return tuple(int(k) for k in _read_csv(env_key) if k.isdigit())


def _read_bool(env_key: str, default: bool = False) -> bool:
    raw = os.getenv(env_key)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "off", "no"}
