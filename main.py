from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from bot.bot import create_bot
from config import load_config
from db import dispose_engine, get_session_factory, init_database


async def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app_config = load_config()
    if not app_config.discord.token:
        raise RuntimeError("DISCORD_BOT_TOKEN is not set.")
    if not app_config.guard.guild_id:
        raise RuntimeError("TARGET_GUILD_ID is not set.")

    # schema problems are fatal here on purpose
    init_database(app_config.database_url)
    session_factory = get_session_factory()

    bot = create_bot(app_config, session_factory)
    try:
        async with bot:
            await bot.start(app_config.discord.token)
    finally:
        dispose_engine()


def _run_with_reload() -> None:
    """
    Development helper: restarts the whole process when source files change.
    Uses watchfiles to supervise asyncio.run(main).
    """
    from watchfiles import run_process

    base_dir = Path(__file__).resolve().parent
    run_process(str(base_dir), target=lambda: asyncio.run(main()))


if __name__ == "__main__":
    try:
        if os.getenv("DEV_RELOAD") == "1":
            _run_with_reload()
        else:
            asyncio.run(main())
    except KeyboardInterrupt:
        pass
