from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Dict, Optional

import discord

from bot.services.monitored_user_store import MonitoredUserStore
from bot.services.rule_cache import PunishmentRuleCache
from bot.utils.debounce import Debouncer
from bot.utils.message_analysis import MessageKind, message_link
from config import GuardConfig
from db.errors import DatabaseError
from db.models import as_naive_utc, utcnow

log = logging.getLogger(__name__)


class PingEligibilityTracker:
    """
    Keeps, per monitored user, the moment until which they may be pinged.

    Every message a monitored user sends pushes their window forward. The
    in-memory map is authoritative for reads; writes to storage are debounced
    per user so a burst of messages turns into a single write.
    """

    def __init__(
        self,
        store: MonitoredUserStore,
        rule_cache: PunishmentRuleCache,
        config: GuardConfig,
        logger: Optional[logging.Logger] = None,
    ):
        self._store = store
        self._rule_cache = rule_cache
        self._config = config
        self._log = logger or log
        self._last_active_until: Dict[int, dt.datetime] = {}
        self._write_queue = Debouncer("ping-window-write", self._log)
        self._idle_timers = Debouncer("idle-notification", self._log)

    async def warm(self) -> int:
        loop = asyncio.get_running_loop()
        rows = await loop.run_in_executor(None, self._store.get_all)
        warmed = {row.user_id: row.last_active_until for row in rows if row.last_active_until is not None}
        self._last_active_until = warmed
        self._log.info("Loaded ping windows for %d monitored users", len(warmed))
        return len(warmed)

    async def extend(
        self,
        user_id: int,
        now: dt.datetime,
        window_minutes: Optional[float] = None,
        immediate: bool = False,
    ) -> bool:
        if window_minutes is None:
            window_minutes = self._config.block_timeout_minutes
        if window_minutes < 0:
            window_minutes = 0
        if window_minutes == 0:
            # going silent now
            self._idle_timers.cancel(user_id)

        until = as_naive_utc(now) + dt.timedelta(minutes=window_minutes)
        self._last_active_until[user_id] = until

        if immediate:
            self._write_queue.cancel(user_id)
            return await self._persist(user_id, until)

        self._write_queue.schedule(
            user_id,
            self._config.persist_debounce_seconds,
            lambda: self._persist(user_id, until),
        )
        return True

    def can_be_pinged(self, user_id: int, now: Optional[dt.datetime] = None) -> bool:
        until = self._last_active_until.get(user_id)
        if until is None:
            return False
        return as_naive_utc(now or utcnow()) <= until

    def last_active_until(self, user_id: int) -> Optional[dt.datetime]:
        return self._last_active_until.get(user_id)

    async def handle_incoming_message(self, message: discord.Message, kind: MessageKind) -> bool:
        if message.guild is None or message.author.bot or message.is_system():
            return False
        if kind is MessageKind.COMMAND:
            return False
        member = message.guild.get_member(message.author.id) or message.author
        if not self._rule_cache.is_monitored_member(member):
            return False

        now = as_naive_utc(message.created_at) if message.created_at else utcnow()
        await self.extend(message.author.id, now)
        await self.notify_presence(message)
        self._log.debug(
            "message sent by %s at %s, pingable until %s",
            message.author.id,
            now.isoformat(),
            self._last_active_until[message.author.id].isoformat(),
        )
        return True

    async def notify_presence(self, message: discord.Message, timeout_minutes: Optional[float] = None) -> None:
        if timeout_minutes is None:
            timeout_minutes = self._config.notify_timeout_minutes
        author_id = message.author.id
        guild = message.guild
        already_announced = self._idle_timers.is_pending(author_id)

        # arm before any await so a burst of messages only announces once
        self._idle_timers.schedule(
            author_id,
            max(0.0, timeout_minutes) * 60,
            lambda: self._announce_idle(guild, author_id),
        )
        if already_announced:
            return

        roles = self._config.notify_role_ids
        role_mentions = ", ".join(f"<@&{role_id}>" for role_id in roles)
        link = message_link(guild.id, message.channel.id, message.id)
        content = (
            f"{role_mentions + ', ' if role_mentions else ''}<@{author_id}> has made an appearance! "
            f"I'll notify you once some time has passed since they have sent a message.\n{link}"
        )
        allowed = discord.AllowedMentions(everyone=False, users=False, roles=[discord.Object(id=r) for r in roles])
        await self._broadcast(guild, content, allowed)

    async def flush(self) -> None:
        flushed = await self._write_queue.flush()
        self._idle_timers.cancel_all()
        if flushed:
            self._log.info("Flushed %d pending ping window writes", flushed)

    async def _announce_idle(self, guild: discord.Guild, user_id: int) -> None:
        content = f"<@{user_id}> doesn't seem to be around anymore, you can rest your eyes"
        await self._broadcast(guild, content, discord.AllowedMentions.none())

    async def _broadcast(self, guild: discord.Guild, content: str, allowed: discord.AllowedMentions) -> None:
        for channel_id in self._config.notify_channel_ids:
            channel = guild.get_channel(channel_id)
            if channel is None:
                self._log.warning("Notify channel %s not found in guild %s", channel_id, guild.id)
                continue
            try:
                await channel.send(content, allowed_mentions=allowed)
            except discord.HTTPException:
                self._log.warning("Failed to send presence notification to channel %s", channel_id)

    async def _persist(self, user_id: int, until: dt.datetime) -> bool:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._store.update_last_active, user_id, until)
        except DatabaseError:
            self._log.exception("Failed to persist ping window for user %s", user_id)
            return False
