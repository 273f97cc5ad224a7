from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import discord

from bot.services.history_service import HistoryEntry, PunishmentHistoryService
from bot.services.monitored_user_store import MonitoredUserStore
from bot.services.rule_cache import PunishmentRuleCache
from bot.services.rule_store import PunishmentRuleStore
from config import GuardConfig
from db.errors import DatabaseError
from db.models import utcnow

log = logging.getLogger(__name__)

LIFT_REASON = "Ping punishment has ended."


class PunishmentReconciler:
    """
    Periodically lifts punishments whose time is up.

    Each sweep looks at the latest active history record per user. Records that
    have ended get their mute role removed and their ban lifted, then are marked
    inactive so later sweeps leave them alone. A member who was already unbanned
    or unmuted by hand counts as lifted.
    """

    def __init__(
        self,
        client: discord.Client,
        rule_store: PunishmentRuleStore,
        rule_cache: PunishmentRuleCache,
        history: PunishmentHistoryService,
        monitored_users: MonitoredUserStore,
        config: GuardConfig,
        logger: Optional[logging.Logger] = None,
    ):
        self._client = client
        self._rule_store = rule_store
        self._rule_cache = rule_cache
        self._history = history
        self._monitored_users = monitored_users
        self._config = config
        self._log = logger or log

    async def reload_rules(self) -> int:
        loop = asyncio.get_running_loop()
        rules = await loop.run_in_executor(None, self._rule_store.get_all_active)
        self._rule_cache.refresh(rules)
        self._log.info("Loaded %d punishment rules", len(self._rule_cache))
        created = await loop.run_in_executor(
            None, self._monitored_users.initialize_users, self._rule_cache.blocked_user_keys()
        )
        if created:
            self._log.info("Started monitoring %d new users", created)
        return len(self._rule_cache)

    async def synchronize(self, full: bool = False) -> List[bool]:
        if full:
            await self.reload_rules()

        guild = self._client.get_guild(self._config.guild_id) if self._config.guild_id else None
        if guild is None:
            raise RuntimeError("Guild not found.")

        loop = asyncio.get_running_loop()
        records: List[HistoryEntry] = await loop.run_in_executor(None, self._history.fetch_all_latest)
        if not records:
            return []
        outcomes = await asyncio.gather(
            *(self.sync_record(guild, record) for record in records), return_exceptions=True
        )
        results: List[bool] = []
        for record, outcome in zip(records, outcomes):
            if isinstance(outcome, BaseException):
                self._log.error(
                    "Failed to synchronize punishment #%s for %s",
                    record.id,
                    record.user_id,
                    exc_info=outcome,
                )
                results.append(False)
            else:
                results.append(outcome)
        lifted = sum(1 for result in results if result)
        if lifted:
            self._log.info("Lifted %d of %d active punishments", lifted, len(records))
        return results

    async def sync_record(self, guild: discord.Guild, record: HistoryEntry) -> bool:
        """Returns True when the record was lifted and closed."""
        if not record.active or record.is_indefinite:
            return False
        if not record.has_ended(utcnow()):
            return False

        try:
            await self._remove_mute(guild, record.user_id)
            await self._unban(guild, record.user_id)
        except discord.HTTPException:
            self._log.warning("Failed to lift punishment #%s for %s", record.id, record.user_id, exc_info=True)
            return False

        loop = asyncio.get_running_loop()
        try:
            closed = await loop.run_in_executor(None, self._history.set_active, record.id, False)
        except DatabaseError:
            self._log.exception("Failed to close punishment #%s for %s", record.id, record.user_id)
            return False
        if closed:
            self._log.info(
                "Punishment #%s for %s has ended (%d active on record)", record.id, record.user_id, record.count
            )
        return closed

    async def sweep(self, full: bool = False) -> None:
        try:
            await self.synchronize(full=full)
        except Exception:
            self._log.exception("Punishment synchronization failed")

    async def _remove_mute(self, guild: discord.Guild, user_id: int) -> None:
        mute_role_id = self._config.mute_role_id
        if mute_role_id is None:
            return
        member = guild.get_member(user_id)
        if member is None:
            try:
                member = await guild.fetch_member(user_id)
            except discord.NotFound:
                return
        if any(role.id == mute_role_id for role in member.roles):
            try:
                await member.remove_roles(discord.Object(id=mute_role_id), reason=LIFT_REASON)
            except discord.NotFound:
                pass

    async def _unban(self, guild: discord.Guild, user_id: int) -> None:
        try:
            await guild.unban(discord.Object(id=user_id), reason=LIFT_REASON)
        except discord.NotFound:
            # not banned, or already unbanned by hand
            pass
