from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import discord

from bot.services.history_service import HistoryEntry, PunishmentHistoryService
from bot.services.mention_guard import FlaggedMention
from bot.services.rule_cache import PunishmentRuleCache
from bot.services.rule_store import PunishmentRuleData
from bot.utils import embeds
from bot.utils.permissions import has_any_role
from config import GuardConfig
from db.models import PunishmentType, TargetType, utcnow

log = logging.getLogger(__name__)

BAN_DELETE_MESSAGE_SECONDS = 60 * 60 * 24


@dataclass(frozen=True, slots=True)
class PunishmentOutcome:
    user_id: int
    rule: PunishmentRuleData
    history_count: int
    lenient: bool
    ends_at: Optional[dt.datetime]
    history: HistoryEntry
    applied: bool


def select_rule_set(
    rule_cache: PunishmentRuleCache,
    mentions: Sequence[FlaggedMention],
    lenient: bool,
) -> tuple[PunishmentRuleData, ...]:
    """Rules of the first mention that has any; rule sets of several mentions are never merged."""
    for mention in mentions:
        if mention.type is TargetType.ROLE and mention.role is not None:
            rules = rule_cache.get_rules(TargetType.ROLE, mention.role, lenient)
        else:
            rules = rule_cache.get_rules(TargetType.USER, mention.user, lenient)
        if rules:
            return rules
    return ()


def select_tier(rules: Sequence[PunishmentRuleData], history_count: int) -> PunishmentRuleData:
    if not rules:
        raise ValueError("no punishment rules to select from")
    return rules[min(max(history_count, 0), len(rules) - 1)]


def compute_ends_at(rule: PunishmentRuleData, now: dt.datetime) -> Optional[dt.datetime]:
    if rule.length is None:
        return None
    return now + dt.timedelta(milliseconds=rule.length)


class PunishmentEngine:
    def __init__(
        self,
        history: PunishmentHistoryService,
        rule_cache: PunishmentRuleCache,
        config: GuardConfig,
        logger: Optional[logging.Logger] = None,
    ):
        self._history = history
        self._rule_cache = rule_cache
        self._config = config
        self._log = logger or log

    async def punish(self, message: discord.Message, mentions: Sequence[FlaggedMention]) -> Optional[PunishmentOutcome]:
        guild = message.guild
        if guild is None:
            raise RuntimeError("Cannot punish a message that was not sent in a guild.")
        member = await self._resolve_member(guild, message.author.id)
        if member is None:
            raise RuntimeError(f"{message.author.id} is not a guild member somehow")

        loop = asyncio.get_running_loop()
        history: List[HistoryEntry] = await loop.run_in_executor(
            None, self._history.fetch_user_history, member.id, True, False
        )
        lenient = has_any_role(member, self._config.lenient_role_ids)

        # this snapshot is used for the rest of the operation even if the cache is refreshed meanwhile
        rules = select_rule_set(self._rule_cache, mentions, lenient)
        if not rules:
            if lenient:
                self._log.warning(
                    "%s has a lenient role and no punishment matched %s; not punishing",
                    member.id,
                    [m.user for m in mentions],
                )
            else:
                self._log.warning("No punishment configured for mentions %s", [m.user for m in mentions])
            return None

        rule = select_tier(rules, len(history))
        now = utcnow()
        ends_at = compute_ends_at(rule, now)
        expires_at = None
        if self._config.history_expiry_days:
            expires_at = now + dt.timedelta(days=self._config.history_expiry_days)

        record = await loop.run_in_executor(None, self._history.create, member.id, ends_at, expires_at)

        pinged = list(dict.fromkeys(f"<@{m.user}>" for m in mentions))
        await self._notify(member, guild, rule, ends_at, pinged, history)

        applied = False
        if self._config.dry_run:
            self._log.info("Dry run: skipping %s for %s", rule.type.value, member.id)
        else:
            applied = await self._apply(guild, member, rule)

        self._log.info(
            "%s was %s (offence #%d, lenient=%s, rule #%d for %s %s)",
            member.id,
            embeds.punishment_reason(rule),
            len(history) + 1,
            lenient,
            rule.priority_index,
            rule.target.value,
            rule.target_key,
        )
        return PunishmentOutcome(
            user_id=member.id,
            rule=rule,
            history_count=len(history),
            lenient=lenient,
            ends_at=ends_at,
            history=record,
            applied=applied,
        )

    async def _resolve_member(self, guild: discord.Guild, user_id: int) -> Optional[discord.Member]:
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except discord.NotFound:
            return None

    async def _notify(
        self,
        member: discord.Member,
        guild: discord.Guild,
        rule: PunishmentRuleData,
        ends_at: Optional[dt.datetime],
        pinged: List[str],
        history: Sequence[HistoryEntry],
    ) -> None:
        data = embeds.punishment_notice(guild.name, rule, ends_at, pinged, history)
        try:
            await member.send(embed=embeds.to_embed(data))
        except discord.HTTPException:
            self._log.warning("Failed to DM punishment notice to %s", member.id)

    async def _apply(self, guild: discord.Guild, member: discord.Member, rule: PunishmentRuleData) -> bool:
        reason = embeds.punishment_reason(rule)
        try:
            if rule.type is PunishmentType.BAN:
                await guild.ban(member, reason=reason, delete_message_seconds=BAN_DELETE_MESSAGE_SECONDS)
            elif rule.type is PunishmentType.MUTE:
                if self._config.mute_role_id is None:
                    self._log.warning("Cannot mute %s: no mute role configured", member.id)
                    return False
                await member.add_roles(discord.Object(id=self._config.mute_role_id), reason=reason)
            elif rule.type is PunishmentType.KICK:
                if not guild.me.guild_permissions.kick_members:
                    self._log.warning("Missing permission to kick %s", member.id)
                    return False
                await guild.kick(member, reason=reason)
        except discord.HTTPException:
            self._log.warning("Failed to %s member %s", rule.type.value, member.id, exc_info=True)
            return False
        return True
