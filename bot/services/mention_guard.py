from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

import discord

from bot.services.ping_tracker import PingEligibilityTracker
from bot.services.rule_cache import PunishmentRuleCache
from bot.utils.message_analysis import MessageKind
from bot.utils.permissions import is_privileged
from config import GuardConfig
from db.models import TargetType

if TYPE_CHECKING:
    from bot.services.punishment_engine import PunishmentEngine

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FlaggedMention:
    user: int
    type: TargetType
    role: Optional[int] = None


class MentionGuard:
    def __init__(
        self,
        rule_cache: PunishmentRuleCache,
        tracker: PingEligibilityTracker,
        engine: "PunishmentEngine",
        config: GuardConfig,
        logger: Optional[logging.Logger] = None,
    ):
        self._rule_cache = rule_cache
        self._tracker = tracker
        self._engine = engine
        self._config = config
        self._log = logger or log

    def flagged_mentions(self, message: discord.Message) -> List[FlaggedMention]:
        blocked_users = self._rule_cache.blocked_user_keys()
        blocked_roles = self._rule_cache.blocked_role_keys()

        flagged: List[FlaggedMention] = []
        seen: set[FlaggedMention] = set()

        def add(mention: FlaggedMention) -> None:
            if mention not in seen:
                seen.add(mention)
                flagged.append(mention)

        for user in message.mentions:
            if user.id in blocked_users:
                add(FlaggedMention(user=user.id, type=TargetType.USER))

        if blocked_roles:
            for role_id in sorted(blocked_roles):
                for user in message.mentions:
                    roles = getattr(user, "roles", None)
                    if roles and any(role.id == role_id for role in roles):
                        add(FlaggedMention(user=user.id, type=TargetType.ROLE, role=role_id))
        return flagged

    async def handle_message(self, message: discord.Message, kind: MessageKind = MessageKind.CHAT) -> bool:
        """Returns True when the message involved protected mentions, whether or not it was removed."""
        if message.guild is None or message.author.bot:
            return False
        if message.channel.id in self._config.excluded_channel_ids:
            return False
        if kind is MessageKind.COMMAND and is_privileged(
            message.guild.get_member(message.author.id), self._config.moderator_role_ids
        ):
            return False

        mentions = self.flagged_mentions(message)
        if not mentions:
            return False

        disallowed: List[str] = []
        for mention in mentions:
            if self._tracker.can_be_pinged(mention.user):
                continue
            label = f"<@{mention.user}>"
            if label not in disallowed:
                disallowed.append(label)

        if not disallowed:
            return True

        try:
            await message.delete()
        except discord.HTTPException:
            self._log.warning("Failed to delete message %s in channel %s", message.id, message.channel.id)

        try:
            await message.channel.send(
                f"<@{message.author.id}>, you're not allowed to ping {', '.join(disallowed)} right now.",
                allowed_mentions=discord.AllowedMentions.none(),
                delete_after=self._config.notice_delete_after_seconds,
            )
        except discord.HTTPException:
            self._log.warning("Failed to send ping notice in channel %s", message.channel.id)

        self._log.info(
            "%s pinged %s while they were not pingable", message.author.id, ", ".join(disallowed)
        )
        await self._engine.punish(message, mentions)
        return True
