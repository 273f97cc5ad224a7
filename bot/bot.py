from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import discord
from discord import app_commands
from discord.ext import commands, tasks
from sqlalchemy.orm import sessionmaker

from bot.services.history_service import HistoryEntry, PunishmentHistoryService
from bot.services.mention_guard import MentionGuard
from bot.services.monitored_user_store import MonitoredUserStore
from bot.services.ping_tracker import PingEligibilityTracker
from bot.services.punishment_engine import PunishmentEngine
from bot.services.reconciler import PunishmentReconciler
from bot.services.rule_cache import PunishmentRuleCache
from bot.services.rule_store import PunishmentRuleData, PunishmentRuleStore
from bot.utils import embeds
from bot.utils.command_args import CreateRuleArgs, RemoveRuleArgs
from bot.utils.message_analysis import MessageKind, classify_message
from bot.utils.permissions import is_privileged
from config import AppConfig
from db.models import TargetType, utcnow

log = logging.getLogger(__name__)

DEFAULT_EXTEND_MINUTES = 15


class PingGuardBot(commands.Bot):
    def __init__(
        self,
        app_config: AppConfig,
        rule_store: PunishmentRuleStore,
        history: PunishmentHistoryService,
        monitored_users: MonitoredUserStore,
    ):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        intents.guilds = True

        super().__init__(
            command_prefix=app_config.guard.command_prefix,
            intents=intents,
            application_id=app_config.discord.application_id,
            help_command=None,
        )
        self.app_config = app_config
        self.guard_config = app_config.guard
        self.rule_store = rule_store
        self.history = history
        self.monitored_users = monitored_users

        self.rule_cache = PunishmentRuleCache()
        self.tracker = PingEligibilityTracker(monitored_users, self.rule_cache, self.guard_config)
        self.engine = PunishmentEngine(history, self.rule_cache, self.guard_config)
        self.mention_guard = MentionGuard(self.rule_cache, self.tracker, self.engine, self.guard_config)
        self.reconciler = PunishmentReconciler(
            self, rule_store, self.rule_cache, history, monitored_users, self.guard_config
        )

        self._sync_task: Optional[tasks.Loop] = None
        self._sync_ticks = 0

    async def setup_hook(self) -> None:
        from bot.events import message_events

        message_events.setup(self)
        self._register_slash_commands()
        await self.reload_rules()
        await self.tracker.warm()
        self._start_sync_task()
        await self.tree.sync()
        log.info("PingGuardBot setup complete")

    async def close(self) -> None:
        if self._sync_task is not None:
            self._sync_task.cancel()
        await self.tracker.flush()
        await super().close()

    def command_names(self) -> set[str]:
        names: set[str] = set()
        for command in self.commands:
            names.add(command.name.lower())
            names.update(alias.lower() for alias in command.aliases)
        return names

    def classify(self, message: discord.Message) -> MessageKind:
        return classify_message(message.content or "", self.guard_config.command_prefix, self.command_names())

    async def handle_message(self, message: discord.Message) -> bool:
        if message.guild is None or message.guild.id != self.guard_config.guild_id:
            return False
        kind = self.classify(message)
        # a monitored author talking only moves their own window
        if await self.tracker.handle_incoming_message(message, kind):
            return True
        return await self.mention_guard.handle_message(message, kind)

    def is_moderator(self, member: Optional[discord.Member]) -> bool:
        return is_privileged(member, self.guard_config.moderator_role_ids)

    async def reload_rules(self) -> int:
        return await self.reconciler.reload_rules()

    async def create_rule(self, args: CreateRuleArgs) -> PunishmentRuleData:
        loop = asyncio.get_running_loop()
        rule = await loop.run_in_executor(
            None,
            lambda: self.rule_store.create(
                args.priority_index, args.type, args.target, args.target_key, args.lenient, args.length_ms
            ),
        )
        await self.reload_rules()
        return rule

    async def remove_rule(self, args: RemoveRuleArgs) -> bool:
        loop = asyncio.get_running_loop()
        removed = await loop.run_in_executor(
            None,
            self.rule_store.remove,
            args.priority_index,
            args.target,
            args.target_key,
            args.lenient,
        )
        if removed:
            await self.reload_rules()
        return removed

    async def fetch_full_history(self, user_id: int) -> List[HistoryEntry]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.history.fetch_user_history, user_id, True, True)

    async def extend_window(self, user_id: int, minutes: int) -> bool:
        return await self.tracker.extend(user_id, utcnow(), minutes, immediate=True)

    async def clear_window(self, user_id: int) -> bool:
        return await self.tracker.extend(user_id, utcnow(), -1, immediate=True)

    def _register_slash_commands(self) -> None:
        @self.tree.command(name="extend", description="Stay pingable for longer while you are away.")
        @app_commands.guild_only()
        async def slash_extend(interaction: discord.Interaction, minutes: app_commands.Range[int, 0] = DEFAULT_EXTEND_MINUTES):
            if not self.rule_cache.is_monitored_member(interaction.user):
                await interaction.response.send_message("Your ping window is not being tracked.", ephemeral=True)
                return
            extended = await self.extend_window(interaction.user.id, minutes)
            if not extended:
                await interaction.response.send_message("Could not save your ping window, try again.", ephemeral=True)
                return
            until = self.tracker.last_active_until(interaction.user.id)
            await interaction.response.send_message(
                f"You'll be able to be pinged until **{embeds.discord_timestamp(until)}**.", ephemeral=True
            )

        @self.tree.command(name="clear", description="Immediately stop all pings.")
        @app_commands.guild_only()
        async def slash_clear(interaction: discord.Interaction):
            if not self.rule_cache.is_monitored_member(interaction.user):
                await interaction.response.send_message("Your ping window is not being tracked.", ephemeral=True)
                return
            if await self.clear_window(interaction.user.id):
                await interaction.response.send_message("You'll no longer be able to be pinged.", ephemeral=True)
            else:
                await interaction.response.send_message("Could not save your ping window, try again.", ephemeral=True)

        @self.tree.command(name="punishments_for", description="Show every ping punishment a member has received.")
        @app_commands.guild_only()
        async def slash_punishments_for(interaction: discord.Interaction, member: discord.Member):
            if not self.is_moderator(interaction.user):
                await interaction.response.send_message("You are not allowed to use this command.", ephemeral=True)
                return
            history = await self.fetch_full_history(member.id)
            embed = embeds.to_embed(embeds.history_list(member.display_name, history, utcnow()))
            await interaction.response.send_message(embed=embed, ephemeral=True)

    def _start_sync_task(self) -> None:
        cfg = self.guard_config

        @tasks.loop(seconds=cfg.sync_interval_seconds)
        async def sync_loop() -> None:
            self._sync_ticks += 1
            await self.reconciler.sweep(full=self._sync_ticks % cfg.full_sync_every == 0)

        @sync_loop.before_loop
        async def before_sync_loop() -> None:
            await self.wait_until_ready()

        self._sync_task = sync_loop
        sync_loop.start()
        log.info(
            "Synchronizing punishments every %d seconds (rules reloaded every %d runs)",
            cfg.sync_interval_seconds,
            cfg.full_sync_every,
        )

    def rule_targets(self) -> list[tuple[TargetType, int]]:
        return self.rule_cache.targets()


def create_bot(app_config: AppConfig, session_factory: sessionmaker) -> PingGuardBot:
    rule_store = PunishmentRuleStore(session_factory)
    history = PunishmentHistoryService(session_factory)
    monitored_users = MonitoredUserStore(session_factory)
    return PingGuardBot(app_config, rule_store, history, monitored_users)
