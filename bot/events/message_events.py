from __future__ import annotations

import logging

import discord
from discord.ext import commands

from bot.bot import DEFAULT_EXTEND_MINUTES, PingGuardBot
from bot.utils import embeds
from bot.utils.command_args import parse_create_args, parse_remove_args
from bot.utils.message_analysis import parse_snowflake
from db.errors import DatabaseError
from db.models import utcnow

log = logging.getLogger(__name__)

NOTICE_LIFETIME_SECONDS = 30


def setup(bot: PingGuardBot) -> None:
    prefix = bot.guard_config.command_prefix

    def moderator_only():
        async def predicate(ctx: commands.Context) -> bool:
            return ctx.guild is not None and bot.is_moderator(ctx.author)

        return commands.check(predicate)

    def monitored_only():
        async def predicate(ctx: commands.Context) -> bool:
            if ctx.guild is None:
                return False
            member = ctx.guild.get_member(ctx.author.id) or ctx.author
            return bot.rule_cache.is_monitored_member(member)

        return commands.check(predicate)

    @bot.event
    async def on_ready() -> None:
        log.info("Logged in as %s (%s)", bot.user, bot.user and bot.user.id)

    @bot.event
    async def on_message(message: discord.Message) -> None:
        try:
            await bot.handle_message(message)
        except Exception:
            log.exception("Failed to handle message %s from %s", message.id, message.author.id)
        await bot.process_commands(message)

    @bot.event
    async def on_command_error(ctx: commands.Context, error: commands.CommandError) -> None:
        if isinstance(error, (commands.CheckFailure, commands.CommandNotFound)):
            return
        if isinstance(error, commands.UserInputError):
            await ctx.send(str(error))
            return
        log.error(
            "%s executed %r: %s",
            ctx.author,
            ctx.message.content,
            error,
            exc_info=getattr(error, "original", error),
        )

    @bot.command(name="ping")
    @commands.guild_only()
    async def ping(ctx: commands.Context) -> None:
        reply = await ctx.send("Ping?")
        api_latency = (reply.created_at - ctx.message.created_at).total_seconds() * 1000
        await reply.edit(
            content=f"Pong! Bot Latency {round(bot.latency * 1000)}ms. API Latency {round(api_latency)}ms."
        )

    @bot.group(name="punishments", invoke_without_command=True)
    @moderator_only()
    async def punishments(ctx: commands.Context) -> None:
        await ctx.send(embed=embeds.to_embed(embeds.help_embed(prefix)))

    @punishments.command(name="help")
    async def punishments_help(ctx: commands.Context) -> None:
        await ctx.send(embed=embeds.to_embed(embeds.help_embed(prefix)))

    @punishments.command(name="list")
    async def punishments_list(ctx: commands.Context) -> None:
        targets = bot.rule_targets()
        if not targets:
            await ctx.send("There are no punishments configured.")
            return
        for target, key in targets:
            track = bot.rule_cache.get_track(target, key)
            await ctx.send(embed=embeds.to_embed(embeds.rule_list(target, key, track.standard, track.lenient)))

    @punishments.command(name="create")
    async def punishments_create(ctx: commands.Context, *, raw: str = "") -> None:
        try:
            args = parse_create_args(raw)
        except ValueError as exc:
            await ctx.send(
                f"Cannot create punishment: {exc}.",
                embed=embeds.to_embed(embeds.create_usage_embed(prefix)),
            )
            return
        try:
            rule = await bot.create_rule(args)
        except DatabaseError as exc:
            log.warning("Failed to create punishment rule: %s", exc)
            await ctx.send(f"Failed to create punishment #{args.priority_index}: {exc}")
            return
        await ctx.send(
            f"Created punishment #{rule.priority_index}: **{rule.type.value}** for "
            f"{embeds.rule_duration(rule)} when pinging {rule.target.value} "
            f"{embeds.target_mention(rule.target, rule.target_key)}"
            f"{' (lenient)' if rule.lenient else ''}.",
            allowed_mentions=discord.AllowedMentions.none(),
        )

    @punishments.command(name="remove")
    async def punishments_remove(ctx: commands.Context, *, raw: str = "") -> None:
        try:
            args = parse_remove_args(raw)
        except ValueError as exc:
            await ctx.send(
                f"Cannot remove punishment: {exc}.",
                embed=embeds.to_embed(embeds.remove_usage_embed(prefix)),
            )
            return
        try:
            removed = await bot.remove_rule(args)
        except DatabaseError as exc:
            log.warning("Failed to remove punishment rule: %s", exc)
            await ctx.send(f"Failed to remove punishment #{args.priority_index}: {exc}")
            return
        if not removed:
            await ctx.send(f"Punishment #{args.priority_index} does not exist.")
            return
        await ctx.send(f"Removed punishment #{args.priority_index}.")

    @punishments.command(name="for")
    async def punishments_for(ctx: commands.Context, *, raw: str = "") -> None:
        user_id = parse_snowflake(raw) if raw else None
        if user_id is None:
            await ctx.send(f"Usage: `{prefix}punishments for @user`")
            return
        try:
            history = await bot.fetch_full_history(user_id)
        except DatabaseError as exc:
            log.warning("Failed to fetch punishment history for %s: %s", user_id, exc)
            await ctx.send("Failed to fetch punishment history.")
            return
        member = ctx.guild.get_member(user_id)
        username = member.display_name if member else str(user_id)
        await ctx.send(embed=embeds.to_embed(embeds.history_list(username, history, utcnow())))

    @bot.command(name="extend")
    @commands.guild_only()
    @monitored_only()
    async def extend(ctx: commands.Context, minutes: int = DEFAULT_EXTEND_MINUTES) -> None:
        if minutes < 0:
            await ctx.send("Please enter a positive number of minutes to extend.")
            return
        if not await bot.extend_window(ctx.author.id, minutes):
            await ctx.send("Could not save your ping window, try again.")
            return
        until = bot.tracker.last_active_until(ctx.author.id)
        await ctx.send(
            f"<@{ctx.author.id}>, you'll be able to be pinged until **{embeds.discord_timestamp(until)}**.\n"
            "Please note that this command should only be used if you plan on going AFK. "
            f"Once you speak, the timer will reset to **{bot.guard_config.block_timeout_minutes} minutes** "
            "after your last message.",
            allowed_mentions=discord.AllowedMentions.none(),
            delete_after=NOTICE_LIFETIME_SECONDS,
        )

    @bot.command(name="clear", aliases=["end", "stop"])
    @commands.guild_only()
    @monitored_only()
    async def clear(ctx: commands.Context) -> None:
        if not await bot.clear_window(ctx.author.id):
            await ctx.send("Could not save your ping window, try again.")
            return
        await ctx.send(
            f"<@{ctx.author.id}>, you'll no longer be able to be pinged.",
            allowed_mentions=discord.AllowedMentions.none(),
            delete_after=bot.guard_config.notice_delete_after_seconds,
        )
