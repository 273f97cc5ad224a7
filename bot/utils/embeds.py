from __future__ import annotations

import datetime as dt
from typing import Any, Dict, Optional, Sequence

import discord

from bot.services.history_service import HistoryEntry
from bot.services.rule_store import PunishmentRuleData
from db.models import PunishmentType, TargetType

RED = 0xE74C3C
ORANGE = 0xE67E22
GREEN = 0x2ECC71
YELLOW = 0xF1C40F

END_OF_TIME = "**the end of time**"


def minutes_to_readable(minutes: Optional[float]) -> str:
    if minutes is None:
        return "0 minutes"
    total = int(minutes)
    days, rem = divmod(total, 60 * 24)
    hours, mins = divmod(rem, 60)
    text = f"{mins} minutes"
    if hours or days:
        text = f"{hours} hours, {text}"
    if days:
        text = f"{days} days, {text}"
    return text


def rule_duration(rule: PunishmentRuleData) -> str:
    if rule.length is None:
        return "eternity"
    return minutes_to_readable(rule.length / 1000 / 60)


def discord_timestamp(value: dt.datetime, style: str = "F") -> str:
    aware = value if value.tzinfo else value.replace(tzinfo=dt.timezone.utc)
    return f"<t:{int(aware.timestamp())}:{style}>"


def target_mention(target: TargetType | str, key: Optional[int]) -> str:
    if key is None:
        return "everyone"
    return f"<@&{key}>" if TargetType(target) is TargetType.ROLE else f"<@{key}>"


def to_embed(data: Dict[str, Any]) -> discord.Embed:
    return discord.Embed.from_dict(data)


_VERBS = {
    PunishmentType.BAN: "banned",
    PunishmentType.MUTE: "muted",
    PunishmentType.KICK: "kicked",
}


def punishment_reason(rule: PunishmentRuleData) -> str:
    verb = _VERBS[rule.type].capitalize()
    if rule.type is PunishmentType.KICK:
        return f"{verb} for pinging users they shouldn't."
    if rule.length is None:
        return f"Permanently {_VERBS[rule.type]} for pinging users they shouldn't."
    return f"{verb} for {rule_duration(rule)} for pinging users they shouldn't."


def punishment_notice(
    guild_name: str,
    rule: PunishmentRuleData,
    ends_at: Optional[dt.datetime],
    pinged: Sequence[str],
    history: Sequence[HistoryEntry],
) -> Dict[str, Any]:
    """Direct-message embed sent to an offender."""
    verb = _VERBS[rule.type]
    people = "person" if len(pinged) == 1 else "people"
    lines = []
    if rule.type is PunishmentType.KICK:
        lines.append(f"You've been kicked from **{guild_name}**.")
    elif ends_at is None:
        lines.append(f"You've been {verb} until {END_OF_TIME}.")
    else:
        lines.append(f"You've been {verb} for **{rule_duration(rule)}**.")
    lines.append(f"You pinged the following {people}: {', '.join(pinged)}")
    if ends_at is not None and rule.type is not PunishmentType.KICK:
        lines.append(f"\nThis ends on **{discord_timestamp(ends_at)}**.")

    offence = len(history) + 1
    if offence > 1:
        lines.append(f"\nThis is offence **#{offence}**. Punishments get harsher every time.")

    data: Dict[str, Any] = {
        "title": f"You've been {verb} on {guild_name}.",
        "description": "\n".join(lines),
        "color": RED,
        "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
        "footer": {"text": "C'mon, you know better than this!"},
    }
    if history:
        data["fields"] = [
            {
                "name": "Previous punishments",
                "value": "\n".join(_history_line(item) for item in history[-10:]),
            }
        ]
    return data


def _history_line(item: HistoryEntry) -> str:
    ends = discord_timestamp(item.ends_at, "d") if item.ends_at else "the end of time"
    return f"{discord_timestamp(item.created_at, 'd')} until {ends}"


def rule_list(target: TargetType, key: int, standard: Sequence[PunishmentRuleData], lenient: Sequence[PunishmentRuleData]) -> Dict[str, Any]:
    return {
        "title": f"Punishments for pinging {target.value}",
        "description": (
            "The following punishments are in order based on their **Priority Index**. "
            "This is the order in which punishments are handed out."
        ),
        "color": ORANGE,
        "fields": [
            {"name": "Applies to:", "value": f"**{target.value} {target_mention(target, key)}**"},
            {"name": "Lenient Punishments", "value": _rules_value(lenient), "inline": True},
            {"name": "Standard Punishments", "value": _rules_value(standard), "inline": True},
        ],
    }


def _rules_value(rules: Sequence[PunishmentRuleData]) -> str:
    if not rules:
        return "No punishments found."
    return "\n".join(f"*#{r.priority_index}*, **{r.type.value}** for ___{rule_duration(r)}___" for r in rules)


def history_list(username: str, history: Sequence[HistoryEntry], now: dt.datetime) -> Dict[str, Any]:
    description = (
        "The following is a list of punishments in the order they were given. "
        "This includes expired and completed punishments."
    )
    if not history:
        description += "\n\n**There is no punishment history.**"
    fields = []
    for idx, item in enumerate(history, start=1):
        ended = " ___*No Longer Active*___" if item.has_ended(now) or not item.active else ""
        ends = discord_timestamp(item.ends_at) if item.ends_at else END_OF_TIME
        expires = discord_timestamp(item.expires_at) if item.expires_at else END_OF_TIME
        fields.append(
            {
                "name": f"Punishment #{idx}{ended}",
                "value": (
                    f"Punishment Given at {discord_timestamp(item.created_at)}\n"
                    f"Punishment Completes at {ends}\n"
                    f"Punishment Expires at {expires}"
                ),
            }
        )
    return {
        "title": f"Ping Punishments for {username}",
        "description": description,
        "color": RED,
        "fields": fields[:25],
    }


def help_embed(prefix: str) -> Dict[str, Any]:
    return {
        "title": f"{prefix}punishments Walkthrough",
        "description": (
            "Returns this embed.\n"
            f"```{prefix}punishments help```\n"
            "Returns a single embed for each role or user that has ping protection.\n"
            f"```{prefix}punishments list```\n"
            "Returns all punishments that the selected user has received by the bot.\n"
            f"```{prefix}punishments for @user```\n"
            "Creates a new punishment tier.\n"
            f"```{prefix}punishments create [PriorityIndex] [Type] [Target] [TargetKey] [Lenient] [Length?]```\n"
            "Removes an existing punishment tier. History is not affected.\n"
            f"```{prefix}punishments remove [PriorityIndex] [Target] [TargetKey] [Lenient]```"
        ),
        "color": YELLOW,
    }


def create_usage_embed(prefix: str) -> Dict[str, Any]:
    return {
        "title": "How To Create A Punishment",
        "description": f"`{prefix}punishments create [PriorityIndex] [Type] [Target] [TargetKey] [Lenient] [Length?]`",
        "color": GREEN,
        "fields": [
            {"name": "Priority Index", "value": "`Numeric, [0 - 10000]` (lower number means punishment is given first)"},
            {"name": "Type", "value": "`Ban | Mute | Kick`"},
            {"name": "Target", "value": "`Role | User` (role means anyone with the role has ping protection)"},
            {"name": "Target Key", "value": "`@user | @role | Role ID | User ID`"},
            {"name": "Lenient", "value": "`yes | no | true | false` (separate track for members with a lenient role)"},
            {
                "name": "Length *(optional)*",
                "value": "Length in minutes (1 day is 1440 minutes).\n**If blank, the punishment is indefinite**",
            },
        ],
    }


def remove_usage_embed(prefix: str) -> Dict[str, Any]:
    return {
        "title": "How To Remove A Punishment",
        "description": (
            f"`{prefix}punishments remove [PriorityIndex] [Target] [TargetKey] [Lenient]`\n"
            "**Please Note:** removing a punishment does **not** affect punishment history."
        ),
        "color": RED,
    }
