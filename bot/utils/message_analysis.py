from __future__ import annotations

import re
from collections.abc import Collection
from enum import Enum
from typing import Optional

SNOWFLAKE_PATTERN = re.compile(r"^\d{1,20}$")
MENTION_PATTERN = re.compile(r"^<(@&?!?)(\d+)>$")


class MessageKind(str, Enum):
    """Computed once per inbound message and handed to every consumer."""

    CHAT = "chat"
    COMMAND = "command"


def classify_message(content: str, prefix: str, command_names: Collection[str]) -> MessageKind:
    if not prefix or not content.startswith(prefix):
        return MessageKind.CHAT
    rest = content[len(prefix):]
    # discord.py reads the command name right after the prefix
    if not rest or rest[0].isspace():
        return MessageKind.CHAT
    invoked = rest.split(maxsplit=1)
    if invoked[0].lower() in command_names:
        return MessageKind.COMMAND
    return MessageKind.CHAT


def parse_snowflake(raw: str) -> Optional[int]:
    """Accept a bare id or a user/role mention and return the id."""
    value = raw.strip()
    match = MENTION_PATTERN.match(value)
    if match:
        return int(match.group(2))
    if SNOWFLAKE_PATTERN.match(value):
        return int(value)
    return None


def message_link(guild_id: int, channel_id: int, message_id: int) -> str:
    return f"https://discord.com/channels/{guild_id}/{channel_id}/{message_id}"
