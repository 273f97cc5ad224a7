from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from bot.utils.message_analysis import parse_snowflake
from db.models import PunishmentType, TargetType

TRUTHY = {"1", "yes", "true", "y", "on"}
FALSY = {"0", "no", "false", "n", "off"}
MAX_PRIORITY_INDEX = 10000


@dataclass(frozen=True, slots=True)
class CreateRuleArgs:
    priority_index: int
    type: PunishmentType
    target: TargetType
    target_key: int
    lenient: bool
    # minutes as typed by the moderator, None means indefinite
    length_minutes: Optional[int] = None

    @property
    def length_ms(self) -> Optional[int]:
        if self.length_minutes is None:
            return None
        return self.length_minutes * 60 * 1000


@dataclass(frozen=True, slots=True)
class RemoveRuleArgs:
    priority_index: int
    target: TargetType
    target_key: int
    lenient: bool


def parse_create_args(raw: str) -> CreateRuleArgs:
    """`<index> <type> <target> <key> <lenient> [length]`, raising ValueError with a readable message."""
    parts = raw.split()
    if len(parts) < 5:
        raise ValueError("not enough arguments")
    index, type_raw, target_raw, key_raw, lenient_raw = parts[:5]
    length_raw = parts[5] if len(parts) > 5 else None

    punishment_type = _parse_choice(type_raw, PunishmentType, "punishment type is invalid")
    length = None
    if length_raw is not None and length_raw.isdigit():
        length = int(length_raw)

    return CreateRuleArgs(
        priority_index=_parse_index(index),
        type=punishment_type,
        target=_parse_choice(target_raw, TargetType, "punishment target is invalid"),
        target_key=_parse_key(key_raw),
        lenient=_parse_bool(lenient_raw),
        length_minutes=length,
    )


def parse_remove_args(raw: str) -> RemoveRuleArgs:
    """`<index> <target> <key> <lenient>`"""
    parts = raw.split()
    if len(parts) < 4:
        raise ValueError("not enough arguments")
    index, target_raw, key_raw, lenient_raw = parts[:4]
    return RemoveRuleArgs(
        priority_index=_parse_index(index),
        target=_parse_choice(target_raw, TargetType, "punishment target is invalid"),
        target_key=_parse_key(key_raw),
        lenient=_parse_bool(lenient_raw),
    )


def _parse_index(raw: str) -> int:
    if not raw.isdigit():
        raise ValueError("index must be numeric")
    value = int(raw)
    if value > MAX_PRIORITY_INDEX:
        raise ValueError(f"index must be between 0 and {MAX_PRIORITY_INDEX}")
    return value


def _parse_choice(raw: str, enum_type, error: str):
    try:
        return enum_type(raw.lower())
    except ValueError:
        raise ValueError(error) from None


def _parse_key(raw: str) -> int:
    key = parse_snowflake(raw)
    if key is None:
        raise ValueError("punishment target key must be numeric or a mention")
    return key


def _parse_bool(raw: str) -> bool:
    value = raw.lower()
    if value in TRUTHY:
        return True
    if value in FALSY:
        return False
    raise ValueError("punishment leniency must be boolean(ish)")
