from __future__ import annotations

import pytest

from bot.utils.command_args import parse_create_args, parse_remove_args
from bot.utils.message_analysis import MessageKind, classify_message, message_link, parse_snowflake
from db.models import PunishmentType, TargetType


def test_parse_create_args_with_mention_and_length() -> None:
    args = parse_create_args("2 Mute user <@!1234> yes 90")

    assert args.priority_index == 2
    assert args.type is PunishmentType.MUTE
    assert args.target is TargetType.USER
    assert args.target_key == 1234
    assert args.lenient is True
    assert args.length_minutes == 90
    assert args.length_ms == 90 * 60 * 1000


def test_parse_create_args_without_length_is_indefinite() -> None:
    args = parse_create_args("0 ban role <@&555> no")

    assert args.target is TargetType.ROLE
    assert args.target_key == 555
    assert args.length_ms is None


@pytest.mark.parametrize(
    "raw, message",
    [
        ("x ban user 1 no", "index must be numeric"),
        ("10001 ban user 1 no", "index must be between"),
        ("0 warn user 1 no", "punishment type is invalid"),
        ("0 ban channel 1 no", "punishment target is invalid"),
        ("0 ban user bob no", "target key must be numeric or a mention"),
        ("0 ban user 1 maybe", "leniency must be boolean"),
        ("0 ban user", "not enough arguments"),
    ],
)
def test_parse_create_args_errors(raw: str, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        parse_create_args(raw)


def test_parse_remove_args() -> None:
    args = parse_remove_args("4 role 999 false")

    assert (args.priority_index, args.target, args.target_key, args.lenient) == (4, TargetType.ROLE, 999, False)
    with pytest.raises(ValueError, match="not enough arguments"):
        parse_remove_args("4 role")


def test_classify_message() -> None:
    names = {"extend", "clear", "end", "punishments"}

    assert classify_message("!extend 30", "!", names) is MessageKind.COMMAND
    assert classify_message("!END", "!", names) is MessageKind.COMMAND
    assert classify_message("!unknown", "!", names) is MessageKind.CHAT
    assert classify_message("hey <@1> !extend", "!", names) is MessageKind.CHAT
    assert classify_message("!", "!", names) is MessageKind.CHAT


def test_space_after_prefix_is_not_a_command() -> None:
    names = {"punishments"}

    assert classify_message("! punishments list", "!", names) is MessageKind.CHAT
    assert classify_message("!\tpunishments", "!", names) is MessageKind.CHAT
    assert classify_message("!punishments list", "!", names) is MessageKind.COMMAND


def test_parse_snowflake_and_links() -> None:
    assert parse_snowflake("<@42>") == 42
    assert parse_snowflake("<@!42>") == 42
    assert parse_snowflake("<@&42>") == 42
    assert parse_snowflake(" 42 ") == 42
    assert parse_snowflake("<#42>") is None
    assert parse_snowflake("forty-two") is None
    assert message_link(1, 2, 3) == "https://discord.com/channels/1/2/3"
