from __future__ import annotations

from typing import Any


COMMAND_TO_MUTE_STATE: dict[str, bool] = {
    "m": True,
    "mu": True,
    "mute": True,
    "u": False,
    "um": False,
    "unmute": False,
}


def parse_command(content: str, prefix: str) -> bool | None:
    if not prefix or not content.startswith(prefix):
        return None
    return COMMAND_TO_MUTE_STATE.get(content[len(prefix):])


def is_candidate(message: Any) -> bool:
    if message.author.bot:
        return False
    return message.guild is not None and message.channel is not None
