from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import discord


@dataclass(frozen=True)
class TargetResolution:
    channel: Any
    target_ids: tuple[int, ...]


def resolve_targets(guild: discord.Guild, invoker_id: int, new_mute_state: bool) -> TargetResolution | None:
    """
    Work out who in the invoker's voice channel still needs their server mute changed.

    Returns None when the invoker is not connected to voice. Bots and members whose
    mute flag already equals `new_mute_state` are left out, so running the same
    command twice against a settled channel yields no targets the second time.
    """

    invoker = guild.get_member(invoker_id)
    voice = invoker.voice if invoker is not None else None
    if voice is None or voice.channel is None:
        return None
    channel = voice.channel
    targets: dict[int, None] = {}
    for user_id, state in channel.voice_states.items():
        member = guild.get_member(user_id)
        if member is None or member.bot:
            continue
        if bool(state.mute) == new_mute_state:
            continue
        targets[member.id] = None
    return TargetResolution(channel=channel, target_ids=tuple(targets))
