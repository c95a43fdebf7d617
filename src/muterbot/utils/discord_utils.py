from __future__ import annotations

import discord


async def get_guild_member(guild: discord.Guild, user_id: int) -> discord.Member | None:
    """
    Resolve a guild Member by id.

    Tries the cache first and falls back to an API fetch. Returns None only when the
    user is not a member of the guild; any other HTTP failure propagates.
    """

    cached = guild.get_member(user_id)
    if cached is not None:
        return cached
    try:
        return await guild.fetch_member(user_id)
    except discord.NotFound:
        return None
