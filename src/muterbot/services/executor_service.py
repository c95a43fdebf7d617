from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterator, Sequence

import discord

from muterbot.errors import StartupError
from muterbot.services.logger_service import LoggerService
from muterbot.utils.discord_utils import get_guild_member


@dataclass(frozen=True)
class Executor:
    client: Any
    user_id: int
    name: str = ""

    async def set_mute(self, guild_id: int, user_id: int, mute: bool) -> None:
        await self.client.http.edit_member(guild_id, user_id, mute=mute)

    async def close(self) -> None:
        await self.client.close()


class ExecutorRegistry:
    def __init__(self, executors: Sequence[Executor], logger: LoggerService) -> None:
        if not executors:
            raise StartupError("no tokens provided")
        self._executors: tuple[Executor, ...] = tuple(executors)
        self.logger = logger

    @property
    def primary(self) -> Executor:
        return self._executors[0]

    def __len__(self) -> int:
        return len(self._executors)

    def __iter__(self) -> Iterator[Executor]:
        return iter(self._executors)

    async def eligible(self, guild: discord.Guild, channel: discord.abc.GuildChannel) -> list[Executor]:
        usable: list[Executor] = []
        for executor in self._executors:
            try:
                member = await get_guild_member(guild, executor.user_id)
            except discord.HTTPException as exc:
                self.logger.log(
                    "executor.permission_check_failed",
                    level="error",
                    executor_id=executor.user_id,
                    channel_id=channel.id,
                    error=str(exc),
                )
                continue
            if member is None:
                self.logger.log("executor.not_in_guild", level="debug", executor_id=executor.user_id, guild_id=guild.id)
                continue
            if not channel.permissions_for(member).mute_members:
                self.logger.log("executor.no_mute_permission", level="debug", executor_id=executor.user_id, channel_id=channel.id)
                continue
            usable.append(executor)
        return usable

    async def close_all(self) -> Exception | None:
        first_error: Exception | None = None
        for executor in self._executors:
            try:
                await executor.close()
            except Exception as exc:  # noqa: BLE001
                self.logger.log("executor.close_failed", level="error", executor_id=executor.user_id, error=str(exc))
                if first_error is None:
                    first_error = exc
        return first_error


def _new_rest_client() -> discord.Client:
    # Auxiliary executors only issue REST calls; they never open a gateway.
    return discord.Client(intents=discord.Intents.none())


async def connect_auxiliary_executors(
    tokens: Sequence[str],
    logger: LoggerService,
    *,
    client_factory: Callable[[], Any] | None = None,
) -> list[Executor]:
    factory = client_factory or _new_rest_client
    executors: list[Executor] = []
    for index, token in enumerate(tokens, start=1):
        client = factory()
        try:
            await client.login(token)
            user = client.user
            if user is None:
                raise RuntimeError("login returned no user")
        except Exception as exc:  # noqa: BLE001
            await close_clients([client, *(executor.client for executor in executors)], logger)
            raise StartupError(f"auxiliary client {index} failed to initialize: {exc}") from exc
        logger.log("executor.auxiliary_ready", index=index, user=str(user), user_id=user.id)
        executors.append(Executor(client=client, user_id=user.id, name=str(user)))
    return executors


async def close_clients(clients: Sequence[Any], logger: LoggerService) -> None:
    for client in clients:
        try:
            await client.close()
        except Exception as exc:  # noqa: BLE001
            logger.log("executor.close_failed", level="error", error=str(exc))
