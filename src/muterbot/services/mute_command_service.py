from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any

import discord

from muterbot.services.command_service import is_candidate, parse_command
from muterbot.services.dispatch_service import DispatchResult, DispatchService
from muterbot.services.executor_service import ExecutorRegistry
from muterbot.services.lifecycle_service import LifecycleCoordinator
from muterbot.services.logger_service import LoggerService
from muterbot.services.target_service import resolve_targets


class MuteOutcome(str, Enum):
    NOT_IN_VOICE = "not_in_voice"
    NOTHING_TO_DO = "nothing_to_do"
    NO_EXECUTORS = "no_executors"
    DONE = "done"


@dataclass(frozen=True)
class CommandReport:
    outcome: MuteOutcome
    new_mute_state: bool
    result: DispatchResult | None = None

    def reply_text(self) -> str:
        if self.outcome is MuteOutcome.NOT_IN_VOICE:
            return ":x: **You must be in a voice channel**"
        if self.outcome is MuteOutcome.NOTHING_TO_DO:
            return ":x: **No one to mute/unmute**"
        if self.outcome is MuteOutcome.NO_EXECUTORS or self.result is None:
            return ":x: **No clients available**"
        state = "true" if self.new_mute_state else "false"
        return (
            f":salad: **Set mute to {state} for {self.result.success_count} users, "
            f"took {self.result.elapsed_sec:.3f}s with {self.result.executor_count} clients**"
        )


class MuteCommandService:
    def __init__(
        self,
        registry: ExecutorRegistry,
        dispatcher: DispatchService,
        lifecycle: LifecycleCoordinator,
        logger: LoggerService,
        *,
        cleanup_delay_sec: float,
    ) -> None:
        self.registry = registry
        self.dispatcher = dispatcher
        self.lifecycle = lifecycle
        self.logger = logger
        self.cleanup_delay_sec = cleanup_delay_sec
        # One bulk operation at a time across every guild; executors share rate limits.
        self._lock = asyncio.Lock()

    async def execute(self, guild: discord.Guild, invoker_id: int, new_mute_state: bool) -> CommandReport:
        async with self._lock:
            return await self._execute_locked(guild, invoker_id, new_mute_state)

    async def handle_message(self, message: Any, prefix: str) -> CommandReport | None:
        if not is_candidate(message):
            return None
        new_mute_state = parse_command(message.content, prefix)
        if new_mute_state is None:
            return None
        if self.lifecycle.stopping:
            self.logger.log("command.ignored_stopping", level="debug", message_id=message.id)
            return None
        async with self.lifecycle.in_flight():
            async with self._lock:
                report = await self._execute_locked(message.guild, message.author.id, new_mute_state)
                await self.send_reply_and_cleanup(message, report.reply_text())
        return report

    async def _execute_locked(self, guild: discord.Guild, invoker_id: int, new_mute_state: bool) -> CommandReport:
        resolution = resolve_targets(guild, invoker_id, new_mute_state)
        if resolution is None:
            return CommandReport(MuteOutcome.NOT_IN_VOICE, new_mute_state)
        if not resolution.target_ids:
            return CommandReport(MuteOutcome.NOTHING_TO_DO, new_mute_state)
        executors = await self.registry.eligible(guild, resolution.channel)
        if not executors:
            self.logger.log("mute.no_executors", guild_id=guild.id, channel_id=resolution.channel.id)
            return CommandReport(MuteOutcome.NO_EXECUTORS, new_mute_state)
        result = await self.dispatcher.dispatch(guild.id, resolution.target_ids, executors, new_mute_state)
        self.logger.log(
            "mute.done",
            guild_id=guild.id,
            channel_id=resolution.channel.id,
            mute=new_mute_state,
            succeeded=result.success_count,
            failed=result.failure_count,
            executors=result.executor_count,
            elapsed_sec=round(result.elapsed_sec, 3),
        )
        return CommandReport(MuteOutcome.DONE, new_mute_state, result)

    async def send_reply_and_cleanup(self, message: Any, text: str) -> None:
        try:
            reply = await message.reply(text)
        except discord.HTTPException as exc:
            self.logger.log("reply.failed", level="error", message_id=message.id, error=str(exc))
        else:
            self.logger.log("reply.sent", level="debug", reply_id=reply.id)
            self.schedule_cleanup(reply)
        finally:
            self.schedule_cleanup(message)

    def schedule_cleanup(self, message: Any) -> asyncio.Task:
        return self.lifecycle.track(self._cleanup(message), name=f"cleanup-{message.id}")

    async def _cleanup(self, message: Any) -> None:
        await self.lifecycle.sleep_unless_stopping(self.cleanup_delay_sec)
        try:
            await message.delete()
        except discord.HTTPException as exc:
            self.logger.log("cleanup.failed", level="error", message_id=message.id, error=str(exc))
            return
        self.logger.log("cleanup.done", level="debug", message_id=message.id)
