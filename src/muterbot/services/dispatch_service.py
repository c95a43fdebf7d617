from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Sequence

import discord

from muterbot.services.executor_service import Executor
from muterbot.services.logger_service import LoggerService


@dataclass(frozen=True)
class DispatchResult:
    success_count: int
    target_count: int
    executor_count: int
    elapsed_sec: float

    @property
    def failure_count(self) -> int:
        return self.target_count - self.success_count


def plan_dispatch(target_ids: Sequence[int], executors: Sequence[Executor]) -> list[tuple[int, Executor]]:
    if not executors:
        raise ValueError("cannot plan a dispatch without executors")
    return [(target_id, executors[index % len(executors)]) for index, target_id in enumerate(target_ids)]


class DispatchService:
    def __init__(self, logger: LoggerService) -> None:
        self.logger = logger

    async def dispatch(
        self,
        guild_id: int,
        target_ids: Sequence[int],
        executors: Sequence[Executor],
        new_mute_state: bool,
    ) -> DispatchResult:
        plan = plan_dispatch(target_ids, executors)
        started = time.perf_counter()
        outcomes = await asyncio.gather(
            *(self._apply(guild_id, target_id, executor, new_mute_state) for target_id, executor in plan),
            return_exceptions=True,
        )
        elapsed = time.perf_counter() - started

        success_count = 0
        for (target_id, executor), outcome in zip(plan, outcomes):
            if isinstance(outcome, BaseException):
                self.logger.log(
                    "mute.crashed",
                    level="error",
                    executor_id=executor.user_id,
                    target_id=target_id,
                    error=repr(outcome),
                )
            elif outcome:
                success_count += 1

        return DispatchResult(
            success_count=success_count,
            target_count=len(plan),
            executor_count=len({executor.user_id for _, executor in plan}),
            elapsed_sec=elapsed,
        )

    async def _apply(self, guild_id: int, target_id: int, executor: Executor, new_mute_state: bool) -> bool:
        try:
            await executor.set_mute(guild_id, target_id, new_mute_state)
        except discord.HTTPException as exc:
            self.logger.log(
                "mute.failed",
                level="error",
                executor_id=executor.user_id,
                executor=executor.name,
                target_id=target_id,
                mute=new_mute_state,
                error=str(exc),
            )
            return False
        self.logger.log(
            "mute.applied",
            executor_id=executor.user_id,
            executor=executor.name,
            target_id=target_id,
            mute=new_mute_state,
        )
        return True
