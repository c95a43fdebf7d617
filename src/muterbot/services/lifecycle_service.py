from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Coroutine

from muterbot.errors import ShutdownTimeoutError
from muterbot.services.logger_service import LoggerService


SessionCloser = Callable[[], Awaitable["Exception | None"]]


class LifecycleCoordinator:
    """
    Tracks in-flight work and drives the orderly shutdown of every session.

    Shutdown never interrupts running work: once stop is requested the driver waits
    for the in-flight count to reach zero, then closes the sessions. Background
    waits that opt in through `sleep_unless_stopping` end early instead.
    """

    def __init__(self, logger: LoggerService, *, shutdown_timeout_sec: float) -> None:
        self.logger = logger
        self.shutdown_timeout_sec = shutdown_timeout_sec
        self.stop_reason = ""
        self._stop_event = asyncio.Event()
        self._drained = asyncio.Event()
        self._drained.set()
        self._finished = asyncio.Event()
        self._in_flight = 0
        self._tasks: set[asyncio.Task] = set()
        self._driver: asyncio.Task | None = None
        self._close_error: Exception | None = None

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    @property
    def in_flight_count(self) -> int:
        return self._in_flight

    def request_stop(self, reason: str) -> None:
        if self._stop_event.is_set():
            return
        self.stop_reason = reason
        self.logger.log("lifecycle.stop_requested", reason=reason, in_flight=self._in_flight)
        self._stop_event.set()

    async def wait_stopping(self) -> None:
        await self._stop_event.wait()

    async def sleep_unless_stopping(self, delay: float) -> bool:
        """Sleep for `delay` seconds; returns True if stop cut the wait short."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    @asynccontextmanager
    async def in_flight(self) -> AsyncIterator[None]:
        self._enter()
        try:
            yield
        finally:
            self._leave()

    def track(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        self._enter()
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def start(self, close_sessions: SessionCloser) -> None:
        if self._driver is not None:
            return
        self._driver = asyncio.create_task(self._drive_shutdown(close_sessions), name="lifecycle-shutdown")

    async def wait_for_completion(self) -> Exception | None:
        await self._stop_event.wait()
        try:
            await asyncio.wait_for(self._finished.wait(), timeout=self.shutdown_timeout_sec)
        except asyncio.TimeoutError:
            raise ShutdownTimeoutError(
                f"shutdown timed out after {self.shutdown_timeout_sec}s with {self._in_flight} task(s) in flight"
            ) from None
        return self._close_error

    async def _drive_shutdown(self, close_sessions: SessionCloser) -> None:
        await self._stop_event.wait()
        self.logger.log("lifecycle.shutting_down", in_flight=self._in_flight)
        await self._drained.wait()
        try:
            self._close_error = await close_sessions()
        except Exception as exc:  # noqa: BLE001
            self._close_error = exc
        self.logger.log("lifecycle.sessions_closed", error=str(self._close_error) if self._close_error else None)
        self._finished.set()

    def _enter(self) -> None:
        self._in_flight += 1
        self._drained.clear()

    def _leave(self) -> None:
        self._in_flight -= 1
        if self._in_flight == 0:
            self._drained.set()

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._leave()
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.log("lifecycle.task_failed", level="error", task=task.get_name(), error=repr(exc))
