from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest
from discord.gateway import DiscordWebSocket

from muterbot.bot import MuterBot, start_muter_bot
from muterbot.config import Settings
from muterbot.errors import StartupError
from muterbot.services.executor_service import Executor, ExecutorRegistry
from muterbot.services.lifecycle_service import LifecycleCoordinator
from muterbot.services.logger_service import LoggerService
from stubs import StubClient


class StubBot(StubClient):
    connect_error: Exception | None = None
    login_failure: Exception | None = None

    def __init__(self, settings: Settings, logger: LoggerService, lifecycle: LifecycleCoordinator) -> None:
        super().__init__(1, login_error=self.login_failure)
        self.mute_commands = None
        self._ready = asyncio.Event()
        self._stopped = asyncio.Event()

    def attach(self, mute_commands) -> None:
        self.mute_commands = mute_commands

    async def connect(self, *, reconnect: bool) -> None:
        assert reconnect is True
        if self.connect_error is not None:
            raise self.connect_error
        self._ready.set()
        await self._stopped.wait()

    async def wait_until_ready(self) -> None:
        await self._ready.wait()

    async def close(self) -> None:
        self.closed = True
        self._stopped.set()


def _make_settings(tmp_path: Path, tokens: tuple[str, ...]) -> Settings:
    return Settings(
        tokens=tokens,
        command_prefix="$",
        debug=False,
        cleanup_delay_sec=0,
        shutdown_timeout_sec=1,
        debug_log_path=tmp_path / "debug.txt",
    )


def test_empty_token_list_fails_before_any_session(tmp_path: Path) -> None:
    built: list[object] = []

    def factory(*args: object) -> StubBot:
        built.append(args)
        return StubBot(*args)  # type: ignore[arg-type]

    async def scenario() -> None:
        logger = LoggerService()
        lifecycle = LifecycleCoordinator(logger, shutdown_timeout_sec=1)
        await start_muter_bot(_make_settings(tmp_path, ()), logger, lifecycle, bot_factory=factory)

    with pytest.raises(StartupError, match="no tokens provided"):
        asyncio.run(scenario())
    assert built == []


def test_startup_registers_primary_first_and_shutdown_closes_everything(tmp_path: Path) -> None:
    aux = [StubClient(21), StubClient(22)]

    async def scenario() -> tuple[StubBot, Exception | None]:
        logger = LoggerService()
        lifecycle = LifecycleCoordinator(logger, shutdown_timeout_sec=1)
        clients = iter(aux)
        bot = await start_muter_bot(
            _make_settings(tmp_path, ("primary", "aux-1", "aux-2")),
            logger,
            lifecycle,
            bot_factory=StubBot,
            aux_client_factory=lambda: next(clients),
        )
        lifecycle.request_stop("test")
        return bot, await lifecycle.wait_for_completion()

    bot, error = asyncio.run(scenario())
    assert error is None
    registry = bot.mute_commands.registry
    assert [executor.user_id for executor in registry] == [1, 21, 22]
    assert registry.primary.client is bot
    assert bot.closed is True
    assert all(client.closed for client in aux)


def test_primary_login_failure_closes_auxiliaries(tmp_path: Path) -> None:
    aux = StubClient(21)

    class BadTokenBot(StubBot):
        login_failure = RuntimeError("Improper token has been passed.")

    async def scenario() -> None:
        logger = LoggerService()
        lifecycle = LifecycleCoordinator(logger, shutdown_timeout_sec=1)
        await start_muter_bot(
            _make_settings(tmp_path, ("primary", "aux-1")),
            logger,
            lifecycle,
            bot_factory=BadTokenBot,
            aux_client_factory=lambda: aux,
        )

    with pytest.raises(StartupError, match="primary client failed to connect to discord"):
        asyncio.run(scenario())
    assert aux.closed is True


def test_gateway_closing_before_ready_is_a_startup_error(tmp_path: Path) -> None:
    class NoGatewayBot(StubBot):
        connect_error = ConnectionError("gateway refused")

    async def scenario() -> None:
        logger = LoggerService()
        lifecycle = LifecycleCoordinator(logger, shutdown_timeout_sec=1)
        await start_muter_bot(_make_settings(tmp_path, ("primary",)), logger, lifecycle, bot_factory=NoGatewayBot)

    with pytest.raises(StartupError, match="gateway refused"):
        asyncio.run(scenario())


def test_auxiliary_failure_never_builds_the_primary(tmp_path: Path) -> None:
    built: list[object] = []

    def factory(*args: object) -> StubBot:
        built.append(args)
        return StubBot(*args)  # type: ignore[arg-type]

    async def scenario() -> None:
        logger = LoggerService()
        lifecycle = LifecycleCoordinator(logger, shutdown_timeout_sec=1)
        await start_muter_bot(
            _make_settings(tmp_path, ("primary", "aux-1")),
            logger,
            lifecycle,
            bot_factory=factory,
            aux_client_factory=lambda: StubClient(21, login_error=RuntimeError("401")),
        )

    with pytest.raises(StartupError, match="auxiliary client 1 failed to initialize"):
        asyncio.run(scenario())
    assert built == []


def test_bot_delegates_messages_and_treats_disconnect_as_terminal(tmp_path: Path) -> None:
    seen: list[tuple[object, str]] = []

    class RecordingCommands:
        async def handle_message(self, message: object, prefix: str) -> None:
            seen.append((message, prefix))

    async def scenario() -> bool:
        logger = LoggerService()
        lifecycle = LifecycleCoordinator(logger, shutdown_timeout_sec=1)
        bot = MuterBot(_make_settings(tmp_path, ("primary",)), logger, lifecycle)
        message = SimpleNamespace(id=1)
        await bot.on_message(message)  # type: ignore[arg-type]
        bot.attach(RecordingCommands())  # type: ignore[arg-type]
        await bot.on_message(message)  # type: ignore[arg-type]
        await bot.on_disconnect()
        return lifecycle.stopping

    assert asyncio.run(scenario()) is True
    assert len(seen) == 1
    assert seen[0][1] == "$"


def test_connection_lost_before_ready_is_a_startup_error(tmp_path: Path) -> None:
    built: list[StubBot] = []

    class FlappingBot(StubBot):
        def __init__(self, settings: Settings, logger: LoggerService, lifecycle: LifecycleCoordinator) -> None:
            super().__init__(settings, logger, lifecycle)
            self.lifecycle = lifecycle
            built.append(self)

        async def connect(self, *, reconnect: bool) -> None:
            self.lifecycle.request_stop("primary connection lost")
            await self._stopped.wait()

    async def scenario() -> None:
        logger = LoggerService()
        lifecycle = LifecycleCoordinator(logger, shutdown_timeout_sec=1)
        await start_muter_bot(_make_settings(tmp_path, ("primary",)), logger, lifecycle, bot_factory=FlappingBot)

    with pytest.raises(StartupError, match="gateway lost before ready"):
        asyncio.run(scenario())
    assert built[0].closed is True


def test_dropped_gateway_keeps_primary_open_until_work_drains(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    async def refuse(*args: object, **kwargs: object) -> None:
        raise OSError("connection reset")

    monkeypatch.setattr(DiscordWebSocket, "from_client", refuse)

    async def scenario() -> tuple[list[int], list[int], Exception | None]:
        logger = LoggerService()
        lifecycle = LifecycleCoordinator(logger, shutdown_timeout_sec=5)
        bot = MuterBot(_make_settings(tmp_path, ("primary",)), logger, lifecycle)
        closed_with: list[int] = []

        async def close() -> None:
            closed_with.append(lifecycle.in_flight_count)

        monkeypatch.setattr(bot, "close", close)
        lifecycle.start(ExecutorRegistry([Executor(client=bot, user_id=1)], logger).close_all)
        release = asyncio.Event()
        lifecycle.track(release.wait(), name="dispatch")
        async with bot:
            gateway = asyncio.create_task(bot.connect(reconnect=True))
            await asyncio.wait_for(lifecycle.wait_stopping(), timeout=5)
            await asyncio.sleep(0.05)
            closed_while_busy = list(closed_with)
            release.set()
            error = await lifecycle.wait_for_completion()
            gateway.cancel()
            await asyncio.gather(gateway, return_exceptions=True)
        return closed_while_busy, closed_with, error

    closed_while_busy, closed_with, error = asyncio.run(scenario())
    assert closed_while_busy == []
    assert closed_with[0] == 0
    assert error is None
