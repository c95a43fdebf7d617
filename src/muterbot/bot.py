from __future__ import annotations

import asyncio
import signal
import sys

import discord

from muterbot.config import Settings
from muterbot.errors import ShutdownTimeoutError, StartupError
from muterbot.services.dispatch_service import DispatchService
from muterbot.services.executor_service import (
    Executor,
    ExecutorRegistry,
    close_clients,
    connect_auxiliary_executors,
)
from muterbot.services.lifecycle_service import LifecycleCoordinator
from muterbot.services.logger_service import LoggerService
from muterbot.services.mute_command_service import MuteCommandService


class MuterBot(discord.Client):
    """Primary gateway client: receives commands and also acts as an executor."""

    def __init__(self, settings: Settings, logger: LoggerService, lifecycle: LifecycleCoordinator) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.voice_states = True
        intents.presences = True
        intents.guild_messages = True
        intents.message_content = True
        super().__init__(intents=intents)
        self.settings = settings
        self.logger = logger
        self.lifecycle = lifecycle
        self.mute_commands: MuteCommandService | None = None
        self._ready_once = False

    def attach(self, mute_commands: MuteCommandService) -> None:
        self.mute_commands = mute_commands

    async def on_ready(self) -> None:
        if self._ready_once:
            return
        self._ready_once = True
        self.logger.log("bot.ready", user=str(self.user), user_id=self.user.id if self.user else None, guilds=len(self.guilds))

    async def on_message(self, message: discord.Message) -> None:
        if self.mute_commands is None:
            return
        await self.mute_commands.handle_message(message, self.settings.command_prefix)

    async def on_disconnect(self) -> None:
        # Terminal. The lifecycle closes every session once in-flight work drains.
        self.lifecycle.request_stop("primary connection lost")


async def start_muter_bot(
    settings: Settings,
    logger: LoggerService,
    lifecycle: LifecycleCoordinator,
    *,
    bot_factory=MuterBot,
    aux_client_factory=None,
) -> MuterBot:
    """
    Bring every session up or none of them.

    Auxiliary executors log in over REST first, then the primary client logs in and
    opens its gateway. Any failure closes what was already opened and raises
    StartupError.
    """

    if not settings.tokens:
        raise StartupError("no tokens provided")

    auxiliaries = await connect_auxiliary_executors(settings.tokens[1:], logger, client_factory=aux_client_factory)
    bot = bot_factory(settings, logger, lifecycle)
    gateway: asyncio.Task | None = None
    try:
        await bot.login(settings.tokens[0])
        if bot.user is None:
            raise RuntimeError("login returned no user")
        primary = Executor(client=bot, user_id=bot.user.id, name=str(bot.user))
        registry = ExecutorRegistry([primary, *auxiliaries], logger)
        bot.attach(
            MuteCommandService(
                registry,
                DispatchService(logger),
                lifecycle,
                logger,
                cleanup_delay_sec=settings.cleanup_delay_sec,
            )
        )
        gateway = asyncio.create_task(bot.connect(reconnect=True), name="primary-gateway")
        ready = asyncio.create_task(bot.wait_until_ready(), name="primary-ready")
        stopped = asyncio.create_task(lifecycle.wait_stopping(), name="primary-stop")
        await asyncio.wait({gateway, ready, stopped}, return_when=asyncio.FIRST_COMPLETED)
        stopped.cancel()
        if not ready.done():
            ready.cancel()
            if not gateway.done():
                raise RuntimeError(f"gateway lost before ready ({lifecycle.stop_reason})")
            error = None if gateway.cancelled() else gateway.exception()
            raise RuntimeError(str(error) if error else "gateway closed before ready")
    except Exception as exc:  # noqa: BLE001
        if gateway is not None and not gateway.done():
            gateway.cancel()
        await close_clients([bot, *(executor.client for executor in auxiliaries)], logger)
        raise StartupError(f"primary client failed to connect to discord: {exc}") from exc

    logger.log("bot.primary_ready", user=str(bot.user), executors=len(registry))

    def _on_gateway_closed(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.log("bot.gateway_failed", level="error", error=repr(task.exception()))
        lifecycle.request_stop("primary gateway closed")

    gateway.add_done_callback(_on_gateway_closed)
    lifecycle.start(registry.close_all)
    return bot


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, lifecycle: LifecycleCoordinator) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lifecycle.request_stop, f"received {sig.name}")
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler.
            signal.signal(
                sig,
                lambda signum, frame: loop.call_soon_threadsafe(lifecycle.request_stop, f"received signal {signum}"),
            )


async def run(settings: Settings, logger: LoggerService) -> Exception | None:
    lifecycle = LifecycleCoordinator(logger, shutdown_timeout_sec=settings.shutdown_timeout_sec)
    _install_signal_handlers(asyncio.get_running_loop(), lifecycle)
    await start_muter_bot(settings, logger, lifecycle)
    return await lifecycle.wait_for_completion()


def main() -> None:
    settings = Settings.load()
    logger = LoggerService(debug=settings.debug, debug_path=settings.debug_log_path)
    logger.log("bot.debug_on", level="debug")
    logger.log("bot.starting", prefix=settings.command_prefix, clients=len(settings.tokens))
    exit_code = 0
    try:
        close_error = asyncio.run(run(settings, logger))
    except StartupError as exc:
        logger.log("bot.startup_failed", level="error", error=str(exc))
        exit_code = 1
    except ShutdownTimeoutError as exc:
        logger.log("bot.shutdown_timed_out", level="error", error=str(exc))
        exit_code = 1
    else:
        if close_error is not None:
            logger.log("bot.shutdown_error", level="error", error=str(close_error))
        else:
            logger.log("bot.shutdown_clean")
    finally:
        logger.close()
    if exit_code:
        sys.exit(exit_code)
