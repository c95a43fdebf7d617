from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


ENV_PREFIX = "MUTER_"
DEFAULT_PREFIX = "$"
DEFAULT_CLEANUP_DELAY_SEC = 15.0
DEFAULT_SHUTDOWN_TIMEOUT_SEC = 5.0


@dataclass(frozen=True)
class Settings:
    tokens: tuple[str, ...]
    command_prefix: str
    debug: bool
    cleanup_delay_sec: float
    shutdown_timeout_sec: float
    debug_log_path: Path

    @staticmethod
    def load() -> "Settings":
        # .env wins over whatever the shell exported.
        load_dotenv(override=True)
        return Settings(
            tokens=_split_tokens(_env("TOKENS")),
            command_prefix=_env("PREFIX") or DEFAULT_PREFIX,
            debug=bool(_env("DEBUG")),
            cleanup_delay_sec=_env_float("CLEANUP_DELAY", DEFAULT_CLEANUP_DELAY_SEC),
            shutdown_timeout_sec=_env_float("SHUTDOWN_TIMEOUT", DEFAULT_SHUTDOWN_TIMEOUT_SEC),
            debug_log_path=Path(_env("DEBUG_LOG") or "debug.txt"),
        )


def _env(key: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{key}", "")


def _split_tokens(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _env_float(key: str, default: float) -> float:
    raw = _env(key).strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"{ENV_PREFIX}{key} must be a number of seconds, got {raw!r}.") from None
    if value < 0:
        raise RuntimeError(f"{ENV_PREFIX}{key} must not be negative.")
    return value
