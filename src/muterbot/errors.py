from __future__ import annotations


class MuterError(Exception):
    pass


class StartupError(MuterError):
    """Startup could not complete; no session is left running."""


class ShutdownTimeoutError(MuterError):
    """In-flight work did not drain within the shutdown grace period."""
