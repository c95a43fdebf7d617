from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, TextIO


LEVELS = ("debug", "info", "warning", "error")


class LoggerService:
    def __init__(self, *, debug: bool = False, debug_path: Path | None = None, max_rows: int = 2000) -> None:
        self.debug = debug
        self._rows: deque[dict[str, object]] = deque(maxlen=max_rows)
        self._listeners: list[Callable[[dict[str, object]], None]] = []
        self._file: TextIO | None = None
        if debug and debug_path is not None:
            debug_path.parent.mkdir(parents=True, exist_ok=True)
            self._file = debug_path.open("a", encoding="utf-8")

    def subscribe(self, listener: Callable[[dict[str, object]], None]) -> None:
        self._listeners.append(listener)

    def log(self, event: str, *, level: str = "info", **data: object) -> None:
        if level not in LEVELS:
            raise ValueError(f"unknown log level: {level}")
        if level == "debug" and not self.debug:
            return
        row = {
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "data": data,
        }
        self._rows.append(row)
        line = f"[{row['ts']}] {level.upper()} {event} {data}"
        print(line)
        if self._file is not None:
            self._file.write(line + "\n")
            self._file.flush()
        for listener in self._listeners:
            try:
                listener(row)
            except Exception:  # noqa: BLE001
                continue

    def recent(self, limit: int = 50) -> list[dict[str, object]]:
        if limit <= 0:
            return []
        return list(self._rows)[-limit:]

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
