"""Console and file logging for the `mob` command."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

TRACE = 5
DUMP = 1

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(DUMP, "DUMP")

# CLI verbosity 0..6 -> logging level; 0 disables the handler.
VERBOSITY_LEVELS: dict[int, int] = {
    1: logging.ERROR,
    2: logging.WARNING,
    3: logging.INFO,
    4: logging.DEBUG,
    5: TRACE,
    6: DUMP,
}


class _ConsoleNoiseFilter(logging.Filter):
    """Keep mob_build logs; third-party loggers only at WARNING and above."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("mob_build"):
            return True
        if record.name == "py.warnings":
            return record.levelno >= logging.ERROR
        return record.levelno >= logging.WARNING


def level_for(verbosity: int) -> int | None:
    """Logging level for a 0..6 verbosity, None for 0 (off)."""

    if verbosity <= 0:
        return None
    return VERBOSITY_LEVELS[min(verbosity, 6)]


def setup_logging(
    *,
    console_verbosity: int = 3,
    file_verbosity: int = 5,
    log_file: str | Path | None = "mob.log",
) -> None:
    """Replace root handlers with a filtered stderr handler and an optional file handler."""

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console_level = level_for(console_verbosity)
    file_level = level_for(file_verbosity) if log_file else None
    enabled = [level for level in (console_level, file_level) if level is not None]
    root.setLevel(min(enabled) if enabled else logging.CRITICAL + 1)

    formatter = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if console_level is not None:
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(console_level)
        console.setFormatter(formatter)
        console.addFilter(_ConsoleNoiseFilter())
        root.addHandler(console)

    if file_level is not None and log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(path), encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    logging.captureWarnings(True)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
