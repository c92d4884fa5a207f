from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

DEFAULT_LOG_PATH = "/var/log/fiochat-installer.log"
FALLBACK_LOG_PATH = "~/.cache/fiochat-installer/install.log"


def _file_handler(path: str, fmt: logging.Formatter) -> logging.Handler:
    Path(os.path.dirname(path) or ".").mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.setFormatter(fmt)
    return handler


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
    console_level: int = logging.WARNING,
) -> str:
    """Configure logging.

    Every decision and host command goes to the log file. Writing to /var/log
    needs root; when that fails we fall back to a per-user cache file and keep
    going. The console only shows warnings and errors unless ``console_level``
    says otherwise, since the prompter owns normal terminal output.

    Returns the actual file path being used.
    """

    logger = logging.getLogger()
    logger.setLevel(min(level, console_level) if also_console else level)

    # Avoid duplicate handlers if configure_logging() is called multiple times.
    if getattr(logger, "_fiochat_configured", False):
        return getattr(logger, "_fiochat_log_path", log_path)

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    handlers: list[logging.Handler] = []
    chosen_path: Optional[str] = None
    for candidate in (log_path, os.path.expanduser(FALLBACK_LOG_PATH)):
        try:
            fh = _file_handler(candidate, fmt)
        except OSError:
            continue
        fh.setLevel(level)
        handlers.append(fh)
        chosen_path = candidate
        break

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        console.setLevel(console_level)
        handlers.append(console)

    for h in handlers:
        logger.addHandler(h)

    setattr(logger, "_fiochat_configured", True)
    setattr(logger, "_fiochat_log_path", chosen_path or "")

    logging.getLogger(__name__).info(
        "Logging initialized (requested=%s, actual=%s)", log_path, chosen_path or "<console only>"
    )
    return chosen_path or ""
