from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from ..errors import FilesystemError
from .command import fmt_argv

logger = logging.getLogger(__name__)


def spawn_detached(argv: Sequence[str], *, log_file: Path, cwd: Optional[Path] = None) -> int:
    """Start a background process that outlives the installer. Returns its PID."""

    argv_list = [str(a) for a in argv]
    logger.info("SPAWN %s > %s", fmt_argv(argv_list), log_file)
    try:
        with open(log_file, "ab") as log:
            p = subprocess.Popen(
                argv_list,
                cwd=str(cwd) if cwd else None,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
    except OSError as e:
        raise FilesystemError(f"Could not start {argv_list[0]}: {e}") from e
    logger.info("Started pid=%s", p.pid)
    return p.pid
