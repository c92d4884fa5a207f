from __future__ import annotations

import logging
import plistlib
from pathlib import Path
from typing import Dict, Optional, Sequence

from ..errors import FilesystemError, ServiceIntegrationError
from .command import CommandFailed, run_cmd

logger = logging.getLogger(__name__)


def agent_path(agents_dir: Path, label: str) -> Path:
    return Path(agents_dir) / f"{label}.plist"


def agent_plist(
    label: str,
    program: Sequence[str],
    *,
    config_file: Path,
    log_file: Path,
    working_dir: Optional[Path] = None,
) -> Dict[str, object]:
    doc: Dict[str, object] = {
        "Label": label,
        "ProgramArguments": [str(a) for a in program],
    }
    if working_dir is not None:
        doc["WorkingDirectory"] = str(working_dir)
    doc.update(
        {
            "EnvironmentVariables": {"FIOCHAT_CONFIG_FILE": str(config_file)},
            "RunAtLoad": True,
            "KeepAlive": True,
            "StandardOutPath": str(log_file),
            "StandardErrorPath": str(log_file),
        }
    )
    return doc


def write_launch_agent(agents_dir: Path, label: str, plist: Dict[str, object]) -> Path:
    p = agent_path(agents_dir, label)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        with open(p, "wb") as f:
            plistlib.dump(plist, f, sort_keys=False)
    except OSError as e:
        raise FilesystemError(f"Could not write launch agent {p}: {e}") from e
    logger.info("Launch agent written: %s", p)
    return p


def read_launch_agent(path: Path) -> Dict[str, object]:
    with open(path, "rb") as f:
        return plistlib.load(f)


def load_launch_agent(path: Path) -> None:
    """Reload: unload (ignored if not loaded), then load."""

    run_cmd(["launchctl", "unload", str(path)], check=False)
    try:
        run_cmd(["launchctl", "load", str(path)])
    except CommandFailed as e:
        raise ServiceIntegrationError(f"launchctl load {path} failed: {e}") from e
    logger.info("Launch agent loaded: %s", path)
