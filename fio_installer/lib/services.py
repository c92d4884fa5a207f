from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from ..errors import FilesystemError, ServiceIntegrationError
from .command import CommandFailed, run_cmd
from .env import UNITS, Paths
from .fsutil import atomic_copy, atomic_write_text, backup_file

logger = logging.getLogger(__name__)

OVERRIDE_NAME = "override.conf"


@dataclass(frozen=True)
class ServiceUnit:
    name: str
    content: str


def _systemctl(*args: str) -> None:
    try:
        run_cmd(["systemctl", *args])
    except CommandFailed as e:
        raise ServiceIntegrationError(f"systemctl {' '.join(args)} failed: {e}") from e


def user_exists(name: str) -> bool:
    if not name:
        return False
    return run_cmd(["id", "-u", name], check=False).ok


def ensure_service_user(name: str, paths: Paths) -> bool:
    """Create a system account with no login shell. Returns True when created."""

    if user_exists(name):
        logger.info("Service user exists: %s", name)
        return False
    try:
        run_cmd(["useradd", "-r", "-s", "/bin/false", "-d", str(paths.state_dir), name])
    except CommandFailed as e:
        raise ServiceIntegrationError(f"Could not create service user {name!r}: {e}") from e
    logger.info("Created service user: %s", name)
    return True


def load_units(source_dir: Path, names: Sequence[str] = UNITS) -> List[ServiceUnit]:
    src = Path(source_dir)
    if not src.is_dir():
        raise FilesystemError(f"systemd unit directory not found: {src}")
    units: List[ServiceUnit] = []
    for name in names:
        p = src / name
        if not p.is_file():
            raise FilesystemError(f"Unit file missing: {p} (expected in {src})")
        units.append(ServiceUnit(name=name, content=p.read_text(encoding="utf-8")))
    return units


def install_units(units: Sequence[ServiceUnit], unit_dir: Path) -> List[Path]:
    """Copy unit files verbatim."""

    written: List[Path] = []
    for unit in units:
        dst = Path(unit_dir) / unit.name
        atomic_write_text(dst, unit.content, mode=0o644)
        written.append(dst)
    logger.info("Installed unit files to %s: %s", unit_dir, ", ".join(u.name for u in units))
    return written


def identity_override_text(user: str) -> str:
    return f"[Service]\nUser={user}\nGroup={user}\n"


def override_path(unit_dir: Path, unit: str) -> Path:
    return Path(unit_dir) / f"{unit}.d" / OVERRIDE_NAME


def write_identity_override(unit_dir: Path, unit: str, user: str) -> Path:
    p = override_path(unit_dir, unit)
    atomic_write_text(p, identity_override_text(user), mode=0o644)
    logger.info("Drop-in written: %s", p)
    return p


def clear_identity_override(unit_dir: Path, unit: str) -> bool:
    """Remove a drop-in left by an earlier run under a different identity."""

    p = override_path(unit_dir, unit)
    if not p.exists():
        return False
    p.unlink()
    try:
        p.parent.rmdir()
    except OSError:
        pass  # other drop-ins remain
    logger.info("Removed stale drop-in: %s", p)
    return True


def _chown(owner: str, path: Path, *, recursive: bool = False) -> None:
    argv = ["chown"] + (["-R"] if recursive else []) + [owner, str(path)]
    try:
        run_cmd(argv)
    except CommandFailed as e:
        raise FilesystemError(f"Could not set ownership {owner} on {path}: {e}") from e


def install_system_config(src: Path, dst: Path, user: str) -> Path:
    """Back up, then install the config readable by root and the service group only."""

    if not Path(src).is_file():
        raise FilesystemError(f"Config to install is missing: {src}")
    Path(dst).parent.mkdir(parents=True, exist_ok=True)
    backup_file(dst)
    atomic_copy(src, dst, mode=0o640)
    try:
        run_cmd(["chown", f"root:{user}", str(dst)])
    except CommandFailed:
        logger.warning("Group %s not found; falling back to root:root for %s", user, dst)
        _chown("root:root", dst)
    logger.info("Installed: %s", dst)
    return Path(dst)


def provision_state_dir(path: Path, user: str) -> Path:
    p = Path(path)
    try:
        p.mkdir(parents=True, exist_ok=True)
        os.chmod(p, 0o750)
    except OSError as e:
        raise FilesystemError(f"Could not prepare {p}: {e}") from e
    _chown(f"{user}:{user}", p, recursive=True)
    logger.info("Ready: %s", p)
    return p


def daemon_reload() -> None:
    _systemctl("daemon-reload")
    logger.info("systemd daemon reloaded")


def enable_units(units: Sequence[str] = UNITS, *, now: bool = False) -> None:
    args = ["enable"] + (["--now"] if now else []) + list(units)
    _systemctl(*args)
    logger.info("Services enabled%s: %s", " and started" if now else "", ", ".join(units))


def restart_units(units: Sequence[str] = UNITS) -> None:
    _systemctl("restart", *units)
    logger.info("Services restarted: %s", ", ".join(units))


def unit_is_enabled(unit: str) -> bool:
    return run_cmd(["systemctl", "is-enabled", "--quiet", unit], check=False).ok


def unit_is_active(unit: str) -> bool:
    return run_cmd(["systemctl", "is-active", "--quiet", unit], check=False).ok
