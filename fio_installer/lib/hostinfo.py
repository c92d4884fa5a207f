from __future__ import annotations

import getpass
import logging
import os
import platform
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .env import Paths

logger = logging.getLogger(__name__)


def normalize_os(system: str) -> str:
    s = system.lower()
    if s.startswith("darwin") or s == "macos":
        return "darwin"
    if s.startswith("linux"):
        return "linux"
    if s.startswith("win"):
        return "windows"
    return s


def normalize_arch(machine: str) -> str:
    m = machine.lower()
    return {
        "x86_64": "x86_64",
        "amd64": "x86_64",
        "aarch64": "arm64",
        "arm64": "arm64",
    }.get(m, m)


def _current_user() -> str:
    # Under sudo the operator is the invoking account, not root.
    if os.environ.get("SUDO_USER"):
        return os.environ["SUDO_USER"]
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get("USER") or "root"


def _short_hostname() -> str:
    name = socket.gethostname() or "server"
    return name.split(".", 1)[0]


@dataclass(frozen=True)
class HostInfo:
    """Host facts gathered once per invocation."""

    os_name: str
    machine: str
    has_systemd: bool
    is_root: bool
    current_user: str
    hostname: str

    @property
    def is_linux(self) -> bool:
        return self.os_name == "linux"

    @property
    def is_macos(self) -> bool:
        return self.os_name == "darwin"

    def default_mode(self) -> str:
        if self.is_linux and self.has_systemd:
            return "production"
        if self.is_macos:
            return "macos"
        return "development"


def detect_host(paths: Paths, *, system: Optional[str] = None, machine: Optional[str] = None) -> HostInfo:
    geteuid = getattr(os, "geteuid", None)
    host = HostInfo(
        os_name=normalize_os(system or platform.system()),
        machine=normalize_arch(machine or platform.machine()),
        has_systemd=Path(paths.unit_dir).is_dir(),
        is_root=bool(geteuid is not None and geteuid() == 0),
        current_user=_current_user(),
        hostname=_short_hostname(),
    )
    logger.info(
        "Host: os=%s arch=%s systemd=%s root=%s user=%s",
        host.os_name,
        host.machine,
        host.has_systemd,
        host.is_root,
        host.current_user,
    )
    return host
