from __future__ import annotations

import logging
import shutil
import socket
from typing import List, Optional
from urllib.parse import urlsplit

from .command import run_cmd

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8000


def port_from_url(url: Optional[str], default: int = DEFAULT_PORT) -> int:
    """Explicit port of an http(s) URL, else ``default``."""

    if not url:
        return default
    try:
        port = urlsplit(url.strip()).port
    except ValueError:
        return default
    return port or default


def _connect(port: int, host: str = "127.0.0.1", timeout: float = 0.5) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def listeners_on_port(port: int) -> List[str]:
    """Describe whatever listens on ``port``; empty when it looks free.

    Tries lsof, ss, netstat in that order and falls back to a TCP connect.
    """

    if shutil.which("lsof"):
        out = run_cmd(["lsof", "-nP", f"-iTCP:{port}", "-sTCP:LISTEN"], check=False).stdout
        return [ln for ln in out.splitlines() if ln.strip()]

    if shutil.which("ss"):
        out = run_cmd(["ss", "-ltnp", f"sport = :{port}"], check=False).stdout
        lines = [ln for ln in out.splitlines() if ln.strip() and not ln.startswith("State")]
        return lines

    if shutil.which("netstat"):
        out = run_cmd(["netstat", "-ltnp"], check=False).stdout
        return [ln for ln in out.splitlines() if f":{port} " in ln]

    if _connect(port):
        return [f"port {port} seems open (connection succeeded)"]
    return []
