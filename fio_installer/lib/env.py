from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

AI_UNIT = "fiochat.service"
TELEGRAM_UNIT = "fiochat-telegram.service"
UNITS = (AI_UNIT, TELEGRAM_UNIT)

AI_AGENT_LABEL = "com.fiochat.ai"
TELEGRAM_AGENT_LABEL = "com.fiochat.telegram"

DEDICATED_USER = "svc"
DEFAULT_REPO = "joon-aca/fiochat"
DEFAULT_AI_SERVICE_URL = "http://127.0.0.1:8000/v1/chat/completions"
DEFAULT_SERVE_ADDR = "127.0.0.1:8000"


@dataclass(frozen=True)
class Paths:
    """Host filesystem layout.

    Every system path hangs off ``root`` and every per-user path off ``home`` so
    tests can re-root the whole layout under a temporary directory.
    """

    root: Path = Path("/")
    home: Path = Path.home()

    @classmethod
    def rooted(cls, root: Path, home: Optional[Path] = None) -> "Paths":
        return cls(root=Path(root), home=Path(home) if home else Path(root) / "home" / "operator")

    def _sys(self, rel: str) -> Path:
        return self.root / rel.lstrip("/")

    # Per-user
    @property
    def user_config_dir(self) -> Path:
        return self.home / ".config" / "fiochat"

    @property
    def user_config(self) -> Path:
        return self.user_config_dir / "config.yaml"

    @property
    def launch_agents_dir(self) -> Path:
        return self.home / "Library" / "LaunchAgents"

    # System
    @property
    def system_config_dir(self) -> Path:
        return self._sys("/etc/fiochat")

    @property
    def system_config(self) -> Path:
        return self.system_config_dir / "config.yaml"

    @property
    def unit_dir(self) -> Path:
        return self._sys("/etc/systemd/system")

    @property
    def state_dir(self) -> Path:
        return self._sys("/var/lib/fiochat")

    @property
    def linux_release_root(self) -> Path:
        return self._sys("/opt/fiochat")

    @property
    def macos_release_root(self) -> Path:
        return self._sys("/usr/local/lib/fiochat")

    @property
    def bin_dir(self) -> Path:
        return self._sys("/usr/local/bin")

    @property
    def binary(self) -> Path:
        return self.bin_dir / "fiochat"

    @property
    def alias(self) -> Path:
        return self.bin_dir / "fio"

    @property
    def dev_log_dir(self) -> Path:
        return self._sys("/tmp")

    def config_for_mode(self, mode: str) -> Path:
        """Production reads the system-scope config; every other mode the user one."""
        return self.system_config if mode == "production" else self.user_config


PATHS = Paths()
