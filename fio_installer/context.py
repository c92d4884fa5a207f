from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from .answers import AnswerSet, normalize_mode
from .lib.env import Paths
from .lib.hostinfo import HostInfo
from .prompts import Prompter


@dataclass(frozen=True)
class InstallCtx:
    """Everything one invocation knows, passed explicitly to each phase and step."""

    answers: AnswerSet
    host: HostInfo
    paths: Paths
    prompter: Prompter
    workspace: Path
    http: Optional[httpx.Client] = None
    simple_flow: bool = False
    # Journey picked by the wizard; wins over the mode answer.
    selected_mode: str = ""

    @property
    def interactive(self) -> bool:
        return self.prompter.interactive and not self.answers.non_interactive

    @property
    def mode(self) -> Optional[str]:
        if self.selected_mode:
            return self.selected_mode
        return normalize_mode(self.answers.value("mode"), default=self.host.default_mode())

    @property
    def project_root(self) -> Path:
        configured = self.answers.value("project_root")
        return Path(configured).expanduser() if configured else Path.cwd()

    def client(self) -> httpx.Client:
        if self.http is None:
            raise RuntimeError("No HTTP client configured for this invocation")
        return self.http
