from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Mapping, Sequence

from ..errors import InstallerError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandFailed(InstallerError):
    def __init__(self, result: CmdResult) -> None:
        self.result = result
        detail = (result.stderr or result.stdout).strip()
        super().__init__(f"Command failed ({result.returncode}): {fmt_argv(result.argv)}" + (f"\n{detail}" if detail else ""))


def fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
) -> CmdResult:
    """Run a host command with consistent logging.

    - Always logs the command.
    - stdout/stderr are captured and logged at DEBUG.
    - A missing executable is reported as exit status 127, like a shell would.
    """

    argv_list = [str(a) for a in argv]
    logger.info("CMD %s", fmt_argv(argv_list))

    try:
        p = subprocess.run(
            argv_list,
            input=input_text,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=dict(os.environ, **(env or {})),
        )
        res = CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)
    except FileNotFoundError as e:
        res = CmdResult(argv=argv_list, returncode=127, stdout="", stderr=str(e))

    if res.stdout:
        logger.debug("STDOUT %s", res.stdout.strip())
    if res.stderr:
        logger.debug("STDERR %s", res.stderr.strip())

    if check and not res.ok:
        raise CommandFailed(res)

    return res
