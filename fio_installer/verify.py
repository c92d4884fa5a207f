"""Read-only probe of installed state.

Checks run in a fixed order and render deterministically, so two runs against
an unchanged host print the same report.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from .errors import EXIT_FAILURE, EXIT_OK, EXIT_VERIFY_WARN
from .lib import services
from .lib.env import AI_AGENT_LABEL, TELEGRAM_AGENT_LABEL, UNITS, Paths
from .lib.launchd import agent_path

logger = logging.getLogger(__name__)


class Status(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


_SEVERITY = {Status.PASS: 0, Status.WARN: 1, Status.FAIL: 2}
_EXIT = {Status.PASS: EXIT_OK, Status.WARN: EXIT_VERIFY_WARN, Status.FAIL: EXIT_FAILURE}


@dataclass(frozen=True)
class Check:
    name: str
    status: Status
    message: str


@dataclass(frozen=True)
class VerificationReport:
    mode: str
    checks: Tuple[Check, ...]

    @property
    def overall(self) -> Status:
        return max((c.status for c in self.checks), key=_SEVERITY.__getitem__, default=Status.PASS)

    @property
    def exit_code(self) -> int:
        return _EXIT[self.overall]

    def render(self) -> str:
        lines = [f"Verifying installation (mode={self.mode})"]
        for c in self.checks:
            lines.append(f"  [{c.status.value.upper():4}] {c.name}: {c.message}")
        lines.append(f"Overall: {self.overall.value}")
        return "\n".join(lines) + "\n"


def _missing_status(mode: str) -> Status:
    # Development and inspect hosts may run from a checkout without an
    # installed binary or config, so a gap there is only a warning.
    return Status.FAIL if mode in {"production", "macos"} else Status.WARN


def _check_binary(mode: str, paths: Paths) -> Check:
    if paths.binary.is_file() and os.access(paths.binary, os.X_OK):
        return Check("binary", Status.PASS, f"Binary exists: {paths.binary}")
    return Check("binary", _missing_status(mode), f"Missing binary: {paths.binary}")


def _is_our_alias(paths: Paths) -> bool:
    return paths.alias.is_symlink() and paths.alias.resolve() == paths.binary.resolve()


def _check_alias(paths: Paths, search_path: Optional[str]) -> Check:
    if _is_our_alias(paths):
        return Check("alias", Status.PASS, f"CLI alias exists: {paths.alias}")
    if os.path.lexists(paths.alias):
        existing: Optional[str] = str(paths.alias)
    else:
        existing = shutil.which("fio", path=search_path)
    if existing:
        return Check(
            "alias",
            Status.WARN,
            f"An alternate fio already exists at {existing}; installed as fiochat. "
            f"To override: sudo ln -sf {paths.binary} {paths.alias}",
        )
    return Check("alias", Status.WARN, f"{paths.alias} alias not present. Use {paths.binary}.")


def _check_config(mode: str, paths: Paths) -> Check:
    cfg = paths.config_for_mode(mode)
    if cfg.is_file():
        return Check("config", Status.PASS, f"Config exists: {cfg}")
    return Check("config", _missing_status(mode), f"Missing config: {cfg}")


def _check_units(paths: Paths, probe_systemctl: bool) -> List[Check]:
    out: List[Check] = []
    for unit in UNITS:
        p = paths.unit_dir / unit
        if p.is_file():
            out.append(Check(f"unit {unit}", Status.PASS, f"Unit exists: {unit}"))
        else:
            out.append(Check(f"unit {unit}", Status.FAIL, f"Missing unit: {p}"))
    if not probe_systemctl:
        return out
    for unit in UNITS:
        ok = services.unit_is_enabled(unit)
        out.append(Check(f"enabled {unit}", Status.PASS if ok else Status.WARN, ("Enabled: " if ok else "Not enabled: ") + unit))
    for unit in UNITS:
        ok = services.unit_is_active(unit)
        out.append(Check(f"active {unit}", Status.PASS if ok else Status.WARN, ("Active: " if ok else "Not active: ") + unit))
    return out


def _check_agents(paths: Paths) -> List[Check]:
    out: List[Check] = []
    for label in (AI_AGENT_LABEL, TELEGRAM_AGENT_LABEL):
        if agent_path(paths.launch_agents_dir, label).is_file():
            out.append(Check(f"agent {label}", Status.PASS, f"Launch agent exists: {label}"))
        else:
            out.append(Check(f"agent {label}", Status.WARN, f"Launch agent not installed: {label}"))
    return out


def verify(
    mode: str,
    paths: Paths,
    *,
    probe_systemctl: Optional[bool] = None,
    search_path: Optional[str] = None,
) -> VerificationReport:
    """Probe installed state for ``mode``. Never mutates anything."""

    if probe_systemctl is None:
        probe_systemctl = shutil.which("systemctl") is not None

    checks: List[Check] = [
        _check_binary(mode, paths),
        _check_alias(paths, search_path),
        _check_config(mode, paths),
    ]
    if mode == "production":
        checks.extend(_check_units(paths, probe_systemctl))
    elif mode == "macos":
        checks.extend(_check_agents(paths))

    report = VerificationReport(mode=mode, checks=tuple(checks))
    for c in report.checks:
        logger.info("verify %s: %s (%s)", c.name, c.status.value, c.message)
    return report
