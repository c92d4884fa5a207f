from __future__ import annotations

import argparse
import logging
import sys
import tempfile
from pathlib import Path
from typing import Dict, Optional

import httpx

from . import phases
from .answers import AnswerSet, resolve
from .context import InstallCtx
from .errors import EXIT_INTERRUPTED, EXIT_OK, EXIT_VALIDATION, Cancelled, InstallerError, ValidationFailed
from .lib.env import PATHS, Paths
from .lib.hostinfo import HostInfo, detect_host
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .prompts import Prompter

logger = logging.getLogger(__name__)

PHASES = ("wizard", "validate", "apply", "verify")
HTTP_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


def _tri(value: Optional[bool]) -> Optional[str]:
    if value is None:
        return None
    return "1" if value else "0"


def flags_from_args(args: argparse.Namespace) -> Dict[str, Optional[str]]:
    return {
        "mode": args.mode,
        "method": args.method,
        "config_source": args.config_source,
        "service_user": args.service_user,
        "start_services": _tri(args.start),
        "enable_services": _tri(args.enable),
        "tag": args.tag,
        "repo": args.repo,
        "provider": args.provider,
        "non_interactive": "1" if args.yes else None,
    }


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fio-installer", description="Install and configure fiochat on this host.")
    p.add_argument("phase", nargs="?", choices=PHASES, default=None, help="Phase to run (default: wizard)")
    p.add_argument("--mode", default=None, help="production | development | macos | inspect")
    p.add_argument("--method", default=None, help="release | manual")
    p.add_argument("--config-source", dest="config_source", default=None, help="existing | rebuild | template")
    p.add_argument("--service-user", dest="service_user", default=None, help="svc | current | <existing user>")
    p.add_argument("--start", action=argparse.BooleanOptionalAction, default=None, help="Start services after install")
    p.add_argument("--enable", action=argparse.BooleanOptionalAction, default=None, help="Enable services on boot")
    p.add_argument("--tag", default=None, help="Release tag (e.g. v0.2.0 or latest)")
    p.add_argument("--repo", default=None, help="GitHub repository OWNER/NAME")
    p.add_argument("--provider", default=None, help="openai | claude | azure-openai | ollama | manual")
    p.add_argument("--answers", default=None, help="Path to a KEY=VALUE answers document")
    p.add_argument("-y", "--yes", action="store_true", help="Never prompt; fail fast on missing input")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to installer log")
    p.add_argument("--verbose", action="store_true", help="Show progress logging on the console")
    return p


def run_phase(
    phase: str,
    *,
    answers: AnswerSet,
    host: HostInfo,
    paths: Paths,
    prompter: Prompter,
    http: Optional[httpx.Client] = None,
) -> int:
    """Run one phase and return its exit status. Errors propagate to the caller."""

    if phase == "validate":
        errors = phases.validate(answers.value("mode") or None, answers, host, paths)
        for e in errors:
            prompter.say(f"  - {e}")
        if errors:
            prompter.say(f"Validation failed ({len(errors)} issue(s)).")
            return EXIT_VALIDATION
        prompter.say("Validation passed.")
        return EXIT_OK

    if phase == "verify":
        report = phases.verify(answers.value("mode") or None, paths, host)
        sys.stdout.write(report.render())
        return report.exit_code

    with tempfile.TemporaryDirectory(prefix="fiochat-installer-") as workspace:
        ctx = InstallCtx(
            answers=answers,
            host=host,
            paths=paths,
            prompter=prompter,
            workspace=Path(workspace),
            http=http,
            simple_flow=bool(answers.flag("simple_flow")),
        )
        result = phases.wizard(ctx) if phase == "wizard" else phases.apply(ctx)
    logger.info("Ran steps: %s", ", ".join(result.ran_steps))
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    actual_log_path = configure_logging(
        log_path=args.log,
        level=logging.DEBUG if args.verbose else logging.INFO,
        console_level=logging.INFO if args.verbose else logging.WARNING,
    )

    prompter = Prompter(interactive=False)
    try:
        answers = resolve(document_path=args.answers, flags=flags_from_args(args))
        phase = (args.phase or answers.value("phase") or "wizard").strip().lower()
        if phase not in PHASES:
            prompter.say(f"Unknown phase '{phase}'. Use: {' | '.join(PHASES)}.")
            return EXIT_VALIDATION

        prompter = Prompter(interactive=sys.stdin.isatty() and not answers.non_interactive)
        host = detect_host(PATHS)
        logger.info("Phase=%s log=%s answers=%r", phase, actual_log_path, answers)

        with httpx.Client(follow_redirects=True, timeout=HTTP_TIMEOUT) as client:
            return run_phase(phase, answers=answers, host=host, paths=PATHS, prompter=prompter, http=client)
    except Cancelled:
        prompter.say("Cancelled. No further changes made.")
        return EXIT_OK
    except ValidationFailed as e:
        logger.error("%s", e)
        prompter.say(str(e))
        return e.exit_code
    except InstallerError as e:
        logger.error("%s", e)
        prompter.say(f"Error: {e}")
        return e.exit_code
    except KeyboardInterrupt:
        prompter.say("")
        prompter.say("Interrupted.")
        return EXIT_INTERRUPTED
    except Exception:
        logger.exception("Installer failed")
        raise
