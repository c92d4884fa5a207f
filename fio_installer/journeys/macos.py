"""macOS install: user-level launchd agents, user-scope config."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List

from ..answers import InstallMethod
from ..context import InstallCtx
from ..lib import launchd, release
from ..lib.env import AI_AGENT_LABEL, DEFAULT_SERVE_ADDR, TELEGRAM_AGENT_LABEL
from ..pipeline import Step, decide, decision
from .common import ConfigSourceStep, ConfirmPlanStep, acquire_release, choose_method, release_installed

logger = logging.getLogger(__name__)


class AcquireStep:
    step_id = "install_method"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        method = decide(state, "method", choose_method(ctx))
        if method == InstallMethod.RELEASE.value:
            root = ctx.paths.macos_release_root
            acquire_release(ctx, state, root)
            decide(state, "runtime_root", str(root))
        else:
            ctx.prompter.say("Installing CLI binaries from local source")
            release.install_local_binary(
                ctx.project_root,
                ctx.paths.bin_dir,
                rebuild=bool(ctx.answers.flag("rebuild_release")),
                force_alias=bool(ctx.answers.flag("force_alias")),
            )
            decide(state, "runtime_root", str(ctx.project_root))
        return state


class LaunchAgentsStep:
    step_id = "launch_agents"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        p = ctx.prompter
        runtime_root = Path(decision(state, "runtime_root"))
        if not p.yes_no(
            "Install launchd user services for AI and Telegram?", True, override=ctx.answers.flag("launch_agents")
        ):
            p.say("Manual run commands:")
            p.say(f"  {ctx.paths.binary} --serve {DEFAULT_SERVE_ADDR}")
            p.say(f"  cd {runtime_root / 'telegram'} && node dist/index.js")
            decide(state, "launch_agents", [])
            return state

        start = ctx.answers.flag("start_services")
        load = start if start is not None else release_installed(state)
        config = ctx.paths.user_config
        agents_dir = ctx.paths.launch_agents_dir
        written: List[str] = []

        ai = launchd.agent_plist(
            AI_AGENT_LABEL,
            [str(ctx.paths.binary), "--serve", DEFAULT_SERVE_ADDR],
            config_file=config,
            log_file=ctx.paths.dev_log_dir / "fiochat-ai.log",
        )
        paths = [launchd.write_launch_agent(agents_dir, AI_AGENT_LABEL, ai)]
        written.append(AI_AGENT_LABEL)

        node = shutil.which("node")
        bridge = runtime_root / "telegram" / "dist" / "index.js"
        if node is None:
            logger.warning("Skipping Telegram launch agent: node was not found in PATH")
            p.say("Skipping Telegram launch agent: node was not found in PATH.")
        elif not bridge.is_file():
            logger.warning("Skipping Telegram launch agent: %s not found", bridge)
            p.say(f"Skipping Telegram launch agent: {bridge} not found. Build it first: cd telegram && npm run build")
        else:
            tg = launchd.agent_plist(
                TELEGRAM_AGENT_LABEL,
                [node, str(bridge)],
                config_file=config,
                log_file=ctx.paths.dev_log_dir / "fiochat-telegram.log",
                working_dir=runtime_root / "telegram",
            )
            paths.append(launchd.write_launch_agent(agents_dir, TELEGRAM_AGENT_LABEL, tg))
            written.append(TELEGRAM_AGENT_LABEL)

        if load:
            for plist in paths:
                launchd.load_launch_agent(plist)
            p.say("launchd services installed and loaded.")
        else:
            p.say("launchd services written; load them with: launchctl load <plist>")
        p.say("  - Check status: launchctl list | grep fiochat")
        p.say(f"  - Logs: {ctx.paths.dev_log_dir / 'fiochat-ai.log'}, {ctx.paths.dev_log_dir / 'fiochat-telegram.log'}")
        decide(state, "launch_agents", written)
        decide(state, "started", bool(load))
        return state


def build_steps(ctx: InstallCtx) -> List[Step]:
    return [
        ConfirmPlanStep("macOS install (launchd)"),
        ConfigSourceStep(),
        AcquireStep(),
        LaunchAgentsStep(),
    ]
