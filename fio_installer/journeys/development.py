"""Development setup: user config, optional CLI install, optional background run."""

from __future__ import annotations

import logging
import shutil
from typing import Any, Dict, List

from ..answers import ConfigSource
from ..config_doc import ConfigStore
from ..context import InstallCtx
from ..errors import ValidationError
from ..lib import processes, release
from ..lib.env import DEFAULT_SERVE_ADDR
from ..pipeline import Step, decide
from .common import acquire_release, configure_provider, configure_relay, effective_config_source, show_summary

logger = logging.getLogger(__name__)

ACTION_MENU = (
    ("1", "Keep as-is (recommended if status looks good)"),
    ("2", "Update AI provider settings"),
    ("3", "Update Telegram settings"),
    ("4", "Reset everything (rebuild AI + Telegram)"),
)
_ACTIONS = {"1": "keep", "2": "provider", "3": "telegram", "4": "reset"}
_ACTION_ALIASES = {
    "keep": "keep",
    "provider": "provider",
    "ai": "provider",
    "telegram": "telegram",
    "relay": "telegram",
    "reset": "reset",
    "rebuild": "reset",
    **_ACTIONS,
}
_ACTION_FOR_SOURCE = {
    ConfigSource.EXISTING.value: "keep",
    ConfigSource.REBUILD.value: "reset",
    ConfigSource.TEMPLATE.value: "template",
}

INSTALL_MENU = (
    ("1", "Skip (keep dev-only run)"),
    ("2", "Install from local source build (developer)"),
    ("3", "Install from GitHub Release artifact"),
)
_INSTALLS = {"1": "skip", "2": "manual", "3": "release"}
_INSTALL_ALIASES = {"skip": "skip", "manual": "manual", "local": "manual", "release": "release", **_INSTALLS}


def config_action(ctx: InstallCtx) -> str:
    raw = ctx.answers.value("config_action").strip().lower()
    if raw:
        action = _ACTION_ALIASES.get(raw)
        if action is None:
            raise ValidationError(
                f"Invalid config action '{raw}'. Use: keep | provider | telegram | reset.", field="config_action"
            )
        return action
    if ctx.interactive:
        return _ACTIONS[ctx.prompter.choice("Choose", ACTION_MENU, "1", title="What would you like to do?")]
    if ctx.answers.value("config_source"):
        source = effective_config_source(ctx.answers, ctx.paths)
        if source is None:
            raise ValidationError(
                f"Invalid config source '{ctx.answers.value('config_source')}'. Use: existing | rebuild | template.",
                field="config_source",
            )
        return _ACTION_FOR_SOURCE[source]
    return "keep"


class DevConfigStep:
    step_id = "dev_config"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        p = ctx.prompter
        store = ConfigStore(ctx.paths.user_config)
        show_summary(ctx, store)

        if not store.exists:
            p.say("No config exists yet. We'll create one now.")
            configure_provider(ctx, store, keep_relay=False)
            configure_relay(ctx, store)
            decide(state, "config_action", "create")
            return state

        action = decide(state, "config_action", config_action(ctx))
        if action == "keep":
            p.say("Keeping current configuration.")
        elif action == "provider":
            p.say("Rebuilding the AI provider section; Telegram settings are preserved if present.")
            configure_provider(ctx, store, keep_relay=True)
        elif action == "telegram":
            configure_relay(ctx, store)
        elif action == "template":
            store.write_template()
        else:
            p.say("Rebuilding AI + Telegram configuration. A backup is created first.")
            configure_provider(ctx, store, keep_relay=False)
            configure_relay(ctx, store)
        p.say(f"Config file: {store.path}")
        return state


class DevInstallStep:
    step_id = "dev_install"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        raw = ctx.answers.value("dev_install").strip().lower()
        choice = _INSTALL_ALIASES.get(raw)
        if choice is None:
            raise ValidationError(f"Invalid dev install '{raw}'. Use: skip | manual | release.", field="dev_install")
        if ctx.interactive and not ctx.answers.is_set("dev_install"):
            default = {"skip": "1", "manual": "2", "release": "3"}[choice]
            choice = _INSTALLS[
                ctx.prompter.choice("Choose", INSTALL_MENU, default, title="Install CLI commands on this machine?")
            ]
        decide(state, "dev_install", choice)

        if choice == "manual":
            release.install_local_binary(
                ctx.project_root,
                ctx.paths.bin_dir,
                rebuild=bool(ctx.answers.flag("rebuild_release")),
                force_alias=bool(ctx.answers.flag("force_alias")),
            )
        elif choice == "release":
            root = ctx.paths.macos_release_root if ctx.host.is_macos else ctx.paths.linux_release_root
            acquire_release(ctx, state, root)
        else:
            ctx.prompter.say("Skipping CLI install.")
        return state


class DevRunStep:
    step_id = "dev_run"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        p = ctx.prompter
        root = ctx.project_root
        backend = root / "target" / "release" / "fiochat"
        bridge = root / "telegram" / "dist" / "index.js"

        if not (backend.is_file() and bridge.is_file()):
            p.say("Next steps (dev):")
            p.say("  1) Build:        make build")
            p.say("  2) Run AI:       make dev-ai")
            p.say("  3) Run Telegram: make dev-telegram")
            p.say('  4) Test:         message your bot "ping"')
            return state

        p.say("Release binaries detected")
        if not p.yes_no("Start services now?", True, override=ctx.answers.flag("start_services")):
            p.say(f"  Run AI:       {backend} --serve {DEFAULT_SERVE_ADDR}")
            p.say("  Run Telegram: cd telegram && node dist/index.js")
            return state

        node = shutil.which("node")
        if node is None:
            logger.warning("Skipping Telegram bot: node was not found in PATH")
            p.say("Skipping Telegram bot: node was not found in PATH.")

        ai_log = ctx.paths.dev_log_dir / "fiochat-ai.log"
        tg_log = ctx.paths.dev_log_dir / "fiochat-telegram.log"
        pids: List[int] = []
        try:
            pids.append(processes.spawn_detached([str(backend), "--serve", DEFAULT_SERVE_ADDR], log_file=ai_log))
            p.say(f"  AI service PID: {pids[-1]} (logs: {ai_log})")
            if node is not None:
                pids.append(processes.spawn_detached([node, "dist/index.js"], log_file=tg_log, cwd=root / "telegram"))
                p.say(f"  Telegram bot PID: {pids[-1]} (logs: {tg_log})")
        finally:
            if pids:
                p.say(f"Stop: kill {' '.join(str(pid) for pid in pids)}")
                decide(state, "pids", list(pids))
        return state


def build_steps(ctx: InstallCtx) -> List[Step]:
    return [DevConfigStep(), DevInstallStep(), DevRunStep()]
