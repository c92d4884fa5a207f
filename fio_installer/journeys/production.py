"""Production install: systemd units, system-scope config, dedicated service identity."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

from ..answers import InstallMethod
from ..config_doc import inspect_config
from ..context import InstallCtx
from ..errors import PortConflictWarning, ServiceIntegrationError, ValidationError
from ..lib import ports, services
from ..lib.env import AI_UNIT, DEDICATED_USER, UNITS
from ..pipeline import Step, decide, decision
from .common import ConfigSourceStep, ConfirmPlanStep, acquire_release, choose_method, release_installed

logger = logging.getLogger(__name__)

IDENTITY_MENU = (("1", f"Dedicated service user '{DEDICATED_USER}' (recommended)"), ("2", "Current user"))


def resolve_identity(ctx: InstallCtx) -> str:
    """Map the service-user answer to an account name ('' means the dedicated one)."""

    raw = ctx.answers.value("service_user").strip()
    if not raw and ctx.interactive:
        picked = ctx.prompter.choice(
            "Choose", IDENTITY_MENU, "1", title=f"Run services as (current user: {ctx.host.current_user})"
        )
        raw = "svc" if picked == "1" else "current"
    if raw.lower() in {"", "svc", "dedicated", "1"}:
        return DEDICATED_USER
    if raw.lower() in {"current", "2"}:
        return ctx.host.current_user
    return raw


class ServiceIdentityStep:
    step_id = "service_identity"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        user = resolve_identity(ctx)
        if user == DEDICATED_USER:
            services.ensure_service_user(user, ctx.paths)
        elif not services.user_exists(user):
            raise ValidationError(
                f"Service user '{user}' does not exist. Create it first or set FIOCHAT_INSTALL_SERVICE_USER=svc.",
                field="service_user",
            )
        decide(state, "service_user", user)
        decide(state, "dedicated_identity", user == DEDICATED_USER)
        return state


class AcquireStep:
    step_id = "install_method"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        method = decide(state, "method", choose_method(ctx))
        if method == InstallMethod.RELEASE.value:
            root = ctx.paths.linux_release_root
            acquire_release(ctx, state, root)
            decide(state, "unit_source", str(root / "deploy" / "systemd"))
        else:
            source = ctx.project_root / "deploy" / "systemd"
            ctx.prompter.say(f"Using unit files from local checkout: {source}")
            decide(state, "unit_source", str(source))
        return state


class UnitsStep:
    step_id = "units"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        units = services.load_units(Path(decision(state, "unit_source")))
        services.install_units(units, ctx.paths.unit_dir)

        user = decision(state, "service_user")
        for unit in UNITS:
            if decision(state, "dedicated_identity"):
                services.clear_identity_override(ctx.paths.unit_dir, unit)
            else:
                services.write_identity_override(ctx.paths.unit_dir, unit, user)
        ctx.prompter.say(f"Installed unit files to {ctx.paths.unit_dir}")
        return state


class SystemConfigStep:
    step_id = "system_config"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        user = decision(state, "service_user")
        services.install_system_config(ctx.paths.user_config, ctx.paths.system_config, user)
        services.provision_state_dir(ctx.paths.state_dir, user)
        services.daemon_reload()
        ctx.prompter.say(f"Installed: {ctx.paths.system_config}")
        return state


def backend_port(ctx: InstallCtx) -> int:
    url = ctx.answers.value("ai_service_api_url") if ctx.answers.is_set("ai_service_api_url") else ""
    if not url:
        url = inspect_config(ctx.paths.system_config).ai_service_api_url
    return ports.port_from_url(url)


def check_port(ctx: InstallCtx, *, ours_running: bool = False) -> None:
    """Warn about a busy backend port; abort only if the operator declines to continue.

    A listener is not a conflict while our own backend unit is active: that is
    the service from an earlier run, and it is restarted after enabling.
    """

    if ctx.answers.flag("check_ports") is False:
        return
    port = backend_port(ctx)
    listeners = ports.listeners_on_port(port)
    if not listeners:
        return
    if ours_running:
        logger.info("Port %d is held by the running %s", port, AI_UNIT)
        return

    conflict = PortConflictWarning(port, listeners)
    logger.warning("%s; this may conflict with the fiochat API port", conflict)
    ctx.prompter.say("Process info:")
    for line in listeners:
        ctx.prompter.say(f"  {line}")
    if not ctx.prompter.yes_no("Continue and start services anyway?", False):
        raise ServiceIntegrationError(
            f"Aborting service start: port {port} is in use. Resolve the conflict or change "
            f"ai_service_api_url in {ctx.paths.system_config} and re-run."
        ) from conflict


class StartStep:
    step_id = "start"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        start = ctx.answers.flag("start_services")
        if start is None:
            start = release_installed(state)

        if start:
            running = services.unit_is_active(AI_UNIT)
            check_port(ctx, ours_running=running)
            services.enable_units(UNITS, now=True)
            if running:
                services.restart_units(UNITS)
                ctx.prompter.say("Services enabled and restarted")
            else:
                ctx.prompter.say("Services enabled and started")
        else:
            enable = ctx.prompter.yes_no("Enable services on boot?", True, override=ctx.answers.flag("enable_services"))
            if enable:
                services.enable_units(UNITS)
                ctx.prompter.say("Services enabled")
            ctx.prompter.say("Services installed. Start them after you deploy binaries:")
            ctx.prompter.say(f"  sudo systemctl start {' '.join(UNITS)}")
        decide(state, "started", bool(start))
        return state


class FinishStep:
    step_id = "finish"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        p = ctx.prompter
        p.say("Production install complete")
        p.say(f"Verify:  sudo systemctl status {' '.join(UNITS)}")
        for unit in UNITS:
            p.say(f"Logs:    sudo journalctl -u {unit} -f")
        return state


def build_steps(ctx: InstallCtx) -> List[Step]:
    return [
        ConfirmPlanStep("Production install (systemd)"),
        ServiceIdentityStep(),
        AcquireStep(),
        ConfigSourceStep(),
        UnitsStep(),
        SystemConfigStep(),
        StartStep(),
        FinishStep(),
    ]
