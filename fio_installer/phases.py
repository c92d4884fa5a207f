"""Phase controller: wizard, validate, apply, verify."""

from __future__ import annotations

import dataclasses
import logging
import os
import re
import shutil
from typing import List, Optional

from .answers import FIELDS_BY_NAME, AnswerSet, ConfigSource, InstallMethod, normalize_method, normalize_mode, normalize_provider
from .config_doc import inspect_config
from .context import InstallCtx
from .errors import ValidationError, ValidationFailed
from .journeys import JOURNEYS
from .journeys.common import effective_config_source
from .lib import services
from .lib.env import DEDICATED_USER, Paths
from .lib.hostinfo import HostInfo
from .lib.providers import PROVIDER_MENU
from .pipeline import PipelineResult, run_pipeline
from .verify import VerificationReport, verify as verify_state

logger = logging.getLogger(__name__)

MODES = ("production", "development", "macos", "inspect")

_REPO_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
_TAG_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")

# Boolean answers that must parse when set.
TOGGLES = (
    "start_services",
    "enable_services",
    "check_ports",
    "launch_agents",
    "force_alias",
    "rebuild_release",
    "simple_flow",
)


def _err(errors: List[ValidationError], message: str, field: Optional[str] = None) -> None:
    errors.append(ValidationError(message, field=field))


def _release_rules(errors: List[ValidationError], answers: AnswerSet) -> None:
    repo = answers.value("repo")
    if not _REPO_RE.match(repo):
        _err(errors, f"Invalid release repository '{repo}'. Set FIOCHAT_INSTALL_REPO to OWNER/NAME.", "repo")
    tag = answers.value("tag") or "latest"
    if tag != "latest" and not _TAG_RE.match(tag):
        _err(errors, f"Invalid release tag '{tag}'. Set FIOCHAT_INSTALL_TAG to 'latest' or a tag such as v0.2.0.", "tag")


def _toggle_rules(errors: List[ValidationError], answers: AnswerSet) -> None:
    for name in TOGGLES:
        try:
            answers.flag(name)
        except ValidationError as e:
            errors.append(e)


def _config_rules(errors: List[ValidationError], answers: AnswerSet, paths: Paths) -> None:
    source = effective_config_source(answers, paths)
    if source is None:
        _err(
            errors,
            f"Invalid config source '{answers.value('config_source')}'. Use: existing | rebuild | template.",
            "config_source",
        )
        return

    if source == ConfigSource.EXISTING.value:
        summary = inspect_config(paths.user_config)
        if not summary.exists:
            _err(errors, f"Config source is 'existing' but {paths.user_config} does not exist.", "config_source")
            return
        if summary.api_key_status not in {"present", "not-required"}:
            _err(errors, "Existing config is missing a usable API key.", "config_source")
        if not summary.telegram_configured:
            _err(errors, "Existing config is missing telegram settings.", "config_source")
    elif source == ConfigSource.REBUILD.value:
        raw = answers.value("provider")
        provider = normalize_provider(raw)
        if provider is None:
            _err(errors, f"Set FIOCHAT_PROVIDER to: {' | '.join(PROVIDER_MENU)}.", "provider")
        elif provider == "openai" and not answers.value("openai_api_key"):
            _err(errors, f"Missing {FIELDS_BY_NAME['openai_api_key'].env} for provider=openai.", "openai_api_key")
        elif provider == "claude" and not answers.value("claude_api_key"):
            _err(errors, f"Missing {FIELDS_BY_NAME['claude_api_key'].env} for provider=claude.", "claude_api_key")
        elif provider == "azure-openai":
            if not answers.value("azure_api_base"):
                _err(errors, "Missing FIOCHAT_AZURE_API_BASE for provider=azure-openai.", "azure_api_base")
            if not answers.value("azure_api_key"):
                _err(errors, "Missing FIOCHAT_AZURE_API_KEY for provider=azure-openai.", "azure_api_key")
        if not answers.value("telegram_bot_token"):
            _err(errors, "Missing FIOCHAT_TELEGRAM_BOT_TOKEN.", "telegram_bot_token")
        if not answers.value("allowed_user_ids"):
            _err(errors, "Missing FIOCHAT_ALLOWED_USER_IDS.", "allowed_user_ids")


def host_errors(mode: str, host: HostInfo, paths: Paths) -> List[ValidationError]:
    """Host preconditions that no answer can fix."""

    errors: List[ValidationError] = []
    if mode == "production":
        if not host.is_linux:
            _err(errors, "Production install requires Linux.")
        if not paths.unit_dir.is_dir():
            _err(errors, f"systemd is required for production install ({paths.unit_dir} not found).")
        if not host.is_root:
            _err(errors, "Production install must run as root (re-run with sudo).")
    elif mode == "macos":
        if not host.is_macos:
            _err(errors, "macos mode requires macOS (darwin).")
    return errors


def validate(mode: Optional[str], answers: AnswerSet, host: HostInfo, paths: Paths) -> List[ValidationError]:
    """Every problem that would stop a non-interactive ``apply``; empty when ready."""

    resolved = normalize_mode(mode, default=host.default_mode())
    if resolved is None:
        return [ValidationError(f"Invalid install mode '{mode}'. Use: {' | '.join(MODES)}.", field="mode")]
    if resolved in {"development", "inspect"}:
        return []

    errors = host_errors(resolved, host, paths)

    method = normalize_method(answers.value("method"))
    if method is None:
        _err(errors, f"Invalid install method '{answers.value('method')}'. Use: release | manual.", "method")
    elif method == InstallMethod.RELEASE.value:
        _release_rules(errors, answers)
    elif resolved == "macos":
        project_root = answers.value("project_root") or os.getcwd()
        local = os.path.join(os.path.expanduser(project_root), "target", "release", "fiochat")
        if not os.access(local, os.X_OK) and shutil.which("cargo") is None:
            _err(errors, f"Missing {local} and cargo is not available to build it.", "method")

    if resolved == "production":
        user = answers.value("service_user").strip()
        if user.lower() not in {"", DEDICATED_USER, "dedicated", "current"} and not services.user_exists(user):
            _err(
                errors,
                f"Service user '{user}' does not exist. Use svc, current, or an existing account.",
                "service_user",
            )

    _toggle_rules(errors, answers)
    _config_rules(errors, answers, paths)
    return errors


def apply(ctx: InstallCtx) -> PipelineResult:
    mode = ctx.mode
    if mode is None:
        raise ValidationError(
            f"Invalid install mode '{ctx.answers.value('mode')}'. Use: {' | '.join(MODES)}.", field="mode"
        )

    if not ctx.interactive:
        errors = validate(mode, ctx.answers, ctx.host, ctx.paths)
    else:
        errors = host_errors(mode, ctx.host, ctx.paths)
    if errors:
        raise ValidationFailed(errors)

    logger.info("Apply mode=%s interactive=%s simple_flow=%s", mode, ctx.interactive, ctx.simple_flow)
    return run_pipeline(ctx=ctx, steps=JOURNEYS[mode](ctx))


WIZARD_MENU = (
    ("1", "Install fiochat (recommended)"),
    ("2", "Development setup (local checkout)"),
    ("3", "Inspect existing configuration"),
)


def recommended_mode(host: HostInfo) -> str:
    if host.is_macos:
        return "macos"
    if host.is_linux and host.has_systemd:
        return "production"
    return "development"


def wizard(ctx: InstallCtx) -> PipelineResult:
    """Menu front door. An explicit mode answer skips the menu."""

    if ctx.answers.is_set("mode"):
        return apply(ctx)

    picked = ctx.prompter.choice("Choose", WIZARD_MENU, "1", title="What would you like to do?")
    if picked == "1":
        mode = recommended_mode(ctx.host)
        if mode == "development":
            logger.warning("No platform-specific install flow for this host; falling back to development setup")
            ctx.prompter.say("No service manager detected; falling back to Development setup.")
        return apply(dataclasses.replace(ctx, simple_flow=True, selected_mode=mode))
    if picked == "2":
        return apply(dataclasses.replace(ctx, selected_mode="development"))
    return apply(dataclasses.replace(ctx, selected_mode="inspect"))


def verify(mode: Optional[str], paths: Paths, host: Optional[HostInfo] = None, **kwargs) -> VerificationReport:
    resolved = normalize_mode(mode, default=host.default_mode() if host else "development")
    if resolved is None:
        raise ValidationError(f"Invalid install mode '{mode}'. Use: {' | '.join(MODES)}.", field="mode")
    return verify_state(resolved, paths, **kwargs)
