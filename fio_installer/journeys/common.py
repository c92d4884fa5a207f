"""Steps and helpers shared by the install journeys."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import yaml

from ..answers import (
    CONNECTION_FIELDS,
    AnswerSet,
    ConfigSource,
    InstallMethod,
    normalize_config_source,
    normalize_method,
    normalize_provider,
    secret,
)
from ..config_doc import ConfigStore, inspect_config, summary_lines
from ..context import InstallCtx
from ..errors import Cancelled, ValidationError
from ..lib import release
from ..lib.env import Paths
from ..lib.platforms import detect_platform
from ..lib.providers import PROVIDER_MENU, PROVIDERS
from ..pipeline import decide, decision

logger = logging.getLogger(__name__)

NO_AUTH_TOKEN = "Bearer <no-auth>"


def _given(answers: AnswerSet, name: str) -> str:
    """The value only when the operator supplied it, so a prompt is skipped."""
    return answers.value(name) if answers.is_set(name) else ""


def effective_config_source(answers: AnswerSet, paths: Paths) -> Optional[str]:
    """Explicit choice, else ``existing`` when a user config is already there."""

    raw = answers.value("config_source")
    if raw:
        return normalize_config_source(raw)
    return ConfigSource.EXISTING.value if paths.user_config.is_file() else ConfigSource.REBUILD.value


def show_summary(ctx: InstallCtx, store: ConfigStore) -> None:
    for line in summary_lines(inspect_config(store.path)):
        ctx.prompter.say(line)


# ---------------------------------------------------------------------------
# AI provider


def choose_provider(ctx: InstallCtx) -> str:
    raw = ctx.answers.value("provider")
    if raw:
        provider = normalize_provider(raw)
        if provider is None:
            raise ValidationError(
                f"Invalid provider '{raw}'. Set FIOCHAT_PROVIDER to: {' | '.join(PROVIDER_MENU)}.",
                field="provider",
            )
        return provider
    if not ctx.interactive:
        return "openai"

    options = [(str(i), f"{PROVIDERS[p].label:<14}- {PROVIDERS[p].description}") for i, p in enumerate(PROVIDER_MENU, 1)]
    picked = ctx.prompter.choice("Provider", options, "1", title="AI provider setup\nPick who will answer Fio's requests:")
    return PROVIDER_MENU[int(picked) - 1]


def provider_values(ctx: InstallCtx, provider: str) -> Dict[str, str]:
    spec = PROVIDERS[provider]
    a, p = ctx.answers, ctx.prompter
    values: Dict[str, str] = {}

    if provider == "manual":
        p.say("Manual configuration selected: a template provider block is written for you to edit.")
        return values

    if provider == "azure-openai":
        values["api_base"] = p.text(
            "Azure API base URL", "https://YOUR_RESOURCE.openai.azure.com/", override=a.value("azure_api_base")
        )
        if not a.value("azure_api_base") and not ctx.interactive:
            raise ValidationError("Missing FIOCHAT_AZURE_API_BASE for provider=azure-openai.", field="azure_api_base")
    if provider == "ollama":
        values["api_base"] = p.text("Ollama API base URL", a.value("ollama_api_base"), override=_given(a, "ollama_api_base"))

    if spec.secret_field:
        values["api_key"] = secret(a, spec.secret_field, p, label=spec.secret_label)

    model_label = "Deployment name" if provider == "azure-openai" else "Model name"
    values["model"] = p.text(model_label, spec.default_model, override=a.value("model"))

    if provider == "azure-openai":
        values["api_version"] = p.text("Azure API version", a.value("azure_api_version"), override=_given(a, "azure_api_version"))
    return values


def configure_provider(ctx: InstallCtx, store: ConfigStore, *, keep_relay: bool) -> str:
    provider = choose_provider(ctx)
    values = provider_values(ctx, provider)
    store.write_provider(provider, values, keep_relay=keep_relay)
    ctx.prompter.say(f"AI config written: {store.path}")
    return provider


# ---------------------------------------------------------------------------
# Telegram relay


def current_relay(store: ConfigStore) -> Dict[str, Any]:
    text = store.extract_section("telegram")
    if not text:
        return {}
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError:
        logger.warning("Existing telegram section in %s is not valid YAML; ignoring its values", store.path)
        return {}
    tg = data.get("telegram") if isinstance(data, dict) else None
    return tg if isinstance(tg, dict) else {}


def relay_fields(ctx: InstallCtx, current: Mapping[str, Any]) -> Optional[Dict[str, str]]:
    """Collect relay settings. None when nothing was supplied and prompting is impossible."""

    a, p = ctx.answers, ctx.prompter
    token = a.value("telegram_bot_token")
    if not token and not ctx.interactive:
        if current.get("telegram_bot_token"):
            token = str(current["telegram_bot_token"])
        else:
            return None

    p.say("")
    p.say("Telegram setup")
    p.say("You will need a bot token from @BotFather and your user ID from @userinfobot.")
    if not token:
        token = secret(a, "telegram_bot_token", p, label="Telegram bot token")

    user_ids = p.text(
        "Allowed Telegram user IDs (comma-separated)",
        str(current.get("allowed_user_ids") or ""),
        override=a.value("allowed_user_ids"),
    )
    if not user_ids:
        raise ValidationError("Missing FIOCHAT_ALLOWED_USER_IDS.", field="allowed_user_ids")
    server_name = p.text(
        "Server name", str(current.get("server_name") or ctx.host.hostname), override=a.value("server_name")
    )
    ops_channel = p.text("Ops channel ID (optional)", str(current.get("ops_channel_id") or ""), override=a.value("ops_channel_id"))

    url = a.value("ai_service_api_url")
    model = a.value("ai_service_model")
    auth = a.value("ai_service_auth_token")
    custom = any(a.is_set(f) for f in CONNECTION_FIELDS)
    if not custom and ctx.interactive:
        custom = p.yes_no("Change connection settings anyway?", False)
    if custom and ctx.interactive:
        url = p.text("AI service URL", url, override=_given(a, "ai_service_api_url"))
        model = p.text("AI service model", model, override=_given(a, "ai_service_model"))
        if not auth:
            auth = secret(a, "ai_service_auth_token", p, label="AI service auth token")

    return {
        "telegram_bot_token": token,
        "allowed_user_ids": user_ids,
        "server_name": server_name,
        "ai_service_api_url": url,
        "ai_service_model": model,
        "ai_service_auth_token": auth or NO_AUTH_TOKEN,
        "ai_service_session_namespace": server_name,
        "ops_channel_id": ops_channel,
    }


def configure_relay(ctx: InstallCtx, store: ConfigStore) -> bool:
    fields = relay_fields(ctx, current_relay(store))
    if fields is None:
        logger.warning("No relay credentials supplied; leaving the telegram section out of %s", store.path)
        ctx.prompter.say("Telegram not configured (set FIOCHAT_TELEGRAM_BOT_TOKEN to add it).")
        return False
    store.write_relay(fields)
    ctx.prompter.say("Telegram configuration recap")
    for key in ("server_name", "allowed_user_ids", "ai_service_api_url", "ops_channel_id"):
        if fields[key]:
            ctx.prompter.say(f"  - {key}: {fields[key]}")
    return True


# ---------------------------------------------------------------------------
# Config source (production / macos)


CONFIG_SOURCE_MENU = (
    ("1", "Use existing user config"),
    ("2", "Create or repair config now (guided)"),
    ("3", "Install a template (edit later)"),
)
_SOURCE_BY_CHOICE = {"1": "existing", "2": "rebuild", "3": "template"}
_CHOICE_BY_SOURCE = {v: k for k, v in _SOURCE_BY_CHOICE.items()}


class ConfigSourceStep:
    step_id = "config_source"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        store = ConfigStore(ctx.paths.user_config)
        source = effective_config_source(ctx.answers, ctx.paths)
        if source is None:
            raise ValidationError(
                f"Invalid config source '{ctx.answers.value('config_source')}'. Use: existing | rebuild | template.",
                field="config_source",
            )
        if not ctx.answers.value("config_source") and ctx.interactive:
            picked = ctx.prompter.choice(
                "Choose", CONFIG_SOURCE_MENU, _CHOICE_BY_SOURCE[source], title="Configuration source"
            )
            source = _SOURCE_BY_CHOICE[picked]

        if source == ConfigSource.EXISTING.value and not store.exists:
            ctx.prompter.say("No user config exists to use; building one now.")
            source = ConfigSource.REBUILD.value
        decide(state, "config_source", source)

        if source == ConfigSource.EXISTING.value:
            show_summary(ctx, store)
        elif source == ConfigSource.REBUILD.value:
            show_summary(ctx, store)
            configure_provider(ctx, store, keep_relay=True)
            if not store.load().has_section("telegram"):
                configure_relay(ctx, store)
            elif ctx.answers.value("telegram_bot_token") or (
                ctx.interactive and ctx.prompter.yes_no("Update Telegram settings now?", False)
            ):
                configure_relay(ctx, store)
            else:
                ctx.prompter.say("Keeping existing Telegram settings.")
        else:
            ctx.prompter.say("Installing a template. Services may fail until you edit it.")
            store.write_template()
        decide(state, "config_path", str(store.path))
        return state


# ---------------------------------------------------------------------------
# Plan / method / release


class ConfirmPlanStep:
    step_id = "plan"

    def __init__(self, title: str) -> None:
        self.title = title

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        a = ctx.answers
        p = ctx.prompter
        p.say(self.title)
        p.say(f"  - mode: {ctx.mode}")
        p.say(f"  - method: {'release' if ctx.simple_flow else (a.value('method') or 'release')}")
        if a.value("tag"):
            p.say(f"  - release: {a.value('repo')} @ {a.value('tag')}")
        p.say(f"  - config source: {effective_config_source(a, ctx.paths) or a.value('config_source')}")
        if not p.yes_no("Proceed?", True, override=True if not ctx.interactive else None):
            raise Cancelled(self.title)
        return state


METHOD_MENU = (("1", "GitHub Release (recommended)"), ("2", "Build from local source (developer)"))


def choose_method(ctx: InstallCtx) -> str:
    if ctx.simple_flow:
        ctx.prompter.say("Install method: GitHub Release (auto-selected for recommended install)")
        return InstallMethod.RELEASE.value
    raw = ctx.answers.value("method")
    method = normalize_method(raw)
    if method is None:
        raise ValidationError(f"Invalid install method '{raw}'. Use: release | manual.", field="method")
    if ctx.answers.is_set("method") or not ctx.interactive:
        return method
    picked = ctx.prompter.choice("Choose", METHOD_MENU, "1" if method == "release" else "2", title="Install method")
    return InstallMethod.RELEASE.value if picked == "1" else InstallMethod.MANUAL.value


def requested_tag(ctx: InstallCtx) -> str:
    tag = ctx.answers.value("tag") or "latest"
    if ctx.simple_flow and not ctx.answers.is_set("tag"):
        return "latest"
    return ctx.prompter.text(
        "Release tag (e.g. v0.2.0 or latest)", tag, override=tag if ctx.answers.is_set("tag") else ""
    )


def acquire_release(ctx: InstallCtx, state: Dict[str, Any], target_root) -> release.ReleaseInstall:
    """Resolve, download, verify and promote one release into ``target_root``."""

    repo = ctx.answers.value("repo")
    platform = detect_platform(ctx.host.os_name, ctx.host.machine)
    tag = release.resolve_tag(repo, requested_tag(ctx), client=ctx.client())
    artifact = release.ReleaseArtifact(repo=repo, tag=tag, platform=platform)
    decide(state, "release", {"repo": repo, "tag": tag, "platform": platform})

    result = release.install(
        artifact,
        target_root,
        client=ctx.client(),
        bin_dir=ctx.paths.bin_dir,
        chown_root=ctx.host.is_root and ctx.host.is_linux,
        force_alias=bool(ctx.answers.flag("force_alias")),
        workdir=ctx.workspace,
    )
    if result.alias.warning:
        ctx.prompter.say(result.alias.warning)
    ctx.prompter.say(f"Installed release {tag} ({platform}) to {target_root}")
    decide(state, "release_installed", True)
    return result


def release_installed(state: Dict[str, Any]) -> bool:
    return bool(decision(state, "release_installed", False))
