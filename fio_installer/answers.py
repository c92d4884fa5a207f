"""Answer resolution.

One declared schema (``FIELDS``) describes every input the installer understands.
Each field is resolved once per invocation from, in order of precedence:

    explicit CLI flag > environment variable > answers document > default

The result is an immutable :class:`AnswerSet`.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from .errors import FilesystemError, ParseError, ValidationError
from .lib.env import DEFAULT_AI_SERVICE_URL, DEFAULT_REPO

logger = logging.getLogger(__name__)


class InstallMode(str, Enum):
    PRODUCTION = "production"
    DEVELOPMENT = "development"
    MACOS = "macos"
    INSPECT = "inspect"


class InstallMethod(str, Enum):
    RELEASE = "release"
    MANUAL = "manual"


class ConfigSource(str, Enum):
    EXISTING = "existing"
    REBUILD = "rebuild"
    TEMPLATE = "template"


@dataclass(frozen=True)
class Field:
    name: str
    env: str
    default: str = ""
    secret: bool = False
    required: bool = True  # only meaningful for secrets
    help: str = ""


FIELDS: Tuple[Field, ...] = (
    # Phase / automation
    Field("phase", "FIOCHAT_INSTALL_PHASE", "wizard", help="wizard | validate | apply | verify"),
    Field("non_interactive", "FIOCHAT_INSTALL_YES", "0", help="never prompt; fail fast"),
    Field("mode", "FIOCHAT_INSTALL_MODE", help="production | development | macos | inspect"),
    Field("method", "FIOCHAT_INSTALL_METHOD", "release", help="release | manual"),
    Field("config_source", "FIOCHAT_INSTALL_CONFIG_SOURCE", help="existing | rebuild | template"),
    Field("config_action", "FIOCHAT_CONFIG_ACTION", help="development: keep | provider | telegram | reset"),
    Field("service_user", "FIOCHAT_INSTALL_SERVICE_USER", help="svc | current | <existing user>"),
    Field("start_services", "FIOCHAT_INSTALL_START_SERVICES"),
    Field("enable_services", "FIOCHAT_INSTALL_ENABLE_SERVICES"),
    Field("check_ports", "FIOCHAT_INSTALL_CHECK_PORTS", "1"),
    Field("repo", "FIOCHAT_INSTALL_REPO", DEFAULT_REPO),
    Field("tag", "FIOCHAT_INSTALL_TAG", "latest"),
    Field("simple_flow", "FIOCHAT_INSTALL_SIMPLE_FLOW", "0"),
    Field("dev_install", "FIOCHAT_DEV_INSTALL", "skip", help="development: skip | manual | release"),
    Field("launch_agents", "FIOCHAT_INSTALL_LAUNCH_AGENTS"),
    Field("force_alias", "FIOCHAT_FORCE_FIO_ALIAS", "0"),
    Field("rebuild_release", "FIOCHAT_REBUILD_RELEASE", "1"),
    Field("project_root", "FIOCHAT_PROJECT_ROOT"),
    # AI provider
    Field("provider", "FIOCHAT_PROVIDER", help="openai | claude | azure-openai | ollama | manual"),
    Field("model", "FIOCHAT_MODEL"),
    Field("openai_api_key", "FIOCHAT_OPENAI_API_KEY", secret=True),
    Field("claude_api_key", "FIOCHAT_CLAUDE_API_KEY", secret=True),
    Field("azure_api_key", "FIOCHAT_AZURE_API_KEY", secret=True),
    Field("azure_api_base", "FIOCHAT_AZURE_API_BASE"),
    Field("azure_api_version", "FIOCHAT_AZURE_API_VERSION", "2024-12-01-preview"),
    Field("ollama_api_base", "FIOCHAT_OLLAMA_API_BASE", "http://localhost:11434"),
    # Telegram relay
    Field("telegram_bot_token", "FIOCHAT_TELEGRAM_BOT_TOKEN", secret=True),
    Field("allowed_user_ids", "FIOCHAT_ALLOWED_USER_IDS"),
    Field("server_name", "FIOCHAT_SERVER_NAME"),
    Field("ops_channel_id", "FIOCHAT_OPS_CHANNEL_ID"),
    Field("ai_service_api_url", "FIOCHAT_AI_SERVICE_API_URL", DEFAULT_AI_SERVICE_URL),
    Field("ai_service_model", "FIOCHAT_AI_SERVICE_MODEL", "default"),
    Field("ai_service_auth_token", "FIOCHAT_AI_SERVICE_AUTH_TOKEN", secret=True, required=False),
)

FIELDS_BY_NAME: Dict[str, Field] = {f.name: f for f in FIELDS}
_FIELDS_BY_KEY: Dict[str, Field] = {
    **{f.name.lower(): f for f in FIELDS},
    **{f.env.lower(): f for f in FIELDS},
}

# Connection fields whose presence means the operator wants non-default relay settings.
CONNECTION_FIELDS = ("ai_service_api_url", "ai_service_model", "ai_service_auth_token")

_TRUE = {"1", "y", "yes", "true", "on"}
_FALSE = {"0", "n", "no", "false", "off"}


def parse_bool(value: Optional[str]) -> Optional[bool]:
    """'' -> None (unset); raises ValueError for anything unrecognised."""
    v = (value or "").strip().lower()
    if not v:
        return None
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def normalize_mode(value: Optional[str], *, default: str = "") -> Optional[str]:
    v = (value or "").strip().lower()
    if not v:
        return default or None
    return {
        "prod": "production",
        "production": "production",
        "dev": "development",
        "development": "development",
        "mac": "macos",
        "macos": "macos",
        "darwin": "macos",
        "inspect": "inspect",
        "verify": "inspect",
    }.get(v)


def normalize_method(value: Optional[str]) -> Optional[str]:
    v = (value or "").strip().lower()
    if v in {"", "1", "release", "github-release"}:
        return InstallMethod.RELEASE.value
    if v in {"2", "manual", "build", "local"}:
        return InstallMethod.MANUAL.value
    return None


def normalize_config_source(value: Optional[str]) -> Optional[str]:
    v = (value or "").strip().lower()
    if v in {"1", "existing"}:
        return ConfigSource.EXISTING.value
    if v in {"", "2", "rebuild", "create", "repair"}:
        return ConfigSource.REBUILD.value
    if v in {"3", "template"}:
        return ConfigSource.TEMPLATE.value
    return None


def normalize_provider(value: Optional[str]) -> Optional[str]:
    v = (value or "").strip().lower()
    return {
        "openai": "openai",
        "claude": "claude",
        "anthropic": "claude",
        "anthropic-claude": "claude",
        "azure": "azure-openai",
        "azure-openai": "azure-openai",
        "ollama": "ollama",
        "manual": "manual",
    }.get(v)


class AnswerSet(Mapping[str, str]):
    """Read-only resolved answers. Unknown names read as ''."""

    def __init__(self, values: Mapping[str, str], sources: Optional[Mapping[str, str]] = None) -> None:
        self._values = MappingProxyType(dict(values))
        self._sources = MappingProxyType(dict(sources or {}))

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, AnswerSet):
            return dict(self._values) == dict(other._values)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(sorted(self._values.items())))

    def __repr__(self) -> str:
        shown = {
            k: ("***" if FIELDS_BY_NAME.get(k, Field(k, "")).secret and v else v)
            for k, v in self._values.items()
        }
        return f"AnswerSet({shown!r})"

    def value(self, name: str) -> str:
        return self._values.get(name, "")

    def source(self, name: str) -> str:
        return self._sources.get(name, "default")

    def flag(self, name: str) -> Optional[bool]:
        """Tri-state boolean: None when unset."""
        try:
            return parse_bool(self.value(name))
        except ValueError as e:
            raise ValidationError(f"{FIELDS_BY_NAME[name].env}: {e}", field=name) from e

    def is_set(self, name: str) -> bool:
        return self.source(name) != "default"

    @property
    def non_interactive(self) -> bool:
        return bool(parse_bool(self.value("non_interactive")) or False)


_LINE_RE = re.compile(r"^(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")


def _unquote(raw: str) -> str:
    v = raw.strip()
    if len(v) >= 2 and v[0] == v[-1] and v[0] in {"'", '"'}:
        return v[1:-1]
    return v


def parse_answers_text(text: str) -> Tuple[Dict[str, str], List[ParseError]]:
    """Parse ``KEY=VALUE`` lines into field values.

    Returns the values and the recoverable problems found. The result does not
    depend on line order: conflicting duplicates are dropped entirely.
    """

    seen: Dict[str, List[Tuple[int, str]]] = {}
    problems: List[ParseError] = []

    for no, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        m = _LINE_RE.match(stripped)
        if not m:
            problems.append(ParseError(f"malformed line {stripped!r}", line_no=no))
            continue
        key, raw = m.group(1), m.group(2)
        field = _FIELDS_BY_KEY.get(key.lower())
        if field is None:
            problems.append(ParseError(f"unknown key {key!r}", line_no=no))
            continue
        seen.setdefault(field.name, []).append((no, _unquote(raw)))

    values: Dict[str, str] = {}
    for name in sorted(seen):
        distinct = {v for _, v in seen[name]}
        if len(distinct) > 1:
            lines = ", ".join(str(no) for no, _ in sorted(seen[name]))
            problems.append(ParseError(f"conflicting values for {name!r} (lines {lines}); ignoring all of them"))
            continue
        values[name] = distinct.pop()

    problems.sort(key=lambda p: (p.line_no or 0, str(p)))
    return values, problems


def load_answers_document(path: Optional[str]) -> Dict[str, str]:
    if not path:
        return {}
    p = Path(path).expanduser()
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise FilesystemError(f"Cannot read answers document {p}: {e}") from e
    values, problems = parse_answers_text(text)
    for prob in problems:
        logger.warning("Answers %s: %s (skipped)", p, prob)
    logger.info("Loaded %d answer(s) from %s", len(values), p)
    return values


def resolve(
    *,
    document_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    flags: Optional[Mapping[str, Optional[str]]] = None,
) -> AnswerSet:
    """Resolve every field in ``FIELDS`` once."""

    env = os.environ if environ is None else environ
    doc = load_answers_document(document_path)
    explicit = {k: v for k, v in (flags or {}).items() if v is not None}

    values: Dict[str, str] = {}
    sources: Dict[str, str] = {}
    for field in FIELDS:
        if field.name in explicit:
            values[field.name], sources[field.name] = str(explicit[field.name]), "flag"
        elif env.get(field.env, "") != "":
            values[field.name], sources[field.name] = env[field.env], "env"
        elif field.name in doc:
            values[field.name], sources[field.name] = doc[field.name], "document"
        else:
            values[field.name], sources[field.name] = ("" if field.secret else field.default), "default"

    unknown = sorted(set(explicit) - set(FIELDS_BY_NAME))
    if unknown:
        logger.warning("Ignoring unknown flag field(s): %s", ", ".join(unknown))

    return AnswerSet(values, sources)


def secret(answers: AnswerSet, name: str, prompter, *, label: Optional[str] = None) -> str:
    """Resolve a secret, capturing hidden input only when interactive."""

    field = FIELDS_BY_NAME[name]
    label = label or name.replace("_", " ")
    value = answers.value(name)
    if value:
        logger.info("%s: from %s (%d chars)", label, answers.source(name), len(value))
        return value
    if not answers.non_interactive and prompter.interactive:
        return prompter.secret(label)
    if field.required:
        raise ValidationError(
            f"Missing required secret '{label}'. Provide {field.env} (environment or answers file).",
            field=name,
        )
    return ""
