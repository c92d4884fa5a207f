"""Section-aware access to the fiochat configuration document.

The document is YAML, but it is edited as text so that everything the installer
does not own survives byte for byte. The model only knows top-level *blocks*:

* a block starts at a zero-indent ``key:`` line,
* it owns the comment lines directly above that line (no blank in between),
* it continues over indented lines and zero-indent ``- `` sequence items,
  including blank lines that are followed by more of those.

A *section* is a named group of top-level keys. The only mutation primitive is
"replace the whole section" (or drop it); nothing is ever patched field by field.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from .errors import FilesystemError
from .lib.fsutil import atomic_write_text, backup_file
from .lib.providers import PLACEHOLDER_KEYS, provider_label, render_provider

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_.-]*)\s*:(?:\s|$)")

DOCUMENT_HEADER = (
    "# Fiochat Configuration File\n"
    "# This file contains both AI service and Telegram bot configuration.\n"
    "\n"
)
DOCUMENT_DEFAULTS = "save: true\nsave_session: null\n"

TELEGRAM_BANNER = (
    "# ==============================================================================\n"
    "# Telegram Bot Configuration\n"
    "# ==============================================================================\n"
    "# Bot token: get from @BotFather\n"
    "# User ID(s): get from @userinfobot\n"
    "# Ops channel ID: for system notifications (optional, negative number for channels)\n"
)

TEMPLATE_TEXT = (
    "# Fiochat system config template\n"
    "# Edit this file and then restart services.\n"
    "\n"
    "model: openai:gpt-4o-mini\n"
    "clients:\n"
    "- type: openai\n"
    f"  api_key: {PLACEHOLDER_KEYS[0]}\n"
    "\n"
    + DOCUMENT_DEFAULTS
    + "\n"
    "# telegram:\n"
    "#   telegram_bot_token: YOUR_BOT_TOKEN_HERE\n"
    '#   allowed_user_ids: "123456789"\n'
    "#   server_name: myserver\n"
    "#   ai_service_api_url: http://127.0.0.1:8000/v1/chat/completions\n"
    "#   ai_service_model: default\n"
    "#   ai_service_auth_token: Bearer <no-auth>\n"
)


@dataclass(frozen=True)
class Section:
    name: str
    keys: Tuple[str, ...]
    # "top": a missing section is inserted before the first block; "end": appended.
    placement: str = "end"
    # Fields nest under the single key (telegram: {...}) instead of being top-level keys.
    nested: bool = False
    header: str = ""


SECTIONS: Dict[str, Section] = {
    "provider": Section("provider", ("model", "clients"), placement="top"),
    "telegram": Section("telegram", ("telegram",), nested=True, header=TELEGRAM_BANNER),
}


@dataclass(frozen=True)
class _Block:
    key: str
    lines: Tuple[str, ...]


_Segment = Union[_Block, str]  # a block, or one loose line


def _is_key_line(line: str) -> Optional[str]:
    m = _KEY_RE.match(line)
    return m.group(1) if m else None


def _continues_block(line: str) -> bool:
    if not line.strip():
        return False
    return line[0] in " \t" or line.startswith("- ") or line.rstrip("\r\n") == "-"


def _is_blank(line: str) -> bool:
    return not line.strip()


def _is_comment(line: str) -> bool:
    return line.startswith("#")


def _section(name: str) -> Section:
    try:
        return SECTIONS[name]
    except KeyError:
        raise KeyError(f"Unknown config section {name!r} (known: {', '.join(SECTIONS)})") from None


class ConfigDocument:
    """Immutable parsed view of the document text."""

    def __init__(self, segments: List[_Segment]) -> None:
        self._segments = list(segments)

    @classmethod
    def parse(cls, text: str) -> "ConfigDocument":
        lines = text.splitlines(keepends=True)
        segments: List[_Segment] = []
        i, n = 0, len(lines)
        while i < n:
            key = _is_key_line(lines[i])
            if key is None:
                segments.append(lines[i])
                i += 1
                continue

            # Comment lines directly above the key belong to it.
            lead: List[str] = []
            while segments and isinstance(segments[-1], str) and _is_comment(segments[-1]):
                lead.insert(0, segments.pop())

            j = i + 1
            while j < n:
                if _continues_block(lines[j]):
                    j += 1
                    continue
                if _is_blank(lines[j]):
                    k = j
                    while k < n and _is_blank(lines[k]):
                        k += 1
                    if k < n and _continues_block(lines[k]):
                        j = k
                        continue
                break
            segments.append(_Block(key=key, lines=tuple(lead + lines[i:j])))
            i = j
        return cls(segments)

    @property
    def text(self) -> str:
        out: List[str] = []
        for seg in self._segments:
            out.extend(seg.lines if isinstance(seg, _Block) else [seg])
        return "".join(out)

    def keys(self) -> List[str]:
        return [s.key for s in self._segments if isinstance(s, _Block)]

    def has_section(self, name: str) -> bool:
        keys = set(_section(name).keys)
        return any(isinstance(s, _Block) and s.key in keys for s in self._segments)

    def extract_section(self, name: str) -> str:
        keys = set(_section(name).keys)
        return "".join(
            "".join(s.lines) for s in self._segments if isinstance(s, _Block) and s.key in keys
        )

    def remove_section(self, name: str) -> "ConfigDocument":
        keys = set(_section(name).keys)
        return ConfigDocument([s for s in self._segments if not (isinstance(s, _Block) and s.key in keys)])

    def replace_section(self, name: str, text: str) -> "ConfigDocument":
        """Swap the whole section for ``text`` (already rendered)."""

        sec = _section(name)
        keys = set(sec.keys)
        if text and not text.endswith("\n"):
            text += "\n"
        new_segments: List[_Segment] = list(ConfigDocument.parse(text)._segments)

        first = next(
            (idx for idx, s in enumerate(self._segments) if isinstance(s, _Block) and s.key in keys),
            None,
        )
        if first is not None:
            out: List[_Segment] = []
            for idx, s in enumerate(self._segments):
                if idx == first:
                    out.extend(new_segments)
                elif isinstance(s, _Block) and s.key in keys:
                    continue
                else:
                    out.append(s)
            return ConfigDocument(out)

        if sec.placement == "top":
            anchor = next((idx for idx, s in enumerate(self._segments) if isinstance(s, _Block)), None)
            if anchor is not None:
                out = list(self._segments[:anchor]) + new_segments + ["\n"] + list(self._segments[anchor:])
                return ConfigDocument(out)

        out = list(self._segments)
        current = self.text
        if current and not current.endswith("\n"):
            out.append("\n")
        if current.strip() and not current.endswith("\n\n"):
            out.append("\n")
        out.extend(new_segments)
        return ConfigDocument(out)


def _drop_empty(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _drop_empty(v) for k, v in value.items() if v not in ("", None)}
    if isinstance(value, list):
        return [_drop_empty(v) for v in value]
    return value


def render_section(name: str, fields: Mapping[str, Any]) -> str:
    """Render a whole section from its fields. Empty fields are omitted."""

    sec = _section(name)
    cleaned = _drop_empty(dict(fields))
    if sec.nested:
        data = {sec.keys[0]: cleaned}
    else:
        unknown = sorted(set(cleaned) - set(sec.keys))
        if unknown:
            raise KeyError(f"Section {name!r} cannot hold key(s): {', '.join(unknown)}")
        data = {k: cleaned[k] for k in sec.keys if k in cleaned}
    body = yaml.safe_dump(data, sort_keys=False, default_flow_style=False, allow_unicode=True)
    return sec.header + body


class ConfigStore:
    """Reads and rewrites one configuration document.

    Every mutating call backs the current file up first and then replaces it
    atomically.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @property
    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> ConfigDocument:
        if not self.exists:
            return ConfigDocument.parse("")
        try:
            return ConfigDocument.parse(self.path.read_text(encoding="utf-8"))
        except OSError as e:
            raise FilesystemError(f"Cannot read {self.path}: {e}") from e

    def _base(self) -> ConfigDocument:
        doc = self.load()
        if not doc.text.strip():
            return ConfigDocument.parse(DOCUMENT_HEADER + DOCUMENT_DEFAULTS)
        return doc

    def backup(self) -> Optional[Path]:
        return backup_file(self.path)

    def _commit(self, doc: ConfigDocument) -> None:
        self.backup()
        atomic_write_text(self.path, doc.text)
        logger.info("Config written: %s", self.path)

    def extract_section(self, name: str) -> str:
        return self.load().extract_section(name)

    def remove_section(self, name: str) -> None:
        doc = self.load()
        if not doc.has_section(name):
            return
        self._commit(doc.remove_section(name))

    def write_section(self, name: str, fields: Mapping[str, Any], *, drop: Tuple[str, ...] = ()) -> None:
        """Regenerate ``name`` from ``fields``; sections in ``drop`` are removed in the same rewrite."""

        doc = self._base()
        for other in drop:
            doc = doc.remove_section(other)
        self._commit(doc.replace_section(name, render_section(name, fields)))

    def write_provider(self, provider: str, values: Mapping[str, str], *, keep_relay: bool = True) -> None:
        drop = () if keep_relay else ("telegram",)
        self.write_section("provider", render_provider(provider, values), drop=drop)
        logger.info("AI provider section written (provider=%s, relay %s)", provider, "kept" if keep_relay else "dropped")

    def write_relay(self, fields: Mapping[str, str]) -> None:
        self.write_section("telegram", fields)
        logger.info("Telegram section written")

    def write_template(self) -> None:
        self._commit(ConfigDocument.parse(TEMPLATE_TEXT))
        logger.info("Template installed at %s", self.path)


@dataclass(frozen=True)
class ConfigSummary:
    path: Path
    exists: bool = False
    parse_error: str = ""
    model: str = ""
    provider: str = ""
    api_key_status: str = "missing"  # present | placeholder | missing | not-required
    telegram_configured: bool = False
    server_name: str = ""
    allowed_user_ids: str = ""
    ai_service_api_url: str = ""

    @property
    def ai_usable(self) -> bool:
        return bool(self.model) and self.api_key_status in {"present", "not-required"}


def inspect_config(path: Path) -> ConfigSummary:
    p = Path(path)
    if not p.is_file():
        return ConfigSummary(path=p)
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        return ConfigSummary(path=p, exists=True, parse_error=str(e).splitlines()[0])
    except OSError as e:
        return ConfigSummary(path=p, exists=True, parse_error=str(e))
    if not isinstance(data, dict):
        return ConfigSummary(path=p, exists=True, parse_error="top level is not a mapping")

    clients = data.get("clients") or []
    client_types = [str(c.get("type")) for c in clients if isinstance(c, dict) and c.get("type")]
    keys = [str(c.get("api_key")) for c in clients if isinstance(c, dict) and c.get("api_key")]

    if keys:
        status = "placeholder" if any(k.startswith(PLACEHOLDER_KEYS) for k in keys) else "present"
    elif client_types and all(t == "ollama" for t in client_types):
        status = "not-required"
    else:
        status = "missing"

    tg = data.get("telegram")
    tg = tg if isinstance(tg, dict) else {}
    return ConfigSummary(
        path=p,
        exists=True,
        model=str(data.get("model") or ""),
        provider=provider_label(client_types[0]) if client_types else "unknown",
        api_key_status=status,
        telegram_configured="telegram" in data,
        server_name=str(tg.get("server_name") or ""),
        allowed_user_ids=str(tg.get("allowed_user_ids") or ""),
        ai_service_api_url=str(tg.get("ai_service_api_url") or ""),
    )


def summary_lines(summary: ConfigSummary) -> List[str]:
    if not summary.exists:
        return [f"No config found yet: {summary.path}"]
    if summary.parse_error:
        return [f"Config at {summary.path} is not valid YAML: {summary.parse_error}"]

    key_text = {
        "present": "present",
        "placeholder": "placeholder (needs fixing)",
        "missing": "missing",
        "not-required": "not required",
    }[summary.api_key_status]
    lines = [
        f"Existing config detected: {summary.path}",
        f"  - Model: {summary.model or 'not set'}",
        f"  - Provider: {summary.provider}",
        f"  - API key: {key_text}",
    ]
    if summary.telegram_configured:
        lines.append("  - Telegram bot: configured")
        if summary.server_name:
            lines.append(f"    server_name: {summary.server_name}")
        if summary.allowed_user_ids:
            lines.append(f"    allowed_user_ids: {summary.allowed_user_ids}")
    else:
        lines.append("  - Telegram bot: not configured")

    if summary.ai_usable and summary.telegram_configured:
        lines.append("Status: AI looks usable; Telegram looks usable")
    elif summary.ai_usable:
        lines.append("Status: AI looks usable; Telegram missing")
    else:
        lines.append("Status: AI config is incomplete; Telegram may also be missing")
    return lines
