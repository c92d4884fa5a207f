from __future__ import annotations

import pytest
import yaml

from fio_installer.config_doc import (
    DOCUMENT_DEFAULTS,
    ConfigDocument,
    ConfigStore,
    inspect_config,
    render_section,
    summary_lines,
)

EXISTING = (
    "# my notes\n"
    "model: openai:gpt-4o\n"
    "clients:\n"
    "- type: openai\n"
    "  api_key: sk-old\n"
    "\n"
    "# MCP servers, hand written\n"
    "mcp_servers:\n"
    "  - name: cron\n"
    "    command: cron-mcp\n"
    "\n"
    "telegram:\n"
    "  telegram_bot_token: old-token\n"
    '  allowed_user_ids: "1"\n'
    "  custom_hand_added: keep-me?\n"
    "\n"
    "save: true\n"
)

RELAY = {
    "telegram_bot_token": "123:abc",
    "allowed_user_ids": "111,222",
    "server_name": "edge",
    "ai_service_api_url": "http://127.0.0.1:8000/v1/chat/completions",
    "ai_service_model": "default",
    "ai_service_auth_token": "Bearer <no-auth>",
    "ai_service_session_namespace": "edge",
    "ops_channel_id": "",
}


def _backups(path):
    return sorted(path.parent.glob(path.name + ".bak-*"))


def test_parse_round_trips_text_exactly():
    assert ConfigDocument.parse(EXISTING).text == EXISTING
    assert ConfigDocument.parse(EXISTING).keys() == ["model", "clients", "mcp_servers", "telegram", "save"]


def test_extract_and_remove_section():
    doc = ConfigDocument.parse(EXISTING)
    assert doc.extract_section("telegram").startswith("telegram:\n  telegram_bot_token: old-token\n")
    removed = doc.remove_section("telegram")
    assert not removed.has_section("telegram")
    assert "mcp_servers:\n  - name: cron\n    command: cron-mcp\n" in removed.text
    assert removed.text.endswith("save: true\n")


def test_replace_section_keeps_bytes_outside_the_section():
    doc = ConfigDocument.parse(EXISTING)
    new = doc.replace_section("telegram", render_section("telegram", RELAY))
    before, _, _ = EXISTING.partition("telegram:\n")
    assert new.text.startswith(before)
    assert new.text.endswith("\nsave: true\n")


def test_write_section_round_trip_drops_hand_added_keys(tmp_path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text(EXISTING, encoding="utf-8")
    store = ConfigStore(cfg)

    store.write_relay(RELAY)

    extracted = yaml.safe_load(store.extract_section("telegram"))["telegram"]
    assert extracted == {k: v for k, v in RELAY.items() if v}
    assert "custom_hand_added" not in cfg.read_text()
    # Unknown top-level content outside the section survives.
    assert "# MCP servers, hand written\nmcp_servers:\n  - name: cron\n" in cfg.read_text()


def test_every_mutation_leaves_exactly_one_identical_backup(tmp_path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text(EXISTING, encoding="utf-8")
    store = ConfigStore(cfg)

    store.write_relay(RELAY)
    baks = _backups(cfg)
    assert len(baks) == 1
    assert baks[0].read_text() == EXISTING

    after_first = cfg.read_text()
    store.write_provider("claude", {"api_key": "sk-ant", "model": ""})
    baks = _backups(cfg)
    assert len(baks) == 2
    assert any(b.read_text() == after_first for b in baks)


def test_remove_absent_section_is_a_no_op(tmp_path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("model: openai:gpt-4o\n", encoding="utf-8")
    ConfigStore(cfg).remove_section("telegram")
    assert _backups(cfg) == []


def test_new_document_layout_and_idempotent_rewrite(tmp_path):
    cfg = tmp_path / "fiochat" / "config.yaml"
    store = ConfigStore(cfg)

    store.write_provider("openai", {"api_key": "sk-1", "model": "gpt-4o-mini"}, keep_relay=False)
    store.write_relay(RELAY)
    first = cfg.read_text()

    store.write_provider("openai", {"api_key": "sk-1", "model": "gpt-4o-mini"}, keep_relay=False)
    store.write_relay(RELAY)
    assert cfg.read_text() == first

    data = yaml.safe_load(first)
    assert data["model"] == "openai:gpt-4o-mini"
    assert data["clients"] == [{"type": "openai", "api_key": "sk-1"}]
    assert data["save"] is True and data["save_session"] is None
    assert first.startswith("# Fiochat Configuration File\n")
    assert DOCUMENT_DEFAULTS in first
    assert first.count("telegram:") == 1
    assert "# Telegram Bot Configuration" in first
    assert (cfg.stat().st_mode & 0o777) == 0o600


def test_write_provider_without_keep_relay_drops_telegram(tmp_path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text(EXISTING, encoding="utf-8")
    ConfigStore(cfg).write_provider("ollama", {"api_base": "http://localhost:11434", "model": "llama3.2"}, keep_relay=False)
    data = yaml.safe_load(cfg.read_text())
    assert "telegram" not in data
    assert data["clients"] == [{"type": "ollama", "api_base": "http://localhost:11434"}]
    assert data["mcp_servers"][0]["name"] == "cron"


def test_azure_provider_renders_models_list():
    text = render_section(
        "provider",
        {
            "model": "azure-openai:dep",
            "clients": [{"type": "azure-openai", "api_base": "https://x", "api_key": "k", "api_version": "v", "models": [{"name": "dep"}]}],
        },
    )
    assert yaml.safe_load(text)["clients"][0]["models"] == [{"name": "dep"}]


def test_render_rejects_keys_outside_the_section():
    with pytest.raises(KeyError):
        render_section("provider", {"telegram": {}})


def test_template_is_inert(tmp_path):
    cfg = tmp_path / "config.yaml"
    ConfigStore(cfg).write_template()
    summary = inspect_config(cfg)
    assert summary.api_key_status == "placeholder"
    assert not summary.telegram_configured
    assert not summary.ai_usable


def test_inspect_config_reports_status(tmp_path):
    cfg = tmp_path / "config.yaml"
    assert not inspect_config(cfg).exists
    assert summary_lines(inspect_config(cfg)) == [f"No config found yet: {cfg}"]

    cfg.write_text(EXISTING, encoding="utf-8")
    s = inspect_config(cfg)
    assert s.model == "openai:gpt-4o"
    assert s.provider == "OpenAI"
    assert s.api_key_status == "present"
    assert s.telegram_configured and s.allowed_user_ids == "1"
    assert "Status: AI looks usable; Telegram looks usable" in summary_lines(s)

    cfg.write_text("model: [unclosed\n", encoding="utf-8")
    assert inspect_config(cfg).parse_error
