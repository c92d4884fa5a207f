from __future__ import annotations

import httpx
import pytest
import yaml

from fio_installer import phases
from fio_installer.errors import FilesystemError
from fio_installer.journeys import development
from fio_installer.lib import processes
from fio_installer.pipeline import decision

from conftest import answers_for, release_transport

PROVIDER = dict(provider="openai", openai_api_key="sk-dev")
RELAY = dict(telegram_bot_token="123:abc", allowed_user_ids="111,222")


def _dev(tmp_path, **values):
    return answers_for(mode="development", project_root=str(tmp_path / "checkout"), **values)


def _backups(path):
    return sorted(path.parent.glob(path.name + ".bak-*"))


def test_first_apply_creates_provider_and_relay_sections(make_ctx, paths, tmp_path):
    ctx = make_ctx(answers=_dev(tmp_path, **PROVIDER, **RELAY))

    result = phases.apply(ctx)

    assert result.ran_steps == ["dev_config", "dev_install", "dev_run"]
    assert decision(result.state, "config_action") == "create"
    data = yaml.safe_load(paths.user_config.read_text())
    assert data["model"] == "openai:gpt-4o-mini"
    assert data["clients"] == [{"type": "openai", "api_key": "sk-dev"}]
    assert data["telegram"] == {
        "telegram_bot_token": "123:abc",
        "allowed_user_ids": "111,222",
        "server_name": "testhost",
        "ai_service_api_url": "http://127.0.0.1:8000/v1/chat/completions",
        "ai_service_model": "default",
        "ai_service_auth_token": "Bearer <no-auth>",
        "ai_service_session_namespace": "testhost",
    }

    report = phases.verify("development", paths)
    config = [c for c in report.checks if c.name == "config"][0]
    assert config.status.value == "pass"


def test_rebuild_twice_gives_identical_content(make_ctx, paths, tmp_path):
    answers = _dev(tmp_path, config_source="rebuild", **PROVIDER, **RELAY)
    phases.apply(make_ctx(answers=answers))
    first = paths.user_config.read_text()

    result = phases.apply(make_ctx(answers=answers))

    assert decision(result.state, "config_action") == "reset"
    assert paths.user_config.read_text() == first


def test_without_relay_credentials_only_provider_is_written(make_ctx, paths, tmp_path):
    ctx = make_ctx(answers=_dev(tmp_path, **PROVIDER))
    phases.apply(ctx)
    data = yaml.safe_load(paths.user_config.read_text())
    assert set(data) == {"model", "clients", "save", "save_session"}
    assert "Telegram not configured" in ctx.prompter._out.getvalue()


def test_keep_leaves_existing_config_alone(make_ctx, paths, tmp_path):
    paths.user_config.parent.mkdir(parents=True)
    paths.user_config.write_text("model: openai:gpt-4o\n# hand edit\n")
    result = phases.apply(make_ctx(answers=_dev(tmp_path)))
    assert decision(result.state, "config_action") == "keep"
    assert paths.user_config.read_text() == "model: openai:gpt-4o\n# hand edit\n"
    assert _backups(paths.user_config) == []


def test_telegram_action_preserves_provider_block(make_ctx, paths, tmp_path):
    provider_block = "model: claude:claude-3-5-sonnet-20241022\nclients:\n- type: claude\n  api_key: sk-ant\n"
    paths.user_config.parent.mkdir(parents=True)
    paths.user_config.write_text(provider_block)

    phases.apply(make_ctx(answers=_dev(tmp_path, config_action="telegram", server_name="edge", **RELAY)))

    text = paths.user_config.read_text()
    assert text.startswith(provider_block)
    assert yaml.safe_load(text)["telegram"]["ai_service_session_namespace"] == "edge"


def _built_checkout(tmp_path):
    root = tmp_path / "checkout"
    (root / "target" / "release").mkdir(parents=True)
    (root / "target" / "release" / "fiochat").write_text("")
    (root / "telegram" / "dist").mkdir(parents=True)
    (root / "telegram" / "dist" / "index.js").write_text("")
    return root


def _record_spawns(monkeypatch):
    spawned = []

    def fake_spawn(argv, *, log_file, cwd=None):
        spawned.append((list(argv), log_file, cwd))
        return 4000 + len(spawned)

    monkeypatch.setattr(processes, "spawn_detached", fake_spawn)
    return spawned


def test_run_step_spawns_both_processes(make_ctx, paths, tmp_path, monkeypatch):
    root = _built_checkout(tmp_path)
    spawned = _record_spawns(monkeypatch)
    monkeypatch.setattr(development.shutil, "which", lambda name: "/usr/bin/node" if name == "node" else None)

    ctx = make_ctx(answers=_dev(tmp_path, start_services="1"))
    state = development.DevRunStep().run(ctx, {})

    assert decision(state, "pids") == [4001, 4002]
    assert spawned[0][0] == [str(root / "target" / "release" / "fiochat"), "--serve", "127.0.0.1:8000"]
    assert spawned[0][1] == paths.dev_log_dir / "fiochat-ai.log"
    assert spawned[1][0] == ["/usr/bin/node", "dist/index.js"]
    assert spawned[1][2] == root / "telegram"
    assert "Stop: kill 4001 4002" in ctx.prompter._out.getvalue()


def test_run_step_without_node_starts_only_the_backend(make_ctx, tmp_path, monkeypatch):
    _built_checkout(tmp_path)
    spawned = _record_spawns(monkeypatch)
    monkeypatch.setattr(development.shutil, "which", lambda name: None)

    ctx = make_ctx(answers=_dev(tmp_path, start_services="1"))
    state = development.DevRunStep().run(ctx, {})

    assert len(spawned) == 1
    assert decision(state, "pids") == [4001]
    out = ctx.prompter._out.getvalue()
    assert "node was not found" in out
    assert "AI service PID: 4001" in out
    assert "Stop: kill 4001" in out


def test_run_step_reports_started_backend_when_relay_fails(make_ctx, tmp_path, monkeypatch):
    _built_checkout(tmp_path)
    monkeypatch.setattr(development.shutil, "which", lambda name: "/usr/bin/node")

    def spawn(argv, *, log_file, cwd=None):
        if argv[0] == "/usr/bin/node":
            raise FilesystemError("Could not start /usr/bin/node")
        return 5150

    monkeypatch.setattr(processes, "spawn_detached", spawn)
    ctx = make_ctx(answers=_dev(tmp_path, start_services="1"))
    state = {}

    with pytest.raises(FilesystemError):
        development.DevRunStep().run(ctx, state)

    assert decision(state, "pids") == [5150]
    assert "Stop: kill 5150" in ctx.prompter._out.getvalue()


def test_run_step_declined_prints_commands(make_ctx, tmp_path, monkeypatch):
    _built_checkout(tmp_path)
    monkeypatch.setattr(processes, "spawn_detached", lambda *a, **k: 1 / 0)

    ctx = make_ctx(answers=_dev(tmp_path, start_services="0"))
    state = development.DevRunStep().run(ctx, {})

    assert decision(state, "pids") is None
    assert "--serve 127.0.0.1:8000" in ctx.prompter._out.getvalue()


def test_release_install_from_development(make_ctx, paths, tmp_path, commands):
    transport = release_transport("joon-aca/fiochat", "v0.2.0", "linux-x86_64")
    with httpx.Client(transport=transport, follow_redirects=True) as client:
        ctx = make_ctx(answers=_dev(tmp_path, dev_install="release", tag="v0.2.0"), http=client)
        state = development.DevInstallStep().run(ctx, {})

    assert decision(state, "dev_install") == "release"
    assert decision(state, "release") == {"repo": "joon-aca/fiochat", "tag": "v0.2.0", "platform": "linux-x86_64"}
    assert (paths.linux_release_root / "bin" / "fiochat").is_file()
    assert paths.binary.is_file()
