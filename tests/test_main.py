from __future__ import annotations

import io
import os

import pytest

from fio_installer import main as cli
from fio_installer.journeys.inspect_only import guidance
from fio_installer.config_doc import inspect_config
from fio_installer.lib.env import Paths
from fio_installer.prompts import Prompter

from conftest import answers_for, make_host


@pytest.fixture()
def log_path(tmp_path):
    return str(tmp_path / "installer.log")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("FIOCHAT_"):
            monkeypatch.delenv(key)


def test_parser_maps_flags_to_answer_fields():
    args = cli.build_parser().parse_args(["apply", "--mode", "prod", "--no-start", "--tag", "v0.2.0", "-y"])
    flags = cli.flags_from_args(args)
    assert args.phase == "apply"
    assert flags["mode"] == "prod"
    assert flags["start_services"] == "0"
    assert flags["enable_services"] is None
    assert flags["tag"] == "v0.2.0"
    assert flags["non_interactive"] == "1"


def test_validate_development_passes(log_path):
    assert cli.main(["validate", "--mode", "development", "--log", log_path]) == 0


def test_validate_bogus_mode_exits_2(log_path, capsys):
    assert cli.main(["validate", "--mode", "bogus", "--log", log_path]) == 2
    assert "Invalid install mode 'bogus'" in capsys.readouterr().err


def test_unknown_phase_in_answers_document(tmp_path, log_path):
    doc = tmp_path / "answers.env"
    doc.write_text("FIOCHAT_INSTALL_PHASE=explode\n")
    assert cli.main(["--answers", str(doc), "--log", log_path]) == 2


def test_non_interactive_apply_on_the_wrong_host_exits_2(monkeypatch, tmp_path, log_path):
    monkeypatch.setattr(cli, "detect_host", lambda paths: make_host())
    monkeypatch.setattr(cli, "PATHS", Paths.rooted(tmp_path / "r"))
    assert cli.main(["apply", "--mode", "macos", "-y", "--log", log_path]) == 2


def test_verify_phase_renders_report(paths, capsys):
    answers = answers_for(mode="development")
    code = cli.run_phase(
        "verify", answers=answers, host=make_host(), paths=paths, prompter=Prompter(interactive=False, out=io.StringIO())
    )
    out = capsys.readouterr().out
    assert out.startswith("Verifying installation (mode=development)\n")
    assert code == 9


def test_inspect_apply_prints_guidance(paths):
    out = io.StringIO()
    code = cli.run_phase(
        "apply",
        answers=answers_for(mode="inspect"),
        host=make_host(),
        paths=paths,
        prompter=Prompter(interactive=False, out=out),
    )
    assert code == 0
    assert f"No config found yet: {paths.user_config}" in out.getvalue()
    assert "fio-installer apply --mode development" in out.getvalue()


def test_wizard_recommended_flow_on_plain_host(paths):
    out = io.StringIO()
    prompter = Prompter(interactive=True, input_fn=lambda _p: "", out=out)
    answers = answers_for(provider="ollama", telegram_bot_token="t", allowed_user_ids="1")
    host = make_host(os_name="freebsd", has_systemd=False, is_root=False)

    code = cli.run_phase("wizard", answers=answers, host=host, paths=paths, prompter=prompter)

    assert code == 0
    assert "falling back to Development setup" in out.getvalue()
    assert paths.user_config.is_file()


def test_guidance_points_at_the_missing_piece(tmp_path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("model: ollama:llama3.2\nclients:\n- type: ollama\n  api_base: http://localhost:11434\n")
    assert guidance(inspect_config(cfg)) == [
        "AI config looks usable.",
        "Telegram config is missing. Recommended: FIOCHAT_CONFIG_ACTION=telegram fio-installer apply",
    ]
