from __future__ import annotations

import io
import itertools

import pytest

from fio_installer.answers import (
    FIELDS,
    normalize_config_source,
    normalize_method,
    normalize_mode,
    normalize_provider,
    parse_answers_text,
    resolve,
    secret,
)
from fio_installer.errors import Cancelled, ValidationError
from fio_installer.prompts import Prompter


def _write(tmp_path, text: str) -> str:
    p = tmp_path / "answers.env"
    p.write_text(text, encoding="utf-8")
    return str(p)


def test_precedence_flag_over_env_over_document_over_default(tmp_path):
    doc = _write(tmp_path, "FIOCHAT_INSTALL_TAG=v0.1.0\nFIOCHAT_INSTALL_REPO=doc/repo\nmethod=manual\n")
    answers = resolve(
        document_path=doc,
        environ={"FIOCHAT_INSTALL_TAG": "v0.2.0", "FIOCHAT_INSTALL_REPO": "env/repo"},
        flags={"tag": "v0.3.0"},
    )
    assert answers.value("tag") == "v0.3.0"
    assert answers.source("tag") == "flag"
    assert answers.value("repo") == "env/repo"
    assert answers.source("repo") == "env"
    assert answers.value("method") == "manual"
    assert answers.source("method") == "document"
    assert answers.value("check_ports") == "1"
    assert answers.source("check_ports") == "default"


def test_empty_env_value_does_not_override_document(tmp_path):
    doc = _write(tmp_path, "FIOCHAT_PROVIDER=claude\n")
    answers = resolve(document_path=doc, environ={"FIOCHAT_PROVIDER": ""})
    assert answers.value("provider") == "claude"


def test_every_field_is_resolved_and_secrets_have_no_default():
    answers = resolve(environ={})
    assert set(answers) == {f.name for f in FIELDS}
    for f in FIELDS:
        if f.secret:
            assert answers.value(f.name) == ""


def test_document_parsing_quotes_export_and_comments():
    values, problems = parse_answers_text(
        "# comment\n"
        "\n"
        "export FIOCHAT_SERVER_NAME='edge-1'\n"
        'FIOCHAT_ALLOWED_USER_IDS="123,456"\n'
        "provider = openai\n"
    )
    assert problems == []
    assert values == {"server_name": "edge-1", "allowed_user_ids": "123,456", "provider": "openai"}


def test_malformed_and_unknown_lines_are_skipped_not_fatal():
    values, problems = parse_answers_text("no equals sign here\nNOT_A_FIELD=1\nFIOCHAT_MODEL=gpt-4o\n")
    assert values == {"model": "gpt-4o"}
    assert [p.line_no for p in problems] == [1, 2]
    assert "line 1" in str(problems[0])


def test_resolution_is_order_independent(tmp_path):
    lines = [
        "FIOCHAT_PROVIDER=openai",
        "FIOCHAT_MODEL=gpt-4o",
        "FIOCHAT_MODEL=gpt-4o",
        "FIOCHAT_SERVER_NAME=one",
        "FIOCHAT_SERVER_NAME=two",
    ]
    results = set()
    for i, perm in enumerate(itertools.permutations(lines)):
        doc = tmp_path / f"answers-{i}.env"
        doc.write_text("\n".join(perm) + "\n", encoding="utf-8")
        results.add(resolve(document_path=str(doc), environ={}))
    assert len(results) == 1
    answers = results.pop()
    assert answers.value("model") == "gpt-4o"
    # Conflicting duplicates are dropped, so the default applies.
    assert answers.value("server_name") == ""


def test_missing_required_secret_non_interactive_names_env_var():
    answers = resolve(environ={"FIOCHAT_INSTALL_YES": "1"})
    with pytest.raises(ValidationError) as exc:
        secret(answers, "openai_api_key", Prompter(interactive=False))
    assert "FIOCHAT_OPENAI_API_KEY" in str(exc.value)
    assert exc.value.field == "openai_api_key"


def test_optional_secret_is_empty_when_missing():
    answers = resolve(environ={"FIOCHAT_INSTALL_YES": "1"})
    assert secret(answers, "ai_service_auth_token", Prompter(interactive=False)) == ""


def test_secret_prompts_when_interactive():
    answers = resolve(environ={})
    prompter = Prompter(interactive=True, secret_fn=lambda _label: "sk-typed", out=io.StringIO())
    assert secret(answers, "openai_api_key", prompter) == "sk-typed"


def test_secret_repr_is_masked():
    answers = resolve(environ={"FIOCHAT_OPENAI_API_KEY": "sk-very-secret"})
    assert "sk-very-secret" not in repr(answers)


def test_invalid_boolean_flag_raises_validation_error():
    answers = resolve(environ={"FIOCHAT_INSTALL_START_SERVICES": "maybe"})
    with pytest.raises(ValidationError) as exc:
        answers.flag("start_services")
    assert "FIOCHAT_INSTALL_START_SERVICES" in str(exc.value)


@pytest.mark.parametrize(
    "raw,expected",
    [("prod", "production"), ("dev", "development"), ("darwin", "macos"), ("verify", "inspect"), ("bogus", None)],
)
def test_normalize_mode(raw, expected):
    assert normalize_mode(raw) == expected


def test_other_normalizers():
    assert normalize_method("") == "release"
    assert normalize_method("2") == "manual"
    assert normalize_method("zip") is None
    assert normalize_config_source("") == "rebuild"
    assert normalize_config_source("3") == "template"
    assert normalize_provider("anthropic") == "claude"
    assert normalize_provider("azure") == "azure-openai"
    assert normalize_provider("gemini") is None


def test_choice_quit_raises_cancelled():
    prompter = Prompter(interactive=True, input_fn=lambda _p: "q", out=io.StringIO())
    with pytest.raises(Cancelled):
        prompter.choice("Choose", [("1", "one"), ("2", "two")], "1")


def test_choice_reprints_help_and_retries_invalid():
    replies = iter(["?", "7", "2"])
    out = io.StringIO()
    prompter = Prompter(interactive=True, input_fn=lambda _p: next(replies), out=out)
    assert prompter.choice("Choose", [("1", "one"), ("2", "two")], "1", title="Menu") == "2"
    assert out.getvalue().count("Menu") == 2
    assert "Invalid choice: '7'" in out.getvalue()


def test_choice_non_interactive_uses_default_or_fails():
    prompter = Prompter(interactive=False)
    assert prompter.choice("Choose", [("1", "one")], "1") == "1"
    with pytest.raises(ValidationError):
        prompter.choice("Choose", [("1", "one")], "9")
