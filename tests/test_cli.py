"""Tests for the command-line entry point."""

import sys

import pytest

from test_config import CONFIG_YAML, SECRETS
from wecom_relay.__main__ import main


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.setenv("RELAY_DATA_DIR", str(tmp_path))
    for name, value in SECRETS.items():
        monkeypatch.setenv(name, value)
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML, encoding="utf-8")
    return path


def _run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["wecom-relay", *argv])
    main()


def test_config_check_prints_summary(config_file, tmp_path, monkeypatch, capsys):
    _run(monkeypatch, "config-check", "-c", str(config_file), "-e", str(tmp_path / ".env"))

    out = capsys.readouterr().out
    assert "Configuration valid" in out
    assert "Admin: boss" in out
    assert "1000002 helper [gpt]" in out
    assert "Accountant agent: 1000001" in out


def test_config_check_rejects_bad_aes_key(config_file, tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("ASSISTANT_KEY", "too-short")

    with pytest.raises(SystemExit) as exc:
        _run(monkeypatch, "config-check", "-c", str(config_file), "-e", str(tmp_path / ".env"))

    assert exc.value.code == 1
    assert "EncodingAESKey" in capsys.readouterr().err


def test_missing_secret_exits(config_file, tmp_path, monkeypatch, capsys):
    monkeypatch.delenv("PROVIDER_KEY")

    with pytest.raises(SystemExit) as exc:
        _run(monkeypatch, "assistant-info", "-c", str(config_file), "-e", str(tmp_path / ".env"))

    assert exc.value.code == 1
    assert "PROVIDER_KEY" in capsys.readouterr().err


def test_missing_config_file_exits(tmp_path, monkeypatch, capsys):
    with pytest.raises(SystemExit) as exc:
        _run(monkeypatch, "config-check", "-c", str(tmp_path / "absent.yaml"))

    assert exc.value.code == 1
    assert "install.py" in capsys.readouterr().out


def test_assistant_info_shows_budget(config_file, tmp_path, monkeypatch, capsys):
    _run(monkeypatch, "assistant-info", "-c", str(config_file), "-e", str(tmp_path / ".env"))

    out = capsys.readouterr().out
    assert "Assistant: 1000002 (helper)" in out
    assert "Budget     : 3072" in out
