"""
Tests for YAML configuration loading.
"""
from pathlib import Path

from lifeboard.config import Config


def test_defaults_when_file_missing(tmp_path, monkeypatch):
    monkeypatch.delenv("LIFEBOARD_DB", raising=False)
    monkeypatch.delenv("LIFEBOARD_CONFIG", raising=False)
    cfg = Config.load(str(tmp_path / "missing.yaml"))
    assert cfg.debounce_ms == 300
    assert cfg.grace_days == 7
    assert cfg.billing_url is None
    assert cfg.db_path == str(Path("~/.local/share/lifeboard/board.db").expanduser())


def test_yaml_values_and_unknown_keys(tmp_path, monkeypatch):
    monkeypatch.delenv("LIFEBOARD_DB", raising=False)
    path = tmp_path / "lifeboard.yaml"
    path.write_text(
        "db_path: /tmp/x/board.db\n"
        "debounce_ms: 50\n"
        "billing_url: http://billing\n"
        "something_else: true\n"
    )
    cfg = Config.load(str(path))
    assert cfg.db_path == "/tmp/x/board.db"
    assert cfg.debounce_ms == 50
    assert cfg.billing_url == "http://billing"


def test_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / "lifeboard.yaml"
    path.write_text("db_path: /tmp/from-yaml.db\n")
    monkeypatch.setenv("LIFEBOARD_CONFIG", str(path))
    monkeypatch.setenv("LIFEBOARD_DB", str(tmp_path / "from-env.db"))
    cfg = Config.load()
    assert cfg.db_path == str(tmp_path / "from-env.db")


def test_unreadable_yaml_falls_back(tmp_path, monkeypatch):
    monkeypatch.delenv("LIFEBOARD_DB", raising=False)
    path = tmp_path / "lifeboard.yaml"
    path.write_text("debounce_ms: [unclosed\n")
    assert Config.load(str(path)).debounce_ms == 300
    path.write_text("- just\n- a list\n")
    assert Config.load(str(path)).debounce_ms == 300


def test_api_secret_from_env(monkeypatch):
    monkeypatch.setenv("MY_SECRET", "s3cret")
    assert Config(api_secret_env="MY_SECRET").api_secret == "s3cret"
