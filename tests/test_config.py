"""Tests for vpsm.config: config directory resolution and settings."""

import pytest
import yaml

from vpsm.config import Settings, config_dir, default_config_path, default_db_path, load_config, load_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for var in ("VPSM_CONFIG_DIR", "VPSM_CONFIG", "XDG_CONFIG_HOME"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


def _write(path, data):
    path.write_text(yaml.dump(data) if not isinstance(data, str) else data)
    return str(path)


# ── Paths ────────────────────────────────────────────────────────


def test_config_dir_defaults_to_home(tmp_path):
    assert config_dir() == tmp_path / "home" / ".config" / "vpsm"


def test_config_dir_honours_xdg(monkeypatch, tmp_path):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    assert config_dir() == tmp_path / "xdg" / "vpsm"


def test_config_dir_override_wins(monkeypatch, tmp_path):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("VPSM_CONFIG_DIR", str(tmp_path / "custom"))
    assert config_dir() == tmp_path / "custom"
    assert default_db_path() == tmp_path / "custom" / "vpsm.db"
    assert default_config_path() == tmp_path / "custom" / "config.yaml"


def test_config_file_override(monkeypatch, tmp_path):
    monkeypatch.setenv("VPSM_CONFIG", str(tmp_path / "elsewhere.yaml"))
    assert default_config_path() == tmp_path / "elsewhere.yaml"


# ── load_config ──────────────────────────────────────────────────


def test_missing_file_gives_defaults(tmp_path):
    assert load_config(str(tmp_path / "absent.yaml")) == {}
    assert load_settings(str(tmp_path / "absent.yaml")) == Settings()


def test_empty_file_gives_defaults(tmp_path):
    assert load_config(_write(tmp_path / "c.yaml", "")) == {}


def test_malformed_yaml_exits(tmp_path, caplog):
    path = _write(tmp_path / "c.yaml", "polling: [unclosed")
    with pytest.raises(SystemExit) as exc_info:
        load_config(path)
    assert exc_info.value.code == 1
    assert "Error parsing YAML config" in caplog.text


def test_non_mapping_exits(tmp_path):
    with pytest.raises(SystemExit):
        load_config(_write(tmp_path / "c.yaml", "- just\n- a list\n"))


# ── load_settings ────────────────────────────────────────────────


def test_settings_defaults():
    s = Settings()
    assert s.polling.interval == 3.0
    assert s.polling.max_attempts == 100
    assert s.polling.max_transient_errors == 3
    assert s.tracker.dismiss_delay == 5.0
    assert s.tracker.stale_after == 300.0
    assert s.retention_hours == 24.0
    assert s.retry.max_attempts == 3


def test_settings_from_file(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA", str(tmp_path / "data"))
    path = _write(
        tmp_path / "c.yaml",
        {
            "default_provider": "hetzner",
            "actions": {"db_path": "$DATA/actions.db", "retention_hours": 48},
            "polling": {"interval": 1, "max_attempts": 10, "max_transient_errors": 5},
            "tracker": {"dismiss_delay": 2.5},
            "retry": {"max_attempts": 4, "base_delay": 0.1},
        },
    )
    s = load_settings(path)
    assert s.default_provider == "hetzner"
    assert s.db_path == str(tmp_path / "data" / "actions.db")
    assert s.retention_hours == 48.0
    assert s.polling.interval == 1.0
    assert s.polling.max_attempts == 10
    assert isinstance(s.polling.max_attempts, int)
    assert s.polling.max_transient_errors == 5
    assert s.tracker.dismiss_delay == 2.5
    assert s.tracker.stale_after == 300.0
    assert s.retry.max_attempts == 4
    assert s.retry.base_delay == 0.1
    assert s.retry.max_delay == 5.0


@pytest.mark.parametrize(
    "data",
    [
        {"polling": {"interval": "fast"}},
        {"polling": {"interval": -1}},
        {"polling": {"max_attempts": 0}},
        {"polling": {"max_transient_errors": True}},
        {"polling": "every 3s"},
    ],
)
def test_invalid_values_exit(tmp_path, data, caplog):
    with pytest.raises(SystemExit):
        load_settings(_write(tmp_path / "c.yaml", data))
    assert "Error" in caplog.text
