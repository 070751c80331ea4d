import json
from pathlib import Path

import pytest

from tabula.config import (
    TabulaConfig,
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
    write_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_missing_or_blank_is_empty(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "missing.json") == {}
    blank = tmp_path / "blank.json"
    blank.write_text("   \n")
    assert read_config_file(blank) == {}


def test_write_config_file_round_trips(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "config.json"
    write_config_file({"server_port": 4000}, config_path)
    assert json.loads(config_path.read_text()) == {"server_port": 4000}
    assert read_config_file(config_path) == {"server_port": 4000}


def test_get_config_path_uses_env(monkeypatch, tmp_path: Path) -> None:
    target = tmp_path / "custom.json"
    monkeypatch.setenv("TABULA_CONFIG", str(target))
    assert get_config_path() == target


def test_load_config_defaults(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("TABULA_DATA_DIR", raising=False)
    cfg = load_config(tmp_path / "missing.json")
    assert cfg == TabulaConfig()
    assert cfg.server_port == 21890
    assert cfg.retention_days == 7
    assert cfg.server_logs is False


def test_load_config_file_then_env(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps({"server_port": 3000, "retention_days": 3, "log_level": "DEBUG"})
    )
    monkeypatch.setenv("TABULA_PORT", "4000")
    monkeypatch.setenv("TABULA_SERVER_LOGS", "yes")

    cfg = load_config(config_path)

    assert cfg.server_port == 4000
    assert cfg.retention_days == 3
    assert cfg.log_level == "DEBUG"
    assert cfg.server_logs is True


def test_load_config_invalid_int_warns_and_keeps_default(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TABULA_RETENTION_DAYS", "soon")
    with pytest.warns(RuntimeWarning, match="retention_days"):
        cfg = load_config(tmp_path / "missing.json")
    assert cfg.retention_days == 7


def test_load_config_invalid_file_warns(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2")
    with pytest.warns(RuntimeWarning, match="Invalid config file"):
        cfg = load_config(config_path)
    assert cfg.server_port == 21890


def test_data_path_expands_user(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TABULA_DATA_DIR", "~/tabs-here")
    cfg = load_config(tmp_path / "missing.json")
    assert cfg.data_path == Path("~/tabs-here").expanduser()


def test_get_env_overrides_only_reports_set_values(monkeypatch) -> None:
    monkeypatch.delenv("TABULA_DATA_DIR", raising=False)
    monkeypatch.setenv("TABULA_HOST", "0.0.0.0")
    assert get_env_overrides() == {"server_host": "0.0.0.0"}
